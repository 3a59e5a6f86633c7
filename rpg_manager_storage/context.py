"""
Application wiring.

Builds the storage and sync components once and hands them out together,
so nothing in the library keeps module-level state.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from .config import StorageSettings
from .events import EventBus
from .identity.config_provider import ConfigTokenProvider
from .identity.credential_cache import CredentialCache
from .identity.provider import AccessTokenProvider
from .identity.session import AuthSession
from .local.store import LocalStore
from .sync.connectivity import ConnectivityMonitor
from .sync.drive_client import DriveSyncClient
from .sync.orchestrator import SyncOrchestrator
from .sync.ui import ConsoleInterface, NullProgress, ProgressIndicator, UserInterface

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the event bus, local store, auth session and sync components.

    Usage:
        async with await AppContext.create(settings) as app:
            await app.store.put("rpgCards", {"id": "1", "name": "Aria"})
            outcome = await app.orchestrator.perform_save()
    """

    def __init__(
        self,
        settings: StorageSettings,
        events: EventBus,
        store: LocalStore,
        session: AuthSession,
        connectivity: ConnectivityMonitor,
        client: DriveSyncClient,
        orchestrator: SyncOrchestrator,
    ):
        self.settings = settings
        self.events = events
        self.store = store
        self.session = session
        self.connectivity = connectivity
        self.client = client
        self.orchestrator = orchestrator

    @classmethod
    async def create(
        cls,
        settings: StorageSettings | None = None,
        ui: UserInterface | None = None,
        progress: ProgressIndicator | None = None,
        provider: AccessTokenProvider | None = None,
        restore_session: bool = True,
    ) -> AppContext:
        """Open the local store and wire the sync stack.

        Args:
            settings: Storage settings (defaults to settings.yaml + env)
            ui: Confirmation/notification surface (defaults to the console)
            progress: Progress indicator (defaults to no output)
            provider: Token provider (defaults to ConfigTokenProvider)
            restore_session: Reuse a cached credential if one is still valid
        """
        settings = settings or StorageSettings.from_yaml()
        events = EventBus()
        store = await LocalStore.create(settings, events)

        margin = timedelta(seconds=settings.credential_margin_seconds)
        session = AuthSession(
            provider or ConfigTokenProvider(),
            CredentialCache(settings.credential_path, margin=margin),
            events,
            margin=margin,
        )
        if restore_session:
            await session.restore()

        connectivity = ConnectivityMonitor(host=settings.connectivity_host, events=events)
        client = DriveSyncClient(session, settings, events)
        orchestrator = SyncOrchestrator(
            store,
            client,
            connectivity,
            ui or ConsoleInterface(),
            progress or NullProgress(),
            events,
        )

        logger.debug(f"Application context ready (db={settings.db_path})")
        return cls(settings, events, store, session, connectivity, client, orchestrator)

    async def close(self) -> None:
        """Close the HTTP session and the database."""
        await self.client.close()
        await self.store.close()

    async def __aenter__(self) -> AppContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
