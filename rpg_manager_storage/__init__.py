"""
RPG Manager Storage

Persistence and cloud backup for the RPG manager's characters, spells,
items, attacks, categories and grimoires.

Provides:
- A local entity store on SQLite with binary image fields
- JSON snapshots (whole-store backup/restore, single-entity share files,
  zip export of stored images)
- Google Drive sync of the snapshot with progress and cancellation
- Cached Drive credentials with expiry handling

Usage:

    >>> from rpg_manager_storage import AppContext, StorageSettings
    >>> async with await AppContext.create(StorageSettings.from_yaml()) as app:
    ...     await app.store.put("rpgSpells", {"id": "1", "name": "Fireball"})
    ...     outcome = await app.orchestrator.perform_save()

Standalone pieces:

    # Local store only
    from rpg_manager_storage.local import LocalStore

    # Backups on disk
    from rpg_manager_storage.snapshot import export_to_file, import_from_file
"""

from .config import StorageSettings
from .context import AppContext
from .events import (
    ConnectivityChanged,
    DataChanged,
    EventBus,
    LoggedOut,
    LoginSucceeded,
    NoBackupFound,
    ReloadRequired,
    SessionExpired,
    StorageEvent,
)
from .exceptions import (
    AuthenticationRequiredError,
    FormatError,
    NetworkUnavailableError,
    RpgStorageError,
    SessionExpiredError,
    StorageIOError,
    StoreUnavailableError,
    SyncCanceledError,
    SyncInProgressError,
    TransportError,
    ValidationError,
)
from .identity import AccessTokenProvider, AuthSession, ConfigTokenProvider, Credential
from .local import LocalStore
from .schema import COLLECTIONS
from .snapshot import ImportSummary, export_snapshot, import_snapshot
from .sync import (
    CancelReason,
    CancelToken,
    ConnectivityMonitor,
    DriveSyncClient,
    SyncOrchestrator,
    SyncOutcome,
    SyncStatus,
)

__all__ = [
    # Wiring
    "AppContext",
    "StorageSettings",
    "COLLECTIONS",
    # Local store and snapshots
    "LocalStore",
    "ImportSummary",
    "export_snapshot",
    "import_snapshot",
    # Identity
    "AccessTokenProvider",
    "ConfigTokenProvider",
    "AuthSession",
    "Credential",
    # Sync
    "CancelReason",
    "CancelToken",
    "ConnectivityMonitor",
    "DriveSyncClient",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncStatus",
    # Events
    "EventBus",
    "StorageEvent",
    "LoginSucceeded",
    "LoggedOut",
    "SessionExpired",
    "NoBackupFound",
    "DataChanged",
    "ReloadRequired",
    "ConnectivityChanged",
    # Exceptions
    "RpgStorageError",
    "StoreUnavailableError",
    "FormatError",
    "ValidationError",
    "StorageIOError",
    "AuthenticationRequiredError",
    "SessionExpiredError",
    "NetworkUnavailableError",
    "SyncCanceledError",
    "TransportError",
    "SyncInProgressError",
]

__version__ = "0.1.0"
