"""
Typed in-process event bus.

Components announce state changes (login, expired session, data written,
reload needed, connectivity) by publishing small dataclass events. Handlers
subscribe per event type; a failing handler is logged and does not stop
delivery to the others.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageEvent:
    """Base class for all published events."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), kw_only=True)


@dataclass(frozen=True)
class LoginSucceeded(StorageEvent):
    """A remote credential was obtained or restored."""

    restored: bool = False


@dataclass(frozen=True)
class LoggedOut(StorageEvent):
    """The user disconnected from the remote store."""


@dataclass(frozen=True)
class SessionExpired(StorageEvent):
    """The remote store rejected the cached credential."""


@dataclass(frozen=True)
class NoBackupFound(StorageEvent):
    """A download found no remote snapshot file."""

    file_name: str = ""


@dataclass(frozen=True)
class DataChanged(StorageEvent):
    """An entity was written or removed (key is None for a bulk replace)."""

    collection: str = ""
    key: str | None = None


@dataclass(frozen=True)
class ReloadRequired(StorageEvent):
    """In-memory state must be reloaded from the local store."""

    reason: str = "restore"


@dataclass(frozen=True)
class ConnectivityChanged(StorageEvent):
    """Network reachability changed."""

    online: bool = True


E = TypeVar("E", bound=StorageEvent)
Handler = Callable[[Any], None]


class EventBus:
    """Publish/subscribe dispatcher keyed by event class.

    Subscribing to :class:`StorageEvent` receives every event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type[StorageEvent], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a handler and return a callable that removes it."""
        self._subscribers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: StorageEvent) -> None:
        """Deliver an event to handlers of its type and of its base classes."""
        handlers: list[Handler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._subscribers.get(event_type, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler failed for {type(event).__name__}: {e}")
