"""
Network reachability tracking.

Sync operations are refused while offline, and a running transfer is
cancelled as soon as the connection drops. The monitor keeps the last
known state, which either comes from an external signal
(:meth:`ConnectivityMonitor.set_online`) or from a DNS lookup of the API
host (:meth:`ConnectivityMonitor.check`).
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable

from ..events import ConnectivityChanged, EventBus

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Last-known network state with change listeners."""

    def __init__(
        self,
        host: str = "www.googleapis.com",
        port: int = 443,
        timeout: float = 5.0,
        online: bool = True,
        events: EventBus | None = None,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.events = events
        self._online = online
        self._listeners: list[Listener] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(online)`` on every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record a new state and notify listeners if it changed."""
        if online == self._online:
            return

        self._online = online
        if online:
            logger.info("Network connection restored")
        else:
            logger.warning("Network connection lost")

        if self.events is not None:
            self.events.publish(ConnectivityChanged(online=online))

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    async def check(self) -> bool:
        """Resolve the API host to decide whether we are online."""
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.getaddrinfo(self.host, self.port, type=socket.SOCK_STREAM),
                timeout=self.timeout,
            )
            online = True
        except (OSError, TimeoutError):
            online = False

        self.set_online(online)
        return online

    async def watch(self, interval: float = 5.0, stop_event: asyncio.Event | None = None) -> None:
        """Poll :meth:`check` every ``interval`` seconds until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            await self.check()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                continue
