"""Cooperative cancellation for sync transfers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from enum import Enum
from typing import TypeVar

from ..exceptions import SyncCanceledError

T = TypeVar("T")


class CancelReason(Enum):
    """Why a transfer was aborted."""

    USER = "user"
    CONNECTION_LOST = "connection_lost"


class CancelToken:
    """One-shot cancellation signal shared by a sync operation.

    The orchestrator creates one token per save/load; the user's cancel
    button and the connectivity monitor both trigger it. Network awaits
    run through :meth:`run`, which aborts the in-flight request as soon as
    the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> CancelReason | None:
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.USER) -> None:
        """Fire the token. Only the first reason is kept."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> CancelReason | None:
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise SyncCanceledError if the token has fired."""
        if self._event.is_set():
            raise self._error()

    def _error(self) -> SyncCanceledError:
        return SyncCanceledError((self._reason or CancelReason.USER).value)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the underlying task is cancelled (closing any open
        connection) before SyncCanceledError is raised. A coroutine passed to
        an already fired token is closed without being started.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self._error()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self._error()
