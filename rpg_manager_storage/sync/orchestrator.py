"""
Manual save/load orchestration.

A save uploads a snapshot of the whole local store to Drive; a load
downloads the remote snapshot and replaces the local data with it. Both
go through the same flow:

1. Refuse while offline
2. Ask the user to confirm (both operations overwrite something)
3. Run with a progress indicator and a fresh CancelToken
4. Classify the result and tell the user

Only one operation runs at a time. A load never touches the local store
unless the download completed and the token was not fired before import.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

from ..events import EventBus, ReloadRequired
from ..exceptions import (
    AuthenticationRequiredError,
    FormatError,
    NetworkUnavailableError,
    RpgStorageError,
    SessionExpiredError,
    SyncCanceledError,
    SyncInProgressError,
)
from ..local.store import LocalStore
from ..logging_utils import SyncLoggerAdapter
from ..snapshot.serializer import export_snapshot, import_snapshot
from .cancellation import CancelReason, CancelToken
from .connectivity import ConnectivityMonitor
from .drive_client import INDETERMINATE_PROGRESS, DriveSyncClient
from .ui import NullProgress, ProgressIndicator, Severity, UserInterface

logger = logging.getLogger(__name__)


class SyncOperation(Enum):
    SAVE = "save"
    LOAD = "load"


class SyncPhase(Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


class SyncStatus(Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"
    CONNECTION_LOST = "connection_lost"
    DECLINED = "declined"
    OFFLINE = "offline"
    NO_BACKUP = "no_backup"
    AUTH_REQUIRED = "auth_required"
    SESSION_EXPIRED = "session_expired"
    FAILED = "failed"
    BUSY = "busy"


@dataclass
class SyncOutcome:
    """Result of one save or load request."""

    operation: SyncOperation
    status: SyncStatus
    message: str
    reload_required: bool = False
    error: Exception | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.COMPLETED


CONFIRM_MESSAGES = {
    SyncOperation.SAVE: "Save all data to Google Drive? This replaces the existing cloud backup.",
    SyncOperation.LOAD: (
        "Load data from Google Drive? This replaces ALL local data with the cloud backup."
    ),
}

PROGRESS_TITLES = {
    SyncOperation.SAVE: "Saving to Google Drive",
    SyncOperation.LOAD: "Loading from Google Drive",
}

COMPLETED_MESSAGES = {
    SyncOperation.SAVE: "Data saved to Google Drive.",
    SyncOperation.LOAD: "Data loaded from Google Drive.",
}

OFFLINE_MESSAGE = "You are offline. Connect to the internet and try again."
CONNECTION_LOST_MESSAGE = "Connection lost. The operation was canceled."
CANCELED_MESSAGE = "Operation canceled."
DECLINED_MESSAGE = "Operation not confirmed."
NO_BACKUP_MESSAGE = "No backup found in Google Drive."
AUTH_REQUIRED_MESSAGE = "Connect to Google Drive first."
SESSION_EXPIRED_MESSAGE = "Your Google Drive session expired. Please reconnect."

_SEVERITIES = {
    SyncStatus.COMPLETED: Severity.SUCCESS,
    SyncStatus.CANCELED: Severity.INFO,
    SyncStatus.DECLINED: Severity.INFO,
    SyncStatus.NO_BACKUP: Severity.INFO,
    SyncStatus.CONNECTION_LOST: Severity.WARNING,
    SyncStatus.BUSY: Severity.WARNING,
    SyncStatus.AUTH_REQUIRED: Severity.WARNING,
    SyncStatus.SESSION_EXPIRED: Severity.WARNING,
    SyncStatus.FAILED: Severity.ERROR,
}

_FINAL_PHASES = {
    SyncStatus.COMPLETED: SyncPhase.COMPLETED,
    SyncStatus.NO_BACKUP: SyncPhase.COMPLETED,
    SyncStatus.CANCELED: SyncPhase.CANCELED,
    SyncStatus.CONNECTION_LOST: SyncPhase.CANCELED,
}

Report = Callable[[str | None, float], None]
Steps = Callable[[CancelToken, Report, logging.LoggerAdapter], Awaitable[SyncStatus]]


class SyncOrchestrator:
    """Runs confirmed, cancellable save/load operations against Drive.

    Example:
        >>> orchestrator = SyncOrchestrator(store, client, connectivity, ui)
        >>> outcome = await orchestrator.perform_save()
        >>> outcome.status
        <SyncStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        store: LocalStore,
        client: DriveSyncClient,
        connectivity: ConnectivityMonitor,
        ui: UserInterface,
        progress: ProgressIndicator | None = None,
        events: EventBus | None = None,
    ):
        self.store = store
        self.client = client
        self.connectivity = connectivity
        self.ui = ui
        self.progress = progress or NullProgress()
        self.events = events

        self._lock = asyncio.Lock()
        self._running: SyncOperation | None = None
        self._token: CancelToken | None = None
        self._phase = SyncPhase.IDLE
        self._last_phase = SyncPhase.IDLE

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def last_phase(self) -> SyncPhase:
        """Terminal phase of the most recent operation."""
        return self._last_phase

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        """Cancel the in-flight transfer.

        Returns:
            True if an operation was running and has been signalled
        """
        token = self._token
        if token is None or token.cancelled:
            return False
        logger.info(f"Cancel requested ({reason.value})")
        token.cancel(reason)
        return True

    async def perform_save(self) -> SyncOutcome:
        """Upload the whole local store to Drive."""
        return await self._run(SyncOperation.SAVE, self._save_steps)

    async def perform_load(self) -> SyncOutcome:
        """Replace the local store with the Drive backup."""
        return await self._run(SyncOperation.LOAD, self._load_steps)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _save_steps(
        self, token: CancelToken, report: Report, log: logging.LoggerAdapter
    ) -> SyncStatus:
        report("Preparing data...", 0)
        document = await export_snapshot(self.store)
        report("Preparing data...", 5)
        token.raise_if_cancelled()
        report("Data serialized", 20)

        def on_upload(percent: float) -> None:
            message = "Preparing upload..." if percent < 30 else "Uploading data..."
            report(message, 20 + percent * 0.75)

        file_id = await self.client.upload_snapshot(document, token, on_upload)
        log.info(f"Snapshot uploaded as {file_id}")
        report("Done!", 100)
        return SyncStatus.COMPLETED

    async def _load_steps(
        self, token: CancelToken, report: Report, log: logging.LoggerAdapter
    ) -> SyncStatus:
        report("Connecting...", 0)

        def on_download(percent: float) -> None:
            if percent == INDETERMINATE_PROGRESS:
                report("Downloading...", INDETERMINATE_PROGRESS)
            elif percent >= 95:
                report("Processing file...", percent * 0.95)
            else:
                report("Downloading...", percent * 0.95)

        document = await self.client.download_snapshot(token, on_download)
        if document is None:
            return SyncStatus.NO_BACKUP

        # Last point where a cancel can still prevent any local change
        token.raise_if_cancelled()

        report("Restoring database...", 98)
        summary = await import_snapshot(self.store, document)
        log.info(f"Imported {summary.total} entities from snapshot")

        if self.events is not None:
            self.events.publish(ReloadRequired(reason="restore"))
        report("Done! Reloading...", 100)
        return SyncStatus.COMPLETED

    # =========================================================================
    # Flow
    # =========================================================================

    @asynccontextmanager
    async def _progress_scope(self, title: str) -> AsyncIterator[Report]:
        self.progress.show(title)

        def report(message: str | None, percent: float) -> None:
            self.progress.update(message, percent)

        try:
            yield report
        finally:
            self.progress.hide()

    def _finish(self, outcome: SyncOutcome, started: float | None = None) -> SyncOutcome:
        if started is not None:
            outcome.duration_ms = int((time.monotonic() - started) * 1000)
        severity = _SEVERITIES.get(outcome.status, Severity.INFO)
        self.ui.notify(outcome.message, severity)
        return outcome

    async def _run(self, operation: SyncOperation, steps: Steps) -> SyncOutcome:
        if self._lock.locked():
            running = self._running or operation
            logger.warning(f"Rejected {operation.value}: {running.value} already running")
            return self._finish(
                SyncOutcome(
                    operation,
                    SyncStatus.BUSY,
                    f"A {running.value} operation is already in progress.",
                    error=SyncInProgressError(running.value),
                )
            )

        async with self._lock:
            self._running = operation
            try:
                return await self._run_locked(operation, steps)
            finally:
                self._running = None
                self._token = None
                self._phase = SyncPhase.IDLE

    async def _run_locked(self, operation: SyncOperation, steps: Steps) -> SyncOutcome:
        log = SyncLoggerAdapter(logger, operation.value)

        if not self.connectivity.is_online():
            log.warning("Refusing to sync while offline")
            self.ui.alert(OFFLINE_MESSAGE)
            return SyncOutcome(
                operation, SyncStatus.OFFLINE, OFFLINE_MESSAGE, error=NetworkUnavailableError()
            )

        self._phase = SyncPhase.CONFIRMING
        if not await self.ui.confirm(CONFIRM_MESSAGES[operation]):
            log.info("Operation declined by user")
            return SyncOutcome(operation, SyncStatus.DECLINED, DECLINED_MESSAGE)

        token = CancelToken()
        self._token = token

        def on_connectivity(online: bool) -> None:
            if not online:
                token.cancel(CancelReason.CONNECTION_LOST)

        unsubscribe = self.connectivity.subscribe(on_connectivity)
        started = time.monotonic()
        self._phase = SyncPhase.IN_PROGRESS
        log.info(f"Starting {operation.value}")

        try:
            async with self._progress_scope(PROGRESS_TITLES[operation]) as report:
                status = await steps(token, report, log)
            outcome = self._classify_status(operation, status)
        except SyncCanceledError as e:
            outcome = self._classify_cancel(operation, e)
            log.info(f"{operation.value} canceled ({e.reason})")
        except SessionExpiredError as e:
            outcome = SyncOutcome(
                operation, SyncStatus.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE, error=e
            )
            log.warning(f"Session expired during {operation.value}")
        except AuthenticationRequiredError as e:
            outcome = SyncOutcome(
                operation, SyncStatus.AUTH_REQUIRED, AUTH_REQUIRED_MESSAGE, error=e
            )
        except FormatError as e:
            outcome = SyncOutcome(
                operation, SyncStatus.FAILED, f"The backup is invalid: {e.message}", error=e
            )
            log.error(f"{operation.value} failed: {e}")
        except RpgStorageError as e:
            outcome = SyncOutcome(
                operation, SyncStatus.FAILED, f"The {operation.value} failed: {e.message}", error=e
            )
            log.error(f"{operation.value} failed: {e}")
        finally:
            unsubscribe()

        self._phase = _FINAL_PHASES.get(outcome.status, SyncPhase.FAILED)
        self._last_phase = self._phase
        outcome = self._finish(outcome, started)
        log.info(
            f"Finished {operation.value} in {outcome.duration_ms} ms",
            extra={"status": outcome.status.value},
        )
        return outcome

    @staticmethod
    def _classify_status(operation: SyncOperation, status: SyncStatus) -> SyncOutcome:
        if status == SyncStatus.NO_BACKUP:
            return SyncOutcome(operation, status, NO_BACKUP_MESSAGE)
        return SyncOutcome(
            operation,
            status,
            COMPLETED_MESSAGES[operation],
            reload_required=operation == SyncOperation.LOAD,
        )

    @staticmethod
    def _classify_cancel(operation: SyncOperation, error: SyncCanceledError) -> SyncOutcome:
        if error.reason == CancelReason.CONNECTION_LOST.value:
            return SyncOutcome(
                operation, SyncStatus.CONNECTION_LOST, CONNECTION_LOST_MESSAGE, error=error
            )
        return SyncOutcome(operation, SyncStatus.CANCELED, CANCELED_MESSAGE, error=error)
