"""
Remote sync with Google Drive.

The Drive client moves whole-database snapshots; the orchestrator wraps
it with confirmation, progress, cancellation and connectivity handling.
"""

from .cancellation import CancelReason, CancelToken
from .connectivity import ConnectivityMonitor
from .drive_client import INDETERMINATE_PROGRESS, DriveSyncClient
from .orchestrator import (
    SyncOperation,
    SyncOrchestrator,
    SyncOutcome,
    SyncPhase,
    SyncStatus,
)
from .ui import (
    ConsoleInterface,
    ConsoleProgress,
    NullProgress,
    ProgressIndicator,
    Severity,
    UserInterface,
)

__all__ = [
    # Cancellation
    "CancelReason",
    "CancelToken",
    # Transport
    "DriveSyncClient",
    "INDETERMINATE_PROGRESS",
    "ConnectivityMonitor",
    # Orchestration
    "SyncOrchestrator",
    "SyncOperation",
    "SyncOutcome",
    "SyncPhase",
    "SyncStatus",
    # UI
    "UserInterface",
    "ProgressIndicator",
    "Severity",
    "ConsoleInterface",
    "ConsoleProgress",
    "NullProgress",
]
