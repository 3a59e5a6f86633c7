"""
Custom exceptions for RPG manager storage.

Local store, snapshot and sync components raise these exceptions so
callers can tell a broken store apart from a rejected credential, a
canceled transfer or a plain network failure.
"""


class RpgStorageError(Exception):
    """Base exception for all storage and sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreUnavailableError(RpgStorageError):
    """Raised when the local store cannot be opened or accessed."""

    def __init__(self, path: str, reason: str | None = None, cause: Exception | None = None):
        details = {"path": path}
        if reason:
            details["reason"] = reason
        if cause:
            details["cause"] = str(cause)
        message = f"Local store unavailable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details)
        self.path = path
        self.reason = reason
        self.cause = cause


class FormatError(RpgStorageError):
    """Raised when a snapshot document or encoded payload is malformed."""

    def __init__(self, message: str, location: str | None = None):
        details = {}
        if location:
            details["location"] = location
        super().__init__(message, details)
        self.location = location


class ValidationError(RpgStorageError):
    """Raised when an entity or collection name fails validation."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class StorageIOError(RpgStorageError):
    """Raised when a local file operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class AuthenticationRequiredError(RpgStorageError):
    """Raised when a remote operation needs a credential and none is present."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class SessionExpiredError(AuthenticationRequiredError):
    """Raised when the remote store rejects the cached credential.

    The credential cache has already been cleared when this is raised.
    """

    def __init__(self, endpoint: str | None = None, status: int | None = None):
        super().__init__("Session expired, reconnect to continue")
        if endpoint:
            self.details["endpoint"] = endpoint
        if status is not None:
            self.details["status"] = status
        self.endpoint = endpoint
        self.status = status


class NetworkUnavailableError(RpgStorageError):
    """Raised when an operation is refused because there is no connectivity."""

    def __init__(self, message: str = "No network connection"):
        super().__init__(message)


class SyncCanceledError(RpgStorageError):
    """Raised when a transfer is aborted by the user or by connectivity loss.

    Not an error for logging purposes; it only tells the caller that the
    operation stopped before it could change any state.
    """

    def __init__(self, reason: str = "user"):
        super().__init__(f"Operation canceled ({reason})", {"reason": reason})
        self.reason = reason


class TransportError(RpgStorageError):
    """Raised for any other network or payload failure during a transfer."""

    def __init__(
        self,
        operation: str,
        status: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"operation": operation}
        if status is not None:
            details["status"] = status
        if cause:
            details["cause"] = str(cause)
        message = f"Transfer failed during {operation}"
        if status is not None:
            message += f" (HTTP {status})"
        elif cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.status = status
        self.cause = cause


class SyncInProgressError(RpgStorageError):
    """Raised when a save or load is requested while another one is running."""

    def __init__(self, running: str):
        super().__init__(f"A {running} operation is already in progress", {"running": running})
        self.running = running
