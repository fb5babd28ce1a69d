"""Error taxonomy and categorization for sync operations."""

from enum import Enum

from google.api_core import exceptions as gcs_exceptions


class ErrorCategory(Enum):
    """Categories for the failures a sync process can meet."""
    VALIDATION = "validation"
    TRANSFER = "transfer"
    LOCK = "lock"
    NOTIFICATION = "notification"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base class for bucket-sync failures."""
    category = ErrorCategory.UNKNOWN

    def __init__(self, message="Synchronization failed"):
        self.message = message
        super().__init__(self.message)


class ValidationError(SyncError):
    """Malformed configuration or unusable environment. Fatal before the loop starts."""
    category = ErrorCategory.VALIDATION


class TransferError(SyncError):
    """The bulk transfer reported failure."""
    category = ErrorCategory.TRANSFER


class LockError(SyncError):
    """The distributed lock could not be acquired or released."""
    category = ErrorCategory.LOCK


class NotificationError(SyncError):
    """The notification sink failed. Only ever logged as a warning."""
    category = ErrorCategory.NOTIFICATION


def categorize_error(exception: Exception) -> ErrorCategory:
    """Categorize an exception into error types for logging and handling."""
    if isinstance(exception, SyncError):
        return exception.category
    if isinstance(exception, gcs_exceptions.GoogleAPIError):
        return ErrorCategory.STORAGE
    elif isinstance(exception, OSError):
        return ErrorCategory.STORAGE
    else:
        return ErrorCategory.UNKNOWN
