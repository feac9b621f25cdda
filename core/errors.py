"""
Shared error types for core services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class LifecycleError(Exception):
    """Base class for engine errors surfaced to route handlers."""

    error_code = "lifecycle_error"


class NotFoundError(LifecycleError):
    """Raised when a logical key, version id, member or user does not resolve."""

    error_code = "not_found"


class DuplicateKeyError(LifecycleError):
    """Raised when a create would violate a uniqueness rule."""

    error_code = "duplicate_key"


class ConflictRetryableError(LifecycleError):
    """Raised on serialization failures; the whole operation may be retried."""

    error_code = "conflict_retryable"


class StoreUnavailableError(LifecycleError):
    """Raised when the backing store cannot be reached. Never retried here."""

    error_code = "store_unavailable"


class VersionHistoryExistsError(DuplicateKeyError):
    """Raised when a key has no active version but older versions remain."""

    error_code = "version_history_exists"
