"""
Bucketeer exception hierarchy.

All bucketeer exceptions inherit from BucketeerError, making it easy for callers
(an HTTP controller layer, the CLI) to map every failure mode to a uniform
response while still distinguishing specific kinds.
"""


class BucketeerError(Exception):
    """Base exception class for all bucketeer errors."""


class ConfigurationError(BucketeerError):
    """Raised for configuration errors (missing keys, invalid values)."""


class ValidationError(BucketeerError):
    """Raised for bad names, identifiers or arguments, before any side effect."""


class DuplicateNameError(ValidationError):
    """Raised when a bucket name is already registered for the same owner."""


class QuotaExceededError(BucketeerError):
    """Raised when a user's memory or API-call allocation would be exceeded.

    ``kind`` is ``"memory"`` or ``"api_calls"``.
    """

    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind


class NotFoundError(BucketeerError, LookupError):
    """Raised when a user, bucket or file does not exist."""


class PersistenceError(BucketeerError):
    """Raised when the metadata store fails."""


class DuplicateKeyError(PersistenceError):
    """Raised when an insert violates a unique key."""


class RemoteStoreError(BucketeerError):
    """Raised for blob-backend failures. ``code`` mirrors the backend status when known."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class RemoteNotFoundError(RemoteStoreError):
    """Raised when a remote bucket or object is already absent (404)."""

    def __init__(self, message: str):
        super().__init__(message, code=404)


class RemotePermissionError(RemoteStoreError):
    """Raised when a remote operation is not permitted or a key is unsafe."""

    def __init__(self, message: str):
        super().__init__(message, code=403)


class DeadlineExceededError(BucketeerError, TimeoutError):
    """Raised when a pipeline stage does not finish within its deadline."""

    def __init__(self, stage: str, seconds: float):
        super().__init__(f"Stage '{stage}' exceeded its deadline of {seconds:g}s")
        self.stage = stage
        self.seconds = seconds


class UploadError(BucketeerError):
    """Raised when an upload stream fails mid-transfer."""


class CascadeError(BucketeerError):
    """Raised when a batch delete fails part way. ``removed`` lists what was already removed."""

    def __init__(self, message: str, removed: list[str] | None = None):
        super().__init__(message)
        self.removed = removed or []
