"""Upload error taxonomy.

Per-item errors inside a batch are collected into the BatchResult instead of
being raised. Single-item operations (URL fetch) raise them directly, and the
routes translate them into HTTP responses.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from quota_uploads.services.quota import UsageSnapshot


class UploadError(Exception):
    """Base class for everything the ingestion core raises."""
    pass


class UploadValidationError(UploadError):
    """Bad or missing input (empty batch, missing URL). Nothing was ingested."""
    pass


class UnknownQuotaTierError(UploadError):
    """The user's tier has no policy. Configuration error, aborts the whole call."""

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"Unknown quota tier: {tier!r}")


class QuotaError(UploadError):
    """Base for quota rejections. Optionally carries the usage at rejection time."""

    def __init__(self, message: str, usage: Optional["UsageSnapshot"] = None):
        self.usage = usage
        super().__init__(message)


class FileTooLargeError(QuotaError):
    pass


class WouldExceedQuotaError(QuotaError):
    pass


class QuotaAlreadyExceededError(QuotaError):
    pass


class QuotaExceededError(QuotaError):
    """Raised after the fact, when a committed upload pushed the account over its limit."""
    pass


class IngestionError(UploadError):
    """Content store or persistence failure for a single item."""
    pass


class RemoteFetchError(UploadError):
    """Download failure - carries status, URL and the last redirect location."""

    def __init__(self, message: str, url: str, status: int = 0, location: Optional[str] = None):
        self.message = message
        self.url = url
        self.status = status
        self.location = location
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.location:
            return f"Failed to download: {self.status} redirect to {self.location}"
        if self.status:
            return f"Failed to download: {self.status}"
        return f"Failed to download: {self.message}"
