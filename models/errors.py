"""Error taxonomy surfaced to the surrounding application.

Every terminal outcome of the workflow is one of these exceptions. Each carries a
``message`` that is safe to show to the user as-is; provider payloads never leak
through unmapped.
"""

from enum import Enum


class WorkflowError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(WorkflowError):
    """Missing credential or required field. Fix the input and try again."""


class RateLimitExceeded(WorkflowError):
    """Remote resource exhaustion outlasted the backoff budget."""


class TransientOrFatalError(WorkflowError):
    """Remote-reported failure other than rate limiting."""


class MalformedResult(WorkflowError):
    """The remote call succeeded but its payload lacked the expected result."""


class SeekFailure(WorkflowError):
    """The source media could not be positioned at a requested timestamp."""


class EmptyTimeline(WorkflowError):
    pass


class InvalidRange(WorkflowError):
    pass


class NetworkExhausted(WorkflowError):
    """Transport-level failures used up every upload attempt."""


class RejectionCategory(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    CHANNEL_REQUIRED = "channel_required"
    TERMS_NOT_ACCEPTED = "terms_not_accepted"
    UPLOAD_REJECTED = "upload_rejected"
    DUPLICATE = "duplicate"
    ACCOUNT_SUSPENDED = "account_suspended"
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    CONTENT_FORBIDDEN = "content_forbidden"
    PROCESSING_FAILURE = "processing_failure"
    FIELD_TOO_LONG = "field_too_long"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    MALFORMED_FIELD = "malformed_field"
    UNKNOWN = "unknown"


class UploadRejected(TransientOrFatalError):
    """A well-formed rejection from the hosting service, mapped to a category."""

    def __init__(
        self,
        message: str,
        *,
        category: RejectionCategory = RejectionCategory.UNKNOWN,
        reason: str | None = None,
        status_code: int | None = None,
        location: str | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.reason = reason
        self.status_code = status_code
        self.location = location
