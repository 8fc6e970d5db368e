from .artifact import Artifact
from .errors import (
    ConfigurationError,
    EmptyTimeline,
    InvalidRange,
    MalformedResult,
    NetworkExhausted,
    RateLimitExceeded,
    RejectionCategory,
    SeekFailure,
    TransientOrFatalError,
    UploadRejected,
    WorkflowError,
)
from .job import GenerationJob, GenerationRequest, JobState, JobStatus
from .timeline import Clip, Timeline
from .upload import UploadMetadata, UploadSession, UploadStatus, Visibility

__all__ = [
    "Artifact",
    "Clip",
    "ConfigurationError",
    "EmptyTimeline",
    "GenerationJob",
    "GenerationRequest",
    "InvalidRange",
    "JobState",
    "JobStatus",
    "MalformedResult",
    "NetworkExhausted",
    "RateLimitExceeded",
    "RejectionCategory",
    "SeekFailure",
    "Timeline",
    "TransientOrFatalError",
    "UploadMetadata",
    "UploadRejected",
    "UploadSession",
    "UploadStatus",
    "Visibility",
    "WorkflowError",
]
