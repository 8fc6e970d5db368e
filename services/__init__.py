from .clip_compositor import ClipCompositor, DecodeHead, EncodingSink
from .job_orchestrator import GenerationBackend, JobOrchestrator
from .resumable_upload import ResumableUploader

__all__ = [
    "ClipCompositor",
    "DecodeHead",
    "EncodingSink",
    "GenerationBackend",
    "JobOrchestrator",
    "ResumableUploader",
]
