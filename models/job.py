from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_JOB_STATES = (JobState.SUCCEEDED, JobState.FAILED)


class GenerationRequest(BaseModel):
    """What the user asked the generation provider for. Submitted once per job."""

    prompt: str
    reference_image: bytes | None = None
    reference_image_mime_type: str = "image/png"
    quality: str = "high"
    aspect_ratio: str = Field(default="16:9", pattern=r"^(16:9|9:16)$")

    def render_prompt(self) -> str:
        return (
            f"Create a {self.quality} quality, {self.aspect_ratio} aspect ratio video "
            f"of the following scene: {self.prompt}"
        )


@dataclass
class JobStatus:
    done: bool
    result: str | None = None          # artifact URI once done
    error: str | None = None           # remote-reported failure detail


@dataclass
class GenerationJob:
    id: str                            # assigned by the remote service
    state: JobState = JobState.SUBMITTED
    attempt: int = 0                   # consecutive rate-limit backoffs
    result: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_JOB_STATES

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Job {self.id} already finished with state {self.state.value}")

    def begin_polling(self) -> None:
        self._ensure_open()
        self.state = JobState.POLLING

    def record_rate_limit(self) -> int:
        if self.state is not JobState.POLLING:
            raise RuntimeError(f"Job {self.id} is not polling (state={self.state.value})")
        self.attempt += 1
        return self.attempt

    def reset_attempts(self) -> None:
        self.attempt = 0

    def succeed(self, result: str) -> None:
        self._ensure_open()
        self.state = JobState.SUCCEEDED
        self.result = result

    def fail(self, error: str) -> None:
        self._ensure_open()
        self.state = JobState.FAILED
        self.error = error
