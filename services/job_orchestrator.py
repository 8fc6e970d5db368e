"""Submit a generation job and poll it to a terminal state under rate limiting."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Protocol

from models.errors import (
    ConfigurationError,
    MalformedResult,
    RateLimitExceeded,
    TransientOrFatalError,
)
from models.job import GenerationJob, GenerationRequest, JobStatus
from services.errors import describe_generation_error, is_rate_limited

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0
BASE_DELAY_SECONDS = 5.0
MAX_DELAY_SECONDS = 60.0
MAX_RATE_LIMIT_RETRIES = 7

HIGH_DEMAND_MESSAGE = (
    "The AI service is currently experiencing high demand. Please try again in a few minutes."
)

StatusCallback = Callable[[str], None]
Sleep = Callable[[float], Awaitable[None]]


class GenerationBackend(Protocol):
    async def submit(self, request: GenerationRequest) -> str: ...

    async def poll(self, job_id: str) -> JobStatus: ...


class JobOrchestrator:
    """
    Owns the lifecycle of generation jobs: submit once, then poll until done.

    Polling waits ``poll_interval`` before every status query. Only failed queries back
    off; a "not done yet" answer is simply asked again after the same interval.
    Rate-limit failures back off exponentially with jitter, up to
    ``max_rate_limit_retries`` in a row; any other failure ends the job immediately.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        base_delay: float = BASE_DELAY_SECONDS,
        max_delay: float = MAX_DELAY_SECONDS,
        max_rate_limit_retries: int = MAX_RATE_LIMIT_RETRIES,
        sleep: Sleep = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._backend = backend
        self.poll_interval = poll_interval
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_rate_limit_retries = max_rate_limit_retries
        self._sleep = sleep
        self._jitter = jitter

    def backoff_delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2**attempt)) + self._jitter()

    async def submit(self, request: GenerationRequest) -> GenerationJob:
        if not request.prompt.strip():
            raise ConfigurationError("A description of the video is required.")
        job_id = await self._backend.submit(request)
        if not job_id:
            raise MalformedResult("The AI service accepted the request but returned no job id.")
        logger.info("[job_orchestrator] Submitted job %s", job_id)
        return GenerationJob(id=job_id)

    async def await_completion(
        self,
        job: GenerationJob,
        *,
        on_status: StatusCallback | None = None,
    ) -> str:
        """Poll ``job`` until it finishes and return its artifact reference."""
        try:
            status = await self._poll_until_done(job, on_status)
        except asyncio.CancelledError:
            logger.info("[job_orchestrator] Stopped polling job %s (cancelled)", job.id)
            raise

        if status.error:
            message = f"AI Service Error: {status.error}"
            logger.error("[job_orchestrator] Job %s failed remotely: %s", job.id, status.error)
            job.fail(message)
            raise TransientOrFatalError(message)
        if not status.result:
            message = "Video generation succeeded but no download link was found."
            job.fail(message)
            raise MalformedResult(message)

        job.succeed(status.result)
        logger.info("[job_orchestrator] Job %s succeeded: %s", job.id, status.result)
        return status.result

    async def _poll_until_done(
        self,
        job: GenerationJob,
        on_status: StatusCallback | None,
    ) -> JobStatus:
        while True:
            await self._sleep(self.poll_interval)
            job.begin_polling()
            try:
                status = await self._backend.poll(job.id)
            except Exception as exc:  # noqa: BLE001
                if not is_rate_limited(exc):
                    message = describe_generation_error(exc)
                    logger.error("[job_orchestrator] Job %s polling failed: %s", job.id, message)
                    job.fail(message)
                    raise TransientOrFatalError(message) from exc

                attempt = job.record_rate_limit()
                if attempt > self.max_rate_limit_retries:
                    logger.error(
                        "[job_orchestrator] Job %s still rate limited after %d retries; giving up.",
                        job.id,
                        self.max_rate_limit_retries,
                    )
                    job.fail(HIGH_DEMAND_MESSAGE)
                    raise RateLimitExceeded(HIGH_DEMAND_MESSAGE) from exc

                delay = self.backoff_delay(attempt)
                message = (
                    f"Rate limit hit. Waiting {round(delay)}s before next retry. "
                    f"(Attempt {attempt}/{self.max_rate_limit_retries})"
                )
                logger.warning("[job_orchestrator] Job %s: %s", job.id, message)
                if on_status is not None:
                    on_status(message)
                await self._sleep(delay)
                continue

            job.reset_attempts()
            if status.done:
                return status
            logger.debug("[job_orchestrator] Job %s not done yet", job.id)

    async def generate(
        self,
        request: GenerationRequest,
        *,
        on_status: StatusCallback | None = None,
    ) -> str:
        job = await self.submit(request)
        return await self.await_completion(job, on_status=on_status)
