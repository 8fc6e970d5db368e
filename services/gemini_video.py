"""Veo video generation through google-genai, plus download of the finished video."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from models.artifact import Artifact
from models.errors import ConfigurationError, TransientOrFatalError
from models.job import GenerationRequest, JobStatus
from services.config import DEFAULT_VIDEO_MODEL, get_gemini_api_key, get_video_model

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 120.0


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def status_from_operation(operation: Any) -> JobStatus:
    """Reduce a google-genai GenerateVideosOperation to a JobStatus."""
    if not getattr(operation, "done", False):
        return JobStatus(done=False)
    error = getattr(operation, "error", None)
    if error:
        return JobStatus(done=True, error=_error_message(error))
    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    video = getattr(videos[0], "video", None) if videos else None
    return JobStatus(done=True, result=getattr(video, "uri", None))


class GeminiVideoBackend:
    """
    GenerationBackend backed by the Gemini API (Veo).

    Operations are kept by name so each poll sends the provider its own operation
    object back, which is what ``client.aio.operations.get`` expects.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_VIDEO_MODEL,
        client: Any | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ConfigurationError("Gemini API key is not configured.")
        self._api_key = api_key.strip()
        self._model = model
        self._client = client
        self._operations: dict[str, Any] = {}

    @classmethod
    def from_env(cls) -> GeminiVideoBackend:
        return cls(get_gemini_api_key(), model=get_video_model())

    def _ensure_client(self) -> Any:
        if self._client is None:
            from google import genai  # noqa: PLC0415

            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def submit(self, request: GenerationRequest) -> str:
        from google.genai import types  # noqa: PLC0415

        client = self._ensure_client()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "prompt": request.render_prompt(),
            "config": types.GenerateVideosConfig(
                number_of_videos=1,
                aspect_ratio=request.aspect_ratio,
            ),
        }
        if request.reference_image:
            kwargs["image"] = types.Image(
                image_bytes=request.reference_image,
                mime_type=request.reference_image_mime_type,
            )
        logger.info(
            "[gemini_video] generate_videos model=%s aspect_ratio=%s image=%s",
            self._model,
            request.aspect_ratio,
            bool(request.reference_image),
        )
        operation = await client.aio.models.generate_videos(**kwargs)
        self._operations[operation.name] = operation
        return operation.name

    async def poll(self, job_id: str) -> JobStatus:
        client = self._ensure_client()
        operation = self._operations.get(job_id)
        if operation is None:
            from google.genai import types  # noqa: PLC0415

            operation = types.GenerateVideosOperation(name=job_id)
        operation = await client.aio.operations.get(operation=operation)
        self._operations[job_id] = operation
        return status_from_operation(operation)


async def download_artifact(
    uri: str,
    api_key: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> Artifact:
    """Fetch the generated video bytes; ``key`` is appended to the query already on ``uri``."""
    if client is None:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS) as own_client:
            return await download_artifact(uri, api_key, client=own_client)

    url = httpx.URL(uri).copy_merge_params({"key": api_key})
    response = await client.get(url, follow_redirects=True)
    if not response.is_success:
        raise TransientOrFatalError(
            f"Failed to download video file. Status: {response.status_code}. Details: {response.text}"
        )
    content_type = response.headers.get("content-type", "video/mp4").split(";")[0].strip()
    logger.info("[gemini_video] Downloaded %d bytes from %s", len(response.content), uri)
    return Artifact(data=response.content, content_type=content_type or "video/mp4", uri=uri)
