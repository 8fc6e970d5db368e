"""Publish an artifact to YouTube through the resumable upload protocol."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from models.artifact import Artifact
from models.errors import (
    ConfigurationError,
    MalformedResult,
    NetworkExhausted,
    TransientOrFatalError,
    WorkflowError,
)
from models.upload import UploadMetadata, UploadSession
from services.config import DEFAULT_UPLOAD_CHUNK_SIZE, YOUTUBE_UPLOAD_URL
from services.errors import parse_upload_rejection

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
INITIAL_DELAY_SECONDS = 2.0
REQUEST_TIMEOUT_SECONDS = 60.0
RESUME_INCOMPLETE = 308
UPLOAD_PARAMS = {"uploadType": "resumable", "part": "snippet,status"}

_RANGE_HEADER = re.compile(r"bytes=(\d+)-(\d+)")

ProgressCallback = Callable[[int], None]
StatusCallback = Callable[[str], None]
Sleep = Callable[[float], Awaitable[None]]


class _RetryableUploadError(Exception):
    """Connection-level failure; the whole initiate+transfer may be attempted again."""


def _acknowledged_bytes(range_header: str | None) -> int:
    """Bytes persisted by the server according to a ``Range: bytes=0-N`` header."""
    if not range_header:
        return 0
    match = _RANGE_HEADER.search(range_header)
    if match is None:
        return 0
    return int(match.group(2)) + 1


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def validate_metadata(metadata: UploadMetadata) -> None:
    """Reject metadata YouTube would refuse, before any bytes are produced or sent."""
    if not metadata.title.strip():
        raise ConfigurationError("A title is required to upload a video.")
    if metadata.publish_at is not None and metadata.publish_at <= datetime.now(timezone.utc):
        raise ConfigurationError("The scheduled publish time must be in the future.")


class ResumableUploader:
    """
    Uploads one artifact per ``publish`` call.

    Each attempt is a fresh session: initiate with the metadata, then send the bytes
    to the session location in sequential byte ranges. Only connection-level failures
    (and 5xx answers to the initiate request) are retried, with exponential backoff.
    A well-formed rejection from the service ends the publish immediately.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        upload_url: str = YOUTUBE_UPLOAD_URL,
        chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
        max_attempts: int = MAX_ATTEMPTS,
        initial_delay: float = INITIAL_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._client = client
        self.upload_url = upload_url
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self._sleep = sleep
        self._timeout = timeout

    @asynccontextmanager
    async def _open_client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def publish(
        self,
        artifact: Artifact,
        metadata: UploadMetadata,
        credential: str | None,
        *,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> str:
        """Upload ``artifact`` and return the id the hosting service assigned to it."""
        if not credential or not credential.strip():
            raise ConfigurationError("You must sign in to YouTube before uploading.")
        validate_metadata(metadata)
        if not artifact.data:
            raise ConfigurationError("There is no video to upload.")

        resource = metadata.to_resource()
        async with self._open_client() as client:
            for attempt in range(self.max_attempts):
                session = UploadSession(total_bytes=artifact.size)
                try:
                    await self._initiate(client, session, artifact, resource, credential)
                    remote_id = await self._transfer(client, session, artifact, credential, on_progress)
                except _RetryableUploadError as exc:
                    session.fail()
                    logger.warning(
                        "[resumable_upload] Attempt %d/%d failed: %s",
                        attempt + 1,
                        self.max_attempts,
                        exc,
                    )
                    if attempt >= self.max_attempts - 1:
                        raise NetworkExhausted(
                            "Upload failed due to a network error after multiple retries. "
                            "Please check your internet connection."
                        ) from exc
                    delay = self.initial_delay * (2**attempt)
                    if on_status is not None:
                        on_status(
                            f"Upload failed. Retrying in {round(delay)}s... "
                            f"(Attempt {attempt + 2}/{self.max_attempts})"
                        )
                    await self._sleep(delay)
                    continue
                except WorkflowError as exc:
                    session.fail()
                    logger.error("[resumable_upload] Upload rejected: %s", exc.message)
                    raise
                except asyncio.CancelledError:
                    logger.info(
                        "[resumable_upload] Upload cancelled; abandoning session at %d/%d bytes",
                        session.bytes_acknowledged,
                        session.total_bytes,
                    )
                    raise
                logger.info("[resumable_upload] Published %s (%d bytes)", remote_id, artifact.size)
                return remote_id
        raise NetworkExhausted("Upload failed after all retries.")

    async def _initiate(
        self,
        client: httpx.AsyncClient,
        session: UploadSession,
        artifact: Artifact,
        resource: dict[str, Any],
        credential: str,
    ) -> None:
        headers = {
            "Authorization": f"Bearer {credential}",
            "X-Upload-Content-Length": str(artifact.size),
            "X-Upload-Content-Type": artifact.content_type,
        }
        try:
            response = await client.post(
                self.upload_url,
                params=UPLOAD_PARAMS,
                headers=headers,
                json=resource,
            )
        except httpx.TransportError as exc:
            raise _RetryableUploadError(f"initiate: {exc!r}") from exc

        if response.is_server_error:
            raise _RetryableUploadError(f"initiate: HTTP {response.status_code}")
        if not response.is_success:
            raise parse_upload_rejection(_json_or_none(response), response.status_code)

        location = response.headers.get("Location")
        if not location:
            raise TransientOrFatalError("Could not get upload URL from YouTube API.")
        session.initiated(location)
        logger.info("[resumable_upload] Session initiated for %d bytes", artifact.size)

    async def _transfer(
        self,
        client: httpx.AsyncClient,
        session: UploadSession,
        artifact: Artifact,
        credential: str,
        on_progress: ProgressCallback | None,
    ) -> str:
        assert session.location is not None
        session.begin_transfer()
        total = session.total_bytes
        while True:
            start = session.bytes_acknowledged
            if start < total:
                end = min(start + self.chunk_size, total)
                content_range = f"bytes {start}-{end - 1}/{total}"
            else:
                # Every byte is persisted but the session is still open: ask for its final status.
                end = total
                content_range = f"bytes */{total}"
            headers = {
                "Authorization": f"Bearer {credential}",
                "Content-Type": artifact.content_type,
                "Content-Range": content_range,
            }
            try:
                response = await client.put(
                    session.location,
                    headers=headers,
                    content=artifact.data[start:end],
                )
            except httpx.TransportError as exc:
                raise _RetryableUploadError(f"transfer at byte {start}: {exc!r}") from exc

            if response.status_code == RESUME_INCOMPLETE:
                acknowledged = _acknowledged_bytes(response.headers.get("Range"))
                if acknowledged < session.bytes_acknowledged:
                    raise TransientOrFatalError(
                        "YouTube lost part of the upload. Please try uploading again."
                    )
                if acknowledged > total:
                    raise TransientOrFatalError(
                        "YouTube acknowledged more data than was sent. Please try uploading again."
                    )
                if acknowledged == session.bytes_acknowledged:
                    raise _RetryableUploadError(f"transfer made no progress at byte {start}")
                session.acknowledge(acknowledged)
                if on_progress is not None:
                    on_progress(session.percent_complete)
                continue

            if response.is_success:
                body = _json_or_none(response)
                remote_id = body.get("id") if isinstance(body, dict) else None
                if not remote_id:
                    raise MalformedResult("Upload finished but YouTube returned no video id.")
                reported_all = session.bytes_acknowledged == total
                session.complete(remote_id)
                if on_progress is not None and not reported_all:
                    on_progress(100)
                return remote_id

            body = _json_or_none(response)
            if body is None:
                raise TransientOrFatalError(
                    f"Failed to upload video file. Status: {response.status_code} {response.reason_phrase}"
                )
            raise parse_upload_rejection(body, response.status_code)
