from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
import pytest

from models import (
    Artifact,
    ConfigurationError,
    NetworkExhausted,
    RejectionCategory,
    TransientOrFatalError,
    UploadMetadata,
    UploadRejected,
    Visibility,
)
from services.resumable_upload import ResumableUploader

UPLOAD_URL = "https://upload.test/upload/youtube/v3/videos"
SESSION_URL = "https://upload.test/session/abc"
TOKEN = "ya29.test-token"

Handler = Callable[[httpx.Request], httpx.Response]


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FakeYouTube:
    """Minimal resumable-upload endpoint: initiate, then ranged PUTs acknowledged with 308."""

    def __init__(self, *, init_failures: list[httpx.Response] | None = None) -> None:
        self.init_failures = list(init_failures or [])
        self.init_requests: list[httpx.Request] = []
        self.put_requests: list[httpx.Request] = []
        self.received = bytearray()
        self.video_id = "vid-42"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.init_requests.append(request)
            if self.init_failures:
                return self.init_failures.pop(0)
            self.received = bytearray()
            return httpx.Response(200, headers={"Location": SESSION_URL})

        self.put_requests.append(request)
        total = int(request.headers["Content-Range"].split("/")[1])
        self.received.extend(request.content)
        if len(self.received) < total:
            return httpx.Response(308, headers={"Range": f"bytes=0-{len(self.received) - 1}"})
        return httpx.Response(200, json={"id": self.video_id, "kind": "youtube#video"})


def _uploader(handler: Handler, sleep: _SleepRecorder, **kwargs: object) -> ResumableUploader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResumableUploader(client=client, upload_url=UPLOAD_URL, sleep=sleep, **kwargs)


def _artifact(size: int = 1000) -> Artifact:
    return Artifact(data=bytes(range(256)) * (size // 256) + bytes(size % 256), content_type="video/webm")


def _metadata(**kwargs: object) -> UploadMetadata:
    return UploadMetadata(title="Fox in the snow", description="Generated", **kwargs)


@pytest.mark.anyio
async def test_publish_sends_chunks_and_reports_non_decreasing_progress() -> None:
    youtube = _FakeYouTube()
    sleep = _SleepRecorder()
    progress: list[int] = []
    artifact = _artifact(1000)
    uploader = _uploader(youtube, sleep, chunk_size=300)

    remote_id = await uploader.publish(artifact, _metadata(), TOKEN, on_progress=progress.append)

    assert remote_id == "vid-42"
    assert bytes(youtube.received) == artifact.data
    assert [r.headers["Content-Range"] for r in youtube.put_requests] == [
        "bytes 0-299/1000",
        "bytes 300-599/1000",
        "bytes 600-899/1000",
        "bytes 900-999/1000",
    ]
    assert progress == [30, 60, 90, 100]
    assert progress == sorted(progress)
    assert sleep.delays == []


@pytest.mark.anyio
async def test_initiate_request_carries_metadata_and_auth() -> None:
    youtube = _FakeYouTube()
    uploader = _uploader(youtube, _SleepRecorder())
    artifact = _artifact(10)

    await uploader.publish(artifact, _metadata(visibility=Visibility.UNLISTED, tags=["fox"]), TOKEN)

    init = youtube.init_requests[0]
    assert init.url.params["uploadType"] == "resumable"
    assert init.url.params["part"] == "snippet,status"
    assert init.headers["Authorization"] == f"Bearer {TOKEN}"
    assert init.headers["X-Upload-Content-Length"] == "10"
    assert init.headers["X-Upload-Content-Type"] == "video/webm"
    body = json.loads(init.content)
    assert body["snippet"]["title"] == "Fox in the snow"
    assert body["snippet"]["tags"] == ["fox"]
    assert body["status"] == {"privacyStatus": "unlisted"}
    assert youtube.put_requests[0].headers["Authorization"] == f"Bearer {TOKEN}"


@pytest.mark.anyio
async def test_scheduled_publish_is_forced_private() -> None:
    youtube = _FakeYouTube()
    uploader = _uploader(youtube, _SleepRecorder())
    publish_at = datetime.now(timezone.utc) + timedelta(days=1)

    await uploader.publish(_artifact(10), _metadata(visibility=Visibility.PUBLIC, publish_at=publish_at), TOKEN)

    status = json.loads(youtube.init_requests[0].content)["status"]
    assert status["privacyStatus"] == "private"
    assert status["publishAt"].endswith("Z")


@pytest.mark.anyio
async def test_initiate_5xx_twice_then_success_retries_with_backoff() -> None:
    youtube = _FakeYouTube(init_failures=[httpx.Response(503), httpx.Response(500)])
    sleep = _SleepRecorder()
    statuses: list[str] = []
    uploader = _uploader(youtube, sleep)

    remote_id = await uploader.publish(_artifact(), _metadata(), TOKEN, on_status=statuses.append)

    assert remote_id == "vid-42"
    assert len(youtube.init_requests) == 3
    assert sleep.delays == [2.0, 4.0]
    assert len(statuses) == 2
    assert "Retrying in 2s" in statuses[0] and "(Attempt 2/3)" in statuses[0]
    assert "Retrying in 4s" in statuses[1] and "(Attempt 3/3)" in statuses[1]


@pytest.mark.anyio
async def test_initiate_4xx_rejection_fails_immediately_without_retry() -> None:
    quota = httpx.Response(
        403,
        json={
            "error": {
                "code": 403,
                "message": "quota",
                "errors": [{"reason": "quotaExceeded", "message": "The request cannot be completed"}],
            }
        },
    )
    youtube = _FakeYouTube(init_failures=[quota])
    sleep = _SleepRecorder()
    statuses: list[str] = []
    uploader = _uploader(youtube, sleep)

    with pytest.raises(UploadRejected) as excinfo:
        await uploader.publish(_artifact(), _metadata(), TOKEN, on_status=statuses.append)

    assert excinfo.value.category is RejectionCategory.QUOTA_EXCEEDED
    assert excinfo.value.status_code == 403
    assert len(youtube.init_requests) == 1
    assert youtube.put_requests == []
    assert statuses == []
    assert sleep.delays == []


@pytest.mark.anyio
async def test_transport_failures_exhaust_attempts() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection reset", request=request)

    sleep = _SleepRecorder()
    statuses: list[str] = []
    uploader = _uploader(handler, sleep)

    with pytest.raises(NetworkExhausted):
        await uploader.publish(_artifact(), _metadata(), TOKEN, on_status=statuses.append)

    assert calls == 3
    assert sleep.delays == [2.0, 4.0]
    assert len(statuses) == 2


@pytest.mark.anyio
async def test_transfer_connection_drop_restarts_with_fresh_session() -> None:
    youtube = _FakeYouTube()
    dropped = False

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal dropped
        if request.method == "PUT" and not dropped:
            dropped = True
            raise httpx.ReadError("connection dropped", request=request)
        return youtube(request)

    sleep = _SleepRecorder()
    uploader = _uploader(handler, sleep, chunk_size=400)
    artifact = _artifact(1000)

    assert await uploader.publish(artifact, _metadata(), TOKEN) == "vid-42"
    assert len(youtube.init_requests) == 2
    assert youtube.put_requests[0].headers["Content-Range"] == "bytes 0-399/1000"
    assert bytes(youtube.received) == artifact.data
    assert sleep.delays == [2.0]


@pytest.mark.anyio
async def test_transfer_rejection_is_terminal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        return httpx.Response(
            400,
            json={"error": {"code": 400, "errors": [{"reason": "duplicate", "message": "dup"}]}},
        )

    sleep = _SleepRecorder()
    uploader = _uploader(handler, sleep)

    with pytest.raises(UploadRejected) as excinfo:
        await uploader.publish(_artifact(), _metadata(), TOKEN)
    assert excinfo.value.category is RejectionCategory.DUPLICATE
    assert sleep.delays == []


@pytest.mark.anyio
async def test_transfer_error_without_json_body_is_terminal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    uploader = _uploader(handler, _SleepRecorder())

    with pytest.raises(TransientOrFatalError, match="Status: 502"):
        await uploader.publish(_artifact(), _metadata(), TOKEN)


@pytest.mark.anyio
async def test_missing_location_header_is_terminal() -> None:
    uploader = _uploader(lambda request: httpx.Response(200), _SleepRecorder())

    with pytest.raises(TransientOrFatalError, match="upload URL"):
        await uploader.publish(_artifact(), _metadata(), TOKEN)


@pytest.mark.anyio
async def test_acknowledgement_beyond_file_size_is_terminal() -> None:
    puts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        puts.append(request)
        return httpx.Response(308, headers={"Range": "bytes=0-999999"})

    sleep = _SleepRecorder()
    uploader = _uploader(handler, sleep, chunk_size=300)

    with pytest.raises(TransientOrFatalError, match="more data than was sent"):
        await uploader.publish(_artifact(1000), _metadata(), TOKEN)
    assert len(puts) == 1
    assert sleep.delays == []


@pytest.mark.anyio
async def test_full_acknowledgement_queries_session_status_instead_of_sending_empty_range() -> None:
    puts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": SESSION_URL})
        puts.append(request)
        if request.headers["Content-Range"].startswith("bytes */"):
            return httpx.Response(200, json={"id": "vid-7"})
        end = int(request.headers["Content-Range"].split(" ")[1].split("/")[0].split("-")[1])
        return httpx.Response(308, headers={"Range": f"bytes=0-{end}"})

    progress: list[int] = []
    uploader = _uploader(handler, _SleepRecorder(), chunk_size=600)

    remote_id = await uploader.publish(_artifact(1000), _metadata(), TOKEN, on_progress=progress.append)

    assert remote_id == "vid-7"
    assert [r.headers["Content-Range"] for r in puts] == [
        "bytes 0-599/1000",
        "bytes 600-999/1000",
        "bytes */1000",
    ]
    assert puts[-1].content == b""
    assert progress == [60, 100]


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("credential", "metadata", "artifact"),
    [
        (None, UploadMetadata(title="ok"), Artifact(data=b"x")),
        ("  ", UploadMetadata(title="ok"), Artifact(data=b"x")),
        (TOKEN, UploadMetadata(title="   "), Artifact(data=b"x")),
        (TOKEN, UploadMetadata(title="ok"), Artifact(data=b"")),
        (
            TOKEN,
            UploadMetadata(title="ok", publish_at=datetime.now(timezone.utc) - timedelta(minutes=1)),
            Artifact(data=b"x"),
        ),
    ],
)
async def test_publish_validates_input_before_any_request(
    credential: str | None, metadata: UploadMetadata, artifact: Artifact
) -> None:
    youtube = _FakeYouTube()
    uploader = _uploader(youtube, _SleepRecorder())

    with pytest.raises(ConfigurationError):
        await uploader.publish(artifact, metadata, credential)
    assert youtube.init_requests == []


@pytest.mark.anyio
async def test_cancel_during_transfer_abandons_session() -> None:
    youtube = _FakeYouTube()
    progress: list[int] = []
    in_flight = asyncio.Event()
    release = asyncio.Event()

    class _SlowTransport(httpx.AsyncBaseTransport):
        async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
            if request.method == "PUT" and len(youtube.put_requests) == 1:
                in_flight.set()
                await release.wait()
            await request.aread()
            return youtube(request)

    client = httpx.AsyncClient(transport=_SlowTransport())
    uploader = ResumableUploader(client=client, upload_url=UPLOAD_URL, chunk_size=300, sleep=_SleepRecorder())
    task = asyncio.create_task(
        uploader.publish(_artifact(1000), _metadata(), TOKEN, on_progress=progress.append)
    )
    await in_flight.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert progress == [30]
    assert len(youtube.init_requests) == 1
