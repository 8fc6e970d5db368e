"""Generate a video, optionally cut it down, and publish the result to YouTube."""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from dotenv import load_dotenv

from models import (
    Artifact,
    GenerationRequest,
    Timeline,
    UploadMetadata,
    Visibility,
    WorkflowError,
)
from services.clip_compositor import ClipCompositor
from services.config import (
    get_gemini_api_key,
    get_upload_chunk_size,
    get_upload_url,
    get_youtube_access_token,
)
from services.gemini_video import GeminiVideoBackend, download_artifact
from services.job_orchestrator import GenerationBackend, JobOrchestrator
from services.resumable_upload import ResumableUploader, validate_metadata

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))

logger = logging.getLogger(__name__)


async def run_workflow(
    request: GenerationRequest,
    metadata: UploadMetadata | None,
    *,
    clips: Sequence[tuple[float, float]] = (),
    backend: GenerationBackend | None = None,
    orchestrator: JobOrchestrator | None = None,
    compositor: ClipCompositor | None = None,
    uploader: ResumableUploader | None = None,
    download: Callable[..., Awaitable[Artifact]] = download_artifact,
    api_key: str | None = None,
    access_token: str | None = None,
    on_status: Callable[[str], None] | None = None,
    on_progress: Callable[[int], None] | None = None,
) -> tuple[Artifact, str | None]:
    """
    Run generate -> (compose) -> publish and return the final artifact and its remote id.

    Composition is skipped when ``clips`` is empty; publishing is skipped when
    ``metadata`` is None.
    """
    api_key = api_key or get_gemini_api_key()
    if metadata is not None:
        access_token = access_token or get_youtube_access_token()
        validate_metadata(metadata)

    if orchestrator is None:
        orchestrator = JobOrchestrator(backend or GeminiVideoBackend(api_key))

    reference = await orchestrator.generate(request, on_status=on_status)
    artifact = await download(reference, api_key)

    if clips:
        timeline = Timeline()
        for start, end in clips:
            timeline.add_clip(start, end)
        compositor = compositor or ClipCompositor()
        artifact = await compositor.compose(timeline, artifact)
    else:
        logger.info("[workflow] No clips given; publishing the raw generation")

    if metadata is None:
        return artifact, None

    uploader = uploader or ResumableUploader(
        upload_url=get_upload_url(),
        chunk_size=get_upload_chunk_size(),
    )
    remote_id = await uploader.publish(
        artifact,
        metadata,
        access_token,
        on_progress=on_progress,
        on_status=on_status,
    )
    return artifact, remote_id


def _parse_clip(value: str) -> tuple[float, float]:
    try:
        start, end = (float(part) for part in value.split(":", 1))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"clip must look like START:END in seconds, got {value!r}") from exc
    return start, end


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("prompt", help="Description of the video to generate")
    parser.add_argument("--title", help="Video title (defaults to the prompt)")
    parser.add_argument("--description", default="Generated with AI Video Forge!")
    parser.add_argument("--clip", action="append", type=_parse_clip, default=[], metavar="START:END")
    parser.add_argument("--visibility", choices=[v.value for v in Visibility], default=Visibility.PRIVATE.value)
    parser.add_argument("--publish-at", type=datetime.fromisoformat, help="ISO 8601 schedule time")
    parser.add_argument("--tag", action="append", dest="tags", help="Extra tag (repeatable)")
    parser.add_argument("--category-id", default="28")
    parser.add_argument("--quality", default="high")
    parser.add_argument("--aspect-ratio", choices=["16:9", "9:16"], default="16:9")
    parser.add_argument("--image", type=Path, help="Reference image for image-to-video")
    parser.add_argument("--output", type=Path, help="Also write the final video here")
    parser.add_argument("--no-publish", action="store_true", help="Stop after generating/composing")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = _build_parser().parse_args(argv)

    image: dict[str, object] = {}
    if args.image is not None:
        image["reference_image"] = args.image.read_bytes()
        image["reference_image_mime_type"] = mimetypes.guess_type(args.image.name)[0] or "image/png"
    request = GenerationRequest(
        prompt=args.prompt,
        quality=args.quality,
        aspect_ratio=args.aspect_ratio,
        **image,
    )

    metadata = None
    if not args.no_publish:
        metadata = UploadMetadata(
            title=args.title or args.prompt,
            description=args.description,
            visibility=Visibility(args.visibility),
            publish_at=args.publish_at,
            category_id=args.category_id,
        )
        if args.tags:
            metadata.tags = [*metadata.tags, *args.tags]

    def on_progress(percent: int) -> None:
        logger.info("[workflow] Uploading... %d%%", percent)

    def on_status(message: str) -> None:
        logger.warning("[workflow] %s", message)

    try:
        artifact, remote_id = asyncio.run(
            run_workflow(
                request,
                metadata,
                clips=args.clip,
                on_status=on_status,
                on_progress=on_progress,
            )
        )
    except WorkflowError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    if args.output is not None:
        args.output.write_bytes(artifact.data)
        logger.info("[workflow] Wrote %d bytes to %s", artifact.size, args.output)
    if remote_id is not None:
        print(f"Upload successful! https://www.youtube.com/watch?v={remote_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
