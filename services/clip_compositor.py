"""Recompose trim ranges of a source video into one continuous WebM at a fixed frame rate."""

from __future__ import annotations

import asyncio
import io
import logging
import math
import os
from enum import Enum
from fractions import Fraction
from typing import Iterator, Union

import av
import numpy as np
from av import VideoFrame
from av.error import FFmpegError

from models.artifact import Artifact
from models.errors import EmptyTimeline, InvalidRange, SeekFailure
from models.timeline import Clip, Timeline

logger = logging.getLogger(__name__)

OUTPUT_FPS = 30
# Target encoding for WebM (libvpx expects yuv420p)
WEBM_CODEC = "libvpx"
WEBM_PIX_FMT = "yuv420p"
WEBM_CONTENT_TYPE = "video/webm"

MediaSource = Union[Artifact, bytes, str, os.PathLike]


def frames_for(clip: Clip, fps: int = OUTPUT_FPS) -> int:
    """Frames captured for ``clip``: one per output-frame step from start until end, at least one."""
    return max(1, math.ceil(round((clip.end - clip.start) * fps, 6)))


def expected_frame_count(timeline: Timeline, fps: int = OUTPUT_FPS) -> int:
    return sum(frames_for(clip, fps) for clip in timeline)


class DecodeHeadState(str, Enum):
    IDLE = "idle"
    SEEKING = "seeking"
    FRAME_READY = "frame_ready"


class DecodeHead:
    """
    Cursor over the source video that can seek and hand back the frame shown at a time.

    The frame "at" time t is the last decoded frame whose timestamp is <= t, allowing one
    unit of the stream time base for timestamp rounding. Moving forward decodes ahead;
    moving backward repositions the demuxer.
    """

    def __init__(self, source: MediaSource) -> None:
        self._source = source
        self._container: av.container.InputContainer | None = None
        self._stream: av.VideoStream | None = None
        self._frames: Iterator[VideoFrame] | None = None
        self._current: VideoFrame | None = None
        self._lookahead: VideoFrame | None = None
        self._origin = 0.0
        self._tolerance = 1e-6
        self._frame_span = 1e-6
        self.position = 0.0
        self.state = DecodeHeadState.IDLE

    def __enter__(self) -> DecodeHead:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        if self._container is not None:
            return
        source = self._source
        if isinstance(source, Artifact):
            target: object = io.BytesIO(source.data)
        elif isinstance(source, (bytes, bytearray)):
            target = io.BytesIO(bytes(source))
        else:
            target = os.fspath(source)
        try:
            container = av.open(target, "r")
        except (FFmpegError, OSError) as exc:
            raise SeekFailure("Could not open the source video.") from exc
        if not container.streams.video:
            container.close()
            raise SeekFailure("The source has no video track.")

        stream = container.streams.video[0]
        self._container = container
        self._stream = stream
        if stream.time_base:
            self._tolerance = float(stream.time_base)
            if stream.start_time is not None:
                self._origin = float(stream.start_time * stream.time_base)
        rate = stream.average_rate or stream.guessed_rate
        self._frame_span = float(1 / rate) if rate else self._tolerance

    @property
    def duration(self) -> float | None:
        if self._container is None:
            return None
        if self._container.duration is not None:
            return self._container.duration / av.time_base
        stream = self._stream
        if stream is not None and stream.duration is not None and stream.time_base:
            return float(stream.duration * stream.time_base)
        return None

    def covers(self, timestamp: float) -> bool:
        """Whether ``timestamp`` lies within the source; the last frame is shown for one frame span."""
        duration = self.duration
        return duration is None or timestamp <= duration + self._frame_span

    def _time(self, frame: VideoFrame) -> float:
        if frame.time is not None:
            return frame.time - self._origin
        return float(frame.pts * frame.time_base) - self._origin

    def _next_frame(self) -> VideoFrame | None:
        assert self._frames is not None
        try:
            return next(self._frames)
        except StopIteration:
            return None
        except FFmpegError as exc:
            raise SeekFailure(f"Could not decode the source video near {self.position:.3f}s.") from exc

    def _decode_to(self, timestamp: float) -> None:
        while self._lookahead is not None and self._time(self._lookahead) <= timestamp + self._tolerance:
            self._current = self._lookahead
            self._lookahead = self._next_frame()
        if self._current is None:
            # Landed after the target (first keyframe is late): show the first frame we have.
            self._current = self._lookahead
            if self._current is None:
                raise SeekFailure(f"No frame could be decoded at {timestamp:.3f}s.")
            self._lookahead = self._next_frame()
        self.position = timestamp
        self.state = DecodeHeadState.FRAME_READY

    def _reposition(self, timestamp: float) -> None:
        assert self._container is not None and self._stream is not None
        stream = self._stream
        offset = int((timestamp + self._origin) / stream.time_base) if stream.time_base else 0
        try:
            self._container.seek(offset, backward=True, any_frame=False, stream=stream)
        except FFmpegError as exc:
            raise SeekFailure(f"Could not seek the source video to {timestamp:.3f}s.") from exc
        self._frames = self._container.decode(stream)
        self._current = None
        self._lookahead = self._next_frame()
        self._decode_to(timestamp)

    def seek(self, timestamp: float) -> None:
        self.open()
        self.state = DecodeHeadState.SEEKING
        duration = self.duration
        if timestamp < 0 or (duration is not None and timestamp > duration + self._tolerance):
            raise SeekFailure(f"Cannot seek to {timestamp:.3f}s; the source is {duration or 0:.3f}s long.")

        if self._current is not None and timestamp >= self.position:
            self._decode_to(timestamp)
        else:
            self._reposition(timestamp)

        assert self._current is not None
        if self._lookahead is None and timestamp > self._time(self._current) + self._frame_span:
            raise SeekFailure(f"Cannot seek to {timestamp:.3f}s; it is past the last frame.")

    def advance(self, timestamp: float) -> None:
        """Move to ``timestamp``; past the last frame the head keeps showing that frame."""
        if self.state is DecodeHeadState.IDLE or self._current is None:
            self.seek(timestamp)
        elif timestamp + self._tolerance < self.position:
            self.state = DecodeHeadState.SEEKING
            self._reposition(timestamp)
        else:
            self._decode_to(timestamp)

    def capture(self) -> np.ndarray:
        """Copy of the current frame as an RGB array."""
        if self.state is not DecodeHeadState.FRAME_READY or self._current is None:
            raise RuntimeError("Decode head has no frame ready; seek first.")
        return self._current.to_ndarray(format="rgb24")

    def close(self) -> None:
        if self._container is not None:
            self._container.close()
        self._container = None
        self._stream = None
        self._frames = None
        self._current = None
        self._lookahead = None
        self.state = DecodeHeadState.IDLE


class EncodingSink:
    """
    Encodes RGB frame buffers to WebM in memory, in the order they are pushed.

    Frame n is stamped pts=n in a 1/fps time base, so frames pushed back to back
    play back to back regardless of where they came from in the source.
    """

    def __init__(self, *, fps: int = OUTPUT_FPS) -> None:
        self._fps = fps
        self._time_base = Fraction(1, fps)
        self._buffer = io.BytesIO()
        self._container: av.container.OutputContainer | None = None
        self._stream: av.VideoStream | None = None
        self._frame_count = 0

    def _ensure_container(self, width: int, height: int) -> None:
        if self._container is not None:
            return
        self._container = av.open(self._buffer, "w", format="webm")
        self._stream = self._container.add_stream(WEBM_CODEC, rate=self._fps)
        # yuv420p subsamples chroma 2x2
        self._stream.width = max(2, width - width % 2)
        self._stream.height = max(2, height - height % 2)
        self._stream.pix_fmt = WEBM_PIX_FMT

    def add_frame(self, buffer: np.ndarray) -> None:
        """Encode one RGB frame (height x width x 3) as the next output frame."""
        height, width = buffer.shape[:2]
        if width <= 0 or height <= 0:
            return
        self._ensure_container(width, height)
        assert self._stream is not None and self._container is not None
        frame = VideoFrame.from_ndarray(np.ascontiguousarray(buffer), format="rgb24")
        frame = frame.reformat(
            width=self._stream.width,
            height=self._stream.height,
            format=WEBM_PIX_FMT,
        )
        frame.pts = self._frame_count
        frame.time_base = self._time_base
        for packet in self._stream.encode(frame):
            self._container.mux(packet)
        self._frame_count += 1

    def finalize(self) -> bytes:
        """Flush the encoder, close the container, and return the WebM bytes."""
        data = b""
        if self._container is not None and self._stream is not None:
            for packet in self._stream.encode():
                self._container.mux(packet)
            self._container.close()
            self._container = None
            self._stream = None
            data = self._buffer.getvalue()
            self._buffer = io.BytesIO()
        return data

    def discard(self) -> None:
        """Drop everything encoded so far."""
        if self._container is not None:
            try:
                self._container.close()
            except FFmpegError:
                logger.debug("[clip_compositor] Ignoring error while closing a discarded sink", exc_info=True)
        self._container = None
        self._stream = None
        self._buffer = io.BytesIO()
        self._frame_count = 0

    @property
    def frame_count(self) -> int:
        return self._frame_count


class ClipCompositor:
    """Drives one decode head through a timeline's clips and encodes what it sees."""

    def __init__(self, *, fps: int = OUTPUT_FPS) -> None:
        self.fps = fps

    async def compose(self, timeline: Timeline, source: MediaSource) -> Artifact:
        """
        Render ``timeline`` over ``source`` into a single WebM artifact.

        For each clip the head seeks to ``start`` and then alternates capture and a
        one-frame advance until it reaches ``end``. The timeline must not be mutated
        while this runs. On any failure or cancellation the partial output is discarded
        and no artifact is returned.
        """
        clips = sorted(timeline.clips, key=lambda clip: clip.order)
        if not clips:
            raise EmptyTimeline("Please create at least one clip to merge.")

        frame_duration = 1.0 / self.fps
        head = DecodeHead(source)
        sink = EncodingSink(fps=self.fps)
        logger.info("[clip_compositor] Composing %d clips at %d fps", len(clips), self.fps)
        try:
            head.open()
            for clip in clips:
                if not head.covers(clip.end):
                    raise InvalidRange(
                        f"Clip {clip.id} ends at {clip.end:.3f}s, past the end of the {head.duration:.3f}s source."
                    )
            for clip in clips:
                head.seek(clip.start)
                for index in range(frames_for(clip, self.fps)):
                    if index:
                        head.advance(clip.start + index * frame_duration)
                    sink.add_frame(head.capture())
                    await asyncio.sleep(0)
                logger.debug(
                    "[clip_compositor] Clip %d [%.3f, %.3f) done; %d frames so far",
                    clip.id,
                    clip.start,
                    clip.end,
                    sink.frame_count,
                )
            frame_count = sink.frame_count
            data = sink.finalize()
        except asyncio.CancelledError:
            logger.info("[clip_compositor] Compose cancelled after %d frames", sink.frame_count)
            sink.discard()
            raise
        except Exception:
            sink.discard()
            raise
        finally:
            head.close()

        logger.info("[clip_compositor] Composed %d frames (%d bytes)", frame_count, len(data))
        return Artifact(
            data=data,
            content_type=WEBM_CONTENT_TYPE,
            frame_count=frame_count,
            duration=frame_count / self.fps,
        )
