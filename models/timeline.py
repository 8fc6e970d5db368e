from dataclasses import dataclass
from itertools import count
from typing import Iterator

from .errors import InvalidRange


@dataclass
class Clip:
    id: int                            # unique within its timeline, never reused
    start: float                       # seconds in the source timeline
    end: float
    order: int                         # position in the output sequence

    @property
    def duration(self) -> float:
        return self.end - self.start


class Timeline:
    """
    Ordered trim ranges over one source media timeline.

    ``order`` is kept as the dense permutation 0..n-1 after every mutation.
    Callers must not mutate a timeline while a compose that uses it is running.
    """

    def __init__(self, *, source_duration: float | None = None) -> None:
        self.source_duration = source_duration
        self._clips: list[Clip] = []
        self._ids = count(1)

    def __len__(self) -> int:
        return len(self._clips)

    def __iter__(self) -> Iterator[Clip]:
        return iter(self._clips)

    @property
    def clips(self) -> tuple[Clip, ...]:
        return tuple(self._clips)

    def get(self, clip_id: int) -> Clip:
        for clip in self._clips:
            if clip.id == clip_id:
                return clip
        raise KeyError(clip_id)

    def add_clip(self, start: float, end: float) -> Clip:
        if start < 0:
            raise InvalidRange(f"Clip start {start:.3f}s is before the start of the video.")
        if start >= end:
            raise InvalidRange("Start time must be before end time.")
        if self.source_duration is not None and end > self.source_duration:
            raise InvalidRange(
                f"Clip end {end:.3f}s is past the end of the video ({self.source_duration:.3f}s)."
            )
        clip = Clip(id=next(self._ids), start=start, end=end, order=len(self._clips))
        self._clips.append(clip)
        return clip

    def reorder(self, clip_id: int, new_position: int) -> None:
        clip = self.get(clip_id)
        if not 0 <= new_position < len(self._clips):
            raise InvalidRange(
                f"Position {new_position} is outside 0..{len(self._clips) - 1}."
            )
        self._clips.remove(clip)
        self._clips.insert(new_position, clip)
        self._renumber()

    def remove(self, clip_id: int) -> None:
        self._clips.remove(self.get(clip_id))
        self._renumber()

    def _renumber(self) -> None:
        for position, clip in enumerate(self._clips):
            clip.order = position
