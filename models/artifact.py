from dataclasses import dataclass


@dataclass
class Artifact:
    data: bytes                        # finished media bytes
    content_type: str = "video/mp4"
    uri: str | None = None             # remote location the bytes came from
    frame_count: int | None = None     # known for composed cuts
    duration: float | None = None      # seconds

    @property
    def size(self) -> int:
        return len(self.data)
