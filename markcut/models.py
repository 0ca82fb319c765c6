"""Shared data types used across markcut."""

from dataclasses import dataclass
from enum import Enum


class MarkType(Enum):
    START = "start"
    END = "end"


@dataclass(frozen=True)
class Mark:
    """A Start or End timestamp in seconds, as handed out by the registry."""

    id: str
    type: MarkType
    time: float

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type.value, "time": self.time}


@dataclass
class TimeRange:
    """A start/end time pair in seconds."""

    start: float
    end: float


@dataclass(frozen=True)
class Segment:
    """An exportable range derived from a Start/End mark pair."""

    start_time: float
    end_time: float
    duration: float
    index: int

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "index": self.index,
        }


@dataclass(frozen=True)
class AudioFormatInfo:
    """Metadata extracted from an audio file via ffprobe."""

    container_name: str
    codec_name: str
    sample_rate: int
    bit_rate: int | None
    duration: float
    kind: str


@dataclass(frozen=True)
class ExportProgress:
    current_segment: int
    total_segments: int
    current_progress: float
    overall_progress: int

    def to_dict(self) -> dict:
        return {
            "currentSegment": self.current_segment,
            "totalSegments": self.total_segments,
            "currentProgress": self.current_progress,
            "overallProgress": self.overall_progress,
        }
