"""Segment derivation — turns a mark set into exportable ranges."""

from typing import Iterable

from markcut.models import Mark, MarkType, Segment

MIN_SEGMENT_DURATION = 1.0
LENIENT_MIN_SEGMENT_DURATION = 0.1


def derive_segments(
    marks: Iterable[Mark],
    audio_duration: float,
    min_duration: float = MIN_SEGMENT_DURATION,
    tolerance: float = 0.0,
) -> list[Segment]:
    """Pair each Start with the End directly after it in time.

    A pair is kept only when both marks lie inside ``[0, audio_duration +
    tolerance]`` and the range is at least ``min_duration`` long. A Start
    followed by another Start is dropped. The input is not modified.
    """
    if audio_duration <= 0:
        return []

    ordered = sorted(marks, key=lambda m: m.time)
    limit = audio_duration + tolerance

    segments: list[Segment] = []
    i = 0
    while i < len(ordered) - 1:
        current, nxt = ordered[i], ordered[i + 1]
        # Marks sit on a 0.01s grid; rounding keeps 2.3 - 1.3 from landing below 1.0.
        duration = round(nxt.time - current.time, 6)
        if (
            current.type is MarkType.START
            and nxt.type is MarkType.END
            and current.time >= 0
            and nxt.time <= limit
            and duration >= min_duration
        ):
            segments.append(
                Segment(
                    start_time=current.time,
                    end_time=nxt.time,
                    duration=duration,
                    index=len(segments) + 1,
                )
            )
            i += 2
        else:
            i += 1
    return segments


def format_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS:CC (CC = hundredths)."""
    seconds = max(seconds, 0.0)
    centis = int(round(seconds * 100))
    h, rem = divmod(centis, 360000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h:02d}:{m:02d}:{s:02d}:{cs:02d}"
