"""Mark registry — owns the Start/End marks placed on a recording.

Times are stored internally as integer counts of ``STEP`` so that two marks
one quantum apart never compare as colliding because of float error. Callers
only ever see frozen :class:`Mark` copies.
"""

import logging
import math
from dataclasses import dataclass

from markcut.models import Mark, MarkType

logger = logging.getLogger(__name__)

STEP = 0.01
MAX_OFFSET = 1.0

_MAX_OFFSET_STEPS = round(MAX_OFFSET / STEP)


def to_steps(time: float) -> int:
    """Round *time* to the nearest quantum index."""
    return round(time / STEP)


def quantize(time: float) -> float:
    """Round *time* to the nearest multiple of STEP."""
    return _from_steps(to_steps(time))


def _from_steps(steps: int) -> float:
    return round(steps * STEP, 2)


@dataclass
class _Entry:
    id: str
    type: MarkType
    steps: int

    def snapshot(self) -> Mark:
        return Mark(id=self.id, type=self.type, time=_from_steps(self.steps))


class MarkRegistry:
    """Single-writer store of marks with same-type collision avoidance."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _next_id(self) -> str:
        self._counter += 1
        return f"mark_{self._counter}"

    def _collides(self, steps: int, mark_type: MarkType, exclude_id: str | None) -> bool:
        return any(
            e.type is mark_type and e.steps == steps and e.id != exclude_id
            for e in self._entries.values()
        )

    def _find_free_slot(self, steps: int, mark_type: MarkType, exclude_id: str) -> int | None:
        for offset in range(_MAX_OFFSET_STEPS + 1):
            if not self._collides(steps + offset, mark_type, exclude_id):
                return steps + offset
        for offset in range(_MAX_OFFSET_STEPS + 1):
            candidate = steps - offset
            if candidate < 0:
                break
            if not self._collides(candidate, mark_type, exclude_id):
                return candidate
        return None

    def add_mark(self, mark_type: MarkType, time: float) -> Mark | None:
        """Place a new mark, or return None if the time is negative, non-finite or taken."""
        if not math.isfinite(time) or time < 0:
            logger.debug("Rejected %s mark at invalid time %s", mark_type.value, time)
            return None

        steps = to_steps(time)
        if self._collides(steps, mark_type, None):
            logger.debug("Rejected %s mark at %.2f: slot occupied", mark_type.value, _from_steps(steps))
            return None

        entry = _Entry(id=self._next_id(), type=mark_type, steps=steps)
        self._entries[entry.id] = entry
        return entry.snapshot()

    def add_range(self, start: float, end: float) -> tuple[Mark, Mark] | None:
        """Add a Start/End pair; neither mark is kept unless both fit."""
        start_mark = self.add_mark(MarkType.START, start)
        if start_mark is None:
            return None
        end_mark = self.add_mark(MarkType.END, end)
        if end_mark is None:
            self.remove_mark(start_mark.id)
            return None
        return start_mark, end_mark

    def update_mark_time(self, mark_id: str, new_time: float) -> bool:
        """Move a mark, nudging it to the nearest free slot within MAX_OFFSET.

        The search walks forward first, then backward, one STEP at a time.
        Returns False (and leaves the mark where it was) if no slot is free.
        """
        entry = self._entries.get(mark_id)
        if entry is None or not math.isfinite(new_time) or new_time < 0:
            return False

        steps = self._find_free_slot(to_steps(new_time), entry.type, mark_id)
        if steps is None:
            logger.debug("No free slot within %.2fs of %.2f for %s", MAX_OFFSET, new_time, mark_id)
            return False

        entry.steps = steps
        return True

    def remove_mark(self, mark_id: str) -> bool:
        return self._entries.pop(mark_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._counter = 0

    def get(self, mark_id: str) -> Mark | None:
        entry = self._entries.get(mark_id)
        return entry.snapshot() if entry else None

    def list_marks(self) -> list[Mark]:
        """Return a time-ordered snapshot of every mark."""
        entries = sorted(self._entries.values(), key=lambda e: e.steps)
        return [e.snapshot() for e in entries]
