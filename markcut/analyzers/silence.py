"""Silence analyzer — proposes Start/End marks around the sounding parts."""

import logging
from pathlib import Path

from markcut import ffutil
from markcut.manifest import SilenceConfig
from markcut.marks import MarkRegistry
from markcut.models import TimeRange

logger = logging.getLogger(__name__)


def find_sound_regions(
    input_path: Path,
    config: SilenceConfig,
    duration: float,
) -> list[TimeRange]:
    """Detect silence and return the non-silent regions between it.

    Each region is widened by ``config.padding`` on both sides, clamped to
    ``[0, duration]``, and dropped if shorter than ``config.min_region``.
    """
    silent_ranges = ffutil.detect_silence(
        input_path,
        threshold_db=config.threshold_db,
        min_duration=config.min_silence,
        duration=duration,
    )

    sounding: list[TimeRange] = []
    cursor = 0.0
    for sr in silent_ranges:
        if sr.start > cursor:
            sounding.append(TimeRange(start=cursor, end=sr.start))
        cursor = max(cursor, sr.end)
    if cursor < duration:
        sounding.append(TimeRange(start=cursor, end=duration))

    regions: list[TimeRange] = []
    for r in sounding:
        start = max(r.start - config.padding, 0.0)
        end = min(r.end + config.padding, duration)
        if end - start >= config.min_region:
            regions.append(TimeRange(start=start, end=end))

    logger.info(
        "Found %d sounding region(s) in %s (%d silent range(s))",
        len(regions), input_path, len(silent_ranges),
    )
    return regions


def seed_marks(registry: MarkRegistry, regions: list[TimeRange]) -> int:
    """Add a Start/End pair per region; return how many pairs were placed."""
    placed = 0
    for region in regions:
        if registry.add_range(region.start, region.end) is not None:
            placed += 1
        else:
            logger.debug("Skipped region %.2f-%.2f: marks collide", region.start, region.end)
    return placed
