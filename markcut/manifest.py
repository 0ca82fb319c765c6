"""JSON manifest schema — the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from markcut.editors.split import DEFAULT_BITRATE, OUTPUT_FORMATS
from markcut.models import TimeRange
from markcut.segments import MIN_SEGMENT_DURATION


@dataclass
class SilenceConfig:
    """Thresholds for seeding marks from silence detection."""

    enabled: bool = False
    threshold_db: float = -30.0
    min_silence: float = 0.5
    padding: float = 0.05
    min_region: float = 1.0


@dataclass
class ExportConfig:
    """How segments are written."""

    output_format: str = "auto"
    output_dir: Path | None = None
    min_segment_duration: float = MIN_SEGMENT_DURATION
    default_bitrate: int = DEFAULT_BITRATE

    def __post_init__(self) -> None:
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"output_format must be one of {OUTPUT_FORMATS}, got {self.output_format!r}"
            )
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)


@dataclass
class Manifest:
    """Top-level export manifest."""

    input: Path
    version: str = "1"
    ranges: list[TimeRange] = field(default_factory=list)
    export: ExportConfig = field(default_factory=ExportConfig)
    silence: SilenceConfig = field(default_factory=SilenceConfig)


def _parse_range(item) -> TimeRange:
    if isinstance(item, dict):
        return TimeRange(start=float(item["start"]), end=float(item["end"]))
    start, end = item
    return TimeRange(start=float(start), end=float(end))


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data:
        raise ValueError("Manifest must contain an 'input' field")

    try:
        ranges = [_parse_range(r) for r in data.get("ranges", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid range in manifest: {e}") from e

    export = ExportConfig(**data["export"]) if "export" in data else ExportConfig()
    silence = SilenceConfig(**data["silence"]) if "silence" in data else SilenceConfig()

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        ranges=ranges,
        export=export,
        silence=silence,
    )
