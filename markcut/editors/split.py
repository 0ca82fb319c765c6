"""Split editor — plans the ffmpeg invocation for each exported segment."""

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from markcut.models import AudioFormatInfo, Segment

MP3_SAMPLES_PER_FRAME = 1152
DEFAULT_BITRATE = 192_000
OUTPUT_FORMATS = ("auto", "mp3", "m4a")


class Mode(Enum):
    COPY = "copy"
    MP3 = "mp3"
    AAC = "aac"


@dataclass(frozen=True)
class Strategy:
    """How every segment of one run is written."""

    mode: Mode
    extension: str
    bitrate: int | None = None


@dataclass(frozen=True)
class CutPlan:
    segment: Segment
    start: float
    duration: float
    output_path: Path


def choose_strategy(
    info: AudioFormatInfo,
    output_format: str = "auto",
    default_bitrate: int = DEFAULT_BITRATE,
) -> Strategy:
    """Stream-copy MP3 into MP3; re-encode everything else.

    ``output_format="auto"`` keeps the detected source format.
    """
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(f"Unknown output format {output_format!r}; expected one of {OUTPUT_FORMATS}")

    target = info.kind if output_format == "auto" else output_format
    bitrate = info.bit_rate or default_bitrate

    if target == "mp3":
        if info.kind == "mp3":
            return Strategy(mode=Mode.COPY, extension=".mp3")
        return Strategy(mode=Mode.MP3, extension=".mp3", bitrate=bitrate)
    return Strategy(mode=Mode.AAC, extension=".m4a", bitrate=bitrate)


def frame_duration(sample_rate: int, samples_per_frame: int = MP3_SAMPLES_PER_FRAME) -> float:
    return samples_per_frame / sample_rate


def align_to_frame(time: float, sample_rate: int) -> float:
    """Snap *time* down to the start of the MP3 frame containing it."""
    step = frame_duration(sample_rate)
    # The epsilon keeps exact multiples from flooring one frame short.
    frames = math.floor(time / step + 1e-9)
    return frames * step


def output_path_for(
    source: Path, index: int, extension: str, output_dir: Path | None = None
) -> Path:
    """``<dir>/<stem><NNN><ext>``, next to the source unless *output_dir* is set."""
    directory = output_dir if output_dir is not None else source.parent
    return directory / f"{source.stem}{index:03d}{extension}"


def plan_cut(
    source: Path,
    segment: Segment,
    strategy: Strategy,
    info: AudioFormatInfo,
    output_dir: Path | None = None,
) -> CutPlan:
    start, end = segment.start_time, segment.end_time
    # Copy mode cannot split an encoded frame.
    if strategy.mode is Mode.COPY:
        start = align_to_frame(start, info.sample_rate)
        end = align_to_frame(end, info.sample_rate)

    return CutPlan(
        segment=segment,
        start=start,
        duration=end - start,
        output_path=output_path_for(source, segment.index, strategy.extension, output_dir),
    )


def build_command(source: Path, plan: CutPlan, strategy: Strategy) -> list[str]:
    cmd = [
        "ffmpeg", "-y",
        "-hide_banner",
        "-nostats",
        "-progress", "pipe:1",
        "-ss", f"{plan.start:.6f}",
        "-i", str(source),
        "-t", f"{plan.duration:.6f}",
        "-map", "0:a:0",
        "-vn",
    ]

    if strategy.mode is Mode.COPY:
        cmd += ["-c", "copy"]
    elif strategy.mode is Mode.MP3:
        cmd += ["-c:a", "libmp3lame", "-b:a", f"{strategy.bitrate // 1000}k"]
    else:
        cmd += ["-c:a", "aac", "-b:a", f"{strategy.bitrate // 1000}k", "-movflags", "+faststart"]

    cmd.append(str(plan.output_path))
    return cmd
