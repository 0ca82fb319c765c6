"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import re
import shutil
import subprocess
import tempfile
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable

from markcut.errors import FFmpegNotFoundError, FormatDetectionError, SubprocessFailure
from markcut.models import AudioFormatInfo, TimeRange

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20

_OUT_TIME_RE = re.compile(r"^out_time_(?:us|ms)=(\d+)$")


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def classify_format(container_name: str, codec_name: str) -> str:
    """Return "mp3" or "m4a" for a probed container/codec pair.

    MP3 is chosen only when the codec or container says so explicitly.
    """
    containers = {c.strip() for c in container_name.lower().split(",") if c.strip()}
    codec = codec_name.lower()

    if codec == "mp3" or "mp3" in containers:
        return "mp3"
    if codec == "aac" or containers & {"mp4", "mov", "m4a"}:
        return "m4a"
    raise FormatDetectionError(
        f"Unsupported audio format: container={container_name!r} codec={codec_name!r}"
    )


def _optional_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def probe_audio(input_path: Path) -> AudioFormatInfo:
    """Extract audio metadata via ffprobe and classify the format."""
    cmd = [
        "ffprobe",
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise FFmpegNotFoundError("ffprobe not found on PATH") from e

    if result.returncode != 0:
        raise FormatDetectionError(
            f"ffprobe failed on {input_path}: {result.stderr.strip() or f'exit code {result.returncode}'}"
        )

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise FormatDetectionError(f"Unreadable ffprobe output for {input_path}") from e

    fmt = data.get("format", {})
    audio_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "audio"), None
    )
    if audio_stream is None:
        raise FormatDetectionError(f"No audio stream found in {input_path}")

    container_name = fmt.get("format_name", "")
    codec_name = audio_stream.get("codec_name", "")
    kind = classify_format(container_name, codec_name)

    duration = fmt.get("duration", audio_stream.get("duration"))
    try:
        duration = float(duration)
    except (TypeError, ValueError):
        raise FormatDetectionError(f"Could not determine duration of {input_path}") from None

    sample_rate = _optional_int(audio_stream.get("sample_rate"))
    if not sample_rate:
        raise FormatDetectionError(f"Could not determine sample rate of {input_path}")

    return AudioFormatInfo(
        container_name=container_name,
        codec_name=codec_name,
        sample_rate=sample_rate,
        bit_rate=_optional_int(audio_stream.get("bit_rate")) or _optional_int(fmt.get("bit_rate")),
        duration=duration,
        kind=kind,
    )


_SILENCE_EVENT_RE = re.compile(r"silence_(start|end): (-?\d+(?:\.\d+)?)")


def parse_silence_ranges(stderr: str, duration: float | None = None) -> list[TimeRange]:
    """Turn silencedetect log lines into silent TimeRanges.

    A trailing ``silence_start`` without an ``silence_end`` means the file
    ends in silence; it is closed at *duration*, or dropped when that is None.
    """
    ranges: list[TimeRange] = []
    opened: float | None = None
    for event, value in _SILENCE_EVENT_RE.findall(stderr):
        if event == "start":
            # silencedetect can report slightly negative starts
            opened = max(float(value), 0.0)
        elif opened is not None:
            ranges.append(TimeRange(start=opened, end=float(value)))
            opened = None
    if opened is not None and duration is not None:
        ranges.append(TimeRange(start=opened, end=duration))
    return ranges


def detect_silence(
    input_path: Path,
    threshold_db: float,
    min_duration: float,
    duration: float | None = None,
) -> list[TimeRange]:
    """Run the silencedetect filter over the audio stream of *input_path*."""
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-i", str(input_path),
        "-vn",
        "-af", f"silencedetect=noise={threshold_db}dB:d={min_duration}",
        "-f", "null", "-",
    ]
    logger.debug("Detecting silence in %s (%sdB, %ss)", input_path, threshold_db, min_duration)
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError:
        raise FFmpegNotFoundError("ffmpeg not found on PATH") from None

    # ffmpeg logs filter output to stderr even on success; no output at all means it never ran
    if proc.returncode != 0 and not proc.stderr:
        raise SubprocessFailure(
            f"silencedetect exited with code {proc.returncode} and no output",
            returncode=proc.returncode,
        )
    return parse_silence_ranges(proc.stderr, duration=duration)


def convert_to_wav(input_path: Path, output_path: Path | None = None) -> Path:
    """Transcode to 16-bit PCM WAV for waveform display and playback."""
    if output_path is None:
        output_path = Path(tempfile.gettempdir()) / f"markcut_preview_{time.time_ns()}.wav"
    cmd = [
        "ffmpeg", "-y",
        "-hide_banner",
        "-i", str(input_path),
        "-vn",
        "-acodec", "pcm_s16le",
        str(output_path),
    ]
    logger.debug("Converting %s to WAV: %s", input_path, output_path)
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        tail = "\n".join(result.stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
        raise SubprocessFailure(
            f"WAV conversion failed for {input_path}", stderr=tail, returncode=result.returncode
        )
    return output_path


def spawn_ffmpeg(cmd: list[str]) -> subprocess.Popen:
    """Start ffmpeg with progress on stdout and diagnostics on stderr."""
    logger.debug("Running: %s", " ".join(cmd))
    try:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise FFmpegNotFoundError(f"{cmd[0]} not found on PATH") from e


def parse_progress_line(line: str, duration: float) -> float | None:
    """Map one ``-progress`` key=value line to a 0-100 percentage.

    ffmpeg reports ``out_time_ms`` in microseconds as well, so both keys are
    read the same way.
    """
    line = line.strip()
    if line == "progress=end":
        return 100.0
    match = _OUT_TIME_RE.match(line)
    if match is None or duration <= 0:
        return None
    seconds = int(match.group(1)) / 1_000_000
    return max(0.0, min(100.0, seconds / duration * 100))


def follow_progress(
    process: subprocess.Popen,
    duration: float,
    on_progress: Callable[[float], None],
) -> tuple[int, str]:
    """Relay progress until *process* exits; return (returncode, stderr tail)."""
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    def drain_stderr() -> None:
        if process.stderr is None:
            return
        for line in process.stderr:
            stripped = line.strip()
            if stripped:
                stderr_tail.append(stripped)

    reader = threading.Thread(target=drain_stderr, daemon=True)
    reader.start()

    if process.stdout is not None:
        for line in process.stdout:
            percent = parse_progress_line(line, duration)
            if percent is not None:
                on_progress(percent)

    returncode = process.wait()
    reader.join(timeout=1.0)
    return returncode, "\n".join(stderr_tail)
