"""Exceptions raised while probing and exporting."""


class MarkcutError(Exception):
    """Base class; ``kind`` is the stable identifier reported to callers."""

    kind = "error"


class FFmpegNotFoundError(MarkcutError):
    kind = "ffmpeg_not_found"


class InputNotFoundError(MarkcutError):
    """Raised when the source file does not exist."""

    kind = "input_not_found"


class InputUnreadableError(MarkcutError):
    """Raised when the source file exists but cannot be read."""

    kind = "input_unreadable"


class FormatDetectionError(MarkcutError):
    """Raised when ffprobe output cannot be classified as MP3 or AAC/M4A."""

    kind = "format_detection"


class SubprocessFailure(MarkcutError):
    """Raised when ffmpeg exits non-zero; ``stderr`` holds its diagnostic tail."""

    kind = "subprocess_failure"

    def __init__(self, message: str, stderr: str = "", returncode: int | None = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class NoValidSegmentsError(MarkcutError):
    kind = "no_valid_segments"


class ExportInProgressError(MarkcutError):
    """Raised when an export is started while another one is still running."""

    kind = "export_in_progress"
