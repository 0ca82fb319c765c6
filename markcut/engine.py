"""Export pipeline — cuts each segment out of the source with ffmpeg.

One :class:`ExportPipeline` owns at most one :class:`ExportTask` at a time.
Segments are written strictly one after another; progress is reported as a
single monotonic percentage across the whole run. Cancelling kills the
running ffmpeg process and removes every file the run has written.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from markcut import ffutil
from markcut.editors.split import CutPlan, Strategy, build_command, choose_strategy, plan_cut
from markcut.errors import (
    ExportInProgressError,
    InputNotFoundError,
    InputUnreadableError,
    MarkcutError,
    NoValidSegmentsError,
    SubprocessFailure,
)
from markcut.manifest import ExportConfig
from markcut.models import AudioFormatInfo, ExportProgress, Segment

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]


class ExportState(Enum):
    IDLE = "idle"
    PROBING = "probing"
    EXPORTING = "exporting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ExportTask:
    """Mutable state of the run in flight; only touched under the pipeline lock."""

    segments: list[Segment]
    produced_files: list[Path] = field(default_factory=list)
    active_process: subprocess.Popen | None = None
    current_output: Path | None = None
    cancelled: bool = False
    state: ExportState = ExportState.IDLE
    last_overall: int = 0


@dataclass
class ExportResult:
    state: ExportState
    files: list[Path] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict:
        if self.state is ExportState.COMPLETED:
            return {"files": [str(p) for p in self.files]}
        if self.state is ExportState.CANCELLED:
            return {"cancelled": True, "files": []}
        return {"error": self.error, "kind": self.error_kind}


class _Cancelled(Exception):
    pass


def overall_progress(completed: int, segment_progress: float, total: int) -> int:
    """Combine finished segments and the current one into a 0-100 value."""
    return min(100, round((completed + segment_progress / 100) / total * 100))


def _kill(process: subprocess.Popen) -> None:
    if process.poll() is None:
        process.kill()


class ExportPipeline:
    """Runs exports one at a time and accepts cancellation from any thread."""

    def __init__(
        self,
        prober: Callable[[Path], AudioFormatInfo] = ffutil.probe_audio,
        spawn: Callable[[list[str]], subprocess.Popen] = ffutil.spawn_ffmpeg,
        preflight: Callable[[], None] = ffutil.check_ffmpeg,
    ) -> None:
        self._prober = prober
        self._spawn = spawn
        self._preflight = preflight
        self._lock = threading.RLock()
        self._task: ExportTask | None = None
        self._thread: threading.Thread | None = None
        self.state = ExportState.IDLE

    @property
    def active(self) -> bool:
        with self._lock:
            return self._task is not None

    def run(
        self,
        source: Path,
        segments: list[Segment],
        config: ExportConfig | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Export synchronously on the calling thread."""
        task = self._begin(segments)
        return self._execute(task, Path(source), config or ExportConfig(), on_progress)

    def start(
        self,
        source: Path,
        segments: list[Segment],
        config: ExportConfig | None = None,
        on_progress: ProgressCallback | None = None,
        on_complete: Callable[[ExportResult], None] | None = None,
    ) -> None:
        """Export on a background thread; *on_complete* receives the result."""
        task = self._begin(segments)

        def worker() -> None:
            result = self._execute(task, Path(source), config or ExportConfig(), on_progress)
            if on_complete:
                on_complete(result)

        self._thread = threading.Thread(target=worker, name="markcut-export", daemon=True)
        self._thread.start()

    def wait(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel(self) -> bool:
        """Request cancellation of the current run; False if nothing is running."""
        with self._lock:
            task = self._task
            if task is None or task.cancelled or task.state is ExportState.COMPLETED:
                return False
            task.cancelled = True
            if task.active_process is not None:
                _kill(task.active_process)
        logger.info("Export cancellation requested")
        return True

    # -- internals ---------------------------------------------------------

    def _begin(self, segments: list[Segment]) -> ExportTask:
        with self._lock:
            if self._task is not None:
                raise ExportInProgressError("An export is already running")
            self._task = ExportTask(segments=list(segments))
            self.state = ExportState.IDLE
            return self._task

    def _set_state(self, task: ExportTask, state: ExportState) -> None:
        with self._lock:
            task.state = state
            self.state = state

    def _execute(
        self,
        task: ExportTask,
        source: Path,
        config: ExportConfig,
        on_progress: ProgressCallback | None,
    ) -> ExportResult:
        result: ExportResult | None = None
        try:
            result = self._export(task, source, config, on_progress)
        except _Cancelled:
            self._remove_outputs(task)
            logger.info("Export of %s cancelled", source)
            result = ExportResult(state=ExportState.CANCELLED)
        except (MarkcutError, OSError) as e:
            self._remove_outputs(task)
            if task.cancelled:
                result = ExportResult(state=ExportState.CANCELLED)
            else:
                kind = e.kind if isinstance(e, MarkcutError) else "io_error"
                logger.error("Export of %s failed: %s", source, e)
                result = ExportResult(state=ExportState.FAILED, error=str(e), error_kind=kind)
        finally:
            with self._lock:
                self._task = None
                task.state = self.state = result.state if result else ExportState.FAILED

        return result

    def _export(
        self,
        task: ExportTask,
        source: Path,
        config: ExportConfig,
        on_progress: ProgressCallback | None,
    ) -> ExportResult:
        if not source.exists():
            raise InputNotFoundError(f"Input file does not exist: {source}")
        if not source.is_file() or not os.access(source, os.R_OK):
            raise InputUnreadableError(f"Input file is not readable: {source}")
        if not task.segments:
            raise NoValidSegmentsError("No valid segments to export")

        self._preflight()

        self._set_state(task, ExportState.PROBING)
        info = self._prober(source)
        strategy = choose_strategy(info, config.output_format, config.default_bitrate)
        logger.info(
            "Exporting %d segment(s) from %s (%s/%s, %s mode)",
            len(task.segments), source, info.container_name, info.codec_name, strategy.mode.value,
        )

        if config.output_dir is not None:
            Path(config.output_dir).mkdir(parents=True, exist_ok=True)

        self._set_state(task, ExportState.EXPORTING)
        for i, segment in enumerate(task.segments):
            plan = plan_cut(source, segment, strategy, info, config.output_dir)
            self._export_segment(task, source, plan, strategy, i, on_progress)

        with self._lock:
            # A cancel that lands after the last file still rolls the run back.
            if task.cancelled:
                raise _Cancelled()
            task.state = ExportState.COMPLETED
            files = list(task.produced_files)
        logger.info("Export of %s complete: %d file(s)", source, len(files))
        return ExportResult(state=ExportState.COMPLETED, files=files)

    def _export_segment(
        self,
        task: ExportTask,
        source: Path,
        plan: CutPlan,
        strategy: Strategy,
        i: int,
        on_progress: ProgressCallback | None,
    ) -> None:
        cmd = build_command(source, plan, strategy)
        logger.debug("Segment %d/%d -> %s", i + 1, len(task.segments), plan.output_path)

        with self._lock:
            if task.cancelled:
                raise _Cancelled()
            process = self._spawn(cmd)
            task.active_process = process
            task.current_output = plan.output_path

        try:
            returncode, stderr = ffutil.follow_progress(
                process,
                plan.duration,
                lambda percent: self._report(task, i, percent, on_progress),
            )
        finally:
            with self._lock:
                task.active_process = None

        with self._lock:
            if task.cancelled:
                raise _Cancelled()
            if returncode != 0:
                last_line = stderr.splitlines()[-1] if stderr else f"exit code {returncode}"
                raise SubprocessFailure(
                    f"ffmpeg failed on segment {plan.segment.index}: {last_line}",
                    stderr=stderr,
                    returncode=returncode,
                )
            task.produced_files.append(plan.output_path)
            task.current_output = None

        self._report(task, i, 100.0, on_progress)

    def _report(
        self,
        task: ExportTask,
        i: int,
        percent: float,
        on_progress: ProgressCallback | None,
    ) -> None:
        # Delivered under the lock so no event can follow a completed cancel().
        with self._lock:
            if task.cancelled:
                return
            total = len(task.segments)
            task.last_overall = max(task.last_overall, overall_progress(i, percent, total))
            if on_progress:
                on_progress(
                    ExportProgress(
                        current_segment=i + 1,
                        total_segments=total,
                        current_progress=round(percent, 1),
                        overall_progress=task.last_overall,
                    )
                )

    def _remove_outputs(self, task: ExportTask) -> None:
        with self._lock:
            paths = list(task.produced_files)
            if task.current_output is not None:
                paths.append(task.current_output)
            task.produced_files.clear()
            task.current_output = None

        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
            else:
                logger.debug("Removed %s", path)
