"""Web API routes for markcut."""

import json
import logging
import math
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from markcut import ffutil
from markcut.analyzers.silence import find_sound_regions, seed_marks
from markcut.editors.split import frame_duration
from markcut.engine import ExportPipeline, ExportResult, ExportState
from markcut.errors import ExportInProgressError, MarkcutError, NoValidSegmentsError
from markcut.manifest import ExportConfig, SilenceConfig
from markcut.marks import MarkRegistry
from markcut.models import AudioFormatInfo, ExportProgress, MarkType, Segment
from markcut.segments import derive_segments

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


def _pipeline() -> ExportPipeline:
    return current_app.config["PIPELINE"]


def _register(input_path: Path, filename: str, job_dir: Path, job_id: str):
    """Probe *input_path* and create a job for it, or return an error response."""
    try:
        info = ffutil.probe_audio(input_path)
    except MarkcutError as e:
        return jsonify({"error": str(e), "kind": e.kind}), 422

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "filename": filename,
        "info": info,
        "registry": MarkRegistry(),
        "lock": threading.Lock(),
        "status": "ready",
        "result": None,
        "error": None,
    }
    return jsonify({
        "job_id": job_id,
        "filename": filename,
        "format": info.kind,
        "duration": info.duration,
        "sample_rate": info.sample_rate,
    })


def _mark_time(data: dict) -> float:
    time = float(data["time"])
    if not math.isfinite(time):
        raise ValueError(f"Mark time must be finite, got {time}")
    return time


def _get_job(job_id: str) -> dict | None:
    return _jobs.get(job_id)


def _not_found():
    return jsonify({"error": "Job not found"}), 404


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    # Keep the original stem so exported names follow <stem><NNN><ext>.
    input_path = job_dir / Path(f.filename).name
    f.save(input_path)
    return _register(input_path, f.filename, job_dir, job_id)


@bp.route("/api/open", methods=["POST"])
def open_local():
    data = request.get_json(silent=True) or {}
    if "path" not in data:
        return jsonify({"error": "No path provided"}), 400

    input_path = Path(data["path"]).expanduser()
    if not input_path.is_file():
        return jsonify({"error": f"File does not exist: {input_path}", "kind": "input_not_found"}), 404

    # The source stays where it is; the job folder only holds derived files such as the preview.
    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    return _register(input_path, input_path.name, job_dir, job_id)


# --- Marks ----------------------------------------------------------------


@bp.route("/api/jobs/<job_id>/marks", methods=["GET"])
def list_marks(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    with job["lock"]:
        marks = job["registry"].list_marks()
    return jsonify({"marks": [m.to_dict() for m in marks]})


@bp.route("/api/jobs/<job_id>/marks", methods=["POST"])
def add_mark(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    data = request.get_json(silent=True) or {}
    try:
        mark_type = MarkType(data["type"])
        time = _mark_time(data)
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "Expected {type: 'start'|'end', time: seconds}"}), 400

    with job["lock"]:
        mark = job["registry"].add_mark(mark_type, time)
    if mark is None:
        return jsonify({"error": "Mark rejected: negative time or slot already taken"}), 409
    return jsonify(mark.to_dict()), 201


@bp.route("/api/jobs/<job_id>/marks", methods=["DELETE"])
def clear_marks(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    with job["lock"]:
        job["registry"].clear()
    return jsonify({"marks": []})


@bp.route("/api/jobs/<job_id>/marks/<mark_id>", methods=["PATCH"])
def update_mark(job_id: str, mark_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    data = request.get_json(silent=True) or {}
    try:
        time = _mark_time(data)
    except (KeyError, TypeError, ValueError):
        return jsonify({"error": "Expected {time: seconds}"}), 400

    with job["lock"]:
        registry: MarkRegistry = job["registry"]
        if registry.get(mark_id) is None:
            return jsonify({"error": "Mark not found"}), 404
        moved = registry.update_mark_time(mark_id, time)
        mark = registry.get(mark_id)
    if not moved:
        return jsonify({"error": "No free position near the requested time", "mark": mark.to_dict()}), 409
    return jsonify(mark.to_dict())


@bp.route("/api/jobs/<job_id>/marks/<mark_id>", methods=["DELETE"])
def remove_mark(job_id: str, mark_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    with job["lock"]:
        removed = job["registry"].remove_mark(mark_id)
    if not removed:
        return jsonify({"error": "Mark not found"}), 404
    return jsonify({"removed": mark_id})


@bp.route("/api/jobs/<job_id>/auto-marks", methods=["POST"])
def auto_marks(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    data = request.get_json(silent=True) or {}
    try:
        config = SilenceConfig(
            enabled=True,
            threshold_db=float(data.get("threshold_db", -30.0)),
            min_silence=float(data.get("min_silence", 0.5)),
            padding=float(data.get("padding", 0.05)),
            min_region=float(data.get("min_region", 1.0)),
        )
    except (TypeError, ValueError):
        return jsonify({"error": "Invalid silence settings"}), 400

    try:
        regions = find_sound_regions(job["input_path"], config, job["info"].duration)
    except MarkcutError as e:
        return jsonify({"error": str(e), "kind": e.kind}), 500
    with job["lock"]:
        added = seed_marks(job["registry"], regions)
        marks = job["registry"].list_marks()
    return jsonify({"added": added, "marks": [m.to_dict() for m in marks]})


# --- Segments & export -------------------------------------------------------


def _derive(job: dict, min_duration: float) -> list[Segment]:
    info = job["info"]
    with job["lock"]:
        marks = job["registry"].list_marks()
    return derive_segments(
        marks, info.duration, min_duration=min_duration, tolerance=frame_duration(info.sample_rate)
    )


def _segments_from_request(items: list, info: AudioFormatInfo, min_duration: float) -> list[Segment]:
    """Validate explicit ranges with the same rules derive_segments applies."""
    ranges = sorted(
        ((float(item["startTime"]), float(item["endTime"])) for item in items),
        key=lambda r: r[0],
    )
    limit = info.duration + frame_duration(info.sample_rate)
    segments = []
    previous_end = 0.0
    for i, (start, end) in enumerate(ranges, 1):
        if not (math.isfinite(start) and math.isfinite(end)) or start < 0 or end <= start:
            raise ValueError(f"Invalid segment {start}-{end}")
        if end > limit:
            raise ValueError(f"Segment {start}-{end} ends past the end of the audio ({info.duration:.2f}s)")
        duration = round(end - start, 6)
        if duration < min_duration:
            raise ValueError(f"Segment {start}-{end} is shorter than {min_duration}s")
        if start < previous_end:
            raise ValueError(f"Segment {start}-{end} overlaps the previous one")
        segments.append(Segment(start_time=start, end_time=end, duration=duration, index=i))
        previous_end = end
    return segments


@bp.route("/api/jobs/<job_id>/segments")
def list_segments(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    try:
        min_duration = float(request.args.get("min_duration", ExportConfig().min_segment_duration))
    except ValueError:
        return jsonify({"error": "Invalid min_duration"}), 400
    return jsonify({"segments": [s.to_dict() for s in _derive(job, min_duration)]})


@bp.route("/api/jobs/<job_id>/export", methods=["POST"])
def start_export(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    data = request.get_json(silent=True) or {}
    try:
        config = ExportConfig(
            output_format=data.get("output_format", "auto"),
            output_dir=data.get("output_dir"),
            min_segment_duration=float(data.get("min_segment_duration", ExportConfig().min_segment_duration)),
        )
        if "segments" in data:
            segments = _segments_from_request(
                data["segments"], job["info"], config.min_segment_duration
            )
        else:
            segments = _derive(job, config.min_segment_duration)
    except (KeyError, TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    if not segments:
        err = NoValidSegmentsError("No valid segments to export")
        return jsonify({"error": str(err), "kind": err.kind}), 400

    progress_queue: queue.Queue = queue.Queue()

    def on_progress(p: ExportProgress) -> None:
        progress_queue.put(p.to_dict())

    def on_complete(result: ExportResult) -> None:
        job["result"] = result
        if result.state is ExportState.COMPLETED:
            job["status"] = "done"
        elif result.state is ExportState.CANCELLED:
            job["status"] = "cancelled"
        else:
            job["status"] = "error"
            job["error"] = result.error
        progress_queue.put(None)  # sentinel

    previous = {k: job.get(k) for k in ("progress_queue", "status", "error", "result")}
    job.update(progress_queue=progress_queue, status="exporting", error=None, result=None)
    try:
        _pipeline().start(
            job["input_path"], segments, config, on_progress=on_progress, on_complete=on_complete
        )
    except ExportInProgressError as e:
        job.update(previous)
        return jsonify({"error": str(e)}), 409

    logger.info("Job %s: export of %d segment(s) started", job_id, len(segments))
    return jsonify({"status": "started", "segments": [s.to_dict() for s in segments]})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_export(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()
    if job["status"] != "exporting":
        return jsonify({"success": False})
    return jsonify({"success": _pipeline().cancel()})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    q = job.get("progress_queue")
    if q is None:
        return jsonify({"error": "No export in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                result: ExportResult = job["result"]
                data = json.dumps({"status": job["status"], **result.to_dict()})
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    resp = {"status": job["status"], "filename": job.get("filename")}
    result: ExportResult | None = job.get("result")
    if result is not None:
        resp.update(result.to_dict())
    return jsonify(resp)


@bp.route("/api/jobs/<job_id>/files/<int:index>")
def download_file(job_id: str, index: int):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    result: ExportResult | None = job.get("result")
    if job["status"] != "done" or result is None:
        return jsonify({"error": "Export not complete"}), 409
    if not 1 <= index <= len(result.files):
        return jsonify({"error": "No such file"}), 404
    return send_file(result.files[index - 1], as_attachment=True)


@bp.route("/api/jobs/<job_id>/preview")
def preview(job_id: str):
    job = _get_job(job_id)
    if job is None:
        return _not_found()

    preview_path = job.get("preview_path")
    if preview_path is None or not preview_path.exists():
        try:
            preview_path = ffutil.convert_to_wav(job["input_path"], job["dir"] / "preview.wav")
        except MarkcutError as e:
            return jsonify({"error": str(e), "kind": e.kind}), 500
        job["preview_path"] = preview_path
    return send_file(preview_path, mimetype="audio/wav")
