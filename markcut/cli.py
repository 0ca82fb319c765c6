"""Command-line entry point: builds a Manifest and runs the export pipeline."""

import argparse
import logging
import sys
from pathlib import Path

from markcut import ffutil
from markcut.analyzers.silence import find_sound_regions, seed_marks
from markcut.editors.split import OUTPUT_FORMATS, frame_duration
from markcut.engine import ExportPipeline, ExportResult, ExportState
from markcut.errors import InputNotFoundError, MarkcutError
from markcut.manifest import ExportConfig, Manifest, SilenceConfig, load_manifest
from markcut.marks import MarkRegistry
from markcut.models import ExportProgress, TimeRange
from markcut.segments import MIN_SEGMENT_DURATION, derive_segments, format_time


def parse_range(text: str) -> TimeRange:
    """Parse ``START-END`` (seconds) into a TimeRange."""
    try:
        start, end = text.split("-", 1)
        return TimeRange(start=float(start), end=float(end))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected START-END in seconds, got {text!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markcut",
        description="markcut: mark time ranges in an audio file and export each one.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    probe = sub.add_parser("probe", help="Show the detected audio format")
    probe.add_argument("audio", type=Path, help="Input audio file")

    split = sub.add_parser("split", help="Export marked ranges as separate files")
    split.add_argument("audio", nargs="?", type=Path, help="Input audio file")
    split.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    split.add_argument("--range", "-r", dest="ranges", type=parse_range, action="append", default=[],
                       metavar="START-END", help="Range to export, in seconds (repeatable)")
    split.add_argument("--auto", action="store_true", help="Add ranges around non-silent audio")
    split.add_argument("--silence-threshold", type=float, default=-30.0, help="Silence threshold in dB")
    split.add_argument("--silence-min-duration", type=float, default=0.5, help="Minimum silence duration (seconds)")
    split.add_argument("--output-dir", "-o", type=Path, help="Directory for the exported files")
    split.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, default="auto",
                       help="Output format (auto keeps the source format)")
    split.add_argument("--min-duration", type=float, default=MIN_SEGMENT_DURATION,
                       help="Shortest range that will be exported (seconds)")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8322, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    return parser


def _manifest_from_args(args: argparse.Namespace) -> Manifest:
    if args.manifest:
        return load_manifest(args.manifest)
    return Manifest(
        input=args.audio,
        ranges=list(args.ranges),
        export=ExportConfig(
            output_format=args.output_format,
            output_dir=args.output_dir,
            min_segment_duration=args.min_duration,
        ),
        silence=SilenceConfig(
            enabled=args.auto,
            threshold_db=args.silence_threshold,
            min_silence=args.silence_min_duration,
        ),
    )


def run_split(m: Manifest, pipeline: ExportPipeline | None = None) -> int:
    if not m.input.exists():
        raise InputNotFoundError(f"Input file does not exist: {m.input}")
    info = ffutil.probe_audio(m.input)

    registry = MarkRegistry()
    for r in m.ranges:
        if registry.add_range(r.start, r.end) is None:
            print(f"  Skipping range {r.start}-{r.end}: invalid or overlapping marks", file=sys.stderr)
    if m.silence.enabled:
        regions = find_sound_regions(m.input, m.silence, info.duration)
        print(f"  Auto-marked {seed_marks(registry, regions)} range(s) from silence detection")

    segments = derive_segments(
        registry.list_marks(),
        info.duration,
        min_duration=m.export.min_segment_duration,
        tolerance=frame_duration(info.sample_rate),
    )
    for seg in segments:
        print(f"  #{seg.index:03d}  {format_time(seg.start_time)} -> {format_time(seg.end_time)}"
              f"  ({format_time(seg.duration)})")

    def on_progress(p: ExportProgress) -> None:
        print(f"  [{p.overall_progress:3d}%] segment {p.current_segment}/{p.total_segments}")

    pipeline = pipeline or ExportPipeline()
    results: list[ExportResult] = []
    pipeline.start(m.input, segments, m.export, on_progress=on_progress, on_complete=results.append)
    try:
        pipeline.wait()
    except KeyboardInterrupt:
        pipeline.cancel()
        pipeline.wait()
    result = results[0]

    if result.state is ExportState.FAILED:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    if result.state is ExportState.CANCELLED:
        print("Cancelled.", file=sys.stderr)
        return 130

    print()
    print(f"Done! {len(result.files)} file(s):")
    for path in result.files:
        print(f"  {path}")
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from markcut.web import create_app
        app = create_app()
        print(f"markcut web API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        if args.command == "probe":
            info = ffutil.probe_audio(args.audio)
            print(f"Container:   {info.container_name}")
            print(f"Codec:       {info.codec_name}")
            print(f"Format:      {info.kind}")
            print(f"Sample rate: {info.sample_rate} Hz")
            print(f"Bit rate:    {info.bit_rate or 'unknown'}")
            print(f"Duration:    {format_time(info.duration)}")
            return

        if not args.manifest and not args.audio:
            print("Error: provide either an AUDIO argument or --manifest.", file=sys.stderr)
            sys.exit(1)
        sys.exit(run_split(_manifest_from_args(args)))
    except (MarkcutError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
