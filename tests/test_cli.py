"""Tests for the command-line entry point."""

import argparse
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import MP3_INFO, FakeFFmpeg
from markcut.cli import build_parser, main, parse_range, run_split
from markcut.engine import ExportPipeline
from markcut.manifest import ExportConfig, Manifest
from markcut.models import TimeRange


class TestParseRange:
    def test_valid(self):
        assert parse_range("10-15.5") == TimeRange(start=10.0, end=15.5)

    @pytest.mark.parametrize("text", ["10", "a-b", "10-"])
    def test_invalid(self, text):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_range(text)


class TestParser:
    def test_split_arguments(self):
        args = build_parser().parse_args(
            ["split", "talk.mp3", "-r", "1-5", "-r", "10-20", "--format", "m4a", "-o", "out"]
        )
        assert args.audio == Path("talk.mp3")
        assert args.ranges == [TimeRange(start=1.0, end=5.0), TimeRange(start=10.0, end=20.0)]
        assert args.output_format == "m4a"
        assert args.output_dir == Path("out")

    def test_rejects_unknown_format(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["split", "talk.mp3", "--format", "ogg"])


class TestMain:
    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 0
        assert "usage" in capsys.readouterr().out

    def test_split_missing_input(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["split", str(tmp_path / "missing.mp3"), "-r", "1-5"])
        assert exc.value.code == 1
        assert "does not exist" in capsys.readouterr().err

    def test_split_without_input(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["split"])
        assert exc.value.code == 1

    @patch("markcut.cli.ffutil.probe_audio", return_value=MP3_INFO)
    def test_probe(self, mock_probe, source, capsys):
        main(["probe", str(source)])
        out = capsys.readouterr().out
        assert "Format:      mp3" in out
        assert "44100 Hz" in out


class TestRunSplit:
    @pytest.fixture(autouse=True)
    def probe(self):
        with patch("markcut.cli.ffutil.probe_audio", return_value=MP3_INFO) as mock_probe:
            yield mock_probe

    def _pipeline(self, spawn=None):
        return ExportPipeline(prober=lambda path: MP3_INFO, spawn=spawn or FakeFFmpeg(), preflight=lambda: None)

    def test_exports_ranges(self, source, capsys):
        m = Manifest(input=source, ranges=[TimeRange(start=10, end=15), TimeRange(start=20, end=25)])
        assert run_split(m, self._pipeline()) == 0
        out = capsys.readouterr().out
        assert "2 file(s)" in out
        assert str(source.parent / "talk002.mp3") in out

    def test_short_range_skipped(self, source, capsys):
        m = Manifest(
            input=source,
            ranges=[TimeRange(start=10, end=10.5), TimeRange(start=20, end=25)],
        )
        spawn = FakeFFmpeg()
        assert run_split(m, self._pipeline(spawn)) == 0
        assert len(spawn.calls) == 1

    def test_lenient_min_duration(self, source):
        m = Manifest(
            input=source,
            ranges=[TimeRange(start=10, end=10.5)],
            export=ExportConfig(min_segment_duration=0.1),
        )
        spawn = FakeFFmpeg()
        assert run_split(m, self._pipeline(spawn)) == 0
        assert len(spawn.calls) == 1

    def test_no_valid_segments_fails(self, source, capsys):
        m = Manifest(input=source, ranges=[])
        assert run_split(m, self._pipeline()) == 1
        assert "No valid segments" in capsys.readouterr().err

    def test_ffmpeg_failure(self, source, capsys):
        spawn = FakeFFmpeg(script={1: {"returncode": 1, "stderr": "boom\n"}})
        m = Manifest(input=source, ranges=[TimeRange(start=10, end=15)])
        assert run_split(m, self._pipeline(spawn)) == 1
        assert "boom" in capsys.readouterr().err
        assert not (source.parent / "talk001.mp3").exists()
