"""Tests for per-segment cut planning."""

import dataclasses
import math
from pathlib import Path

import pytest

from conftest import M4A_INFO, MP3_INFO
from markcut.editors.split import (
    DEFAULT_BITRATE,
    Mode,
    align_to_frame,
    build_command,
    choose_strategy,
    frame_duration,
    output_path_for,
    plan_cut,
)
from markcut.models import Segment


def _is_frame_multiple(value: float, sample_rate: int) -> bool:
    frames = value / frame_duration(sample_rate)
    return math.isclose(frames, round(frames), abs_tol=1e-6)


class TestChooseStrategy:
    def test_mp3_to_mp3_is_copy(self):
        strategy = choose_strategy(MP3_INFO)
        assert strategy.mode is Mode.COPY
        assert strategy.extension == ".mp3"

    def test_aac_source_reencodes_to_m4a(self):
        strategy = choose_strategy(M4A_INFO)
        assert strategy.mode is Mode.AAC
        assert strategy.extension == ".m4a"
        assert strategy.bitrate == DEFAULT_BITRATE

    def test_aac_source_to_mp3_uses_cbr(self):
        strategy = choose_strategy(M4A_INFO, output_format="mp3")
        assert strategy.mode is Mode.MP3
        assert strategy.extension == ".mp3"
        assert strategy.bitrate == DEFAULT_BITRATE

    def test_mp3_source_to_m4a_keeps_source_bitrate(self):
        strategy = choose_strategy(MP3_INFO, output_format="m4a")
        assert strategy.mode is Mode.AAC
        assert strategy.bitrate == 128000

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown output format"):
            choose_strategy(MP3_INFO, output_format="ogg")


class TestAlignToFrame:
    def test_frame_duration(self):
        assert frame_duration(44100) == 1152 / 44100

    def test_floors_to_frame_start(self):
        step = 1152 / 44100
        aligned = align_to_frame(10.0, 44100)
        assert aligned <= 10.0
        assert 10.0 - aligned < step
        assert _is_frame_multiple(aligned, 44100)

    def test_exact_multiple_unchanged(self):
        step = 1152 / 48000
        assert align_to_frame(step * 250, 48000) == pytest.approx(step * 250)

    def test_zero(self):
        assert align_to_frame(0.0, 44100) == 0.0

    @pytest.mark.parametrize("sample_rate", [22050, 32000, 44100, 48000])
    @pytest.mark.parametrize("time", [0.01, 1.23, 59.99, 3600.5])
    def test_always_a_frame_multiple(self, sample_rate, time):
        aligned = align_to_frame(time, sample_rate)
        assert aligned <= time + 1e-9
        assert _is_frame_multiple(aligned, sample_rate)


class TestPlanCut:
    SEGMENT = Segment(start_time=10.0, end_time=15.0, duration=5.0, index=2)

    def test_copy_mode_aligns_both_ends(self):
        plan = plan_cut(Path("/audio/talk.mp3"), self.SEGMENT, choose_strategy(MP3_INFO), MP3_INFO)
        assert _is_frame_multiple(plan.start, 44100)
        assert _is_frame_multiple(plan.start + plan.duration, 44100)
        assert plan.start <= 10.0
        assert plan.start + plan.duration <= 15.0

    def test_reencode_keeps_exact_times(self):
        plan = plan_cut(Path("/audio/talk.m4a"), self.SEGMENT, choose_strategy(M4A_INFO), M4A_INFO)
        assert plan.start == 10.0
        assert plan.duration == 5.0

    def test_output_name(self):
        plan = plan_cut(Path("/audio/talk.mp3"), self.SEGMENT, choose_strategy(MP3_INFO), MP3_INFO)
        assert plan.output_path == Path("/audio/talk002.mp3")

    def test_output_dir(self):
        plan = plan_cut(
            Path("/audio/talk.m4a"), self.SEGMENT, choose_strategy(M4A_INFO), M4A_INFO,
            output_dir=Path("/exports"),
        )
        assert plan.output_path == Path("/exports/talk002.m4a")


class TestOutputPathFor:
    def test_zero_padded_index(self):
        assert output_path_for(Path("/a/show.mp3"), 7, ".mp3") == Path("/a/show007.mp3")
        assert output_path_for(Path("/a/show.mp3"), 123, ".mp3") == Path("/a/show123.mp3")

    def test_extension_follows_output_format(self):
        assert output_path_for(Path("/a/show.mp4"), 1, ".m4a") == Path("/a/show001.m4a")


class TestBuildCommand:
    SEGMENT = Segment(start_time=10.0, end_time=15.0, duration=5.0, index=1)

    def _command(self, info, **kwargs):
        strategy = choose_strategy(info, **kwargs)
        source = Path("/audio/talk" + (".mp3" if info.kind == "mp3" else ".m4a"))
        plan = plan_cut(source, self.SEGMENT, strategy, info)
        return build_command(source, plan, strategy), plan

    def test_copy(self):
        cmd, plan = self._command(MP3_INFO)
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-ss") + 1] == f"{plan.start:.6f}"
        assert cmd[cmd.index("-t") + 1] == f"{plan.duration:.6f}"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        assert cmd[-1] == str(plan.output_path)

    def test_aac_fast_start(self):
        cmd, _ = self._command(M4A_INFO)
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"
        assert cmd[cmd.index("-b:a") + 1] == "192k"

    def test_mp3_constant_bitrate(self):
        info = dataclasses.replace(M4A_INFO, bit_rate=160000)
        cmd, _ = self._command(info, output_format="mp3")
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "160k"
        assert "-movflags" not in cmd
