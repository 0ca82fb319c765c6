"""Shared test fixtures."""

import io
from pathlib import Path

import pytest

from markcut.engine import ExportPipeline
from markcut.models import AudioFormatInfo

FIXTURES_DIR = Path(__file__).parent / "fixtures"

MP3_INFO = AudioFormatInfo(
    container_name="mp3",
    codec_name="mp3",
    sample_rate=44100,
    bit_rate=128000,
    duration=100.0,
    kind="mp3",
)

M4A_INFO = AudioFormatInfo(
    container_name="mov,mp4,m4a,3gp,3g2,mj2",
    codec_name="aac",
    sample_rate=48000,
    bit_rate=None,
    duration=100.0,
    kind="m4a",
)

PROGRESS_LINES = [
    "out_time_us=N/A\n",
    "progress=continue\n",
    "out_time_us=2500000\n",
    "progress=continue\n",
    "progress=end\n",
]


class FakeProcess:
    """Stands in for an ffmpeg Popen: writes its output file and replays progress."""

    def __init__(self, cmd, progress_lines=PROGRESS_LINES, returncode=0, stderr=""):
        self.cmd = cmd
        self.returncode = None
        self.killed = False
        self._final = returncode
        self._lines = list(progress_lines)
        self.stderr = io.StringIO(stderr)
        self.stdout = self._stream()
        Path(cmd[-1]).write_bytes(b"partial audio")

    def _stream(self):
        for line in self._lines:
            if self.killed:
                return
            yield line

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = -9 if self.killed else self._final
        return self.returncode

    def kill(self):
        self.killed = True


class FakeFFmpeg:
    """Spawner recording every command; *script* maps call number -> FakeProcess kwargs."""

    def __init__(self, script: dict | None = None):
        self.script = script or {}
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []

    def __call__(self, cmd: list[str]) -> FakeProcess:
        self.calls.append(cmd)
        proc = FakeProcess(cmd, **self.script.get(len(self.calls), {}))
        self.processes.append(proc)
        return proc


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "talk.mp3"
    path.write_bytes(b"ID3 fake mp3 data")
    return path


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()


@pytest.fixture
def make_pipeline():
    def factory(info: AudioFormatInfo = MP3_INFO, spawn=None) -> ExportPipeline:
        return ExportPipeline(
            prober=lambda path: info,
            spawn=spawn or FakeFFmpeg(),
            preflight=lambda: None,
        )
    return factory
