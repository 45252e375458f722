"""Pytest configuration and shared fixtures."""

import tempfile
import threading
from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from whisper_realtime.audio.frames import Frame
from whisper_realtime.audio.segmenter import Segment
from whisper_realtime.audio.transcriber import RecognitionEngine
from whisper_realtime.errors import EngineError

SAMPLE_RATE = 16000
FRAME_SAMPLES = 480  # 30ms at 16kHz
SPEECH_LEVEL = 1000


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_path.write_text("""
audio:
  device: "default"
  sample_rate: 16000
  ring_buffer_seconds: 2.0

vad:
  backend: "energy"
  pre_roll_frames: 5
  speech_frames: 3
  silence_frames: 10

engine:
  model: "tiny"
  device: "cpu"

pipeline:
  dispatch_queue_depth: 1

logging:
  level: "DEBUG"
  file: null
""")
    return config_path


# ==================== Audio Fixtures ====================

@pytest.fixture
def make_frame():
    """Build a frame whose samples all equal its sequence number.

    Distinct sample values make it easy to check which frames ended up in
    a segment and in what order.
    """
    def _make(seq: int, samples: int = FRAME_SAMPLES) -> Frame:
        return Frame(seq=seq, samples=np.full(samples, seq, dtype=np.int16), sample_rate=SAMPLE_RATE)
    return _make


@pytest.fixture
def speech_frame():
    """A loud frame with the given sequence number."""
    def _make(seq: int = 0) -> Frame:
        samples = np.full(FRAME_SAMPLES, SPEECH_LEVEL, dtype=np.int16)
        return Frame(seq=seq, samples=samples, sample_rate=SAMPLE_RATE)
    return _make


@pytest.fixture
def silence_frame():
    """An all-zero frame with the given sequence number."""
    def _make(seq: int = 0) -> Frame:
        return Frame(seq=seq, samples=np.zeros(FRAME_SAMPLES, dtype=np.int16), sample_rate=SAMPLE_RATE)
    return _make


@pytest.fixture
def dictation_audio():
    """Build int16 audio from (kind, frames) runs, kind being 'speech' or 'silence'."""
    def _build(*runs: tuple[str, int]) -> np.ndarray:
        parts = []
        for kind, n_frames in runs:
            level = SPEECH_LEVEL if kind == "speech" else 0
            parts.append(np.full(n_frames * FRAME_SAMPLES, level, dtype=np.int16))
        return np.concatenate(parts)
    return _build


@pytest.fixture
def make_segment():
    """Build a segment with a given index."""
    def _make(index: int, duration_ms: int = 600) -> Segment:
        samples = int(SAMPLE_RATE * duration_ms / 1000)
        return Segment(
            index=index,
            audio=np.full(samples, SPEECH_LEVEL, dtype=np.int16),
            sample_rate=SAMPLE_RATE,
            start_time=index * 2.0,
            speech_ms=float(duration_ms),
        )
    return _make


# ==================== Engine Fixtures ====================

class FakeEngine(RecognitionEngine):
    """Engine that records what it was given and answers 'segment N'."""

    def __init__(self, fail_on: Optional[set[int]] = None, gate: Optional[threading.Event] = None):
        self.fail_on = fail_on or set()
        self.gate = gate
        self.calls: list[np.ndarray] = []
        self.started = threading.Event()
        self.loaded = False

    def load(self) -> None:
        self.loaded = True

    def transcribe(self, audio: np.ndarray, sample_rate: int) -> str:
        call = len(self.calls)
        self.calls.append(audio)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        if call in self.fail_on:
            raise EngineError("model exploded")
        return f"segment {call}"


@pytest.fixture
def fake_engine():
    """Create an engine that always succeeds."""
    return FakeEngine()


@pytest.fixture
def engine_factory():
    """Create engines with failures or a gate."""
    return FakeEngine
