"""Speech-to-text engines and the segment dispatcher."""

import io
import logging
import queue
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf
from faster_whisper import WhisperModel

from ..config import EngineConfig, PipelineConfig
from ..errors import ConfigError, EngineError
from .frames import to_float32
from .segmenter import Segment

logger = logging.getLogger(__name__)


@dataclass
class TranscriptResult:
    """Recognized text for one segment."""
    segment_index: int
    text: str
    start_time: float
    end_time: float
    duration_ms: float
    latency_ms: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecognitionEngine(ABC):
    """Maps a mono int16 sample buffer to text.

    Implementations raise EngineError when a segment cannot be recognized.
    """

    def load(self) -> None:
        """Prepare the engine before the first segment."""

    @abstractmethod
    def transcribe(self, audio: np.ndarray, sample_rate: int) -> str:
        ...


class WhisperEngine(RecognitionEngine):
    """Base for whisper engines: short-audio guard and hallucination filter."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.language = None if config.language == "auto" else config.language
        self._hallucinations = {self._normalize(h) for h in config.hallucinations}

    @staticmethod
    def _normalize(text: str) -> str:
        return text.strip().strip(".!?,").lower()

    def _too_short(self, audio: np.ndarray, sample_rate: int) -> bool:
        return len(audio) * 1000 / sample_rate < self.config.min_audio_ms

    def _filter(self, text: str) -> str:
        text = text.strip()
        if self._normalize(text) in self._hallucinations:
            logger.debug(f"Filtered hallucinated output: {text!r}")
            return ""
        return text


class FasterWhisperEngine(WhisperEngine):
    """Speech-to-text transcription using faster-whisper."""

    def __init__(self, config: EngineConfig):
        super().__init__(config)
        self._model: Optional[WhisperModel] = None

    def load(self) -> None:
        """Load the Whisper model."""
        if self._model is not None:
            return
        logger.info(f"Loading Whisper model: {self.config.model} on {self.config.device}")
        try:
            self._model = WhisperModel(
                self.config.model,
                device=self.config.device,
                compute_type=self.config.compute_type,
            )
            logger.info("Whisper model loaded")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            raise

    def transcribe(self, audio: np.ndarray, sample_rate: int) -> str:
        if self._model is None:
            raise EngineError("Whisper model not loaded")
        if self._too_short(audio, sample_rate):
            # whisper rejects very short audio anyway
            return ""

        # Leading silence helps the model pick up the first word
        padding = np.zeros(sample_rate * self.config.prepend_silence_ms // 1000, dtype=np.float32)
        samples = np.concatenate([padding, to_float32(audio)])

        try:
            segments, _info = self._model.transcribe(
                samples,
                beam_size=self.config.beam_size,
                language=self.language,
                task="translate" if self.config.translate else "transcribe",
                vad_filter=False,  # We already did VAD
                without_timestamps=True,
            )
            texts = [seg.text.strip() for seg in segments]
        except Exception as e:
            raise EngineError(f"faster-whisper failed: {e}") from e

        return self._filter(" ".join(t for t in texts if t))


class WhisperCppEngine(WhisperEngine):
    """Runs a whisper.cpp binary, piping each segment as a WAV file on stdin."""

    def __init__(self, config: EngineConfig):
        super().__init__(config)
        if not config.whisper_cpp_binary:
            raise ConfigError("whisper_cpp backend requires whisper_cpp_binary")
        self.binary = Path(config.whisper_cpp_binary)
        self.model = Path(config.model)

    def load(self) -> None:
        if not self.binary.exists():
            raise ConfigError(f"whisper.cpp binary not found: {self.binary}")
        if not self.model.exists():
            raise ConfigError(f"whisper.cpp model not found: {self.model}")
        logger.info(f"Using whisper.cpp binary {self.binary} with model {self.model}")

    def _command(self) -> list[str]:
        cmd = [
            str(self.binary),
            "--no-prints",
            "--no-timestamps",
            "-l", self.language or "auto",
            "-f", "-",  # read from stdin
            "-m", str(self.model),
        ]
        if self.config.translate:
            cmd.append("--translate")
        return cmd

    def transcribe(self, audio: np.ndarray, sample_rate: int) -> str:
        if self._too_short(audio, sample_rate):
            return ""

        wav = io.BytesIO()
        sf.write(wav, audio, sample_rate, format="WAV", subtype="PCM_16")

        try:
            proc = subprocess.run(
                self._command(),
                input=wav.getvalue(),
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise EngineError(f"Could not run whisper.cpp: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise EngineError(f"whisper.cpp exited with {proc.returncode}: {stderr}")

        return self._filter(proc.stdout.decode("utf-8", errors="replace"))


def create_engine(config: EngineConfig) -> RecognitionEngine:
    """Build the engine selected by ``config.backend``."""
    if config.backend == "faster_whisper":
        return FasterWhisperEngine(config)
    if config.backend == "whisper_cpp":
        return WhisperCppEngine(config)
    raise ConfigError(f"Unknown engine backend: {config.backend}")


class TranscriptionDispatcher:
    """Feeds segments to the recognition engine on a worker thread.

    The segment queue is bounded: when recognition falls behind, ``submit``
    blocks instead of dropping a segment. Segments are transcribed one at a
    time, so results come out in the order segments went in.
    """

    _STOP = object()

    def __init__(self, engine: RecognitionEngine, config: PipelineConfig):
        self.engine = engine
        self.error_marker = config.error_marker
        self.queue_depth = config.dispatch_queue_depth

        self._queue: queue.Queue = queue.Queue(maxsize=self.queue_depth)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._on_transcription: list[Callable[[TranscriptResult], None]] = []

        self.submitted_count = 0
        self.completed_count = 0
        self.failed_count = 0
        self.backpressure_count = 0

    def on_transcription(self, callback: Callable[[TranscriptResult], None]) -> None:
        """Register callback for transcription results."""
        self._on_transcription.append(callback)

    def submit(self, segment: Segment) -> None:
        """Queue a segment, blocking while the queue is full."""
        if not self._running:
            raise RuntimeError("Dispatcher is not running")
        try:
            self._queue.put_nowait(segment)
        except queue.Full:
            self.backpressure_count += 1
            logger.info(f"Recognition is behind, waiting to queue segment {segment.index}")
            self._queue.put(segment)
        self.submitted_count += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _transcription_loop(self) -> None:
        """Process segments from queue until the stop marker arrives."""
        while True:
            item = self._queue.get()
            if item is self._STOP:
                break
            result = self._transcribe_segment(item)
            self._publish(result)

    def _transcribe_segment(self, segment: Segment) -> TranscriptResult:
        """Transcribe a speech segment, turning failures into an error result."""
        started = time.monotonic()
        error = None
        try:
            text = self.engine.transcribe(segment.audio, segment.sample_rate)
        except EngineError as e:
            logger.error(f"Transcription error on segment {segment.index}: {e}")
            text, error = self.error_marker, str(e)
        except Exception as e:
            logger.error(f"Transcription error on segment {segment.index}: {e}", exc_info=True)
            text, error = self.error_marker, str(e) or type(e).__name__
        latency_ms = (time.monotonic() - started) * 1000

        if error is None:
            self.completed_count += 1
            if text:
                logger.info(f"Transcribed: '{text[:50]}' ({latency_ms:.0f}ms)")
        else:
            self.failed_count += 1

        return TranscriptResult(
            segment_index=segment.index,
            text=text,
            start_time=segment.start_time,
            end_time=segment.end_time,
            duration_ms=segment.duration_ms,
            latency_ms=latency_ms,
            error=error,
        )

    def _publish(self, result: TranscriptResult) -> None:
        for callback in self._on_transcription:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Transcription callback error: {e}")

    def start(self) -> None:
        """Start the dispatcher."""
        if self._running:
            logger.warning("Dispatcher already running")
            return

        self.engine.load()
        self._running = True

        self._thread = threading.Thread(
            target=self._transcription_loop, name="transcription", daemon=True
        )
        self._thread.start()

        logger.info(f"Dispatcher started (queue depth {self.queue_depth})")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop after every queued segment has been transcribed."""
        if not self._running:
            return

        logger.info(f"Stopping dispatcher ({self.pending} segments pending)")
        self._running = False
        self._queue.put(self._STOP)

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Transcription thread did not finish in time")
            self._thread = None

        logger.info("Dispatcher stopped")

    def is_running(self) -> bool:
        """Check if dispatcher is running."""
        return self._running
