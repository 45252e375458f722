"""Audio sources: live microphone capture and file playback."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import numpy as np
import sounddevice as sd
import soundfile as sf

from ..config import AudioConfig
from ..errors import SourceError
from .frames import FrameChunker, StreamResampler, resample, to_mono
from .ring_buffer import OverflowPolicy, RingBuffer

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Produces fixed-size frames into a RingBuffer on its own thread.

    End of stream is signalled by closing the ring buffer.
    """

    #: Overflow policy the ring buffer must use for this source
    overflow_policy = OverflowPolicy.DROP_OLDEST

    def __init__(self, config: AudioConfig, frame_samples: int):
        self.config = config
        self.sample_rate = config.sample_rate
        self.frame_samples = frame_samples

        self._chunker = FrameChunker(frame_samples, config.sample_rate)
        self._ring: Optional[RingBuffer] = None
        self._running = False

    @property
    def frames_produced(self) -> int:
        return self._chunker.frames_emitted

    def _deliver(self, block: np.ndarray) -> None:
        for frame in self._chunker.feed(block):
            self._ring.push(frame)

    def _finish(self) -> None:
        """Push the final partial frame and close the stream."""
        for frame in self._chunker.flush():
            self._ring.push(frame)
        self._ring.close()

    @abstractmethod
    def start(self, ring: RingBuffer) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    def is_running(self) -> bool:
        """Check if the source is producing audio."""
        return self._running


class MicrophoneSource(FrameSource):
    """Continuous audio capture from microphone.

    Frames are pushed straight from the PortAudio callback, so the ring
    buffer must drop rather than block when it is full.
    """

    overflow_policy = OverflowPolicy.DROP_OLDEST

    def __init__(self, config: AudioConfig, frame_samples: int):
        super().__init__(config, frame_samples)
        self.channels = config.channels
        self.device_rate: Optional[int] = None  # chosen in start()
        self._resampler: Optional[StreamResampler] = None
        self._stream: Optional[sd.InputStream] = None
        self.status_errors = 0

    def _resolve_device(self) -> Optional[Union[int, str]]:
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def _pick_sample_rate(self, device: Optional[Union[int, str]]) -> int:
        """Use the engine's rate if the device supports it, else the device default."""
        try:
            sd.check_input_settings(
                device=device, samplerate=self.sample_rate, channels=self.channels
            )
            return self.sample_rate
        except Exception:
            info = sd.query_devices(device, "input")
            rate = int(info["default_samplerate"])
            logger.info(f"Running with resampling {rate}Hz -> {self.sample_rate}Hz")
            return rate

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        """Callback for sounddevice stream."""
        if status:
            self.status_errors += 1
            logger.warning(f"Audio callback status: {status}")

        audio = to_mono(indata)
        if self._resampler is not None:
            audio = self._resampler.process(audio)
        self._deliver(audio)

    def _stream_finished(self) -> None:
        """Called by sounddevice when the stream ends, including on device loss."""
        if self._running:
            logger.warning("Audio stream ended unexpectedly")
        self._running = False
        if self._resampler is not None:
            self._deliver(self._resampler.flush())
        self._finish()

    def start(self, ring: RingBuffer) -> None:
        """Start audio capture."""
        if self._running:
            logger.warning("Audio capture already running")
            return

        self._ring = ring
        device = self._resolve_device()
        try:
            self.device_rate = self._pick_sample_rate(device)
            self._resampler = None
            if self.device_rate != self.sample_rate:
                self._resampler = StreamResampler(self.device_rate, self.sample_rate)
            block_samples = int(self.device_rate * self.config.block_duration_ms / 1000)
            logger.info(f"Starting audio capture: {self.device_rate}Hz, {self.channels}ch")
            self._stream = sd.InputStream(
                device=device,
                samplerate=self.device_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=block_samples,
                callback=self._audio_callback,
                finished_callback=self._stream_finished,
            )
        except Exception as e:
            raise SourceError(f"Cannot open audio input {self.config.device!r}: {e}") from e

        self._running = True
        self._stream.start()

        logger.info("Audio capture started")

    def stop(self) -> None:
        """Stop audio capture."""
        if self._stream is None:
            return

        logger.info("Stopping audio capture")
        self._running = False
        self._stream.stop()
        self._stream.close()
        self._stream = None
        # Idempotent if the finished callback already closed it
        self._ring.close()

        logger.info("Audio capture stopped")

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices


class FileSource(FrameSource):
    """Reads an audio file on a background thread.

    There is no hardware deadline, so the reader waits for the pipeline
    whenever the ring buffer is full.
    """

    overflow_policy = OverflowPolicy.BLOCK

    def __init__(self, config: AudioConfig, frame_samples: int, path: str | Path):
        super().__init__(config, frame_samples)
        self.path = Path(path)
        self.block_samples = int(config.sample_rate * config.block_duration_ms / 1000)
        self.realtime = config.realtime_file
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _load(self) -> np.ndarray:
        try:
            audio, file_rate = sf.read(str(self.path), dtype="float32", always_2d=True)
        except Exception as e:
            raise SourceError(f"Cannot read audio file {self.path}: {e}") from e

        audio = to_mono(audio)
        if file_rate != self.sample_rate:
            logger.info(f"Running with resampling {file_rate}Hz -> {self.sample_rate}Hz")
            audio = resample(audio, file_rate, self.sample_rate)
        logger.info(f"Loaded {self.path}: {len(audio) / self.sample_rate:.1f}s of audio")
        return audio

    def _read_loop(self, audio: np.ndarray) -> None:
        block_seconds = self.block_samples / self.sample_rate
        try:
            for start in range(0, len(audio), self.block_samples):
                if self._stop_event.is_set():
                    break
                self._deliver(audio[start:start + self.block_samples])
                if self.realtime:
                    time.sleep(block_seconds)
        finally:
            self._running = False
            self._finish()
            logger.info("End of audio file")

    def start(self, ring: RingBuffer) -> None:
        """Start reading the file."""
        if self._running:
            logger.warning("File source already running")
            return

        if not self.path.exists():
            raise SourceError(f"Audio file not found: {self.path}")
        audio = self._load()

        self._ring = ring
        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(
            target=self._read_loop, args=(audio,), name="file-reader", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop reading and close the stream."""
        if self._thread is None:
            return

        self._stop_event.set()
        # Unblock a reader waiting on a full buffer
        self._ring.close()
        self._thread.join(timeout=2.0)
        self._thread = None
