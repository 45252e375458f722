"""Per-frame voice activity detection.

Every detector answers one question for one frame: speech or silence.
Hysteresis across frames is the segmenter's job, not the detector's.
"""

import logging
from abc import ABC, abstractmethod

import numpy as np
import torch
import webrtcvad

from ..config import VADConfig
from ..errors import ConfigError, FrameSizeError
from .frames import Frame, to_float32

logger = logging.getLogger(__name__)


class VoiceActivityDetector(ABC):
    """Classifies fixed-size frames as speech or silence."""

    def __init__(self, sample_rate: int, frame_samples: int):
        self.sample_rate = sample_rate
        self.frame_samples = frame_samples

    @property
    def frame_duration_ms(self) -> float:
        return self.frame_samples * 1000 / self.sample_rate

    def classify(self, frame: Frame) -> bool:
        """Return True if the frame contains speech.

        Raises:
            FrameSizeError: if the frame is not exactly ``frame_samples`` long
        """
        if len(frame.samples) != self.frame_samples:
            raise FrameSizeError(self.frame_samples, len(frame.samples))
        return self._is_speech(frame.samples)

    @abstractmethod
    def _is_speech(self, samples: np.ndarray) -> bool:
        ...


class WebRtcVoiceActivityDetector(VoiceActivityDetector):
    """WebRTC GMM detector; accepts 10, 20 or 30 ms frames."""

    SUPPORTED_RATES = (8000, 16000, 32000, 48000)
    SUPPORTED_FRAME_MS = (10, 20, 30)

    def __init__(self, sample_rate: int, frame_duration_ms: int = 30, aggressiveness: int = 3):
        if sample_rate not in self.SUPPORTED_RATES:
            raise ConfigError(f"WebRTC VAD does not support {sample_rate}Hz")
        if frame_duration_ms not in self.SUPPORTED_FRAME_MS:
            raise ConfigError(f"WebRTC VAD does not support {frame_duration_ms}ms frames")
        super().__init__(sample_rate, sample_rate * frame_duration_ms // 1000)
        self._vad = webrtcvad.Vad(int(aggressiveness))

    def _is_speech(self, samples: np.ndarray) -> bool:
        return self._vad.is_speech(samples.tobytes(), self.sample_rate)


class SileroVoiceActivityDetector(VoiceActivityDetector):
    """Voice Activity Detection using Silero VAD model.

    The model only accepts 512-sample windows at 16kHz (256 at 8kHz), so the
    frame length is dictated by the sample rate rather than the config. The
    model carries recurrent context between calls; ``reset_state`` clears it.
    """

    WINDOW_SAMPLES = {16000: 512, 8000: 256}

    def __init__(self, sample_rate: int, threshold: float = 0.5):
        if sample_rate not in self.WINDOW_SAMPLES:
            raise ConfigError(f"Silero VAD does not support {sample_rate}Hz")
        super().__init__(sample_rate, self.WINDOW_SAMPLES[sample_rate])
        self.threshold = threshold
        self._model = None
        self._load_model()

    def _load_model(self) -> None:
        """Load the Silero VAD model."""
        logger.info("Loading Silero VAD model...")
        try:
            self._model, _ = torch.hub.load(
                repo_or_dir="snakers4/silero-vad",
                model="silero_vad",
                force_reload=False,
                onnx=False,
            )
            self._model.eval()
            logger.info("Silero VAD model loaded")
        except Exception as e:
            logger.error(f"Failed to load Silero VAD: {e}")
            raise

    def reset_state(self) -> None:
        self._model.reset_states()

    def speech_probability(self, samples: np.ndarray) -> float:
        audio_tensor = torch.from_numpy(to_float32(samples))
        with torch.no_grad():
            return self._model(audio_tensor, self.sample_rate).item()

    def _is_speech(self, samples: np.ndarray) -> bool:
        return self.speech_probability(samples) >= self.threshold


class EnergyVoiceActivityDetector(VoiceActivityDetector):
    """RMS energy gate, useful for clean input and for tests."""

    def __init__(self, sample_rate: int, frame_duration_ms: int = 30, threshold: float = 0.01):
        super().__init__(sample_rate, sample_rate * frame_duration_ms // 1000)
        self.threshold = threshold

    def _is_speech(self, samples: np.ndarray) -> bool:
        audio = to_float32(samples)
        rms = float(np.sqrt(np.mean(audio ** 2))) if audio.size else 0.0
        return rms >= self.threshold


def create_detector(config: VADConfig, sample_rate: int) -> VoiceActivityDetector:
    """Build the detector selected by ``config.backend``."""
    if config.backend == "webrtc":
        detector = WebRtcVoiceActivityDetector(
            sample_rate,
            frame_duration_ms=config.frame_duration_ms,
            aggressiveness=config.aggressiveness,
        )
    elif config.backend == "silero":
        detector = SileroVoiceActivityDetector(sample_rate, threshold=config.threshold)
    elif config.backend == "energy":
        detector = EnergyVoiceActivityDetector(
            sample_rate,
            frame_duration_ms=config.frame_duration_ms,
            threshold=config.energy_threshold,
        )
    else:
        raise ConfigError(f"Unknown VAD backend: {config.backend}")

    logger.info(
        f"Using {config.backend} VAD: {detector.frame_samples} samples "
        f"({detector.frame_duration_ms:.0f}ms) per frame"
    )
    return detector
