"""Configuration management for whisper-realtime."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

VAD_BACKENDS = ("webrtc", "silero", "energy")
ENGINE_BACKENDS = ("faster_whisper", "whisper_cpp")


@dataclass
class AudioConfig:
    """Audio capture configuration."""
    device: str = "default"
    sample_rate: int = 16000  # rate the recognition engine expects
    channels: int = 1
    block_duration_ms: int = 32  # producer block size
    ring_buffer_seconds: float = 5.0
    realtime_file: bool = False  # pace file reading at real time


@dataclass
class VADConfig:
    """Voice activity detection and segmentation configuration."""
    backend: str = "webrtc"
    frame_duration_ms: int = 30
    aggressiveness: int = 3
    threshold: float = 0.5
    energy_threshold: float = 0.01
    pre_roll_frames: int = 10
    speech_frames: int = 3  # K: consecutive speech frames before committing
    silence_frames: int = 8  # M: consecutive silence frames ending a segment
    min_segment_ms: int = 200
    max_segment_ms: int = 29300


@dataclass
class EngineConfig:
    """Speech recognition engine configuration."""
    backend: str = "faster_whisper"
    model: str = "small.en"
    device: str = "auto"
    compute_type: str = "default"
    language: str = "en"
    translate: bool = False
    beam_size: int = 1
    whisper_cpp_binary: Optional[str] = None
    prepend_silence_ms: int = 700
    min_audio_ms: int = 300
    hallucinations: list[str] = field(default_factory=lambda: ["you"])


@dataclass
class PipelineConfig:
    """Dispatch configuration."""
    dispatch_queue_depth: int = 2
    error_marker: str = "[transcription failed]"


@dataclass
class OutputConfig:
    """Transcript output configuration."""
    show_timestamps: bool = False
    show_latency: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    vad: VADConfig = field(default_factory=VADConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject settings the pipeline cannot be built with."""
        audio, vad = self.audio, self.vad
        if audio.sample_rate <= 0:
            raise ConfigError(f"sample_rate must be positive, got {audio.sample_rate}")
        if audio.channels < 1:
            raise ConfigError(f"channels must be at least 1, got {audio.channels}")
        if audio.block_duration_ms <= 0:
            raise ConfigError("block_duration_ms must be positive")
        if audio.ring_buffer_seconds <= 0:
            raise ConfigError("ring_buffer_seconds must be positive")

        if vad.backend not in VAD_BACKENDS:
            raise ConfigError(f"Unknown VAD backend: {vad.backend}")
        if vad.frame_duration_ms <= 0:
            raise ConfigError("frame_duration_ms must be positive")
        if vad.speech_frames < 1 or vad.silence_frames < 1:
            raise ConfigError("speech_frames and silence_frames must be at least 1")
        if vad.pre_roll_frames < 0:
            raise ConfigError("pre_roll_frames cannot be negative")
        if vad.min_segment_ms < 0 or vad.max_segment_ms <= 0:
            raise ConfigError("segment length bounds must be positive")
        if vad.min_segment_ms > vad.max_segment_ms:
            raise ConfigError(
                f"min_segment_ms ({vad.min_segment_ms}) exceeds "
                f"max_segment_ms ({vad.max_segment_ms})"
            )

        if self.engine.backend not in ENGINE_BACKENDS:
            raise ConfigError(f"Unknown engine backend: {self.engine.backend}")
        if self.pipeline.dispatch_queue_depth < 1:
            raise ConfigError("dispatch_queue_depth must be at least 1")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            return cls(
                audio=AudioConfig(**data.get("audio", {})),
                vad=VADConfig(**data.get("vad", {})),
                engine=EngineConfig(**data.get("engine", {})),
                pipeline=PipelineConfig(**data.get("pipeline", {})),
                output=OutputConfig(**data.get("output", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
            force=True,
        )


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment."""
    if path is None:
        path = os.environ.get("WHISPER_REALTIME_CONFIG", "config/settings.yaml")
    return Config.from_yaml(path)
