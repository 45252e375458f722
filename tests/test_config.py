"""Tests for the config module."""

import logging
import os

import pytest
import yaml

from whisper_realtime.config import (
    AudioConfig,
    Config,
    EngineConfig,
    LoggingConfig,
    OutputConfig,
    PipelineConfig,
    VADConfig,
    load_config,
)
from whisper_realtime.errors import ConfigError


class TestAudioConfig:
    """Tests for AudioConfig dataclass."""

    def test_default_values(self):
        """Test default AudioConfig values."""
        config = AudioConfig()
        assert config.device == "default"
        assert config.sample_rate == 16000
        assert config.channels == 1
        assert config.block_duration_ms == 32
        assert config.realtime_file is False

    def test_custom_values(self):
        """Test AudioConfig with custom values."""
        config = AudioConfig(device="hw:1,0", channels=2, ring_buffer_seconds=1.5)
        assert config.device == "hw:1,0"
        assert config.channels == 2
        assert config.ring_buffer_seconds == 1.5


class TestVADConfig:
    """Tests for VADConfig dataclass."""

    def test_default_values(self):
        """Test default VADConfig values."""
        config = VADConfig()
        assert config.backend == "webrtc"
        assert config.frame_duration_ms == 30
        assert config.aggressiveness == 3
        assert config.speech_frames == 3
        assert config.silence_frames == 8
        assert config.max_segment_ms == 29300


class TestEngineConfig:
    """Tests for EngineConfig dataclass."""

    def test_default_values(self):
        """Test default EngineConfig values."""
        config = EngineConfig()
        assert config.backend == "faster_whisper"
        assert config.model == "small.en"
        assert config.prepend_silence_ms == 700
        assert config.hallucinations == ["you"]

    def test_hallucinations_not_shared(self):
        """Test each config gets its own hallucination list."""
        first, second = EngineConfig(), EngineConfig()
        first.hallucinations.append("thank you")
        assert second.hallucinations == ["you"]


class TestLoggingConfig:
    """Tests for LoggingConfig dataclass."""

    def test_default_values(self):
        """Test default LoggingConfig values."""
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.file is None


class TestConfig:
    """Tests for main Config class."""

    def test_default_config(self):
        """Test default Config values."""
        config = Config()
        assert isinstance(config.audio, AudioConfig)
        assert isinstance(config.vad, VADConfig)
        assert isinstance(config.engine, EngineConfig)
        assert isinstance(config.pipeline, PipelineConfig)
        assert isinstance(config.output, OutputConfig)
        assert isinstance(config.logging, LoggingConfig)

    def test_from_yaml(self, temp_config_file):
        """Test loading config from YAML file."""
        config = Config.from_yaml(temp_config_file)

        assert config.audio.ring_buffer_seconds == 2.0
        assert config.vad.backend == "energy"
        assert config.vad.pre_roll_frames == 5
        assert config.vad.silence_frames == 10
        assert config.engine.model == "tiny"
        assert config.pipeline.dispatch_queue_depth == 1
        assert config.logging.level == "DEBUG"
        # Unspecified values fall back to defaults
        assert config.vad.speech_frames == 3
        assert config.output.show_timestamps is False

    def test_from_yaml_nonexistent(self, temp_dir):
        """Test loading from non-existent file returns defaults."""
        config = Config.from_yaml(temp_dir / "nonexistent.yaml")
        assert config.audio.sample_rate == 16000

    def test_from_yaml_empty(self, temp_dir):
        """Test loading from empty YAML file."""
        empty_file = temp_dir / "empty.yaml"
        empty_file.write_text("")

        config = Config.from_yaml(empty_file)
        assert config.vad.backend == "webrtc"

    def test_from_yaml_unknown_key(self, temp_dir):
        """Test unknown settings are reported as ConfigError."""
        path = temp_dir / "bad.yaml"
        path.write_text("vad:\n  sensitivity: 3\n")

        with pytest.raises(ConfigError, match="sensitivity"):
            Config.from_yaml(path)

    def test_to_yaml(self, temp_dir):
        """Test saving config to YAML file."""
        config = Config(engine=EngineConfig(model="base.en"))
        output_path = temp_dir / "output" / "config.yaml"

        config.to_yaml(output_path)

        with open(output_path) as f:
            data = yaml.safe_load(f)
        assert data["engine"]["model"] == "base.en"
        assert data["vad"]["silence_frames"] == 8

    def test_round_trip(self, temp_dir):
        """Test a saved config loads back identically."""
        config = Config(vad=VADConfig(backend="energy", pre_roll_frames=4))
        path = temp_dir / "config.yaml"

        config.to_yaml(path)

        assert Config.from_yaml(path) == config

    @pytest.mark.parametrize("kwargs", [
        {"audio": AudioConfig(sample_rate=0)},
        {"audio": AudioConfig(ring_buffer_seconds=0)},
        {"vad": VADConfig(backend="magic")},
        {"vad": VADConfig(speech_frames=0)},
        {"vad": VADConfig(min_segment_ms=5000, max_segment_ms=1000)},
        {"engine": EngineConfig(backend="vosk")},
        {"pipeline": PipelineConfig(dispatch_queue_depth=0)},
    ])
    def test_invalid_values_rejected(self, kwargs):
        """Test settings the pipeline cannot run with fail at load time."""
        with pytest.raises(ConfigError):
            Config(**kwargs)

    def test_setup_logging(self, temp_dir):
        """Test logging setup."""
        log_file = temp_dir / "logs" / "test.log"
        config = Config(logging=LoggingConfig(level="DEBUG", file=str(log_file)))

        config.setup_logging()

        assert log_file.parent.exists()
        assert logging.getLogger().level == logging.DEBUG


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_with_path(self, temp_config_file):
        """Test loading config with explicit path."""
        config = load_config(str(temp_config_file))
        assert config.vad.backend == "energy"

    def test_load_config_from_env(self, temp_config_file, monkeypatch):
        """Test loading config from environment variable."""
        monkeypatch.setenv("WHISPER_REALTIME_CONFIG", str(temp_config_file))

        config = load_config()
        assert config.engine.model == "tiny"

    def test_load_config_default_path(self, monkeypatch, temp_dir):
        """Test loading config falls back to defaults."""
        monkeypatch.delenv("WHISPER_REALTIME_CONFIG", raising=False)
        monkeypatch.chdir(temp_dir)

        config = load_config()
        assert config.engine.backend == "faster_whisper"
        assert "WHISPER_REALTIME_CONFIG" not in os.environ
