"""Exception types raised by the dictation pipeline."""


class WhisperRealtimeError(Exception):
    """Base class for all whisper-realtime errors."""


class ConfigError(WhisperRealtimeError):
    """Configuration cannot be used to build a pipeline."""


class FrameSizeError(WhisperRealtimeError, ValueError):
    """A frame does not have the length the detector requires.

    This is an upstream contract violation and stops the pipeline.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected a frame of {expected} samples, got {actual}")
        self.expected = expected
        self.actual = actual


class SourceError(WhisperRealtimeError):
    """The audio source cannot be opened or has failed irrecoverably."""


class EngineError(WhisperRealtimeError):
    """The recognition engine failed on a single segment."""
