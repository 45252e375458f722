"""Continuous dictation: microphone or file audio to whisper transcripts."""

__version__ = "0.1.0"
