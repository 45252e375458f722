"""Audio pipeline components for continuous speech capture and transcription."""

from .capture import FileSource, FrameSource, MicrophoneSource
from .ring_buffer import OverflowPolicy, RingBuffer
from .segmenter import Segment, SegmentAccumulator, SegmentState
from .transcriber import TranscriptionDispatcher, TranscriptResult
from .vad import VoiceActivityDetector, create_detector

__all__ = [
    "FileSource",
    "FrameSource",
    "MicrophoneSource",
    "OverflowPolicy",
    "RingBuffer",
    "Segment",
    "SegmentAccumulator",
    "SegmentState",
    "TranscriptionDispatcher",
    "TranscriptResult",
    "VoiceActivityDetector",
    "create_detector",
]
