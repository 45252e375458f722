"""Writes transcripts to a text stream in segment order."""

import logging
import sys
import threading
from typing import Optional, TextIO

from .audio.transcriber import TranscriptResult
from .config import OutputConfig

logger = logging.getLogger(__name__)


class OutputSink:
    """Serializes transcript results to a stream.

    Results are written strictly by segment index. A result that arrives
    ahead of its predecessors is held back until the gap is filled.
    """

    def __init__(self, config: OutputConfig, stream: Optional[TextIO] = None):
        self.show_timestamps = config.show_timestamps
        self.show_latency = config.show_latency
        self.stream = stream if stream is not None else sys.stdout

        self._lock = threading.Lock()
        self._held: dict[int, TranscriptResult] = {}
        self._next_index = 0
        self.written_count = 0

    def write(self, result: TranscriptResult) -> None:
        with self._lock:
            if result.segment_index < self._next_index:
                logger.warning(f"Ignoring duplicate result for segment {result.segment_index}")
                return
            self._held[result.segment_index] = result
            while self._next_index in self._held:
                self._emit(self._held.pop(self._next_index))
                self._next_index += 1

    @property
    def held_count(self) -> int:
        """Results waiting for an earlier segment."""
        with self._lock:
            return len(self._held)

    def format(self, result: TranscriptResult) -> str:
        line = result.text
        if self.show_timestamps:
            line = f"[{result.start_time:7.2f}s -> {result.end_time:7.2f}s] {line}"
        if self.show_latency:
            line = f"{line}\n\t@{result.latency_ms / 1000:.3f}s"
        return line

    def _emit(self, result: TranscriptResult) -> None:
        # Nothing recognized: keep the order bookkeeping, skip the blank line
        if not result.text:
            return
        self.stream.write(self.format(result) + "\n")
        self.stream.flush()
        self.written_count += 1
