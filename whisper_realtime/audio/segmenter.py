"""Speech segmentation state machine.

Turns the stream of (frame, is_speech) pairs into complete speech segments
with pre-roll and post-roll padding, debounced at both ends.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..config import VADConfig
from .frames import Frame

logger = logging.getLogger(__name__)


class SegmentState(Enum):
    IDLE = "idle"
    POTENTIAL_SPEECH = "potential_speech"
    IN_SPEECH = "in_speech"
    POTENTIAL_SILENCE = "potential_silence"


@dataclass
class Segment:
    """A detected speech segment ready for recognition."""
    index: int
    audio: np.ndarray
    sample_rate: int
    start_time: float  # seconds from the start of the stream
    speech_ms: float  # duration excluding pre-roll and trailing silence
    forced: bool = False  # closed because it reached the maximum length

    @property
    def duration_ms(self) -> float:
        return len(self.audio) * 1000 / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + len(self.audio) / self.sample_rate


class SegmentAccumulator:
    """Hysteresis state machine that groups classified frames into segments.

    IDLE keeps the last ``pre_roll_frames`` frames. A speech frame moves to
    POTENTIAL_SPEECH, which commits to IN_SPEECH after ``speech_frames``
    consecutive speech frames and falls back to IDLE on any silence. In
    IN_SPEECH every frame is kept; silence moves to POTENTIAL_SILENCE, where
    ``silence_frames`` consecutive silent frames close the segment and any
    speech frame returns to IN_SPEECH.

    A segment is closed before a frame would take it past ``max_segment_ms``
    and a new one continues in the same state without pre-roll. Split segments do not
    overlap: their concatenation is exactly the original audio.
    """

    def __init__(self, config: VADConfig, sample_rate: int):
        self.sample_rate = sample_rate
        self.pre_roll_frames = config.pre_roll_frames
        self.speech_frames = config.speech_frames
        self.silence_frames = config.silence_frames
        self.min_segment_ms = config.min_segment_ms
        self.max_segment_ms = config.max_segment_ms
        self._max_samples = int(config.max_segment_ms * sample_rate / 1000)

        self._state = SegmentState.IDLE
        self._pre_roll: deque[Frame] = deque(maxlen=self.pre_roll_frames or None)
        self._candidate: list[Frame] = []
        self._frames: list[Frame] = []
        self._segment_samples = 0
        self._lead_frames = 0  # pre-roll frames at the head of _frames
        self._silence_run = 0
        self._continuation = False  # current segment follows a forced split
        self._next_index = 0

        self.segments_emitted = 0
        self.segments_discarded = 0

    @property
    def state(self) -> SegmentState:
        return self._state

    @property
    def next_index(self) -> int:
        return self._next_index

    def reset(self) -> None:
        """Drop all buffered audio and return to IDLE."""
        self._state = SegmentState.IDLE
        self._pre_roll.clear()
        self._candidate = []
        self._clear_segment()

    def process(self, frame: Frame, is_speech: bool) -> list[Segment]:
        """Advance the state machine by one frame.

        Returns the segments completed by this frame (usually none).
        """
        state = self._state

        if state is SegmentState.IDLE:
            if is_speech:
                self._candidate = [frame]
                self._state = SegmentState.POTENTIAL_SPEECH
                return self._maybe_commit()
            self._remember(frame)
            return []

        if state is SegmentState.POTENTIAL_SPEECH:
            if is_speech:
                self._candidate.append(frame)
                return self._maybe_commit()
            # False start: the candidate frames become ordinary pre-roll history
            for candidate in self._candidate:
                self._remember(candidate)
            self._remember(frame)
            self._candidate = []
            self._state = SegmentState.IDLE
            return []

        # IN_SPEECH or POTENTIAL_SILENCE: every frame belongs to the segment
        segments = self._add(frame)
        if is_speech:
            self._silence_run = 0
            self._state = SegmentState.IN_SPEECH
        else:
            self._silence_run += 1
            self._state = SegmentState.POTENTIAL_SILENCE
            if self._silence_run >= self.silence_frames:
                segment = self._close(forced=False)
                self._state = SegmentState.IDLE
                if segment is not None:
                    segments.append(segment)
        return segments

    def flush(self) -> list[Segment]:
        """Close the in-progress segment at end of stream.

        An uncommitted candidate is discarded; a committed segment is
        emitted if it is long enough.
        """
        segments = []
        if self._state in (SegmentState.IN_SPEECH, SegmentState.POTENTIAL_SILENCE):
            segment = self._close(forced=False)
            if segment is not None:
                segments.append(segment)
        elif self._state is SegmentState.POTENTIAL_SPEECH:
            logger.debug(f"Discarding {len(self._candidate)} uncommitted speech frames")
        self.reset()
        return segments

    def _remember(self, frame: Frame) -> None:
        if self.pre_roll_frames:
            self._pre_roll.append(frame)

    def _maybe_commit(self) -> list[Segment]:
        if len(self._candidate) < self.speech_frames:
            return []

        lead = list(self._pre_roll)
        self._pre_roll.clear()
        self._clear_segment()
        self._lead_frames = len(lead)
        segments = []
        for f in lead + self._candidate:
            segments.extend(self._add(f))
        self._candidate = []
        self._state = SegmentState.IN_SPEECH
        logger.debug(f"Speech started at {self._frames[0].start_time:.2f}s")
        return segments

    def _add(self, frame: Frame) -> list[Segment]:
        """Append a frame, first splitting off the segment if it would overflow."""
        segments = []
        if self._frames and self._segment_samples + len(frame.samples) > self._max_samples:
            segment = self._close(forced=True)
            if segment is not None:
                segments.append(segment)
        self._append(frame)
        return segments

    def _append(self, frame: Frame) -> None:
        self._frames.append(frame)
        self._segment_samples += len(frame.samples)

    def _clear_segment(self) -> None:
        self._frames = []
        self._segment_samples = 0
        self._lead_frames = 0
        self._silence_run = 0
        self._continuation = False

    def _close(self, forced: bool) -> Optional[Segment]:
        """Turn the buffered frames into a Segment, or discard them as noise.

        Forced closes keep the current state and silence counter so a long
        utterance continues seamlessly into the next segment.
        """
        frames = self._frames
        continuation = self._continuation
        trailing = 0 if forced else min(self._silence_run, len(frames))
        voiced = frames[self._lead_frames:len(frames) - trailing]
        speech_ms = sum(len(f.samples) for f in voiced) * 1000 / self.sample_rate

        silence_run = self._silence_run
        self._clear_segment()
        if forced:
            self._silence_run = silence_run
            self._continuation = True

        if not frames:
            return None

        # The tail of a split utterance always belongs to confirmed speech
        too_short = speech_ms < self.min_segment_ms or speech_ms == 0
        if not forced and not continuation and too_short:
            logger.debug(f"Speech segment too short ({speech_ms:.0f}ms), discarding")
            self.segments_discarded += 1
            return None

        segment = Segment(
            index=self._next_index,
            audio=np.concatenate([f.samples for f in frames]),
            sample_rate=self.sample_rate,
            start_time=frames[0].start_time,
            speech_ms=speech_ms,
            forced=forced,
        )
        self._next_index += 1
        self.segments_emitted += 1
        logger.debug(
            f"Speech segment {segment.index}: {segment.start_time:.2f}s, "
            f"{segment.duration_ms:.0f}ms{' (split)' if forced else ''}"
        )
        return segment
