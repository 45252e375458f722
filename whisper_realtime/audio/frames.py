"""Audio frames and sample conversion helpers."""

import logging
from dataclasses import dataclass
from math import gcd

import numpy as np
import soxr
from scipy.signal import resample_poly

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """A fixed-length slice of mono 16-bit audio.

    ``seq`` counts frames from the start of the stream, so the frame's
    position in time is derived from it rather than from a wall clock.
    """
    seq: int
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        self.samples.flags.writeable = False

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def start_time(self) -> float:
        """Offset of the first sample from the start of the stream, in seconds."""
        return self.seq * len(self.samples) / self.sample_rate

    @property
    def duration_ms(self) -> float:
        return len(self.samples) * 1000 / self.sample_rate


def to_int16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1, 1] to int16, passing int16 through."""
    if samples.dtype == np.int16:
        return samples
    scaled = np.clip(samples.astype(np.float32) * 32768.0, -32768, 32767)
    return scaled.astype(np.int16)


def to_float32(samples: np.ndarray) -> np.ndarray:
    """Convert int16 samples to float32 in [-1, 1)."""
    if samples.dtype == np.float32:
        return samples
    return samples.astype(np.float32) / 32768.0


def to_mono(block: np.ndarray) -> np.ndarray:
    """Down-mix a (frames, channels) block to a 1-D array by averaging."""
    if block.ndim == 1:
        return block
    if block.shape[1] == 1:
        return block[:, 0]
    return block.mean(axis=1).astype(block.dtype)


def resample(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Resample float audio with a polyphase filter."""
    if src_rate == dst_rate or len(samples) == 0:
        return samples
    factor = gcd(src_rate, dst_rate)
    return resample_poly(samples, dst_rate // factor, src_rate // factor).astype(np.float32)


class StreamResampler:
    """Resamples consecutive blocks of one stream.

    Filter state and the fractional output position carry over between
    blocks, so block edges are seamless and output length does not drift.
    Use ``resample`` for a whole signal that is available at once.
    """

    def __init__(self, src_rate: int, dst_rate: int, quality: str = "HQ"):
        self.src_rate = src_rate
        self.dst_rate = dst_rate
        self._stream = soxr.ResampleStream(src_rate, dst_rate, 1, dtype="float32", quality=quality)

    def process(self, samples: np.ndarray) -> np.ndarray:
        return self._stream.resample_chunk(np.ascontiguousarray(samples, dtype=np.float32))

    def flush(self) -> np.ndarray:
        """Return the samples still held in the filter at end of stream."""
        return self._stream.resample_chunk(np.zeros(0, dtype=np.float32), last=True)


class FrameChunker:
    """Re-chunks arbitrarily sized blocks into fixed-size frames.

    Samples that do not fill a whole frame are carried over to the next
    block, so no audio is lost between producer callbacks.
    """

    def __init__(self, frame_samples: int, sample_rate: int):
        if frame_samples <= 0:
            raise ValueError("frame_samples must be positive")
        self.frame_samples = frame_samples
        self.sample_rate = sample_rate
        self._pending = np.zeros(0, dtype=np.int16)
        self._next_seq = 0

    @property
    def frames_emitted(self) -> int:
        return self._next_seq

    def feed(self, samples: np.ndarray) -> list[Frame]:
        """Append mono samples and return every completed frame."""
        samples = to_int16(samples)
        if len(self._pending):
            data = np.concatenate([self._pending, samples])
        else:
            data = samples
        n_frames = len(data) // self.frame_samples
        frames = []
        for i in range(n_frames):
            start = i * self.frame_samples
            frames.append(self._make_frame(data[start:start + self.frame_samples].copy()))
        self._pending = data[n_frames * self.frame_samples:].copy()
        return frames

    def flush(self) -> list[Frame]:
        """Zero-pad and return the trailing partial frame, if any."""
        if len(self._pending) == 0:
            return []
        padded = np.zeros(self.frame_samples, dtype=np.int16)
        padded[:len(self._pending)] = self._pending
        logger.debug(f"Padded final frame with {self.frame_samples - len(self._pending)} samples")
        self._pending = np.zeros(0, dtype=np.int16)
        return [self._make_frame(padded)]

    def _make_frame(self, samples: np.ndarray) -> Frame:
        frame = Frame(seq=self._next_seq, samples=samples, sample_rate=self.sample_rate)
        self._next_seq += 1
        return frame
