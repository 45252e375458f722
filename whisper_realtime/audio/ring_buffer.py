"""Bounded frame queue between the audio producer and the pipeline."""

import logging
import threading
from collections import deque
from enum import Enum
from typing import Optional

from .frames import Frame

logger = logging.getLogger(__name__)


class OverflowPolicy(Enum):
    """What ``push`` does when the buffer is full.

    DROP_OLDEST is used for live capture, whose callback must never wait.
    BLOCK is used for file reading, where the reader can simply slow down.
    """
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class RingBuffer:
    """Single-producer/single-consumer frame queue with a fixed capacity."""

    # Log the first overflow, then one line per this many dropped frames
    OVERFLOW_LOG_INTERVAL = 100

    def __init__(self, capacity: int, policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.policy = policy

        self._frames: deque[Frame] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)
        self._closed = False
        self._overflow_count = 0

    def push(self, frame: Frame) -> bool:
        """Add a frame. Called only by the producer.

        Returns False if the frame could not be stored because the buffer
        was closed. Under DROP_OLDEST an overflow discards the oldest
        buffered frame and still returns True.
        """
        with self._lock:
            if self._closed:
                return False

            if len(self._frames) >= self.capacity:
                if self.policy is OverflowPolicy.DROP_OLDEST:
                    self._frames.popleft()
                    self._overflow_count += 1
                    if self._overflow_count % self.OVERFLOW_LOG_INTERVAL == 1:
                        logger.warning(
                            f"Ring buffer full, dropped audio "
                            f"({self._overflow_count} frames so far)"
                        )
                else:
                    while len(self._frames) >= self.capacity and not self._closed:
                        self._not_full.wait()
                    if self._closed:
                        return False

            self._frames.append(frame)
            self._not_empty.notify()
            return True

    def pop(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """Remove and return the oldest frame. Called only by the consumer.

        Waits up to ``timeout`` seconds for a frame (forever if None) and
        returns None if none arrived or the buffer is closed and drained.
        """
        with self._lock:
            if not self._frames and not self._closed:
                self._not_empty.wait_for(lambda: self._frames or self._closed, timeout)
            if not self._frames:
                return None
            frame = self._frames.popleft()
            self._not_full.notify()
            return frame

    def close(self) -> None:
        """Signal end of stream. Frames already buffered can still be popped."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exhausted(self) -> bool:
        """True once the buffer is closed and every frame has been popped."""
        with self._lock:
            return self._closed and not self._frames

    @property
    def overflow_count(self) -> int:
        """Number of frames dropped because the buffer was full."""
        return self._overflow_count

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)
