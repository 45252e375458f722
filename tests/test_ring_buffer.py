"""Tests for the producer/consumer ring buffer."""

import threading
import time

import pytest

from whisper_realtime.audio.ring_buffer import OverflowPolicy, RingBuffer


class TestRingBuffer:
    """Tests for RingBuffer class."""

    def test_init(self):
        """Test RingBuffer initialization."""
        ring = RingBuffer(4)

        assert ring.capacity == 4
        assert ring.policy is OverflowPolicy.DROP_OLDEST
        assert len(ring) == 0
        assert ring.overflow_count == 0
        assert not ring.closed

    def test_invalid_capacity(self):
        """Test zero capacity is rejected."""
        with pytest.raises(ValueError):
            RingBuffer(0)

    def test_fifo_order(self, make_frame):
        """Test frames come out in the order they went in."""
        ring = RingBuffer(8)
        for seq in range(5):
            ring.push(make_frame(seq))

        assert [ring.pop(timeout=0).seq for _ in range(5)] == [0, 1, 2, 3, 4]

    def test_pop_timeout_returns_none(self):
        """Test pop returns None when nothing arrives."""
        ring = RingBuffer(2)

        started = time.monotonic()
        assert ring.pop(timeout=0.05) is None
        assert time.monotonic() - started >= 0.04

    def test_drop_oldest_counts_exactly(self, make_frame):
        """Test overflow drops the oldest frames and counts each one."""
        ring = RingBuffer(4, policy=OverflowPolicy.DROP_OLDEST)

        for seq in range(10):
            assert ring.push(make_frame(seq))

        assert ring.overflow_count == 6
        assert len(ring) == 4
        assert [ring.pop(timeout=0).seq for _ in range(4)] == [6, 7, 8, 9]

    def test_drop_oldest_never_blocks_producer(self, make_frame):
        """Test pushing into a full buffer with no consumer returns promptly."""
        ring = RingBuffer(10, policy=OverflowPolicy.DROP_OLDEST)
        frames = [make_frame(seq) for seq in range(2000)]

        started = time.monotonic()
        for frame in frames:
            ring.push(frame)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert ring.overflow_count == 1990

    def test_block_policy_waits_for_consumer(self, make_frame):
        """Test BLOCK makes the producer wait until space frees up."""
        ring = RingBuffer(2, policy=OverflowPolicy.BLOCK)
        ring.push(make_frame(0))
        ring.push(make_frame(1))

        pushed = threading.Event()

        def producer():
            ring.push(make_frame(2))
            pushed.set()

        thread = threading.Thread(target=producer)
        thread.start()

        assert not pushed.wait(timeout=0.2)
        assert ring.pop(timeout=0).seq == 0
        assert pushed.wait(timeout=1.0)
        thread.join()

        assert ring.overflow_count == 0
        assert [ring.pop(timeout=0).seq for _ in range(2)] == [1, 2]

    def test_close_unblocks_producer(self, make_frame):
        """Test closing releases a producer blocked on a full buffer."""
        ring = RingBuffer(1, policy=OverflowPolicy.BLOCK)
        ring.push(make_frame(0))
        results = []

        thread = threading.Thread(target=lambda: results.append(ring.push(make_frame(1))))
        thread.start()
        time.sleep(0.05)
        ring.close()
        thread.join(timeout=1.0)

        assert not thread.is_alive()
        assert results == [False]

    def test_close_wakes_consumer(self):
        """Test closing releases a consumer waiting for frames."""
        ring = RingBuffer(2)
        results = []

        thread = threading.Thread(target=lambda: results.append(ring.pop()))
        thread.start()
        time.sleep(0.05)
        ring.close()
        thread.join(timeout=1.0)

        assert not thread.is_alive()
        assert results == [None]

    def test_closed_buffer_drains(self, make_frame):
        """Test frames buffered before close are still delivered."""
        ring = RingBuffer(4)
        ring.push(make_frame(0))
        ring.push(make_frame(1))
        ring.close()

        assert not ring.push(make_frame(2))
        assert not ring.exhausted
        assert ring.pop().seq == 0
        assert ring.pop().seq == 1
        assert ring.pop() is None
        assert ring.exhausted

    def test_concurrent_transfer_preserves_order(self, make_frame):
        """Test a producer and consumer thread move every frame in order."""
        ring = RingBuffer(8, policy=OverflowPolicy.BLOCK)
        received = []

        def producer():
            for seq in range(1000):
                ring.push(make_frame(seq, samples=4))
            ring.close()

        def consumer():
            while True:
                frame = ring.pop(timeout=1.0)
                if frame is None:
                    if ring.exhausted:
                        return
                    continue
                received.append(frame.seq)

        threads = [threading.Thread(target=producer), threading.Thread(target=consumer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10.0)

        assert received == list(range(1000))
        assert ring.overflow_count == 0
