"""Capture -> VAD -> segmentation -> recognition -> output pipeline."""

import logging
import threading
from pathlib import Path
from typing import Optional, TextIO

from .audio.capture import FileSource, FrameSource, MicrophoneSource
from .audio.ring_buffer import RingBuffer
from .audio.segmenter import SegmentAccumulator
from .audio.transcriber import RecognitionEngine, TranscriptionDispatcher, create_engine
from .audio.vad import VoiceActivityDetector, create_detector
from .config import Config
from .output import OutputSink

logger = logging.getLogger(__name__)


class DictationPipeline:
    """Wires one audio source through to a transcript stream.

    Two threads meet at the ring buffer: the source's producer (PortAudio
    callback or file reader) and the consumer loop here, which classifies
    each frame, advances the segmenter and hands finished segments to the
    dispatcher. The dispatcher runs recognition on a third thread behind a
    bounded queue.
    """

    POP_TIMEOUT = 0.1

    def __init__(
        self,
        config: Config,
        file: Optional[str | Path] = None,
        engine: Optional[RecognitionEngine] = None,
        detector: Optional[VoiceActivityDetector] = None,
        source: Optional[FrameSource] = None,
        stream: Optional[TextIO] = None,
    ):
        self.config = config
        self.sample_rate = config.audio.sample_rate

        self.detector = detector or create_detector(config.vad, self.sample_rate)
        frame_samples = self.detector.frame_samples

        if source is None:
            if file is not None:
                source = FileSource(config.audio, frame_samples, file)
            else:
                source = MicrophoneSource(config.audio, frame_samples)
        self.source = source

        capacity = max(1, int(config.audio.ring_buffer_seconds * self.sample_rate / frame_samples))
        self.ring = RingBuffer(capacity, policy=source.overflow_policy)

        self.accumulator = SegmentAccumulator(config.vad, self.sample_rate)
        self.dispatcher = TranscriptionDispatcher(engine or create_engine(config.engine), config.pipeline)
        self.sink = OutputSink(config.output, stream=stream)
        self.dispatcher.on_transcription(self.sink.write)

        self._running = False
        self._shutdown_event = threading.Event()
        self._finished = threading.Event()
        self._consumer: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self.frames_processed = 0

    def _consume_loop(self) -> None:
        """Pull frames until the source ends or shutdown is requested."""
        try:
            while True:
                frame = self.ring.pop(timeout=self.POP_TIMEOUT)
                if frame is None:
                    if self.ring.exhausted or self._shutdown_event.is_set():
                        break
                    continue

                is_speech = self.detector.classify(frame)
                self.frames_processed += 1
                for segment in self.accumulator.process(frame, is_speech):
                    self.dispatcher.submit(segment)

            for segment in self.accumulator.flush():
                self.dispatcher.submit(segment)
        except Exception as e:
            logger.error(f"Pipeline stopped: {e}", exc_info=True)
            self._error = e
            # Release a producer blocked on a full buffer
            self.ring.close()
        finally:
            self._finished.set()

    def start(self) -> None:
        """Start all components."""
        if self._running:
            logger.warning("Pipeline already running")
            return

        logger.info("Starting pipeline...")
        self._shutdown_event.clear()
        self._finished.clear()
        self._error = None

        self.dispatcher.start()
        self._consumer = threading.Thread(target=self._consume_loop, name="segmenter", daemon=True)
        self._consumer.start()
        try:
            self.source.start(self.ring)
        except Exception:
            self._shutdown_event.set()
            self.ring.close()
            self._consumer.join()
            self.dispatcher.stop()
            raise

        self._running = True
        logger.info("Pipeline started")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the source has ended and its last segment is queued.

        Returns False on timeout. Re-raises a fatal error from the consumer.
        """
        finished = self._finished.wait(timeout)
        self._raise_error()
        return finished

    def stop(self) -> None:
        """Stop the source, flush the in-progress segment and drain recognition."""
        if not self._running:
            return

        logger.info("Stopping pipeline...")
        self._running = False

        # The source pushes its last frames before it returns
        self.source.stop()
        self._shutdown_event.set()
        if self._consumer is not None:
            self._consumer.join()
            self._consumer = None
        self.dispatcher.stop()

        if self.ring.overflow_count:
            logger.warning(f"{self.ring.overflow_count} frames were dropped on overflow")
        logger.info("Pipeline stopped")
        self._raise_error()

    def run(self) -> None:
        """Run until the source ends (file mode) and shut down."""
        self.start()
        try:
            self.wait()
        finally:
            self.stop()

    def _raise_error(self) -> None:
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Get current status of all components."""
        return {
            "running": self._running,
            "source": {
                "running": self.source.is_running(),
                "frames_produced": self.source.frames_produced,
            },
            "ring_buffer": {
                "capacity": self.ring.capacity,
                "buffered": len(self.ring),
                "overflow": self.ring.overflow_count,
            },
            "segmenter": {
                "state": self.accumulator.state.value,
                "frames_processed": self.frames_processed,
                "segments_emitted": self.accumulator.segments_emitted,
                "segments_discarded": self.accumulator.segments_discarded,
            },
            "dispatcher": {
                "pending": self.dispatcher.pending,
                "completed": self.dispatcher.completed_count,
                "failed": self.dispatcher.failed_count,
                "backpressure_waits": self.dispatcher.backpressure_count,
            },
            "output": {
                "written": self.sink.written_count,
            },
        }
