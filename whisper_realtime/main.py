"""Command-line entry point for whisper-realtime continuous dictation."""

import argparse
import logging
import signal
import sys
import threading
from typing import Optional

from .audio.capture import MicrophoneSource
from .config import Config, load_config
from .errors import WhisperRealtimeError
from .pipeline import DictationPipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Continuous transcription of the default input device with whisper",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $WHISPER_REALTIME_CONFIG or config/settings.yaml)",
    )
    parser.add_argument(
        "-m", "--model",
        help="Whisper model name, or path to the whisper.cpp model file",
    )
    parser.add_argument(
        "-w", "--whisper-cpp",
        metavar="FILE",
        help="Path to the whisper.cpp binary; uses it instead of faster-whisper",
    )
    parser.add_argument(
        "-f", "--file",
        metavar="FILE",
        help="Transcribe this audio file instead of the microphone stream",
    )
    parser.add_argument(
        "-l", "--list",
        action="store_true",
        help="List available audio devices",
    )
    parser.add_argument(
        "-d", "--device",
        help="Audio device to listen to (name or index)",
    )
    parser.add_argument(
        "--language",
        help="Language to transcribe, or 'auto' to detect it",
    )
    parser.add_argument(
        "--translate",
        action="store_true",
        help="Translate speech to English",
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Read --file at real-time speed",
    )
    parser.add_argument(
        "--timestamps",
        action="store_true",
        help="Prefix each transcript with its position in the stream",
    )
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line options on top of the loaded configuration."""
    if args.model:
        config.engine.model = args.model
    if args.whisper_cpp:
        config.engine.backend = "whisper_cpp"
        config.engine.whisper_cpp_binary = args.whisper_cpp
    if args.device:
        config.audio.device = args.device
    if args.language:
        config.engine.language = args.language
    if args.translate:
        config.engine.translate = True
    if args.realtime:
        config.audio.realtime_file = True
    if args.timestamps:
        config.output.show_timestamps = True
    config.validate()
    return config


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.list:
        print("Available audio devices:", file=sys.stderr)
        for dev in MicrophoneSource.list_devices():
            print(f"- [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return 0

    try:
        config = apply_overrides(load_config(args.config), args)
    except WhisperRealtimeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    config.setup_logging()

    stop_requested = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        stop_requested.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    pipeline = None
    try:
        pipeline = DictationPipeline(config, file=args.file)
        pipeline.start()
        # Run until the file ends or we are interrupted
        while not stop_requested.is_set():
            if pipeline.wait(timeout=0.5):
                break
    except WhisperRealtimeError as e:
        logger.error(str(e))
        return 1
    finally:
        if pipeline is not None:
            pipeline.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
