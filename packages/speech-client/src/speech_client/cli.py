"""Command line front end: recognize one audio file."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import RecognitionMode, Settings, settings
from .dispatcher import ResultHandlers
from .errors import SpeechClientError
from .protocol import PartialResult, RecognitionResult
from .session import RecognitionSession

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Arg[0]: Specify an input audio wav file.
Arg[1]: Specify the audio locale.
Arg[2]: Recognition mode [Short|Long].
Arg[3]: Specify the subscription key to access the Speech Recognition Service."""


def display_help(message: Optional[str] = None) -> None:
    """Print an error message followed by the argument summary."""
    print(message or "speech-client help")
    print()
    print(HELP_TEXT)
    print()


def print_partial(result: PartialResult) -> None:
    print("--- Partial result received ---")
    print(result.display_text)
    print()


def print_final(result: RecognitionResult) -> None:
    print()
    print("--- Phrase result received ---")
    print(f"***** Phrase Recognition Status = [{result.recognition_status}] ***")
    for phrase in result.phrases:
        print(f"{phrase.display_text} (Confidence:{phrase.confidence})")
    print()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run_recognition(
    args: argparse.Namespace, mode: RecognitionMode, config: Optional[Settings] = None
) -> int:
    """Run one recognition session for the parsed arguments."""
    session = RecognitionSession(
        handlers=ResultHandlers(on_partial=print_partial, on_final=print_final),
        config=config,
    )
    try:
        await session.run(args.audio_file, args.locale, mode, args.subscription_key)
    except SpeechClientError as e:
        logger.error(f"Recognition failed: {e}")
        print(f"Recognition failed: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speech-client",
        description="Stream an audio file to the speech recognition service",
    )
    parser.add_argument("audio_file", help="Input audio wav file")
    parser.add_argument("locale", help="Audio locale, e.g. en-US")
    parser.add_argument("mode", help="Recognition mode: short or long")
    parser.add_argument("subscription_key", help="Subscription key for the speech service")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help=f"Audio bytes per frame (default: {settings.audio.chunk_size})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the speech-client command."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    if not Path(args.audio_file).is_file():
        display_help("Audio file not found.")
        return 1

    try:
        mode = RecognitionMode.parse(args.mode)
    except ValueError:
        display_help("Invalid RecognitionMode.")
        return 1

    config = settings.model_copy(deep=True)
    if args.chunk_size is not None:
        if args.chunk_size <= 0:
            display_help("Chunk size must be positive.")
            return 1
        config.audio.chunk_size = args.chunk_size

    try:
        return asyncio.run(run_recognition(args, mode, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
