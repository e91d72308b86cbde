#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from reader_pipeline.config import PipelineConfig
from reader_pipeline.errors import ConversionFailed, PipelineError
from reader_pipeline.merger import EXPORT_FORMATS, AudioAssembler
from reader_pipeline.metadata import load_joined_asset
from reader_pipeline.pipeline import ReaderPipeline
from reader_pipeline.playback import PlaybackTimeline
from reader_pipeline.split_text import DEFAULT_MAX_CHUNK_CHARS
from reader_pipeline.storage import FileSegmentStore
from reader_pipeline.tts_engine import (
    OPENAI_VOICES,
    GoogleGenAITtsEngine,
    MockTtsEngine,
    OpenAITtsEngine,
    PollyTtsEngine,
    TtsEngine,
)

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "fable"


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Read text aloud through a remote TTS provider.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert a text file into one audio file.")
    convert.add_argument("--input", required=True, help="Input text file path.")
    convert.add_argument("--input-encoding", default="utf-8", help="Encoding used for input file.")
    convert.add_argument("--title", help="Title recorded in the manifest (defaults to the file name).")
    convert.add_argument("--engine", default="openai", help="TTS engine to use (openai, google_genai, polly, mock).")
    convert.add_argument("--voice", default=DEFAULT_VOICE, help=f"Voice identifier (OpenAI: {', '.join(OPENAI_VOICES)}).")
    convert.add_argument("--api-key", help="API key for engines that require one.")
    convert.add_argument("--model", help="Provider model name override.")
    convert.add_argument("--format", default="aac", help="Audio format requested from the provider.")
    convert.add_argument("--speed", type=float, default=1.0, help="Speech speed multiplier.")
    convert.add_argument("--language-code", help="Language code hint for engine.")
    convert.add_argument("--max-chunk-chars", type=int, default=DEFAULT_MAX_CHUNK_CHARS, help="Maximum characters per chunk.")
    convert.add_argument("--output-format", default="m4a", choices=sorted(EXPORT_FORMATS), help="Container of the joined file.")
    convert.add_argument("--output-dir", default="./output", help="Directory for joined audio and manifests.")
    convert.add_argument("--chunk-dir", default="./output/chunks", help="Directory to store intermediate chunk files.")
    convert.add_argument("--keep-chunks", action="store_true", help="Keep chunk files after merging.")
    convert.add_argument("--timeout", type=float, default=120.0, help="Per-chunk provider timeout in seconds.")
    convert.add_argument("--concurrency", type=int, default=0, help="Maximum concurrent provider calls (0 = unbounded).")
    convert.add_argument("--max-attempts", type=int, default=1, help="Attempts for the whole conversion.")
    convert.add_argument("--retry-initial-delay", type=float, default=0.5, help="Initial retry delay in seconds.")
    convert.add_argument("--retry-backoff", type=float, default=2.0, help="Multiplier for retry backoff.")

    locate = subparsers.add_parser("locate", help="Resolve an elapsed time to a chunk and offset.")
    locate.add_argument("manifest", help="Manifest JSON written by convert.")
    locate.add_argument("elapsed", type=float, help="Elapsed time in seconds.")

    delete = subparsers.add_parser("delete", help="Delete a converted file and its manifest.")
    delete.add_argument("manifest", help="Manifest JSON written by convert.")

    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def load_input_text(path: Path, encoding: str) -> str:
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return path.read_text(encoding=encoding)


def create_engine(args: argparse.Namespace) -> TtsEngine:
    engine_name = (args.engine or "").lower()
    if engine_name in {"mock", "dummy"}:
        return MockTtsEngine()

    if engine_name in {"openai"}:
        if args.voice not in OPENAI_VOICES:
            raise ValueError(f"--voice must be one of {', '.join(OPENAI_VOICES)} for the OpenAI engine.")
        return OpenAITtsEngine(
            api_key=args.api_key,
            model=args.model or "tts-1-hd",
            audio_format=args.format,
            speed=args.speed,
            timeout=args.timeout,
        )

    if engine_name in {"polly", "aws_polly"}:
        return PollyTtsEngine(
            engine="neural",
            language_code=args.language_code,
            output_format="pcm" if args.format in {"pcm", "wav"} else args.format,
        )

    if engine_name in {"google", "google_genai", "gemini"}:
        return GoogleGenAITtsEngine(
            api_key=args.api_key,
            model=args.model or "gemini-2.5-pro-preview-tts",
            language_code=args.language_code,
        )

    raise ValueError(f"Unsupported engine: {args.engine}")


def build_config(args: argparse.Namespace) -> PipelineConfig:
    if args.max_chunk_chars <= 0:
        raise ValueError("--max-chunk-chars must be positive.")
    if args.max_attempts < 1:
        logger.warning("Adjusting --max-attempts to 1 (received %s).", args.max_attempts)
        args.max_attempts = 1
    return PipelineConfig(
        max_chunk_chars=args.max_chunk_chars,
        chunk_directory=Path(args.chunk_dir),
        output_directory=Path(args.output_dir),
        output_format=args.output_format,
        keep_chunks=args.keep_chunks,
        request_timeout=args.timeout,
        max_concurrency=args.concurrency or None,
        max_attempts=args.max_attempts,
        initial_retry_delay=args.retry_initial_delay,
        retry_backoff_factor=args.retry_backoff,
    )


def cmd_convert(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    text = load_input_text(input_path, args.input_encoding)
    if not text.strip():
        logger.warning("Input is empty. Nothing to synthesize.")
        return 0

    engine = create_engine(args)
    pipeline = ReaderPipeline(engine, build_config(args))
    try:
        result = asyncio.run(
            pipeline.convert(
                text,
                args.voice,
                title=args.title or input_path.stem,
                input_path=input_path,
            )
        )
    except ConversionFailed as exc:
        for index, error in exc.failures.items():
            logger.error("Chunk %d: %s", index, error)
        return 1

    logger.info(
        "Synthesis complete. %d chunk(s), %.1fs of audio saved to %s",
        len(result.chunks),
        result.asset.total_duration_ms / 1000,
        result.asset.location,
    )
    print(result.asset.location)
    return 0


def cmd_locate(args: argparse.Namespace) -> int:
    asset = load_joined_asset(Path(args.manifest))
    timeline = PlaybackTimeline(asset.segment_durations_ms)
    cursor = timeline.seek(int(args.elapsed * 1000))
    print(
        f"chunk {cursor.segment_index} offset {cursor.offset_ms / 1000:.3f}s "
        f"elapsed {cursor.elapsed_ms / 1000:.3f}s "
        f"remaining {timeline.remaining_ms(cursor.elapsed_ms) / 1000:.3f}s "
        f"of {timeline.total_ms / 1000:.3f}s"
    )
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    manifest_path = Path(args.manifest)
    asset = load_joined_asset(manifest_path)
    assembler = AudioAssembler(FileSegmentStore(manifest_path.parent), manifest_path.parent)
    asyncio.run(assembler.discard(asset))
    return 0


COMMANDS = {
    "convert": cmd_convert,
    "locate": cmd_locate,
    "delete": cmd_delete,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.debug)
    try:
        return COMMANDS[args.command](args)
    except PipelineError as exc:
        logger.error("%s", exc)
        return 1


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    run()
