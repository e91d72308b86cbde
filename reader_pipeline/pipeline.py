from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .config import PipelineConfig
from .errors import AssemblyError, AuthMissingError, ChunkingError, ConversionFailed
from .merger import AudioAssembler, JoinedAsset
from .metadata import MetadataBuilder, manifest_path_for
from .orchestrator import ChunkOrchestrator, Conversion, OrderedSegment
from .split_text import TextChunk, chunk_text
from .storage import FileSegmentStore
from .tts_engine import TtsEngine

logger = logging.getLogger(__name__)

__all__ = ["ConversionResult", "ReaderPipeline"]


@dataclass
class ConversionResult:
    conversion_id: str
    asset: JoinedAsset
    manifest_path: Path
    chunks: List[TextChunk] = field(default_factory=list)
    attempts: int = 1


class ReaderPipeline:
    """
    Text in, one joined audio file out.

    Retrying lives here rather than in the orchestrator: a synthesis failure re-runs
    the whole conversion, an assembly failure re-runs only the assembly with the
    segments that were already stored.
    """

    def __init__(self, engine: TtsEngine, config: Optional[PipelineConfig] = None) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self.store = FileSegmentStore(self.config.chunk_directory)
        self.orchestrator = ChunkOrchestrator(engine, self.store, self.config)
        self.assembler = AudioAssembler(
            self.store,
            self.config.output_directory,
            output_format=self.config.output_format,
            keep_chunks=self.config.keep_chunks,
        )

    async def convert(
        self,
        text: str,
        voice: str,
        *,
        conversion: Optional[Conversion] = None,
        title: Optional[str] = None,
        input_path: Optional[Path] = None,
    ) -> ConversionResult:
        self.config.ensure_directories()
        chunks = chunk_text(text, self.config.max_chunk_chars)
        if not chunks:
            raise ChunkingError("Input text is empty; nothing to synthesize.")

        conversion = conversion or Conversion()
        logger.info(
            "Converting %d characters in %d chunk(s) as %s.",
            len(text),
            len(chunks),
            conversion.conversion_id,
        )

        segments: Optional[List[OrderedSegment]] = None
        delay = self.config.initial_retry_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                if segments is None:
                    segments = await self.orchestrator.synthesize_all(chunks, voice, conversion)
                asset = await self.assembler.assemble(segments, conversion.conversion_id)
                break
            except (ConversionFailed, AssemblyError) as exc:
                if attempt >= self.config.max_attempts or conversion.cancelled or _is_permanent(exc):
                    logger.error("Conversion %s failed after %d attempt(s).", conversion.conversion_id, attempt)
                    raise
                logger.warning(
                    "Conversion attempt %d/%d failed: %s Retrying in %.2fs.",
                    attempt,
                    self.config.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= self.config.retry_backoff_factor

        options = {
            "title": title,
            "max_chunk_chars": self.config.max_chunk_chars,
            "input_path": input_path,
        }
        manifest_path = self.write_manifest(conversion.conversion_id, chunks, asset, voice, options)
        return ConversionResult(
            conversion_id=conversion.conversion_id,
            asset=asset,
            manifest_path=manifest_path,
            chunks=chunks,
            attempts=attempt,
        )

    async def retry_assembly(
        self, segments: Sequence[OrderedSegment], conversion_id: str
    ) -> JoinedAsset:
        return await self.assembler.assemble(segments, conversion_id)

    async def discard(self, asset: JoinedAsset) -> None:
        await self.assembler.discard(asset)

    def write_manifest(
        self,
        conversion_id: str,
        chunks: Sequence[TextChunk],
        asset: JoinedAsset,
        voice: str,
        options: dict,
    ) -> Path:
        builder = MetadataBuilder(engine=self.engine, voice=voice)
        metadata = builder.build_metadata(
            conversion_id=conversion_id,
            chunks=chunks,
            asset=asset,
            options=options,
        )
        path = builder.write_metadata(metadata, manifest_path_for(asset))
        logger.info("Metadata written to %s", path)
        return path


def _is_permanent(exc: Exception) -> bool:
    if isinstance(exc, ConversionFailed):
        return all(isinstance(error, AuthMissingError) for error in exc.failures.values())
    if isinstance(exc, AssemblyError):
        return not exc.segments
    return False
