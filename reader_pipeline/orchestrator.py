from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import PipelineConfig
from .errors import (
    ChunkingError,
    ConversionCancelled,
    ConversionFailed,
    ProviderError,
    StorageError,
    SynthesisError,
)
from .split_text import TextChunk
from .storage import FileSegmentStore
from .tts_engine import TtsEngine

logger = logging.getLogger(__name__)

__all__ = ["Conversion", "ChunkResult", "OrderedSegment", "ChunkOrchestrator"]


@dataclass
class Conversion:
    """
    Identity and cancellation flag of one conversion request.

    The same instance is handed to every synthesis task of the request. Cancelling is
    cooperative: tasks that have not started skip their provider call and calls that
    complete afterwards have their audio discarded.
    """

    conversion_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


@dataclass
class OrderedSegment:
    index: int
    location: Path
    duration_ms: int


@dataclass
class ChunkResult:
    """
    Outcome of one chunk. Successful results hold the stored segment rather than the
    audio buffer itself.
    """

    index: int
    segment: Optional[OrderedSegment] = None
    byte_length: int = 0
    error: Optional[SynthesisError] = None
    discarded: bool = False

    @property
    def ok(self) -> bool:
        return self.segment is not None and self.error is None


class ChunkOrchestrator:
    """
    Fans a chunk sequence out to concurrent engine calls and joins the results.

    The whole conversion fails if any chunk fails; partial audio is never returned.
    """

    def __init__(
        self,
        engine: TtsEngine,
        store: FileSegmentStore,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.config = config or PipelineConfig()

    async def synthesize_all(
        self,
        chunks: Sequence[TextChunk],
        voice: str,
        conversion: Optional[Conversion] = None,
    ) -> List[OrderedSegment]:
        conversion = conversion or Conversion()
        if not chunks:
            return []
        if len({chunk.index for chunk in chunks}) != len(chunks):
            raise ChunkingError("Chunk indices must be unique.")

        semaphore = (
            asyncio.Semaphore(self.config.max_concurrency)
            if self.config.max_concurrency
            else None
        )
        logger.info(
            "Synthesizing %d chunk(s) for conversion %s with %s (voice=%s, concurrency=%s).",
            len(chunks),
            conversion.conversion_id,
            self.engine.descriptor(),
            voice,
            self.config.max_concurrency or "unbounded",
        )
        started = time.monotonic()

        tasks = [
            asyncio.create_task(
                self._run_chunk(chunk, voice, conversion, semaphore),
                name=f"{conversion.conversion_id}-chunk-{chunk.index}",
            )
            for chunk in chunks
        ]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.warning("Conversion %s cancelled while synthesizing.", conversion.conversion_id)
            conversion.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.discard(conversion)
            raise

        by_index: Dict[int, ChunkResult] = {result.index: result for result in results}

        if conversion.cancelled:
            dropped = sorted(result.index for result in results if result.discarded)
            logger.warning(
                "Conversion %s cancelled; dropped chunk(s) %s.", conversion.conversion_id, dropped
            )
            await self.discard(conversion)
            raise ConversionCancelled(f"Conversion {conversion.conversion_id} was cancelled.")

        failures = {index: result.error for index, result in by_index.items() if result.error}
        if failures:
            for index, error in sorted(failures.items()):
                logger.error("Chunk %d failed (%s): %s", index, error.kind, error)
            await self.discard(conversion)
            raise ConversionFailed(failures, total_chunks=len(chunks))

        segments = [by_index[index].segment for index in sorted(by_index)]
        logger.info(
            "Synthesized %d chunk(s) (%d bytes) in %.2fs.",
            len(segments),
            sum(result.byte_length for result in results),
            time.monotonic() - started,
        )
        return segments  # type: ignore[return-value]

    async def discard(self, conversion: Conversion) -> int:
        """
        Delete every stored segment that belongs to ``conversion``.
        """
        return await self.store.delete_prefix(f"{conversion.conversion_id}_")

    async def _run_chunk(
        self,
        chunk: TextChunk,
        voice: str,
        conversion: Conversion,
        semaphore: Optional[asyncio.Semaphore],
    ) -> ChunkResult:
        async with semaphore if semaphore is not None else nullcontext():
            if conversion.cancelled:
                logger.debug("Skipping chunk %d, conversion cancelled.", chunk.index)
                return ChunkResult(index=chunk.index, discarded=True)

            try:
                audio = await self._synthesize(chunk, voice)
                if conversion.cancelled:
                    logger.debug("Discarding chunk %d, conversion cancelled.", chunk.index)
                    return ChunkResult(index=chunk.index, discarded=True)
                segment = await self._persist(chunk, audio, conversion)
            except SynthesisError as exc:
                exc.index = chunk.index
                logger.warning("Chunk %d failed: %s", chunk.index, exc)
                return ChunkResult(index=chunk.index, error=exc)

        logger.debug(
            "Chunk %d stored at %s (%d bytes, %d ms).",
            chunk.index,
            segment.location,
            len(audio),
            segment.duration_ms,
        )
        return ChunkResult(index=chunk.index, segment=segment, byte_length=len(audio))

    async def _synthesize(self, chunk: TextChunk, voice: str) -> bytes:
        timeout = self.config.request_timeout
        try:
            audio = await asyncio.wait_for(
                self.engine.synthesize(chunk.content, voice),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(f"Synthesis timed out after {timeout:.1f}s.") from exc
        except SynthesisError:
            raise
        except Exception as exc:
            raise ProviderError(f"Unexpected provider failure: {exc}") from exc

        if not audio:
            raise ProviderError("Provider returned no audio.")
        return audio

    async def _persist(self, chunk: TextChunk, audio: bytes, conversion: Conversion) -> OrderedSegment:
        key = self.config.segment_key(
            conversion.conversion_id, chunk.index, self.engine.audio_format
        )
        try:
            location = await self.store.write(key, audio)
        except OSError as exc:
            raise StorageError(f"Could not store audio for chunk {chunk.index}: {exc}") from exc

        try:
            duration_ms = await self.store.probe_duration_ms(location)
        except Exception as exc:
            raise StorageError(
                f"Stored audio for chunk {chunk.index} is not readable: {exc}"
            ) from exc
        if duration_ms <= 0:
            raise StorageError(f"Stored audio for chunk {chunk.index} has no duration.")

        return OrderedSegment(index=chunk.index, location=location, duration_ms=duration_ms)
