from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from pydub import AudioSegment

from .errors import AssemblyError, ExportError, ProbeError
from .orchestrator import OrderedSegment
from .storage import FileSegmentStore

logger = logging.getLogger(__name__)

__all__ = ["JoinedAsset", "AudioAssembler", "EXPORT_FORMATS"]

# extension -> (ffmpeg muxer, codec)
EXPORT_FORMATS: Dict[str, Tuple[str, Optional[str]]] = {
    "m4a": ("ipod", "aac"),
    "aac": ("adts", "aac"),
    "mp3": ("mp3", None),
    "wav": ("wav", None),
    "ogg": ("ogg", "libvorbis"),
}


@dataclass
class JoinedAsset:
    location: Path
    segment_durations_ms: List[int] = field(default_factory=list)

    @property
    def total_duration_ms(self) -> int:
        return sum(self.segment_durations_ms)

    @property
    def segment_offsets_ms(self) -> List[int]:
        offsets = []
        position = 0
        for duration in self.segment_durations_ms:
            offsets.append(position)
            position += duration
        return offsets


class AudioAssembler:
    """
    Joins stored segments back-to-back into one exported file.
    """

    def __init__(
        self,
        store: FileSegmentStore,
        output_directory: Path,
        *,
        output_format: str = "m4a",
        keep_chunks: bool = False,
    ) -> None:
        if output_format not in EXPORT_FORMATS:
            raise ValueError(
                f"Unsupported output format {output_format!r} "
                f"(expected one of {', '.join(sorted(EXPORT_FORMATS))})."
            )
        self.store = store
        self.output_directory = Path(output_directory)
        self.output_format = output_format
        self.keep_chunks = keep_chunks

    def output_path(self, conversion_id: str) -> Path:
        return self.output_directory / f"{conversion_id}.{self.output_format}"

    async def assemble(self, segments: Sequence[OrderedSegment], conversion_id: str) -> JoinedAsset:
        _check_contiguous(segments)

        audio = await self._probe_all(segments)
        durations = [len(segment) for segment in audio]

        merged = audio[0]
        position = durations[0]
        for index, segment in enumerate(audio[1:], start=1):
            logger.debug("Inserting segment %d at %d ms (%d ms).", index, position, durations[index])
            merged += segment
            position += durations[index]

        output_path = self.output_path(conversion_id)
        await asyncio.to_thread(self._export, merged, output_path, segments)

        asset = JoinedAsset(location=output_path, segment_durations_ms=durations)
        logger.info(
            "Merged %d segment(s) into %s (%d ms).",
            len(segments),
            output_path,
            asset.total_duration_ms,
        )

        if not self.keep_chunks:
            for segment in segments:
                try:
                    await self.store.delete(segment.location)
                except OSError as exc:  # pragma: no cover - best effort
                    logger.warning("Failed to delete segment %s: %s", segment.location, exc)
        return asset

    async def discard(self, asset: JoinedAsset) -> None:
        """
        Reclaim the joined file and its manifest.
        """
        await self.store.delete(asset.location)
        await self.store.delete(Path(asset.location).with_suffix(".json"))
        logger.info("Discarded %s", asset.location)

    async def _probe_all(self, segments: Sequence[OrderedSegment]) -> List[AudioSegment]:
        results = await asyncio.gather(
            *(self.store.load_audio(segment.location) for segment in segments),
            return_exceptions=True,
        )
        for segment, result in zip(segments, results):
            if isinstance(result, BaseException):
                raise ProbeError(
                    f"Could not read segment {segment.index} at {segment.location}: {result}",
                    segments=segments,
                ) from result
            if segment.duration_ms and abs(len(result) - segment.duration_ms) > 50:
                logger.warning(
                    "Segment %d probed at %d ms, expected %d ms.",
                    segment.index,
                    len(result),
                    segment.duration_ms,
                )
        return list(results)  # type: ignore[arg-type]

    def _export(
        self,
        merged: AudioSegment,
        output_path: Path,
        segments: Sequence[OrderedSegment],
    ) -> None:
        muxer, codec = EXPORT_FORMATS[self.output_format]
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = output_path.with_name(f".{output_path.name}.partial")
        try:
            handle = merged.export(partial_path, format=muxer, codec=codec)
            handle.close()
            os.replace(partial_path, output_path)
        except Exception as exc:
            partial_path.unlink(missing_ok=True)
            raise ExportError(f"Could not export {output_path}: {exc}", segments=segments) from exc


def _check_contiguous(segments: Sequence[OrderedSegment]) -> None:
    if not segments:
        raise AssemblyError("No segments provided for merging.")
    indices = [segment.index for segment in segments]
    if indices != list(range(len(segments))):
        raise AssemblyError(
            f"Segments must be contiguous and ordered from 0, got indices {indices}.",
            segments=segments,
        )
