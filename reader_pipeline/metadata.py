from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Sequence

from .merger import JoinedAsset
from .split_text import TextChunk
from .tts_engine import TtsEngine

__all__ = ["MetadataBuilder", "load_joined_asset", "manifest_path_for"]


def manifest_path_for(asset: JoinedAsset) -> Path:
    return Path(asset.location).with_suffix(".json")


@dataclass
class MetadataBuilder:
    engine: TtsEngine
    voice: str

    def build_metadata(
        self,
        *,
        conversion_id: str,
        chunks: Sequence[TextChunk],
        asset: JoinedAsset,
        options: Dict[str, object],
    ) -> Dict[str, object]:
        offsets = asset.segment_offsets_ms
        return {
            "conversion_id": conversion_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "engine": self.engine.descriptor(),
            "voice": self.voice,
            "speed": self.engine.speed,
            "segment_format": self.engine.audio_format,
            "title": options.get("title"),
            "max_chunk_chars": options.get("max_chunk_chars"),
            "input_path": str(options.get("input_path")) if options.get("input_path") else None,
            "chunks": [
                {
                    "index": chunk.index,
                    "chars": len(chunk.content),
                    "ms": duration,
                    "start_ms": start,
                    "end_ms": start + duration,
                }
                for chunk, duration, start in zip(chunks, asset.segment_durations_ms, offsets)
            ],
            "final_output": str(asset.location),
            "final_ms": asset.total_duration_ms,
        }

    def write_metadata(self, metadata: Dict[str, object], output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)
        return output_path


def load_joined_asset(manifest_path: Path) -> JoinedAsset:
    """
    Rebuild the joined asset described by a manifest written by ``MetadataBuilder``.
    """
    with Path(manifest_path).open(encoding="utf-8") as f:
        metadata = json.load(f)
    chunks = sorted(metadata.get("chunks", []), key=lambda item: item["index"])
    return JoinedAsset(
        location=Path(metadata["final_output"]),
        segment_durations_ms=[int(item["ms"]) for item in chunks],
    )
