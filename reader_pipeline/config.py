from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .split_text import DEFAULT_MAX_CHUNK_CHARS

__all__ = ["PipelineConfig"]


@dataclass
class PipelineConfig:
    """
    Configuration describing how a conversion is chunked, synthesized and joined.
    """

    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    chunk_directory: Path = Path("output/chunks")
    output_directory: Path = Path("output")
    chunk_prefix: str = "chunk_"
    output_format: str = "m4a"
    keep_chunks: bool = False
    request_timeout: float = 120.0
    max_concurrency: Optional[int] = None
    max_attempts: int = 1
    initial_retry_delay: float = 0.5
    retry_backoff_factor: float = 2.0

    def ensure_directories(self) -> None:
        self.chunk_directory.mkdir(parents=True, exist_ok=True)
        self.output_directory.mkdir(parents=True, exist_ok=True)

    def segment_key(self, conversion_id: str, index: int, extension: str) -> str:
        return f"{conversion_id}_{self.chunk_prefix}{index:03d}.{extension.lstrip('.')}"
