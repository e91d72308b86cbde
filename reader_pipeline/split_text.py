from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .errors import ChunkingError

logger = logging.getLogger(__name__)

__all__ = ["TextChunk", "chunk_text", "DEFAULT_MAX_CHUNK_CHARS", "SENTENCE_TERMINATORS"]

# Provider request limit is 4096 characters; leave headroom.
DEFAULT_MAX_CHUNK_CHARS = 4000
SENTENCE_TERMINATORS = ".!?。！？"


@dataclass(frozen=True)
class TextChunk:
    index: int
    content: str


def chunk_text(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_CHARS) -> List[TextChunk]:
    """
    Split text into ordered chunks of at most ``max_chunk_size`` characters.

    Each cut prefers the last sentence terminator inside the window, then the last
    whitespace, and finally falls back to a hard cut at the limit so a run of text
    without any break point still makes progress. Pieces are stripped and pieces that
    are only whitespace are dropped, so indices stay contiguous.
    """
    if max_chunk_size <= 0:
        raise ChunkingError(f"max_chunk_size must be positive, got {max_chunk_size}.")

    text = text or ""
    chunks: List[TextChunk] = []
    start = 0
    length = len(text)

    while start < length:
        end = _find_break(text, start, max_chunk_size)
        piece = text[start:end].strip()
        if piece:
            chunks.append(TextChunk(index=len(chunks), content=piece))
        start = end

    logger.debug(
        "Split %d characters into %d chunk(s) (max %d chars).",
        length,
        len(chunks),
        max_chunk_size,
    )
    return chunks


def _find_break(text: str, start: int, max_chunk_size: int) -> int:
    limit = start + max_chunk_size
    if limit >= len(text):
        return len(text)

    terminator = max(text.rfind(mark, start, limit) for mark in SENTENCE_TERMINATORS)
    if terminator >= start:
        return terminator + 1

    # A space sitting exactly at the limit still yields a piece of max_chunk_size.
    for position in range(limit, start, -1):
        if text[position].isspace():
            return position

    return limit
