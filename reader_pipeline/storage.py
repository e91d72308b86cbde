from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import aiofiles
from pydub import AudioSegment

logger = logging.getLogger(__name__)

__all__ = ["FileSegmentStore"]

# Suffixes passed to pydub as an explicit format (ffmpeg -f); other suffixes are left to ffmpeg to detect.
_EXPLICIT_READ_FORMATS = {"wav", "mp3", "ogg", "flac"}


class FileSegmentStore:
    """
    Stores chunk audio as individual files inside one directory.

    Locations handed out by the store are plain paths, which keeps them usable as
    player queue items.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def location_for(self, key: str) -> Path:
        return self.directory / key

    async def write(self, key: str, data: bytes) -> Path:
        self.ensure_directory()
        path = self.location_for(key)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        logger.debug("Stored %d bytes at %s", len(data), path)
        return path

    async def read(self, location: Path) -> bytes:
        async with aiofiles.open(location, "rb") as f:
            return await f.read()

    async def load_audio(self, location: Path) -> AudioSegment:
        return await asyncio.to_thread(_load_segment, Path(location))

    async def probe_duration_ms(self, location: Path) -> int:
        segment = await self.load_audio(location)
        return len(segment)

    async def delete(self, location: Path) -> None:
        await asyncio.to_thread(Path(location).unlink, missing_ok=True)

    def list_prefix(self, prefix: str) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob(f"{prefix}*"))

    async def delete_prefix(self, prefix: str) -> int:
        paths = self.list_prefix(prefix)
        for path in paths:
            await self.delete(path)
        if paths:
            logger.debug("Deleted %d stored file(s) with prefix %s", len(paths), prefix)
        return len(paths)


def _load_segment(path: Path) -> AudioSegment:
    return AudioSegment.from_file(path, format=_read_format(path))


def _read_format(path: Path) -> Optional[str]:
    suffix = path.suffix.lstrip(".").lower()
    return suffix if suffix in _EXPLICIT_READ_FORMATS else None
