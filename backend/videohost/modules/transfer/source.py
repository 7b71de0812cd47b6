"""Video sources the transfer engine reads bytes from."""

import asyncio
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from videohost.modules.provider.interface import FileFingerprint

DEFAULT_BLOCK_SIZE = 1024 * 1024


class VideoSource(ABC):
    """A readable video with a stable identity (name, size, mtime)."""

    name: str
    size: int
    last_modified: int

    @property
    def fingerprint(self) -> FileFingerprint:
        return FileFingerprint(name=self.name, size=self.size, last_modified=self.last_modified)

    @abstractmethod
    async def read(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes starting at ``offset``."""
        pass

    async def stream(
        self,
        offset: int = 0,
        block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Yield the source from ``offset`` to the end in blocks."""
        position = offset
        while position < self.size:
            block = await self.read(position, min(block_size, self.size - position))
            if not block:
                break
            position += len(block)
            yield block


class LocalVideoFile(VideoSource):
    """A video file on the local filesystem.

    The fingerprint is taken when the object is created; reads run in a
    worker thread so the event loop is never blocked on disk IO.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        stat = self.path.stat()
        self.name = self.path.name
        self.size = stat.st_size
        self.last_modified = int(stat.st_mtime * 1000)

    async def read(self, offset: int, length: int) -> bytes:
        return await asyncio.to_thread(self._read_sync, offset, length)

    def _read_sync(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)

    def __repr__(self) -> str:
        return f"LocalVideoFile({str(self.path)!r}, size={self.size})"


class BufferVideoSource(VideoSource):
    """A video held in memory, e.g. a request body."""

    def __init__(self, name: str, data: bytes, last_modified: Optional[int] = None):
        self.name = name
        self.data = bytes(data)
        self.size = len(self.data)
        self.last_modified = (
            last_modified if last_modified is not None else int(time.time() * 1000)
        )

    async def read(self, offset: int, length: int) -> bytes:
        return self.data[offset:offset + length]

    def __repr__(self) -> str:
        return f"BufferVideoSource({self.name!r}, size={self.size})"
