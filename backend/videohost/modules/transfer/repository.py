"""Session stores for the persisted upload record.

A store holds at most one record under a fixed key. Absence of the record
means no resumable upload is outstanding.
"""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import redis.asyncio as redis
from pydantic import ValidationError

from videohost.core.config import Settings, settings
from videohost.core.redis import get_redis
from videohost.modules.provider.interface import UploadSession
from videohost.modules.transfer.schemas import PersistedSession

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Read/write contract for the persisted upload session."""

    async def load(self) -> Optional[UploadSession]:
        """Load the persisted session.

        A record that fails validation is logged, discarded and reported
        as absent.
        """
        raw = await self._read()
        if raw is None:
            return None
        try:
            return PersistedSession.model_validate_json(raw).to_session()
        except ValidationError as e:
            logger.warning(f"Discarding invalid upload record: {e}")
            await self.clear()
            return None

    async def save(self, session: UploadSession) -> None:
        await self._write(PersistedSession.from_session(session).to_json())

    async def has_incomplete_upload(self) -> bool:
        session = await self.load()
        return session is not None and not session.is_complete

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def _read(self) -> Optional[str]:
        pass

    @abstractmethod
    async def _write(self, payload: str) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Process-local store, for tests and single-run uploads."""

    def __init__(self):
        self._payload: Optional[str] = None

    async def clear(self) -> None:
        self._payload = None

    async def _read(self) -> Optional[str]:
        return self._payload

    async def _write(self, payload: str) -> None:
        self._payload = payload


class RedisSessionStore(SessionStore):
    """Store backed by one Redis key."""

    def __init__(self, client: redis.Redis, key: str = settings.UPLOAD_CACHE_KEY):
        self.client = client
        self.key = key

    async def clear(self) -> None:
        await self.client.delete(self.key)

    async def _read(self) -> Optional[str]:
        raw = await self.client.get(self.key)
        if isinstance(raw, bytes):
            return raw.decode()
        return raw

    async def _write(self, payload: str) -> None:
        await self.client.set(self.key, payload)


class FileSessionStore(SessionStore):
    """Store backed by a JSON file, written atomically (temp file, fsync, rename)."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._clear_sync)

    async def _read(self) -> Optional[str]:
        async with self._lock:
            return await asyncio.to_thread(self._read_sync)

    async def _write(self, payload: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_sync, payload)

    def _clear_sync(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _read_sync(self) -> Optional[str]:
        if not self.path.exists():
            logger.debug(f"No upload record at {self.path}")
            return None
        return self.path.read_text()

    def _write_sync(self, payload: str) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".upload_state_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


def build_session_store(
    config: Settings = settings,
    client: Optional[redis.Redis] = None,
) -> SessionStore:
    """Create the session store selected by ``SESSION_STORE_BACKEND``."""
    backend = config.SESSION_STORE_BACKEND.lower()

    if backend == "redis":
        if client is None:
            client = get_redis()
        return RedisSessionStore(client, key=config.UPLOAD_CACHE_KEY)
    if backend == "file":
        return FileSessionStore(config.SESSION_STORE_PATH)
    if backend == "memory":
        return InMemorySessionStore()

    raise ValueError(f"Unknown session store backend: {config.SESSION_STORE_BACKEND}")
