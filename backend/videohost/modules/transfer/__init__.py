"""Transfer Module.

Chunked and whole-file transfer of a video source to a provider, with
pause/resume, retry and a persisted session record.
"""

from videohost.modules.transfer.source import (
    VideoSource,
    LocalVideoFile,
    BufferVideoSource,
)
from videohost.modules.transfer.retry import BackoffStrategy, RetryConfig
from videohost.modules.transfer.schemas import PersistedSession, FileFingerprintRecord
from videohost.modules.transfer.repository import (
    SessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    FileSessionStore,
    build_session_store,
)
from videohost.modules.transfer.engine import (
    TransferEngine,
    TransferPhase,
    TransferState,
    TransferFailedError,
    FileMismatchError,
    TransferStateError,
    NoPendingUploadError,
)

__all__ = [
    "VideoSource",
    "LocalVideoFile",
    "BufferVideoSource",
    "BackoffStrategy",
    "RetryConfig",
    "PersistedSession",
    "FileFingerprintRecord",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "FileSessionStore",
    "build_session_store",
    "TransferEngine",
    "TransferPhase",
    "TransferState",
    "TransferFailedError",
    "FileMismatchError",
    "TransferStateError",
    "NoPendingUploadError",
]
