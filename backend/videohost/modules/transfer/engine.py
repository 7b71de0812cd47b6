"""Transfer engine.

Drives one upload session against a provider: byte-range chunks for
resumable providers, a single whole-file request otherwise. The session
record is persisted after every acknowledged chunk so a crash loses at most
one chunk of work.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from videohost.core.config import settings
from videohost.core.logging import log_error, log_info, log_warning, set_correlation_id
from videohost.core.metrics import record_chunk, record_session_created, record_upload_failure
from videohost.core.tracing import add_span_attributes, create_span
from videohost.modules.provider.errors import TransferRejectedError, VideoServiceError
from videohost.modules.provider.interface import UploadSession, VideoProviderInterface
from videohost.modules.transfer.repository import SessionStore
from videohost.modules.transfer.retry import RetryConfig
from videohost.modules.transfer.source import VideoSource

logger = logging.getLogger(__name__)


ProgressHandler = Callable[[int, int], None]
SleepFunc = Callable[[float], Awaitable[None]]


class TransferFailedError(VideoServiceError):
    """Exception when a chunk keeps failing after the retry ceiling."""

    default_status_code = 502


class FileMismatchError(VideoServiceError):
    """Exception when a resume is fed a different file than the session's."""

    default_status_code = 409


class TransferStateError(VideoServiceError):
    """Exception when an operation is not valid in the engine's current state."""

    default_status_code = 409


class NoPendingUploadError(VideoServiceError):
    """Exception when a resume is requested but no upload record exists."""

    default_status_code = 404


class TransferPhase(str, Enum):
    IDLE = "idle"
    SESSION_CREATED = "session_created"
    TRANSFERRING = "transferring"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransferState:
    """Outcome of one start/resume call."""
    phase: TransferPhase
    session: UploadSession
    bytes_sent: int = 0
    requests_sent: int = 0

    @property
    def acknowledged_offset(self) -> int:
        return self.session.acknowledged_offset

    @property
    def is_complete(self) -> bool:
        return self.phase == TransferPhase.COMPLETED

    @property
    def is_paused(self) -> bool:
        return self.phase == TransferPhase.PAUSED


class TransferEngine:
    """State machine for one upload session.

    Idle -> SessionCreated -> Transferring -> (Paused -> Transferring)* ->
    Completed, or Failed from any active state. One engine drives at most
    one transfer at a time.
    """

    def __init__(
        self,
        provider: VideoProviderInterface,
        store: SessionStore,
        chunk_size: int = settings.UPLOAD_CHUNK_SIZE,
        retry_config: Optional[RetryConfig] = None,
        on_progress: Optional[ProgressHandler] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.provider = provider
        self.store = store
        self.chunk_size = chunk_size
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.on_progress = on_progress
        self._sleep = sleep

        self.phase = TransferPhase.IDLE
        self.session: Optional[UploadSession] = None
        self._pause_requested = False
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise TransferStateError(
                "A transfer is already running on this engine",
                provider=self.provider.provider,
            )
        async with self._lock:
            yield

    async def start(
        self,
        source: VideoSource,
        title: str,
        description: str = "",
        cors_origin: Optional[str] = None,
    ) -> TransferState:
        """Create a session for ``source`` and transfer it.

        Returns:
            TransferState in COMPLETED, or PAUSED if ``pause()`` was called

        Raises:
            RemoteRejectedError: If the provider refuses the session
            TransferFailedError: If a chunk exhausts its retries
        """
        if source.size <= 0:
            raise ValueError(f"Cannot upload empty file {source.name!r}")

        async with self._exclusive():
            self._pause_requested = False
            try:
                session = await self.provider.create_session(
                    title,
                    description,
                    cors_origin or settings.DEFAULT_CORS_ORIGIN,
                    source.size,
                )
            except Exception as e:
                self._fail(e)
                raise

            session.fingerprint = source.fingerprint
            session.display_name = session.display_name or title
            self.session = session
            set_correlation_id(session.session_id)
            self.phase = TransferPhase.SESSION_CREATED
            await self.store.save(session)
            record_session_created(self.provider.provider)

            log_info(
                logger,
                f"Upload session {session.session_id} created",
                session_id=session.session_id,
                provider=self.provider.provider,
                total_size=session.total_size,
            )

            return await self._run(source)

    async def resume(
        self,
        source: VideoSource,
        session: Optional[UploadSession] = None,
    ) -> TransferState:
        """Continue a paused or persisted session from its acknowledged offset.

        Args:
            source: The file to upload; must match the session fingerprint
            session: Session to resume; defaults to the engine's current
                session, then to the persisted record

        Raises:
            NoPendingUploadError: If there is nothing to resume
            FileMismatchError: If ``source`` is not the session's file
        """
        async with self._exclusive():
            session = session or self.session or await self.store.load()
            if session is None:
                raise NoPendingUploadError(
                    "No upload to resume",
                    provider=self.provider.provider,
                )

            if session.provider != self.provider.provider:
                raise TransferStateError(
                    f"Session {session.session_id} belongs to provider {session.provider}",
                    provider=self.provider.provider,
                )

            if session.fingerprint != source.fingerprint:
                await self.store.clear()
                self.session = None
                error = FileMismatchError(
                    f"File {source.name!r} does not match the file of session "
                    f"{session.session_id}",
                    provider=self.provider.provider,
                    details={
                        "expected": session.fingerprint.to_dict() if session.fingerprint else None,
                        "actual": source.fingerprint.to_dict(),
                    },
                )
                self._fail(error)
                raise error

            self.session = session
            set_correlation_id(session.session_id)
            self._pause_requested = False

            if not session.is_complete and self.provider.supports_resumable:
                await self._sync_backend_offset(session)

            log_info(
                logger,
                f"Resuming session {session.session_id} at offset {session.acknowledged_offset}",
                session_id=session.session_id,
                offset=session.acknowledged_offset,
                total_size=session.total_size,
            )

            return await self._run(source)

    def pause(self) -> None:
        """Request a pause; takes effect before the next chunk is sent."""
        self._pause_requested = True
        if not self.is_running and self.phase in (
            TransferPhase.SESSION_CREATED,
            TransferPhase.TRANSFERRING,
        ):
            self.phase = TransferPhase.PAUSED

    async def abandon(self) -> None:
        """Drop the session and its persisted record."""
        if self.is_running:
            raise TransferStateError(
                "Cannot abandon a running transfer; pause it first",
                provider=self.provider.provider,
            )
        await self.store.clear()
        if self.session is not None:
            logger.info(f"Abandoned upload session {self.session.session_id}")
        self.session = None
        self.phase = TransferPhase.IDLE
        self._pause_requested = False

    async def clear_session(self) -> None:
        """Clear the persisted record once the uploaded asset is ready."""
        if self.is_running:
            raise TransferStateError(
                "Cannot clear the session of a running transfer",
                provider=self.provider.provider,
            )
        await self.store.clear()
        self.session = None
        self.phase = TransferPhase.IDLE

    async def _sync_backend_offset(self, session: UploadSession) -> int:
        """Adopt the backend's offset when it is ahead of the acknowledged one.

        Returns:
            Number of bytes newly acknowledged
        """
        backend_offset = await self.provider.query_transfer_offset(session)
        if backend_offset is None:
            return 0
        if session.acknowledged_offset < backend_offset <= session.total_size:
            logger.info(
                f"Backend holds {backend_offset} bytes of session {session.session_id}, "
                f"ahead of acknowledged offset {session.acknowledged_offset}"
            )
            advanced = session.acknowledge(backend_offset)
            await self.store.save(session)
            return advanced
        return 0

    async def _run(self, source: VideoSource) -> TransferState:
        session = self.session
        state = TransferState(phase=TransferPhase.TRANSFERRING, session=session)
        self.phase = TransferPhase.TRANSFERRING

        try:
            if self.provider.supports_resumable:
                await self._transfer_chunks(source, session, state)
            else:
                await self._transfer_whole_file(source, session, state)
        except FileMismatchError as e:
            await self.store.clear()
            self._fail(e)
            raise
        except Exception as e:
            self._fail(e)
            raise

        self.phase = TransferPhase.COMPLETED if session.is_complete else TransferPhase.PAUSED
        state.phase = self.phase

        if self.phase == TransferPhase.COMPLETED:
            log_info(
                logger,
                f"Transfer of session {session.session_id} completed",
                session_id=session.session_id,
                bytes_sent=state.bytes_sent,
                requests=state.requests_sent,
            )
        else:
            logger.info(
                f"Transfer of session {session.session_id} paused at offset "
                f"{session.acknowledged_offset}"
            )
        return state

    async def _transfer_chunks(
        self,
        source: VideoSource,
        session: UploadSession,
        state: TransferState,
    ) -> None:
        while not session.is_complete:
            if self._pause_requested:
                break

            offset = session.acknowledged_offset
            length = min(self.chunk_size, session.total_size - offset)
            chunk = await source.read(offset, length)
            if len(chunk) != length:
                raise FileMismatchError(
                    f"Read {len(chunk)} bytes at offset {offset}, expected {length}; "
                    "the file changed during upload",
                    provider=self.provider.provider,
                )

            def chunk_from(start: int) -> bytes:
                return chunk if start == offset else chunk[start - offset:]

            new_offset = await self._send_with_retry(
                session, state, offset, length, chunk_from,
            )
            await self._acknowledge(session, new_offset, state)

    async def _transfer_whole_file(
        self,
        source: VideoSource,
        session: UploadSession,
        state: TransferState,
    ) -> None:
        if session.is_complete or self._pause_requested:
            return

        new_offset = await self._send_with_retry(
            session, state, 0, session.total_size, lambda start: source.stream(start),
        )
        await self._acknowledge(session, new_offset, state)

    async def _acknowledge(
        self,
        session: UploadSession,
        new_offset: int,
        state: TransferState,
    ) -> None:
        advanced = session.acknowledge(new_offset)
        await self.store.save(session)

        state.bytes_sent += advanced
        state.requests_sent += 1
        record_chunk(self.provider.provider, "success", advanced)
        self._report(session.acknowledged_offset)

        logger.debug(
            f"Session {session.session_id}: {session.acknowledged_offset}/"
            f"{session.total_size} bytes acknowledged"
        )

    async def _send_with_retry(
        self,
        session: UploadSession,
        state: TransferState,
        offset: int,
        length: int,
        make_payload: Callable[[int], object],
    ) -> int:
        """Send the bytes ``[offset, offset + length)``, retrying transient failures.

        Before a retry on a resumable provider the backend is asked for the
        offset it holds, since a request whose response was lost may still
        have been stored. The retry then sends only what is missing, built by
        ``make_payload(start)``.

        Returns:
            The offset confirmed by the backend
        """
        provider = self.provider.provider
        end = offset + length
        start = offset
        attempt = 0

        while True:
            attempt += 1
            try:
                if attempt > 1 and self.provider.supports_resumable:
                    advanced = await self._sync_backend_offset(session)
                    if advanced:
                        state.bytes_sent += advanced
                        self._report(session.acknowledged_offset)
                    start = max(offset, session.acknowledged_offset)
                    if start >= end:
                        return session.acknowledged_offset

                with create_span(
                    "transfer.chunk",
                    attributes={
                        "upload.provider": provider,
                        "upload.session_id": session.session_id,
                        "upload.offset": start,
                        "upload.length": end - start,
                        "upload.attempt": attempt,
                    },
                ):
                    new_offset = await self.provider.transfer_bytes(
                        session,
                        make_payload(start),
                        start,
                        length=end - start,
                        on_progress=self._report_in_flight,
                    )
                    add_span_attributes({"upload.acknowledged_offset": new_offset})
                    return self._check_offset(session, new_offset)

            except VideoServiceError as e:
                if not e.transient:
                    record_chunk(provider, "failed")
                    raise

                if not self.retry_config.should_retry(attempt):
                    record_chunk(provider, "failed")
                    raise TransferFailedError(
                        f"Transfer at offset {start} failed after {attempt} attempts: {e.message}",
                        status_code=e.status_code,
                        provider=provider,
                        details={"offset": start, "attempts": attempt, **e.details},
                    ) from e

                delay = self.retry_config.calculate_delay(attempt)
                record_chunk(provider, "retry")
                log_warning(
                    logger,
                    f"Transfer at offset {start} failed (attempt {attempt}), "
                    f"retrying in {delay}s: {e.message}",
                    session_id=session.session_id,
                    offset=start,
                    attempt=attempt,
                )
                await self._sleep(delay)

    def _check_offset(self, session: UploadSession, new_offset: int) -> int:
        if new_offset > session.total_size:
            raise TransferRejectedError(
                f"Backend acknowledged offset {new_offset} beyond total size {session.total_size}",
                provider=self.provider.provider,
                details={"offset": new_offset},
            )
        if new_offset <= session.acknowledged_offset:
            if new_offset < session.acknowledged_offset:
                logger.warning(
                    f"Backend reported offset {new_offset} behind acknowledged "
                    f"offset {session.acknowledged_offset}; keeping acknowledged offset"
                )
            raise TransferRejectedError(
                f"Backend made no progress at offset {session.acknowledged_offset}",
                provider=self.provider.provider,
                details={"offset": new_offset},
                transient=True,
            )
        return new_offset

    def _report(self, acknowledged: int) -> None:
        if self.on_progress is not None and self.session is not None:
            self.on_progress(acknowledged, self.session.total_size)

    def _report_in_flight(self, sent: int) -> None:
        # Whole-file requests only; chunked transfers report per acknowledged chunk
        if not self.provider.supports_resumable:
            self._report(sent)

    def _fail(self, error: Exception) -> None:
        self.phase = TransferPhase.FAILED
        record_upload_failure(self.provider.provider, type(error).__name__)
        log_error(
            logger,
            f"Transfer failed: {error}",
            exception=error,
            provider=self.provider.provider,
            session_id=self.session.session_id if self.session else None,
        )
