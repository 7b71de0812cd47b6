"""Upload orchestrator.

Composes the provider registry, transfer engine and status poller into
"upload and wait until playable", and exposes the individual stages so a
caller can pause, resume across restarts and re-poll.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Union

from videohost.core.config import Settings, settings
from videohost.core.logging import clear_correlation_id
from videohost.modules.polling.service import ProcessingFailedError, StatusPoller
from videohost.modules.provider.errors import NotReadyError
from videohost.modules.provider.interface import (
    AssetStatus,
    DeleteResult,
    ListVideosResult,
    PlaybackDescriptor,
    UploadSession,
    VideoAsset,
    VideoProviderInterface,
)
from videohost.modules.provider.registry import ProviderRegistry
from videohost.modules.transfer.engine import (
    NoPendingUploadError,
    ProgressHandler,
    TransferEngine,
    TransferState,
    TransferStateError,
)
from videohost.modules.transfer.repository import SessionStore, build_session_store
from videohost.modules.transfer.retry import RetryConfig
from videohost.modules.transfer.source import VideoSource
from videohost.modules.upload.schemas import (
    DirectUploadTicket,
    PendingUpload,
    UploadMetadata,
    UploadResult,
)

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """End-to-end upload service.

    One orchestrator drives one session at a time; run one orchestrator
    per concurrent upload.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        store: Optional[SessionStore] = None,
        config: Settings = settings,
        retry_config: Optional[RetryConfig] = None,
        on_progress: Optional[ProgressHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.registry = registry or ProviderRegistry(config)
        self.store = store or build_session_store(config)
        self.retry_config = retry_config or RetryConfig.from_settings(config)
        self.on_progress = on_progress
        self._sleep = sleep
        self._clock = clock
        self._engine: Optional[TransferEngine] = None

    @property
    def engine(self) -> Optional[TransferEngine]:
        return self._engine

    def supported_providers(self) -> list[str]:
        return self.registry.supported_providers()

    async def upload_and_wait(
        self,
        source: VideoSource,
        metadata: UploadMetadata,
        provider: Optional[str] = None,
    ) -> Optional[UploadResult]:
        """Upload ``source`` and wait until the asset is playable.

        Returns:
            UploadResult, or None if the transfer was paused

        Raises:
            UnsupportedProviderError, RemoteRejectedError, TransferFailedError,
            ProcessingFailedError, ProcessingTimeoutError: unmodified from the
            stage that failed
        """
        try:
            state = await self.start_upload(source, metadata, provider)
            if not state.is_complete:
                return None
            return await self.wait_until_ready(state.session)
        finally:
            clear_correlation_id()

    async def resume_and_wait(self, source: VideoSource) -> Optional[UploadResult]:
        """Finish the persisted upload with ``source`` and wait for playback."""
        try:
            state = await self.resume_upload(source)
            if not state.is_complete:
                return None
            return await self.wait_until_ready(state.session)
        finally:
            clear_correlation_id()

    async def start_upload(
        self,
        source: VideoSource,
        metadata: UploadMetadata,
        provider: Optional[str] = None,
    ) -> TransferState:
        client = self.registry.resolve(provider)
        engine = self._engine_for(client)
        return await engine.start(
            source,
            metadata.title,
            metadata.description,
            metadata.cors_origin or self.config.DEFAULT_CORS_ORIGIN,
        )

    def pause(self) -> None:
        """Pause the running transfer at the next chunk boundary."""
        if self._engine is None:
            raise TransferStateError("No transfer to pause")
        self._engine.pause()

    async def resume_upload(self, source: VideoSource) -> TransferState:
        """Resume the persisted upload, resolving its provider by name.

        Raises:
            NoPendingUploadError: If no upload record exists
            FileMismatchError: If ``source`` is not the recorded file
        """
        session = await self.store.load()
        if session is None:
            raise NoPendingUploadError("No upload to resume")

        client = self.registry.resolve(session.provider)
        engine = self._engine_for(client)
        return await engine.resume(source, session)

    async def wait_until_ready(
        self,
        session: Union[UploadSession, str],
        provider: Optional[str] = None,
    ) -> UploadResult:
        """Poll until the uploaded asset is playable.

        The persisted record of the session is cleared once the asset is
        ready or processing failed, and kept on timeout so the wait can be
        retried.
        """
        if isinstance(session, UploadSession):
            session_id = session.session_id
            provider = session.provider
        else:
            session_id = session

        client = self.registry.resolve(provider)
        poller = StatusPoller(
            client,
            interval=self.config.STATUS_POLL_INTERVAL_SECONDS,
            timeout=self.config.STATUS_POLL_TIMEOUT_SECONDS,
            clock=self._clock,
            sleep=self._sleep,
        )

        try:
            status = await poller.wait_until_ready(session_id)
        except ProcessingFailedError:
            await self._clear_record(session_id)
            raise

        await self._clear_record(session_id)
        return self._result(session_id, client, status)

    async def check_status(
        self,
        asset_or_session_id: str,
        provider: Optional[str] = None,
    ) -> AssetStatus:
        return await self.registry.resolve(provider).fetch_status(asset_or_session_id)

    async def resolve_playback(
        self,
        asset_id: str,
        provider: Optional[str] = None,
    ) -> PlaybackDescriptor:
        return await self.registry.resolve(provider).resolve_playback(asset_id)

    async def delete_video(self, asset_id: str, provider: Optional[str] = None) -> DeleteResult:
        result = await self.registry.resolve(provider).delete(asset_id)
        logger.info(f"Delete {asset_id}: {result.message}")
        return result

    async def get_video(self, video_id: str, provider: Optional[str] = None) -> VideoAsset:
        return await self.registry.resolve(provider).get_video(video_id)

    async def list_videos(
        self,
        provider: Optional[str] = None,
        limit: int = 100,
    ) -> ListVideosResult:
        return await self.registry.resolve(provider).list_videos(limit=limit)

    async def create_direct_upload(
        self,
        metadata: UploadMetadata,
        total_size: int,
        provider: Optional[str] = None,
    ) -> DirectUploadTicket:
        """Create a session whose bytes are written by another client.

        The session is not persisted; the writing client owns it.
        """
        client = self.registry.resolve(provider)
        session = await client.create_session(
            metadata.title,
            metadata.description,
            metadata.cors_origin or self.config.DEFAULT_CORS_ORIGIN,
            total_size,
        )
        instructions = client.transfer_instructions(session)
        return DirectUploadTicket(
            session_id=session.session_id,
            provider=session.provider,
            transfer_url=session.transfer_url,
            method=instructions.method,
            headers=instructions.headers,
            note=instructions.note,
        )

    async def pending_upload(self) -> Optional[PendingUpload]:
        session = await self.store.load()
        if session is None:
            return None
        return PendingUpload(
            session_id=session.session_id,
            provider=session.provider,
            file_name=session.fingerprint.name if session.fingerprint else None,
            display_name=session.display_name,
            acknowledged_offset=session.acknowledged_offset,
            total_size=session.total_size,
            transfer_complete=session.is_complete,
        )

    async def abandon_pending_upload(self) -> bool:
        """Drop the persisted upload.

        Returns:
            True if a record existed
        """
        existed = await self.store.load() is not None
        if self._engine is not None:
            await self._engine.abandon()
        else:
            await self.store.clear()
        return existed

    def _engine_for(self, client: VideoProviderInterface) -> TransferEngine:
        if self._engine is not None and self._engine.is_running:
            raise TransferStateError(
                "A transfer is already running on this orchestrator",
                provider=client.provider,
            )
        if self._engine is None or self._engine.provider is not client:
            self._engine = TransferEngine(
                client,
                self.store,
                chunk_size=self.config.UPLOAD_CHUNK_SIZE,
                retry_config=self.retry_config,
                on_progress=self.on_progress,
                sleep=self._sleep,
            )
        return self._engine

    async def _clear_record(self, session_id: str) -> None:
        record = await self.store.load()
        if record is None or record.session_id != session_id:
            return
        if self._engine is not None:
            await self._engine.clear_session()
        else:
            await self.store.clear()
        logger.debug(f"Cleared upload record {session_id}")

    @staticmethod
    def _result(
        session_id: str,
        client: VideoProviderInterface,
        status: AssetStatus,
    ) -> UploadResult:
        playable = status.playable_asset
        if playable is None or not playable.link:
            raise NotReadyError(
                f"Asset for {session_id} is ready but has no playback link",
                provider=client.provider,
            )
        return UploadResult(
            asset_id=playable.asset_id,
            playback_link=playable.link,
            embed_html=playable.embed_html,
            duration=playable.duration,
            session_id=session_id,
            provider=client.provider,
        )
