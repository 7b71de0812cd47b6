"""Video Provider Interface - Abstract base class for all provider implementations.

Defines the contract every hosting backend must follow: session creation,
byte transfer, status lookup, playback resolution and deletion. Each
implementation maps its own status vocabulary onto ``AssetPhase``; callers
never branch on provider identity.
"""

import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Callable, Optional, Union

import httpx

from videohost.core.config import settings
from videohost.modules.provider.errors import (
    NotFoundError,
    RemoteUnavailableError,
    TransferRejectedError,
    VideoServiceError,
)


class ProviderName(str, Enum):
    """Supported video hosting providers."""
    MUX = "mux"
    VIMEO = "vimeo"


class AssetPhase(str, Enum):
    """Normalized processing phase of a remote asset."""
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    ERRORED = "errored"


VIDEO_CONTENT_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "flv": "video/x-flv",
    "m4v": "video/x-m4v",
    "3gp": "video/3gpp",
    "ts": "video/mp2t",
}
DEFAULT_VIDEO_CONTENT_TYPE = "video/mp4"

# Bytes, or a stream of byte blocks with an explicit length
Payload = Union[bytes, AsyncIterable[bytes]]
ProgressCallback = Callable[[int], None]


def guess_video_content_type(filename: Optional[str]) -> str:
    """Get the video MIME type from a file name's extension."""
    if not filename or "." not in filename:
        return DEFAULT_VIDEO_CONTENT_TYPE
    ext = filename.rsplit(".", 1)[-1].lower()
    return VIDEO_CONTENT_TYPES.get(ext, DEFAULT_VIDEO_CONTENT_TYPE)


@dataclass(frozen=True)
class FileFingerprint:
    """Identity of a source file: name, size and last-modified time (ms)."""
    name: str
    size: int
    last_modified: int

    def to_dict(self) -> dict:
        return {"name": self.name, "size": self.size, "lastModified": self.last_modified}


@dataclass
class UploadSession:
    """One in-flight or resumable transfer.

    ``acknowledged_offset`` only moves forward, and only to offsets the
    provider has confirmed.
    """
    session_id: str
    transfer_url: str
    total_size: int
    provider: str
    acknowledged_offset: int = 0
    fingerprint: Optional[FileFingerprint] = None
    display_name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def remaining(self) -> int:
        return self.total_size - self.acknowledged_offset

    @property
    def is_complete(self) -> bool:
        return self.acknowledged_offset >= self.total_size

    def acknowledge(self, offset: int) -> int:
        """Advance the acknowledged offset to a provider-confirmed value.

        Args:
            offset: Offset confirmed by the provider

        Returns:
            Number of newly acknowledged bytes

        Raises:
            ValueError: If the offset goes backwards or past the total size
        """
        if offset < self.acknowledged_offset:
            raise ValueError(
                f"Offset {offset} is behind acknowledged offset {self.acknowledged_offset}"
            )
        if offset > self.total_size:
            raise ValueError(f"Offset {offset} exceeds total size {self.total_size}")
        advanced = offset - self.acknowledged_offset
        self.acknowledged_offset = offset
        self.timestamp = time.time()
        return advanced


@dataclass
class TransferInstructions:
    """How a direct client must write bytes to an upload session's URL."""
    method: str
    headers: dict[str, str]
    note: str


@dataclass
class PlayableAsset:
    """A transcoded asset ready for playback."""
    asset_id: str
    embed_html: str
    link: str
    duration: Optional[float] = None


@dataclass
class AssetStatus:
    """Snapshot of remote processing state.

    ``upload_id`` and ``asset_id`` differ for providers that mint the asset
    id only after ingesting the upload; ``asset_id`` is None until then.
    """
    upload_id: str
    phase: AssetPhase
    provider: str
    status: str
    asset_id: Optional[str] = None
    playable_asset: Optional[PlayableAsset] = None
    error_detail: Optional[str] = None
    details: Optional[dict] = None


@dataclass
class PlaybackFile:
    """One playable variant of an asset."""
    url: str
    quality: str
    width: int
    height: int
    content_type: str


@dataclass
class PlaybackDescriptor:
    """Ordered set of playable variants for a ready asset."""
    asset_id: str
    provider: str
    files: list[PlaybackFile] = field(default_factory=list)

    def best(self, preferred_quality: str = "hd") -> Optional[PlaybackFile]:
        """Get the first file of the preferred quality, or the first file."""
        for file in self.files:
            if file.quality == preferred_quality:
                return file
        return self.files[0] if self.files else None


@dataclass
class DeleteResult:
    """Result from a delete operation."""
    success: bool
    message: str
    existed: bool = True


@dataclass
class VideoAsset:
    """Metadata of one hosted video."""
    id: str
    provider: str
    phase: AssetPhase
    status: str
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[float] = None
    created_at: Optional[datetime] = None
    embed_html: Optional[str] = None
    link: Optional[str] = None


@dataclass
class ListVideosResult:
    """One page of hosted videos."""
    videos: list[VideoAsset]
    provider: str
    total: Optional[int] = None
    page: int = 1
    limit: int = 100
    has_next: bool = False


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string or unix seconds value into a datetime."""
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value))
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def error_details(response: httpx.Response) -> dict:
    """Get the status and (truncated) body of a failed response."""
    return {"status": response.status_code, "body": response.text[:2000]}


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class VideoProviderInterface(ABC):
    """Abstract interface for all video provider implementations.

    All provider implementations must inherit from this class and implement
    all abstract methods. Requests go through a shared ``httpx.AsyncClient``
    when one is injected, otherwise through a short-lived client per request.
    """

    name: ProviderName
    # True when the backend accepts byte ranges and reports the accepted offset
    supports_resumable: bool = False

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        transfer_timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transfer_timeout = transfer_timeout or settings.TRANSFER_TIMEOUT_SECONDS

    @property
    def provider(self) -> str:
        """Get provider name."""
        return self.name.value

    @property
    @abstractmethod
    def auth_headers(self) -> dict[str, str]:
        """Headers that authenticate a request against the provider API."""
        pass

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request, turning transport failures into RemoteUnavailableError."""
        try:
            async with self._http() as client:
                return await client.request(
                    method,
                    url,
                    headers=headers,
                    timeout=timeout or self.timeout,
                    **kwargs,
                )
        except httpx.TransportError as e:
            raise RemoteUnavailableError(
                f"{self.provider} request failed: {method} {url}: {e}",
                provider=self.provider,
                details={"url": url},
            ) from e

    async def _transfer(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a byte transfer request; transport failures are transient rejections."""
        try:
            return await self._send(method, url, timeout=self.transfer_timeout, **kwargs)
        except RemoteUnavailableError as e:
            raise TransferRejectedError(
                e.message,
                provider=self.provider,
                details=e.details,
                transient=True,
            ) from e

    async def _api(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make an authenticated request against the provider REST API."""
        headers = {**self.auth_headers, **kwargs.pop("headers", {})}
        return await self._send(method, f"{self.base_url}{path}", headers=headers, **kwargs)

    def _raise_for_lookup(self, response: httpx.Response, action: str) -> None:
        """Raise the taxonomy error matching a failed lookup response."""
        if response.is_success:
            return
        details = error_details(response)
        message = f"Failed to {action} ({response.status_code}): {response.text[:500]}"
        if response.status_code == 404:
            raise NotFoundError(message, provider=self.provider, details=details)
        if is_transient_status(response.status_code):
            raise RemoteUnavailableError(
                message,
                status_code=response.status_code,
                provider=self.provider,
                details=details,
            )
        raise VideoServiceError(
            message,
            status_code=response.status_code,
            provider=self.provider,
            details=details,
        )

    @abstractmethod
    async def create_session(
        self,
        title: str,
        description: str,
        cors_origin: str,
        total_size: int,
    ) -> UploadSession:
        """Create an upload session on the backend.

        Args:
            title: Video title
            description: Video description
            cors_origin: Origin allowed to write to the transfer URL
            total_size: Size of the file to upload in bytes

        Returns:
            UploadSession with provider-assigned ids and transfer URL

        Raises:
            RemoteRejectedError: If the backend refuses session creation
        """
        pass

    @abstractmethod
    async def transfer_bytes(
        self,
        session: UploadSession,
        data: Payload,
        offset: int,
        length: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Send one contiguous byte range starting at ``offset``.

        Args:
            session: Upload session to write to
            data: Bytes, or an async stream of blocks (requires ``length``)
            offset: Offset of the first byte within the file
            length: Number of bytes in ``data``
            on_progress: Best-effort callback with the absolute bytes sent

        Returns:
            The offset the backend confirms it holds after this request

        Raises:
            TransferRejectedError: On a non-success response
        """
        pass

    @abstractmethod
    async def fetch_status(self, asset_or_session_id: str) -> AssetStatus:
        """Get the processing status of an upload session or asset.

        Raises:
            NotFoundError: If the id is unknown
            RemoteUnavailableError: On transport failures or 5xx answers
        """
        pass

    @abstractmethod
    async def resolve_playback(self, asset_id: str) -> PlaybackDescriptor:
        """Get the playable variants of an asset.

        Raises:
            NotReadyError: If no playable variant exists yet
        """
        pass

    @abstractmethod
    async def delete(self, asset_id: str) -> DeleteResult:
        """Delete an asset. Deleting a missing asset succeeds as a no-op."""
        pass

    @abstractmethod
    async def get_video(self, video_id: str) -> VideoAsset:
        """Get metadata of one video."""
        pass

    @abstractmethod
    async def list_videos(self, limit: int = 100) -> ListVideosResult:
        """List hosted videos."""
        pass

    @abstractmethod
    def transfer_instructions(self, session: UploadSession) -> TransferInstructions:
        """Describe how a direct client writes bytes to ``session.transfer_url``."""
        pass

    async def query_transfer_offset(self, session: UploadSession) -> Optional[int]:
        """Ask the backend how many bytes of the session it already holds.

        Returns None for providers without byte-range resumability.
        """
        return None


async def payload_stream(
    data: Payload,
    start: int,
    on_progress: Optional[ProgressCallback] = None,
) -> AsyncIterator[bytes]:
    """Yield a payload block by block, reporting absolute bytes sent."""
    sent = start
    if isinstance(data, (bytes, bytearray, memoryview)):
        yield bytes(data)
        if on_progress is not None:
            on_progress(sent + len(data))
        return

    async for block in data:
        yield block
        sent += len(block)
        if on_progress is not None:
            on_progress(sent)


def payload_length(data: Payload, length: Optional[int]) -> int:
    """Get the byte length of a payload."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return len(data)
    if length is None:
        raise ValueError("length is required when data is a stream")
    return length
