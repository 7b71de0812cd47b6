"""Vimeo video provider implementation.

Uploads use Vimeo's tus approach: ``POST /me/videos`` reserves the video
and returns an ``upload_link`` that accepts PATCH requests carrying
``Upload-Offset``. The session id is the video id.
"""

import logging
from typing import Optional

import httpx

from videohost.core.config import Settings, settings
from videohost.modules.provider.errors import (
    NotReadyError,
    RemoteRejectedError,
    TransferRejectedError,
    VideoServiceError,
)
from videohost.modules.provider.interface import (
    AssetPhase,
    AssetStatus,
    DeleteResult,
    ListVideosResult,
    Payload,
    PlayableAsset,
    PlaybackDescriptor,
    PlaybackFile,
    ProgressCallback,
    ProviderName,
    TransferInstructions,
    UploadSession,
    VideoAsset,
    VideoProviderInterface,
    error_details,
    is_transient_status,
    parse_timestamp,
    payload_length,
    payload_stream,
)

logger = logging.getLogger(__name__)


VIDEO_STATUS_PHASES = {
    "available": AssetPhase.READY,
    "uploading": AssetPhase.UPLOADING,
    "transcode_starting": AssetPhase.PROCESSING,
    "transcoding": AssetPhase.PROCESSING,
    "uploading_error": AssetPhase.ERRORED,
    "transcoding_error": AssetPhase.ERRORED,
    "quota_exceeded": AssetPhase.ERRORED,
    "total_cap_exceeded": AssetPhase.ERRORED,
    "error": AssetPhase.ERRORED,
}

TUS_CONTENT_TYPE = "application/offset+octet-stream"
# tus answer when Upload-Offset differs from the offset the server holds
OFFSET_CONFLICT_STATUS = 409
HLS_CONTENT_TYPE = "application/x-mpegURL"


def map_video_status(status: Optional[str]) -> AssetPhase:
    """Map a Vimeo video status onto AssetPhase.

    Unknown statuses are treated as still processing.
    """
    return VIDEO_STATUS_PHASES.get(status or "", AssetPhase.PROCESSING)


class VimeoProvider(VideoProviderInterface):
    """Vimeo API v3.4 implementation with tus resumable uploads."""

    name = ProviderName.VIMEO
    supports_resumable = True

    API_ACCEPT = "application/vnd.vimeo.*+json;version=3.4"
    TUS_VERSION = "1.0.0"
    PLAYER_URL = "https://player.vimeo.com/video"

    STATUS_FIELDS = "uri,status,duration,link,upload,transcode"
    VIDEO_FIELDS = "uri,name,description,duration,status,created_time,link"

    def __init__(
        self,
        access_token: str,
        folder: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        transfer_timeout: Optional[float] = None,
    ):
        super().__init__(
            base_url or settings.VIMEO_API_URL,
            client=client,
            timeout=timeout,
            transfer_timeout=transfer_timeout,
        )
        self.access_token = access_token
        self.folder = folder

    @classmethod
    def from_settings(
        cls,
        config: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "VimeoProvider":
        if not config.VIMEO_ACCESS_TOKEN:
            logger.warning("Vimeo access token not configured")
        return cls(
            access_token=config.VIMEO_ACCESS_TOKEN,
            folder=config.VIMEO_DEFAULT_FOLDER,
            base_url=config.VIMEO_API_URL,
            client=client,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transfer_timeout=config.TRANSFER_TIMEOUT_SECONDS,
        )

    @property
    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": self.API_ACCEPT,
        }

    @property
    def folder_uri(self) -> Optional[str]:
        if not self.folder:
            return None
        return self.folder if self.folder.startswith("/") else f"/{self.folder}"

    async def create_session(
        self,
        title: str,
        description: str,
        cors_origin: str,
        total_size: int,
    ) -> UploadSession:
        """Reserve a video and get its tus upload link.

        ``cors_origin`` is not used: tus upload links accept any origin.
        """
        body = {
            "upload": {"approach": "tus", "size": total_size},
            "name": title,
            "description": description,
        }
        if self.folder_uri:
            body["folder_uri"] = self.folder_uri

        response = await self._api("POST", "/me/videos", json=body)

        if not response.is_success:
            raise RemoteRejectedError(
                f"Failed to create upload ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
            )

        data = response.json()
        upload_link = (data.get("upload") or {}).get("upload_link")
        uri = data.get("uri") or ""
        if not upload_link or not uri:
            raise RemoteRejectedError(
                "Vimeo response is missing the video uri or upload link",
                provider=self.provider,
                details={"body": data},
            )

        video_id = uri.rstrip("/").rsplit("/", 1)[-1]
        logger.info(f"Vimeo video {video_id} reserved for {total_size} bytes")

        return UploadSession(
            session_id=video_id,
            transfer_url=upload_link,
            total_size=total_size,
            provider=self.provider,
            display_name=title,
        )

    async def transfer_bytes(
        self,
        session: UploadSession,
        data: Payload,
        offset: int,
        length: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """PATCH one byte range to the tus upload link.

        Returns:
            The ``Upload-Offset`` the backend reports after the request
        """
        size = payload_length(data, length)
        headers = {
            "Tus-Resumable": self.TUS_VERSION,
            "Upload-Offset": str(offset),
            "Content-Type": TUS_CONTENT_TYPE,
            "Content-Length": str(size),
        }

        response = await self._transfer(
            "PATCH",
            session.transfer_url,
            headers=headers,
            content=payload_stream(data, offset, on_progress),
        )

        if not response.is_success:
            # An offset conflict is resolved by asking the server what it holds
            raise TransferRejectedError(
                f"Chunk at offset {offset} rejected ({response.status_code}): "
                f"{response.text[:500]}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
                transient=(
                    response.status_code == OFFSET_CONFLICT_STATUS
                    or is_transient_status(response.status_code)
                ),
            )

        reported = response.headers.get("Upload-Offset")
        if reported is None:
            return offset + size
        try:
            return int(reported)
        except ValueError:
            raise TransferRejectedError(
                f"Invalid Upload-Offset header: {reported!r}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
            )

    async def query_transfer_offset(self, session: UploadSession) -> Optional[int]:
        """Ask the tus endpoint for the offset it holds (HEAD request)."""
        response = await self._transfer(
            "HEAD",
            session.transfer_url,
            headers={"Tus-Resumable": self.TUS_VERSION},
        )

        if not response.is_success:
            raise TransferRejectedError(
                f"Failed to query upload offset ({response.status_code})",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
                transient=is_transient_status(response.status_code),
            )

        reported = response.headers.get("Upload-Offset")
        if reported is None or not reported.isdigit():
            return None
        return int(reported)

    async def fetch_status(self, asset_or_session_id: str) -> AssetStatus:
        response = await self._api(
            "GET",
            f"/videos/{asset_or_session_id}",
            params={"fields": self.STATUS_FIELDS},
        )
        self._raise_for_lookup(response, "fetch video status")

        video = response.json()
        status = video.get("status", "")
        phase = map_video_status(status)

        playable = None
        if phase == AssetPhase.READY:
            playable = PlayableAsset(
                asset_id=asset_or_session_id,
                embed_html=self._embed_html(asset_or_session_id),
                link=video.get("link") or f"{self.PLAYER_URL}/{asset_or_session_id}",
                duration=video.get("duration"),
            )

        error_detail = None
        if phase == AssetPhase.ERRORED:
            error_detail = f"Vimeo reported status '{status}'"

        return AssetStatus(
            upload_id=asset_or_session_id,
            phase=phase,
            provider=self.provider,
            status=status,
            asset_id=asset_or_session_id,
            playable_asset=playable,
            error_detail=error_detail,
            details=video,
        )

    async def resolve_playback(self, asset_id: str) -> PlaybackDescriptor:
        """Get progressive files (highest first) and the HLS link of a video."""
        response = await self._api(
            "GET",
            f"/videos/{asset_id}",
            params={"fields": "status,files,play"},
        )
        self._raise_for_lookup(response, "fetch video files")

        video = response.json()
        files = [
            PlaybackFile(
                url=item["link"],
                quality=item.get("quality") or item.get("rendition") or "unknown",
                width=item.get("width") or 0,
                height=item.get("height") or 0,
                content_type=item.get("type") or "video/mp4",
            )
            for item in video.get("files") or []
            if item.get("link") and item.get("quality") != "hls"
        ]
        files.sort(key=lambda f: f.height, reverse=True)

        hls = ((video.get("play") or {}).get("hls") or {}).get("link")
        if hls:
            files.append(
                PlaybackFile(
                    url=hls,
                    quality="auto",
                    width=0,
                    height=0,
                    content_type=HLS_CONTENT_TYPE,
                )
            )

        if not files:
            raise NotReadyError(
                f"Video {asset_id} has no playable files yet (status: {video.get('status')})",
                provider=self.provider,
                details={"status": video.get("status")},
            )

        return PlaybackDescriptor(asset_id=asset_id, provider=self.provider, files=files)

    async def delete(self, asset_id: str) -> DeleteResult:
        response = await self._api("DELETE", f"/videos/{asset_id}")

        if response.status_code == 404:
            logger.info(f"Vimeo video {asset_id} already deleted")
            return DeleteResult(
                success=True,
                message=f"Video {asset_id} does not exist",
                existed=False,
            )

        if not response.is_success:
            raise VideoServiceError(
                f"Failed to delete video ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
            )

        return DeleteResult(success=True, message=f"Video {asset_id} deleted")

    async def get_video(self, video_id: str) -> VideoAsset:
        response = await self._api(
            "GET",
            f"/videos/{video_id}",
            params={"fields": self.VIDEO_FIELDS},
        )
        self._raise_for_lookup(response, "fetch video")
        return self._video_asset(response.json())

    async def list_videos(self, limit: int = 100) -> ListVideosResult:
        response = await self._api(
            "GET",
            "/me/videos",
            params={"per_page": limit, "fields": self.VIDEO_FIELDS},
        )
        self._raise_for_lookup(response, "list videos")

        body = response.json()
        paging = body.get("paging") or {}

        return ListVideosResult(
            videos=[self._video_asset(video) for video in body.get("data") or []],
            provider=self.provider,
            total=body.get("total"),
            page=body.get("page", 1),
            limit=body.get("per_page", limit),
            has_next=bool(paging.get("next")),
        )

    def transfer_instructions(self, session: UploadSession) -> TransferInstructions:
        return TransferInstructions(
            method="PATCH",
            headers={
                "Tus-Resumable": self.TUS_VERSION,
                "Upload-Offset": str(session.acknowledged_offset),
                "Content-Type": TUS_CONTENT_TYPE,
            },
            note=(
                "PATCH byte ranges with Upload-Offset set to the acknowledged "
                "offset; HEAD the upload URL to learn the offset after a failure"
            ),
        )

    def _embed_html(self, video_id: str) -> str:
        return (
            f'<iframe src="{self.PLAYER_URL}/{video_id}" width="640" height="360" '
            'frameborder="0" allow="autoplay; fullscreen; picture-in-picture" '
            "allowfullscreen></iframe>"
        )

    def _video_asset(self, video: dict) -> VideoAsset:
        video_id = (video.get("uri") or "").rstrip("/").rsplit("/", 1)[-1]
        status = video.get("status", "")
        return VideoAsset(
            id=video_id,
            provider=self.provider,
            phase=map_video_status(status),
            status=status,
            title=video.get("name"),
            description=video.get("description"),
            duration=video.get("duration"),
            created_at=parse_timestamp(video.get("created_time")),
            embed_html=self._embed_html(video_id),
            link=video.get("link"),
        )
