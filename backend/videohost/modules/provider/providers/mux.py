"""Mux video provider implementation.

Uses Mux direct uploads: a session is an *upload* that accepts the whole
file in a single PUT, and the *asset* id is only minted once Mux has
ingested the file. Status lookups bridge the two ids.
"""

import base64
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
    guess_video_content_type,
    is_transient_status,
    parse_timestamp,
    payload_length,
    payload_stream,
)

logger = logging.getLogger(__name__)


# Direct upload statuses that end the upload without an asset
UPLOAD_ERROR_STATUSES = {"errored", "cancelled", "timed_out"}

ASSET_STATUS_PHASES = {
    "preparing": AssetPhase.PROCESSING,
    "ready": AssetPhase.READY,
    "errored": AssetPhase.ERRORED,
}

HLS_CONTENT_TYPE = "application/x-mpegURL"


class MuxProvider(VideoProviderInterface):
    """Mux Video implementation.

    Uses the Mux Video API v1 with Basic auth (token id / token secret).
    """

    name = ProviderName.MUX
    supports_resumable = False

    STREAM_URL = "https://stream.mux.com"

    def __init__(
        self,
        token_id: str,
        token_secret: str,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        transfer_timeout: Optional[float] = None,
    ):
        super().__init__(
            base_url or settings.MUX_API_URL,
            client=client,
            timeout=timeout,
            transfer_timeout=transfer_timeout,
        )
        self.token_id = token_id
        self.token_secret = token_secret

    @classmethod
    def from_settings(
        cls,
        config: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "MuxProvider":
        if not config.MUX_TOKEN_ID or not config.MUX_TOKEN_SECRET:
            logger.warning("Mux credentials not configured")
        return cls(
            token_id=config.MUX_TOKEN_ID,
            token_secret=config.MUX_TOKEN_SECRET,
            base_url=config.MUX_API_URL,
            client=client,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transfer_timeout=config.TRANSFER_TIMEOUT_SECONDS,
        )

    @property
    def auth_headers(self) -> dict[str, str]:
        credentials = base64.b64encode(
            f"{self.token_id}:{self.token_secret}".encode()
        ).decode()
        return {"Authorization": f"Basic {credentials}"}

    async def create_session(
        self,
        title: str,
        description: str,
        cors_origin: str,
        total_size: int,
    ) -> UploadSession:
        """Create a Mux direct upload.

        Returns:
            UploadSession whose id is the Mux upload id
        """
        body = {
            "cors_origin": cors_origin or "*",
            "new_asset_settings": {
                "playback_policy": ["public"],
                "passthrough": title,
                "meta": {
                    "title": title,
                    "description": description,
                },
            },
        }

        response = await self._api("POST", "/video/v1/uploads", json=body)

        if not response.is_success:
            raise RemoteRejectedError(
                f"Failed to create upload ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
            )

        data = response.json().get("data") or {}
        if not data.get("id") or not data.get("url"):
            raise RemoteRejectedError(
                "Mux upload response is missing the upload id or url",
                provider=self.provider,
                details={"body": data},
            )

        logger.info(f"Mux upload {data['id']} created for {total_size} bytes")

        return UploadSession(
            session_id=data["id"],
            transfer_url=data["url"],
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
        """PUT the whole file to the upload URL.

        Mux acknowledges nothing partially, so the payload must start at 0
        and cover the full file.
        """
        size = payload_length(data, length)
        if offset != 0 or size != session.total_size:
            raise TransferRejectedError(
                "Mux uploads accept the whole file in a single request "
                f"(got offset {offset}, {size} of {session.total_size} bytes)",
                status_code=400,
                provider=self.provider,
            )

        filename = session.fingerprint.name if session.fingerprint else session.display_name
        headers = {
            "Content-Type": guess_video_content_type(filename),
            "Content-Length": str(size),
        }

        response = await self._transfer(
            "PUT",
            session.transfer_url,
            headers=headers,
            content=payload_stream(data, offset, on_progress),
        )

        if not response.is_success:
            raise TransferRejectedError(
                f"Upload failed ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
                provider=self.provider,
                details=error_details(response),
                transient=is_transient_status(response.status_code),
            )

        return offset + size

    async def fetch_status(self, asset_or_session_id: str) -> AssetStatus:
        """Get the status of an upload id, or of an asset id.

        An upload whose asset id has not been minted yet is reported as
        processing (or uploading while Mux still waits for bytes).
        """
        response = await self._api("GET", f"/video/v1/uploads/{asset_or_session_id}")

        if response.status_code == 404:
            asset_response = await self._api("GET", f"/video/v1/assets/{asset_or_session_id}")
            self._raise_for_lookup(asset_response, f"fetch status of {asset_or_session_id}")
            asset = asset_response.json()["data"]
            return self._asset_status(asset.get("upload_id") or asset_or_session_id, asset)

        self._raise_for_lookup(response, "fetch upload status")

        upload = response.json()["data"]
        upload_id = upload.get("id", asset_or_session_id)
        upload_status = upload.get("status", "")
        asset_id = upload.get("asset_id")

        if upload_status in UPLOAD_ERROR_STATUSES:
            error = upload.get("error") or {}
            return AssetStatus(
                upload_id=upload_id,
                phase=AssetPhase.ERRORED,
                provider=self.provider,
                status=upload_status,
                asset_id=asset_id,
                error_detail=error.get("message") or f"Upload {upload_status}",
                details=upload,
            )

        if not asset_id:
            return AssetStatus(
                upload_id=upload_id,
                phase=AssetPhase.UPLOADING if upload_status == "waiting" else AssetPhase.PROCESSING,
                provider=self.provider,
                status=upload_status,
                details=upload,
            )

        asset_response = await self._api("GET", f"/video/v1/assets/{asset_id}")
        if asset_response.status_code == 404:
            # Asset id minted before the asset itself is readable
            return AssetStatus(
                upload_id=upload_id,
                phase=AssetPhase.PROCESSING,
                provider=self.provider,
                status=upload_status,
                asset_id=asset_id,
                details=upload,
            )
        self._raise_for_lookup(asset_response, "fetch asset status")

        return self._asset_status(upload_id, asset_response.json()["data"])

    async def resolve_playback(self, asset_id: str) -> PlaybackDescriptor:
        """Get the HLS manifest and any ready MP4 renditions of an asset."""
        response = await self._api("GET", f"/video/v1/assets/{asset_id}")
        self._raise_for_lookup(response, "fetch asset")

        asset = response.json()["data"]
        playback_id = self._playback_id(asset)

        if asset.get("status") != "ready" or not playback_id:
            raise NotReadyError(
                f"Asset {asset_id} has no playable variant yet (status: {asset.get('status')})",
                provider=self.provider,
                details={"status": asset.get("status")},
            )

        width, height = self._dimensions(asset)
        files = [
            PlaybackFile(
                url=f"{self.STREAM_URL}/{playback_id}.m3u8",
                quality="auto",
                width=width,
                height=height,
                content_type=HLS_CONTENT_TYPE,
            )
        ]

        renditions = asset.get("static_renditions") or {}
        if renditions.get("status") == "ready":
            for rendition in renditions.get("files", []):
                name = rendition.get("name", "")
                files.append(
                    PlaybackFile(
                        url=f"{self.STREAM_URL}/{playback_id}/{name}",
                        quality=name.rsplit(".", 1)[0],
                        width=rendition.get("width") or 0,
                        height=rendition.get("height") or 0,
                        content_type=guess_video_content_type(name),
                    )
                )

        return PlaybackDescriptor(asset_id=asset_id, provider=self.provider, files=files)

    async def delete(self, asset_id: str) -> DeleteResult:
        response = await self._api("DELETE", f"/video/v1/assets/{asset_id}")

        if response.status_code == 404:
            logger.info(f"Mux asset {asset_id} already deleted")
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
        response = await self._api("GET", f"/video/v1/assets/{video_id}")
        self._raise_for_lookup(response, "fetch video")
        return self._video_asset(response.json()["data"])

    async def list_videos(self, limit: int = 100) -> ListVideosResult:
        response = await self._api("GET", "/video/v1/assets", params={"limit": limit})
        self._raise_for_lookup(response, "list videos")

        body = response.json()
        assets = body.get("data") or []

        return ListVideosResult(
            videos=[self._video_asset(asset) for asset in assets],
            provider=self.provider,
            total=body.get("total_row_count", body.get("total_count")),
            page=1,
            limit=limit,
            has_next=len(assets) == limit,
        )

    def transfer_instructions(self, session: UploadSession) -> TransferInstructions:
        filename = session.fingerprint.name if session.fingerprint else session.display_name
        return TransferInstructions(
            method="PUT",
            headers={"Content-Type": guess_video_content_type(filename)},
            note="PUT the whole file to the upload URL in a single request",
        )

    def _asset_status(self, upload_id: str, asset: dict) -> AssetStatus:
        status = asset.get("status", "")
        phase = ASSET_STATUS_PHASES.get(status, AssetPhase.PROCESSING)

        playable = self._playable_asset(asset) if phase == AssetPhase.READY else None

        error_detail = None
        if phase == AssetPhase.ERRORED:
            errors = asset.get("errors") or {}
            messages = errors.get("messages") or []
            error_detail = "; ".join(messages) or errors.get("type") or "Mux failed to process the video"

        return AssetStatus(
            upload_id=upload_id,
            phase=phase,
            provider=self.provider,
            status=status,
            asset_id=asset.get("id"),
            playable_asset=playable,
            error_detail=error_detail,
            details=asset,
        )

    def _playable_asset(self, asset: dict) -> PlayableAsset:
        link, embed_html = self._playback_links(asset)
        return PlayableAsset(
            asset_id=asset["id"],
            embed_html=embed_html,
            link=link,
            duration=asset.get("duration"),
        )

    def _video_asset(self, asset: dict) -> VideoAsset:
        meta = asset.get("meta") or {}
        accessibility = (asset.get("master") or {}).get("accessibility") or {}
        link, embed_html = self._playback_links(asset)
        status = asset.get("status", "")

        return VideoAsset(
            id=asset["id"],
            provider=self.provider,
            phase=ASSET_STATUS_PHASES.get(status, AssetPhase.PROCESSING),
            status=status,
            title=meta.get("title") or accessibility.get("title") or f"Asset {asset['id']}",
            description=meta.get("description") or accessibility.get("description") or "",
            duration=asset.get("duration"),
            created_at=parse_timestamp(asset.get("created_at")),
            embed_html=embed_html or None,
            link=link or None,
        )

    def _playback_links(self, asset: dict) -> tuple[str, str]:
        playback_id = self._playback_id(asset)
        if not playback_id:
            return "", ""
        link = f"{self.STREAM_URL}/{playback_id}.m3u8"
        embed_html = (
            f'<video id="video" controls><source src="{link}" '
            f'type="{HLS_CONTENT_TYPE}"></video>'
        )
        return link, embed_html

    @staticmethod
    def _playback_id(asset: dict) -> Optional[str]:
        playback_ids = asset.get("playback_ids") or []
        for playback in playback_ids:
            if playback.get("policy", "public") == "public" and playback.get("id"):
                return playback["id"]
        return None

    @staticmethod
    def _dimensions(asset: dict) -> tuple[int, int]:
        for track in asset.get("tracks") or []:
            if track.get("type") == "video":
                return track.get("max_width") or 1920, track.get("max_height") or 1080
        return 1920, 1080
