"""Pydantic schemas for the upload module."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

MAX_TITLE_LENGTH = 256
MAX_DESCRIPTION_LENGTH = 5000


class UploadMetadata(BaseModel):
    """Title and description given to a new upload."""

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field("", max_length=MAX_DESCRIPTION_LENGTH)
    cors_origin: Optional[str] = Field(None, alias="corsOrigin")

    model_config = {"populate_by_name": True}

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be blank")
        return v


class UploadResult(BaseModel):
    """A finished upload: the playable asset and how to reach it."""

    asset_id: str = Field(..., alias="assetId")
    playback_link: str = Field(..., alias="playbackLink")
    embed_html: Optional[str] = Field(None, alias="embedHtml")
    duration: Optional[float] = None
    session_id: str = Field(..., alias="sessionId")
    provider: str

    model_config = {"populate_by_name": True}


class PendingUpload(BaseModel):
    """The persisted upload that can be resumed."""

    session_id: str = Field(..., alias="sessionId")
    provider: str
    file_name: Optional[str] = Field(None, alias="fileName")
    display_name: Optional[str] = Field(None, alias="displayName")
    acknowledged_offset: int = Field(..., alias="acknowledgedOffset")
    total_size: int = Field(..., alias="totalSize")
    transfer_complete: bool = Field(..., alias="transferComplete")

    model_config = {"populate_by_name": True}

    @property
    def progress_percent(self) -> int:
        if self.total_size <= 0:
            return 100
        return int(self.acknowledged_offset * 100 / self.total_size)


class DirectUploadTicket(BaseModel):
    """Everything a direct client needs to write bytes to a new session."""

    session_id: str = Field(..., alias="sessionId")
    provider: str
    transfer_url: str = Field(..., alias="transferUrl")
    method: str
    headers: dict[str, str]
    note: str

    model_config = {"populate_by_name": True}
