"""Pydantic schemas for the persisted upload session record."""

import time
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from videohost.modules.provider.interface import FileFingerprint, UploadSession


class FileFingerprintRecord(BaseModel):
    """Stored identity of the source file."""

    name: str
    size: int = Field(..., ge=0)
    last_modified: int = Field(..., alias="lastModified")

    model_config = {"populate_by_name": True}


class PersistedSession(BaseModel):
    """The single persisted upload record.

    Serialized with camelCase keys so the record stays readable by other
    clients sharing the same store key.
    """

    session_id: str = Field(..., min_length=1, alias="sessionId")
    transfer_url: str = Field(..., alias="transferUrl")
    acknowledged_offset: int = Field(0, ge=0, alias="acknowledgedOffset")
    total_size: int = Field(..., ge=0, alias="totalSize")
    file_fingerprint: Optional[FileFingerprintRecord] = Field(None, alias="fileFingerprint")
    provider: str
    display_name: Optional[str] = Field(None, alias="displayName")
    timestamp: float = Field(default_factory=time.time)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_offset(self) -> "PersistedSession":
        if self.acknowledged_offset > self.total_size:
            raise ValueError(
                f"acknowledgedOffset {self.acknowledged_offset} exceeds totalSize {self.total_size}"
            )
        return self

    @classmethod
    def from_session(cls, session: UploadSession) -> "PersistedSession":
        fingerprint = None
        if session.fingerprint is not None:
            fingerprint = FileFingerprintRecord(
                name=session.fingerprint.name,
                size=session.fingerprint.size,
                last_modified=session.fingerprint.last_modified,
            )
        return cls(
            session_id=session.session_id,
            transfer_url=session.transfer_url,
            acknowledged_offset=session.acknowledged_offset,
            total_size=session.total_size,
            file_fingerprint=fingerprint,
            provider=session.provider,
            display_name=session.display_name,
            timestamp=session.timestamp,
        )

    def to_session(self) -> UploadSession:
        fingerprint = None
        if self.file_fingerprint is not None:
            fingerprint = FileFingerprint(
                name=self.file_fingerprint.name,
                size=self.file_fingerprint.size,
                last_modified=self.file_fingerprint.last_modified,
            )
        return UploadSession(
            session_id=self.session_id,
            transfer_url=self.transfer_url,
            total_size=self.total_size,
            provider=self.provider,
            acknowledged_offset=self.acknowledged_offset,
            fingerprint=fingerprint,
            display_name=self.display_name,
            timestamp=self.timestamp,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
