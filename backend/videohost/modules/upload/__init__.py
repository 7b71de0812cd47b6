"""Upload Module.

End-to-end upload: transfer, wait for processing, return the playable
asset. Background execution goes through Celery tasks in ``tasks``.
"""

from videohost.modules.upload.schemas import (
    UploadMetadata,
    UploadResult,
    PendingUpload,
    DirectUploadTicket,
)
from videohost.modules.upload.service import UploadOrchestrator

__all__ = [
    "UploadMetadata",
    "UploadResult",
    "PendingUpload",
    "DirectUploadTicket",
    "UploadOrchestrator",
]
