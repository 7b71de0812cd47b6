"""Video Provider Module.

Provides a uniform client contract over Mux and Vimeo plus the registry
that resolves provider names.
"""

from videohost.modules.provider.errors import (
    VideoServiceError,
    UnsupportedProviderError,
    RemoteRejectedError,
    TransferRejectedError,
    RemoteUnavailableError,
    NotFoundError,
    NotReadyError,
)
from videohost.modules.provider.interface import (
    VideoProviderInterface,
    ProviderName,
    AssetPhase,
    FileFingerprint,
    UploadSession,
    AssetStatus,
    PlayableAsset,
    PlaybackDescriptor,
    PlaybackFile,
    DeleteResult,
    VideoAsset,
    ListVideosResult,
    TransferInstructions,
    guess_video_content_type,
)
from videohost.modules.provider.providers import MuxProvider, VimeoProvider
from videohost.modules.provider.registry import ProviderRegistry

__all__ = [
    # Errors
    "VideoServiceError",
    "UnsupportedProviderError",
    "RemoteRejectedError",
    "TransferRejectedError",
    "RemoteUnavailableError",
    "NotFoundError",
    "NotReadyError",
    # Interface
    "VideoProviderInterface",
    "ProviderName",
    "AssetPhase",
    "FileFingerprint",
    "UploadSession",
    "AssetStatus",
    "PlayableAsset",
    "PlaybackDescriptor",
    "PlaybackFile",
    "DeleteResult",
    "VideoAsset",
    "ListVideosResult",
    "TransferInstructions",
    "guess_video_content_type",
    # Implementations
    "MuxProvider",
    "VimeoProvider",
    "ProviderRegistry",
]
