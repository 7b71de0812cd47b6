"""Error taxonomy shared by every video provider.

Provider errors are never downgraded: the HTTP status and body returned by
the backend travel with the exception in ``status_code`` and ``details``.
"""

from typing import Optional


class VideoServiceError(Exception):
    """Base exception for video provider and upload errors.

    Attributes:
        message: Human readable description
        status_code: HTTP-like status for callers that expose errors over HTTP
        provider: Provider name the error originated from
        details: Backend response (status and body) or other context
        transient: True when retrying the same request may succeed
    """

    default_status_code = 500
    transient = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
        transient: Optional[bool] = None,
    ):
        self.message = message
        self.status_code = status_code or self.default_status_code
        self.provider = provider
        self.details = details or {}
        if transient is not None:
            self.transient = transient
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": self.__class__.__name__,
            "provider": self.provider,
            "statusCode": self.status_code,
        }


class UnsupportedProviderError(VideoServiceError):
    """Exception when a provider name is outside the supported set."""

    default_status_code = 400


class RemoteRejectedError(VideoServiceError):
    """Exception when a backend refuses to create an upload session."""

    default_status_code = 502


class TransferRejectedError(VideoServiceError):
    """Exception when a backend answers a byte transfer with a non-success status.

    ``transient`` is True for 429/5xx answers and transport failures.
    """

    default_status_code = 502


class RemoteUnavailableError(VideoServiceError):
    """Exception on transport failures or 5xx answers from a backend."""

    default_status_code = 503
    transient = True


class NotFoundError(VideoServiceError):
    """Exception when an asset or session id is unknown to the backend."""

    default_status_code = 404


class NotReadyError(VideoServiceError):
    """Exception when no playable variant of an asset exists yet."""

    default_status_code = 409
