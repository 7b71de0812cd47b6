"""Status poller.

Waits for a provider to finish processing an upload: polls on a fixed
interval until the asset is ready or errored, or until the wait ceiling
passes. Waiting is a sleep between polls, never a busy loop.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from videohost.core.config import settings
from videohost.core.logging import log_info, log_warning
from videohost.core.metrics import record_processing_wait, record_status_poll
from videohost.core.tracing import add_span_attributes, create_span
from videohost.modules.provider.errors import RemoteUnavailableError, VideoServiceError
from videohost.modules.provider.interface import AssetPhase, AssetStatus, VideoProviderInterface

logger = logging.getLogger(__name__)


class ProcessingFailedError(VideoServiceError):
    """Exception when the provider reports that processing failed."""

    default_status_code = 422

    def __init__(self, message: str, status: Optional[AssetStatus] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status


class ProcessingTimeoutError(VideoServiceError):
    """Exception when processing did not finish within the wait ceiling.

    The asset may still become ready; poll ``asset_id`` again later.
    """

    default_status_code = 408
    transient = True

    def __init__(
        self,
        message: str,
        asset_id: str,
        last_status: Optional[AssetStatus] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.asset_id = asset_id
        self.last_status = last_status


class PollPhase(str, Enum):
    WAITING = "waiting"
    READY = "ready"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"


class StatusPoller:
    """Polls ``fetch_status`` until a terminal phase or the wait ceiling.

    A transient ``RemoteUnavailableError`` on one poll is logged and the
    wait continues; every other error propagates.
    """

    def __init__(
        self,
        provider: VideoProviderInterface,
        interval: float = settings.STATUS_POLL_INTERVAL_SECONDS,
        timeout: float = settings.STATUS_POLL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.provider = provider
        self.interval = interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

        self.phase = PollPhase.WAITING
        self.polls = 0
        self.last_status: Optional[AssetStatus] = None

    async def wait_until_ready(self, asset_or_session_id: str) -> AssetStatus:
        """Wait until the asset is ready.

        Returns:
            The READY AssetStatus, carrying the playable asset

        Raises:
            ProcessingFailedError: If the provider reports an error phase
            ProcessingTimeoutError: If the ceiling passes first
        """
        provider = self.provider.provider
        started = self._clock()
        deadline = started + self.timeout

        self.phase = PollPhase.WAITING
        self.polls = 0
        self.last_status = None

        while True:
            status = await self._poll(asset_or_session_id)
            elapsed = self._clock() - started

            if status is not None and status.phase == AssetPhase.READY:
                self.phase = PollPhase.READY
                record_processing_wait(provider, "ready", elapsed)
                log_info(
                    logger,
                    f"Asset for {asset_or_session_id} is ready after {self.polls} polls",
                    asset_id=status.asset_id,
                    polls=self.polls,
                )
                return status

            if status is not None and status.phase == AssetPhase.ERRORED:
                self.phase = PollPhase.ERRORED
                record_processing_wait(provider, "errored", elapsed)
                raise ProcessingFailedError(
                    f"Processing failed for {asset_or_session_id}: "
                    f"{status.error_detail or status.status}",
                    status=status,
                    provider=provider,
                    details={"status": status.status, "error": status.error_detail},
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                self.phase = PollPhase.TIMED_OUT
                record_processing_wait(provider, "timed_out", elapsed)
                raise ProcessingTimeoutError(
                    f"Processing of {asset_or_session_id} did not finish within "
                    f"{self.timeout}s",
                    asset_id=asset_or_session_id,
                    last_status=self.last_status,
                    provider=provider,
                    details={"polls": self.polls},
                )

            await self._sleep(min(self.interval, remaining))

    async def _poll(self, asset_or_session_id: str) -> Optional[AssetStatus]:
        self.polls += 1
        provider = self.provider.provider

        with create_span(
            "status.poll",
            attributes={
                "upload.provider": provider,
                "upload.asset_id": asset_or_session_id,
                "poll.number": self.polls,
            },
        ):
            try:
                status = await self.provider.fetch_status(asset_or_session_id)
            except RemoteUnavailableError as e:
                record_status_poll(provider, "unavailable")
                log_warning(
                    logger,
                    f"Status poll {self.polls} for {asset_or_session_id} failed: {e.message}",
                    asset_id=asset_or_session_id,
                )
                return None

            add_span_attributes({"poll.phase": status.phase.value})

        record_status_poll(provider, status.phase.value)
        self.last_status = status
        logger.debug(f"Poll {self.polls} for {asset_or_session_id}: {status.phase.value} ({status.status})")
        return status
