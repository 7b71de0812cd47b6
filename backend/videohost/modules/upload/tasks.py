"""Celery tasks for background uploads.

Each task runs one orchestrator for one session. Transient failures keep
the persisted record, so they are retried by resuming rather than by
starting over. A failure before any record was written retries the upload
itself.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import redis.asyncio as redis
from celery import Task

from videohost.core.celery_app import celery_app
from videohost.core.config import settings
from videohost.modules.polling.service import ProcessingTimeoutError
from videohost.modules.provider.errors import RemoteUnavailableError, VideoServiceError
from videohost.modules.provider.registry import ProviderRegistry
from videohost.modules.transfer.engine import TransferFailedError
from videohost.modules.transfer.repository import build_session_store
from videohost.modules.transfer.retry import BackoffStrategy, RetryConfig
from videohost.modules.transfer.source import LocalVideoFile
from videohost.modules.upload.schemas import UploadMetadata, UploadResult
from videohost.modules.upload.service import UploadOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that leave a resumable record behind
RESUMABLE_ERRORS = (TransferFailedError, ProcessingTimeoutError, RemoteUnavailableError)

TASK_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    initial_delay=30.0,
    max_delay=300.0,
    strategy=BackoffStrategy.EXPONENTIAL,
)


class UploadTask(Task):
    """Base task for uploads; logs failures and retries."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        logger.error(f"Upload task {task_id} failed: {exc}")

    def on_retry(self, exc, task_id, args, kwargs, einfo) -> None:
        logger.warning(f"Upload task {task_id} retrying: {exc}")


async def run_with_orchestrator(fn: Callable[[UploadOrchestrator], Awaitable[T]]) -> T:
    """Run ``fn`` with an orchestrator whose clients live for this call only."""
    redis_client: Optional[redis.Redis] = None
    if settings.SESSION_STORE_BACKEND.lower() == "redis":
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http_client:
            orchestrator = UploadOrchestrator(
                registry=ProviderRegistry(settings, client=http_client),
                store=build_session_store(settings, client=redis_client),
            )
            return await fn(orchestrator)
    finally:
        if redis_client is not None:
            await redis_client.aclose()


def has_pending_upload() -> bool:
    """Whether a persisted upload record exists for the resume task to pick up."""
    session = asyncio.run(run_with_orchestrator(lambda orchestrator: orchestrator.store.load()))
    return session is not None


def _result_payload(result: Optional[UploadResult]) -> dict:
    if result is None:
        return {"status": "paused"}
    return {"status": "ready", **result.model_dump(by_alias=True)}


@celery_app.task(bind=True, base=UploadTask, max_retries=TASK_RETRY_CONFIG.max_attempts)
def upload_video_task(
    self: UploadTask,
    file_path: str,
    title: str,
    description: str = "",
    provider: Optional[str] = None,
) -> dict:
    """Upload a local file and wait until it is playable.

    Args:
        file_path: Path of the video file
        title: Video title
        description: Video description
        provider: Provider name; the configured default when omitted

    Returns:
        dict: Upload result with status and asset id / playback link
    """

    async def _upload() -> Optional[UploadResult]:
        source = LocalVideoFile(file_path)
        metadata = UploadMetadata(title=title, description=description)
        return await run_with_orchestrator(
            lambda orchestrator: orchestrator.upload_and_wait(source, metadata, provider)
        )

    try:
        return _result_payload(asyncio.run(_upload()))
    except RESUMABLE_ERRORS as e:
        if not has_pending_upload():
            # Failed before a session was recorded; start over
            attempt = self.request.retries + 1
            if TASK_RETRY_CONFIG.should_retry(attempt):
                raise self.retry(exc=e, countdown=TASK_RETRY_CONFIG.calculate_delay(attempt))
            return {"status": "failed", "error": e.to_dict()}

        delay = TASK_RETRY_CONFIG.calculate_delay(1)
        logger.warning(f"Upload of {file_path} interrupted, resuming in {delay}s: {e}")
        resume_upload_task.apply_async(args=[file_path], countdown=delay)
        return {"status": "resuming", "error": e.to_dict()}
    except VideoServiceError as e:
        return {"status": "failed", "error": e.to_dict()}


@celery_app.task(bind=True, base=UploadTask, max_retries=TASK_RETRY_CONFIG.max_attempts)
def resume_upload_task(self: UploadTask, file_path: str) -> dict:
    """Resume the persisted upload with a local file and wait until playable.

    Args:
        file_path: Path of the same video file the upload was started with

    Returns:
        dict: Upload result with status and asset id / playback link
    """

    async def _resume() -> Optional[UploadResult]:
        source = LocalVideoFile(file_path)
        return await run_with_orchestrator(
            lambda orchestrator: orchestrator.resume_and_wait(source)
        )

    try:
        return _result_payload(asyncio.run(_resume()))
    except RESUMABLE_ERRORS as e:
        attempt = self.request.retries + 1
        if TASK_RETRY_CONFIG.should_retry(attempt):
            raise self.retry(exc=e, countdown=TASK_RETRY_CONFIG.calculate_delay(attempt))
        return {"status": "failed", "error": e.to_dict()}
    except VideoServiceError as e:
        return {"status": "failed", "error": e.to_dict()}
