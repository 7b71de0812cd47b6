"""Shared fakes for upload tests.

The fake providers keep everything in memory and record each call, so
tests can assert exactly which byte ranges were sent and in what order.
"""

from typing import Optional

import pytest
from hypothesis import settings

from videohost.modules.provider.errors import NotFoundError, NotReadyError, TransferRejectedError
from videohost.modules.provider.interface import (
    AssetPhase,
    AssetStatus,
    DeleteResult,
    ListVideosResult,
    PlayableAsset,
    PlaybackDescriptor,
    PlaybackFile,
    ProviderName,
    TransferInstructions,
    UploadSession,
    VideoAsset,
    VideoProviderInterface,
)
from videohost.modules.transfer.repository import InMemorySessionStore
from videohost.modules.transfer.source import BufferVideoSource

# Property tests drive many in-memory requests per example; wall-clock
# deadlines make them flaky on slow machines.
settings.register_profile("default", deadline=None)
settings.load_profile("default")

MIB = 1024 * 1024


async def read_payload(data) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    return b"".join([block async for block in data])


class FakeProvider(VideoProviderInterface):
    """In-memory provider.

    Attributes:
        failures: Exceptions raised by the next transfer calls, in order
        lost_responses: Exceptions raised by the next transfer calls after
            the bytes were stored, as when a response is lost in transit
        statuses: Phases reported by successive ``fetch_status`` calls; the
            last one repeats
        accept_limit: Max bytes accepted per transfer (partial acceptance)
        reports_offset: Answer offset queries with the stored byte count
    """

    name = ProviderName.VIMEO
    supports_resumable = True

    def __init__(
        self,
        statuses: Optional[list] = None,
        accept_limit: Optional[int] = None,
        reports_offset: bool = False,
    ):
        super().__init__("https://fake.test")
        self.received = bytearray()
        self.calls: list[tuple[int, int]] = []
        self.failures: list[Exception] = []
        self.lost_responses: list[Exception] = []
        self.statuses = list(statuses or [AssetPhase.READY])
        self.accept_limit = accept_limit
        self.reports_offset = reports_offset
        self.backend_offset: Optional[int] = None
        self.status_calls = 0
        self.deleted: set[str] = set()
        self.sessions_created = 0

    @property
    def auth_headers(self) -> dict[str, str]:
        return {}

    async def create_session(self, title, description, cors_origin, total_size):
        self.sessions_created += 1
        return UploadSession(
            session_id=f"session-{self.sessions_created}",
            transfer_url="https://fake.test/upload",
            total_size=total_size,
            provider=self.provider,
        )

    async def transfer_bytes(self, session, data, offset, length=None, on_progress=None):
        payload = await read_payload(data)
        self.calls.append((offset, len(payload)))

        if self.failures:
            raise self.failures.pop(0)

        if offset != len(self.received):
            raise TransferRejectedError(
                f"Offset {offset} does not match {len(self.received)}",
                status_code=409,
                provider=self.provider,
                transient=True,
            )

        accepted = payload if self.accept_limit is None else payload[:self.accept_limit]
        self.received.extend(accepted)
        if self.lost_responses:
            raise self.lost_responses.pop(0)
        if on_progress is not None:
            on_progress(offset + len(accepted))
        return offset + len(accepted)

    async def query_transfer_offset(self, session):
        if self.backend_offset is not None:
            return self.backend_offset
        return len(self.received) if self.reports_offset else None

    def _phase(self) -> AssetPhase:
        index = min(self.status_calls, len(self.statuses) - 1)
        return self.statuses[index]

    async def fetch_status(self, asset_or_session_id):
        phase = self._phase()
        self.status_calls += 1
        if isinstance(phase, Exception):
            raise phase
        if asset_or_session_id in self.deleted:
            raise NotFoundError(f"{asset_or_session_id} not found", provider=self.provider)

        playable = None
        if phase == AssetPhase.READY:
            playable = PlayableAsset(
                asset_id=f"asset-{asset_or_session_id}",
                embed_html="<iframe></iframe>",
                link=f"https://play.test/{asset_or_session_id}",
                duration=12.5,
            )
        return AssetStatus(
            upload_id=asset_or_session_id,
            phase=phase,
            provider=self.provider,
            status=phase.value,
            asset_id=f"asset-{asset_or_session_id}",
            playable_asset=playable,
            error_detail="transcode failed" if phase == AssetPhase.ERRORED else None,
        )

    async def resolve_playback(self, asset_id):
        if self._phase() != AssetPhase.READY:
            raise NotReadyError(f"{asset_id} is not ready", provider=self.provider)
        return PlaybackDescriptor(
            asset_id=asset_id,
            provider=self.provider,
            files=[PlaybackFile("https://play.test/hd.mp4", "hd", 1280, 720, "video/mp4")],
        )

    async def delete(self, asset_id):
        existed = asset_id not in self.deleted
        self.deleted.add(asset_id)
        return DeleteResult(success=True, message=f"Video {asset_id} deleted", existed=existed)

    async def get_video(self, video_id):
        return VideoAsset(id=video_id, provider=self.provider, phase=self._phase(), status="available")

    async def list_videos(self, limit=100):
        return ListVideosResult(videos=[], provider=self.provider, total=0, limit=limit)

    def transfer_instructions(self, session):
        return TransferInstructions(method="PATCH", headers={"Upload-Offset": "0"}, note="fake")


class FakeWholeFileProvider(FakeProvider):
    """Provider that only accepts the whole file in one request."""

    name = ProviderName.MUX
    supports_resumable = False

    async def transfer_bytes(self, session, data, offset, length=None, on_progress=None):
        payload = await read_payload(data)
        self.calls.append((offset, len(payload)))

        if self.failures:
            raise self.failures.pop(0)

        if offset != 0 or len(payload) != session.total_size:
            raise TransferRejectedError("Whole file required", status_code=400, provider=self.provider)

        self.received = bytearray(payload)
        if on_progress is not None:
            on_progress(len(payload))
        return len(payload)


class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is awaited."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_source(size: int, name: str = "clip.mp4", last_modified: int = 1_700_000_000_000):
    pattern = bytes(range(256))
    data = (pattern * (size // 256 + 1))[:size]
    return BufferVideoSource(name, data, last_modified=last_modified)


@pytest.fixture
def resumable_provider() -> FakeProvider:
    return FakeProvider(statuses=[AssetPhase.UPLOADING, AssetPhase.PROCESSING, AssetPhase.READY])


@pytest.fixture
def whole_file_provider() -> FakeWholeFileProvider:
    return FakeWholeFileProvider(statuses=[AssetPhase.PROCESSING, AssetPhase.READY])


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fakes():
    """Fake classes and helpers, for tests that build several instances."""

    class Fakes:
        Provider = FakeProvider
        WholeFileProvider = FakeWholeFileProvider
        Clock = FakeClock
        source = staticmethod(make_source)

    return Fakes
