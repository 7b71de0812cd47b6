"""Property-based tests for the transfer engine.

**Feature: video-upload, Property: Resumable Chunked Transfer**

Tests that:
- The acknowledged offset never decreases and never exceeds the total size
- A resume with a different file fails before any byte is sent
- A resume continues from exactly the acknowledged offset
- Transient failures are retried up to the ceiling, rejections are not
- A retry after a lost response resends only the bytes the backend lacks
- A pause stops the transfer at the next chunk boundary
"""

import asyncio

import httpx
from hypothesis import HealthCheck, given, settings, strategies as st
import pytest

from videohost.modules.provider.errors import RemoteUnavailableError, TransferRejectedError
from videohost.modules.provider.interface import FileFingerprint, UploadSession
from videohost.modules.provider.providers.vimeo import VimeoProvider
from videohost.modules.transfer.engine import (
    FileMismatchError,
    NoPendingUploadError,
    TransferEngine,
    TransferFailedError,
    TransferPhase,
    TransferStateError,
)
from videohost.modules.transfer.repository import InMemorySessionStore
from videohost.modules.transfer.retry import RetryConfig

MIB = 1024 * 1024
FIXTURE_CHECKS = [HealthCheck.function_scoped_fixture]


async def no_sleep(seconds: float) -> None:
    return None


class RecordingStore(InMemorySessionStore):
    """In-memory store that remembers every saved offset."""

    def __init__(self):
        super().__init__()
        self.saved_offsets: list[int] = []

    async def save(self, session: UploadSession) -> None:
        self.saved_offsets.append(session.acknowledged_offset)
        await super().save(session)


def make_engine(provider, store, chunk_size, max_attempts=3, on_progress=None, sleep=no_sleep):
    return TransferEngine(
        provider,
        store,
        chunk_size=chunk_size,
        retry_config=RetryConfig(max_attempts=max_attempts, initial_delay=1.0, max_delay=30.0),
        on_progress=on_progress,
        sleep=sleep,
    )


def transient_error() -> TransferRejectedError:
    return TransferRejectedError("Service unavailable", status_code=503, transient=True)


class TestOffsetMonotonicity:
    """Acknowledged offsets only move forward, within the file."""

    @given(
        size=st.integers(min_value=1, max_value=50_000),
        chunk_size=st.integers(min_value=512, max_value=16_384),
        accept_limit=st.one_of(st.none(), st.integers(min_value=1, max_value=4096)),
        failures=st.integers(min_value=0, max_value=2),
    )
    @settings(max_examples=100, suppress_health_check=FIXTURE_CHECKS)
    def test_offset_non_decreasing_and_bounded(self, fakes, size, chunk_size, accept_limit, failures) -> None:
        """**Feature: video-upload, Property: Offset Monotonicity**

        For any file, chunk size, partial acceptance and transient failures,
        every reported offset SHALL be >= the previous one and <= total size.
        """
        provider = fakes.Provider(accept_limit=accept_limit)
        provider.failures = [transient_error() for _ in range(failures)]
        store = RecordingStore()
        offsets = []
        engine = make_engine(provider, store, chunk_size, on_progress=lambda ack, total: offsets.append(ack))
        source = fakes.source(size)

        state = asyncio.run(engine.start(source, "Clip"))

        assert state.phase == TransferPhase.COMPLETED
        assert offsets == sorted(offsets)
        assert all(0 < offset <= size for offset in offsets)
        assert store.saved_offsets == sorted(store.saved_offsets)
        assert state.acknowledged_offset == size
        assert bytes(provider.received) == source.data

    @given(
        size=st.integers(min_value=1, max_value=30_000),
        chunk_size=st.integers(min_value=512, max_value=8192),
    )
    @settings(max_examples=50, suppress_health_check=FIXTURE_CHECKS)
    def test_session_persisted_after_every_chunk(self, fakes, size, chunk_size) -> None:
        """**Feature: video-upload, Property: Persistence Per Chunk**

        Every acknowledged chunk SHALL be persisted before the next is sent.
        """
        provider = fakes.Provider()
        store = RecordingStore()
        engine = make_engine(provider, store, chunk_size)

        asyncio.run(engine.start(fakes.source(size), "Clip"))

        # First save is the freshly created session at offset 0
        expected = [0] + [min(size, (i + 1) * chunk_size) for i in range(len(provider.calls))]
        assert store.saved_offsets == expected

    @pytest.mark.asyncio
    async def test_offset_behind_acknowledged_is_not_adopted(self, fakes) -> None:
        provider = fakes.Provider()
        store = InMemorySessionStore()
        engine = make_engine(provider, store, chunk_size=10, max_attempts=2)
        replies = iter([10, 5, 5])

        async def regressing(session, data, offset, length=None, on_progress=None):
            provider.calls.append((offset, length))
            return next(replies)

        provider.transfer_bytes = regressing

        with pytest.raises(TransferFailedError):
            await engine.start(fakes.source(30), "Clip")

        assert engine.session.acknowledged_offset == 10
        assert (await store.load()).acknowledged_offset == 10

    @pytest.mark.asyncio
    async def test_offset_past_total_is_rejected(self, fakes) -> None:
        provider = fakes.Provider()

        async def overshooting(session, data, offset, length=None, on_progress=None):
            return session.total_size + 1

        provider.transfer_bytes = overshooting
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=10)

        with pytest.raises(TransferRejectedError):
            await engine.start(fakes.source(30), "Clip")

        assert engine.phase == TransferPhase.FAILED
        assert engine.session.acknowledged_offset == 0


class TestResume:
    """Resume validates the file and continues exactly where it stopped."""

    @given(
        field=st.sampled_from(["name", "size", "last_modified"]),
        acknowledged=st.integers(min_value=0, max_value=1000),
    )
    @settings(max_examples=100, suppress_health_check=FIXTURE_CHECKS)
    def test_fingerprint_mismatch_never_transfers(self, fakes, field, acknowledged) -> None:
        """**Feature: video-upload, Property: File Mismatch Rejection**

        For any fingerprint difference, resume SHALL fail with FileMismatchError,
        send no bytes and clear the persisted session.
        """
        source = fakes.source(2000, name="clip.mp4", last_modified=1000)
        other = {
            "name": fakes.source(2000, name="other.mp4", last_modified=1000),
            "size": fakes.source(2001, name="clip.mp4", last_modified=1000),
            "last_modified": fakes.source(2000, name="clip.mp4", last_modified=2000),
        }[field]

        provider = fakes.Provider()
        store = InMemorySessionStore()
        session = UploadSession(
            session_id="session-1",
            transfer_url="https://fake.test/upload",
            total_size=source.size,
            provider=provider.provider,
            acknowledged_offset=acknowledged,
            fingerprint=source.fingerprint,
        )

        async def scenario():
            await store.save(session)
            engine = make_engine(provider, store, chunk_size=256)
            with pytest.raises(FileMismatchError):
                await engine.resume(other)
            return engine, await store.load()

        engine, remaining = asyncio.run(scenario())

        assert provider.calls == []
        assert remaining is None
        assert engine.phase == TransferPhase.FAILED

    @given(
        size=st.integers(min_value=2, max_value=40_000),
        chunk_size=st.integers(min_value=256, max_value=8192),
        pause_after=st.integers(min_value=1, max_value=10),
    )
    @settings(max_examples=100, suppress_health_check=FIXTURE_CHECKS)
    def test_resume_after_restart_has_no_gap_or_overlap(self, fakes, size, chunk_size, pause_after) -> None:
        """**Feature: video-upload, Property: Exact Resume**

        A resumed transfer SHALL start at the acknowledged offset and send
        every remaining byte exactly once.
        """
        provider = fakes.Provider()
        store = InMemorySessionStore()
        source = fakes.source(size)

        async def scenario():
            acks = []

            def pause_when_due(ack, total):
                acks.append(ack)
                if len(acks) == pause_after:
                    first.pause()

            first = make_engine(provider, store, chunk_size, on_progress=pause_when_due)
            first_state = await first.start(source, "Clip")

            # A new engine stands in for a restarted process
            second = make_engine(provider, store, chunk_size)
            second_state = await second.resume(fakes.source(size))
            return first_state, second_state

        first_state, second_state = asyncio.run(scenario())

        offsets = [offset for offset, _ in provider.calls]
        assert offsets == sorted(set(offsets))
        for (offset, length), (next_offset, _) in zip(provider.calls, provider.calls[1:]):
            assert offset + length == next_offset
        assert bytes(provider.received) == source.data
        assert second_state.phase == TransferPhase.COMPLETED
        if first_state.is_paused:
            assert second_state.bytes_sent == size - first_state.acknowledged_offset
        else:
            assert second_state.bytes_sent == 0

    @pytest.mark.asyncio
    async def test_resume_without_record_fails(self, fakes) -> None:
        engine = make_engine(fakes.Provider(), InMemorySessionStore(), chunk_size=10)

        with pytest.raises(NoPendingUploadError):
            await engine.resume(fakes.source(10))

    @pytest.mark.asyncio
    async def test_resume_adopts_backend_offset_ahead(self, fakes) -> None:
        provider = fakes.Provider()
        source = fakes.source(100)
        provider.received = bytearray(source.data[:60])
        provider.backend_offset = 60
        store = InMemorySessionStore()
        await store.save(UploadSession(
            session_id="session-1",
            transfer_url="https://fake.test/upload",
            total_size=100,
            provider=provider.provider,
            acknowledged_offset=40,
            fingerprint=source.fingerprint,
        ))

        state = await make_engine(provider, store, chunk_size=25).resume(source)

        assert provider.calls == [(60, 25), (85, 15)]
        assert state.bytes_sent == 40
        assert state.is_complete

    @pytest.mark.asyncio
    async def test_resume_ignores_backend_offset_behind(self, fakes) -> None:
        provider = fakes.Provider()
        source = fakes.source(100)
        provider.received = bytearray(source.data[:40])
        provider.backend_offset = 10
        store = InMemorySessionStore()
        await store.save(UploadSession(
            session_id="session-1",
            transfer_url="https://fake.test/upload",
            total_size=100,
            provider=provider.provider,
            acknowledged_offset=40,
            fingerprint=source.fingerprint,
        ))

        await make_engine(provider, store, chunk_size=60).resume(source)

        assert provider.calls == [(40, 60)]

    @pytest.mark.asyncio
    async def test_completed_record_resumes_without_transfer(self, fakes) -> None:
        provider = fakes.Provider()
        source = fakes.source(100)
        store = InMemorySessionStore()
        await store.save(UploadSession(
            session_id="session-1",
            transfer_url="https://fake.test/upload",
            total_size=100,
            provider=provider.provider,
            acknowledged_offset=100,
            fingerprint=source.fingerprint,
        ))

        state = await make_engine(provider, store, chunk_size=10).resume(source)

        assert state.is_complete
        assert provider.calls == []


class TestRetryPolicy:
    """Transient failures are retried; rejections surface at once."""

    @given(failures=st.integers(min_value=0, max_value=6))
    @settings(max_examples=50, suppress_health_check=FIXTURE_CHECKS)
    def test_transient_failures_retried_up_to_ceiling(self, fakes, failures) -> None:
        """**Feature: video-upload, Property: Retry Ceiling**

        A chunk SHALL be attempted at most max_attempts (3) times, with
        linear backoff of attempt x 1s between attempts.
        """
        provider = fakes.Provider()
        provider.failures = [transient_error() for _ in range(failures)]
        store = InMemorySessionStore()
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        engine = make_engine(provider, store, chunk_size=100, sleep=record_sleep)

        async def scenario():
            try:
                return await engine.start(fakes.source(100), "Clip")
            except TransferFailedError as e:
                return e

        outcome = asyncio.run(scenario())

        if failures < 3:
            assert outcome.phase == TransferPhase.COMPLETED
            assert len(provider.calls) == failures + 1
            assert sleeps == [float(attempt) for attempt in range(1, failures + 1)]
        else:
            assert isinstance(outcome, TransferFailedError)
            assert isinstance(outcome.__cause__, TransferRejectedError)
            assert len(provider.calls) == 3
            assert sleeps == [1.0, 2.0]
            assert engine.phase == TransferPhase.FAILED

    @pytest.mark.asyncio
    async def test_non_transient_rejection_not_retried(self, fakes) -> None:
        provider = fakes.Provider()
        provider.failures = [TransferRejectedError("Forbidden", status_code=403)]
        store = InMemorySessionStore()
        engine = make_engine(provider, store, chunk_size=100)

        with pytest.raises(TransferRejectedError) as exc_info:
            await engine.start(fakes.source(100), "Clip")

        assert not isinstance(exc_info.value, TransferFailedError)
        assert len(provider.calls) == 1
        # The record survives so the upload can be resumed later
        assert await store.load() is not None

    @pytest.mark.asyncio
    async def test_remote_unavailable_is_retried(self, fakes) -> None:
        provider = fakes.Provider()
        provider.failures = [RemoteUnavailableError("timeout")]
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=100)

        state = await engine.start(fakes.source(100), "Clip")

        assert state.is_complete
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_whole_file_transfer_is_retried(self, fakes) -> None:
        provider = fakes.WholeFileProvider()
        provider.failures = [transient_error()]
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=10)

        state = await engine.start(fakes.source(100), "Clip")

        assert state.is_complete
        assert provider.calls == [(0, 100), (0, 100)]


class TestLostResponse:
    """A retry resends only the bytes the backend does not already hold."""

    @pytest.mark.asyncio
    async def test_retry_resumes_from_stored_bytes(self, fakes) -> None:
        source = fakes.source(200)
        provider = fakes.Provider(accept_limit=100, reports_offset=True)
        provider.lost_responses = [transient_error()]
        acks = []
        engine = make_engine(
            provider, InMemorySessionStore(), chunk_size=200,
            on_progress=lambda ack, total: acks.append(ack),
        )

        state = await engine.start(source, "Clip")

        assert state.is_complete
        assert provider.calls == [(0, 200), (100, 100)]
        assert bytes(provider.received) == source.data
        assert state.bytes_sent == 200
        assert acks == [100, 200]

    @pytest.mark.asyncio
    async def test_retry_skipped_when_backend_holds_whole_chunk(self, fakes) -> None:
        source = fakes.source(300)
        provider = fakes.Provider(reports_offset=True)
        provider.lost_responses = [transient_error()]
        store = RecordingStore()

        state = await make_engine(provider, store, chunk_size=200).start(source, "Clip")

        assert state.is_complete
        assert provider.calls == [(0, 200), (200, 100)]
        assert bytes(provider.received) == source.data
        assert state.bytes_sent == 300
        assert 200 in store.saved_offsets

    @pytest.mark.asyncio
    async def test_offset_conflict_resyncs_with_backend(self, fakes) -> None:
        source = fakes.source(200)
        provider = fakes.Provider(reports_offset=True)
        provider.received.extend(source.data[:50])
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=200)

        state = await engine.start(source, "Clip")

        assert state.is_complete
        assert provider.calls == [(0, 200), (50, 150)]
        assert bytes(provider.received) == source.data

    @pytest.mark.asyncio
    async def test_tus_patch_lost_after_storing_is_resumed(self, fakes) -> None:
        tus_url = "https://tus.vimeo.test/files/abc"
        stored = bytearray()
        patch_offsets = []
        timed_out = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(
                    200, json={"uri": "/videos/123", "upload": {"upload_link": tus_url}}
                )
            if request.method == "HEAD":
                return httpx.Response(200, headers={"Upload-Offset": str(len(stored))})

            offset = int(request.headers["Upload-Offset"])
            patch_offsets.append(request.headers["Upload-Offset"])
            if offset != len(stored):
                return httpx.Response(409)
            if not timed_out:
                stored.extend(request.content[:100])
                timed_out.append(True)
                raise httpx.ReadTimeout("response lost", request=request)
            stored.extend(request.content)
            return httpx.Response(204, headers={"Upload-Offset": str(len(stored))})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = VimeoProvider(
            "vimeo-token", base_url="https://api.vimeo.test", client=client
        )
        source = fakes.source(200)
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=200)

        state = await engine.start(source, "Clip")

        assert state.is_complete
        assert patch_offsets == ["0", "100"]
        assert bytes(stored) == source.data


class TestPause:
    """Pause takes effect at the next chunk boundary."""

    @given(
        chunks=st.integers(min_value=2, max_value=12),
        pause_after=st.integers(min_value=1, max_value=11),
    )
    @settings(max_examples=100, suppress_health_check=FIXTURE_CHECKS)
    def test_no_chunk_sent_after_pause(self, fakes, chunks, pause_after) -> None:
        """**Feature: video-upload, Property: Pause At Chunk Boundary**

        After pause() no further chunk SHALL be sent, and the persisted
        offset SHALL equal the last acknowledged offset.
        """
        chunk_size = 1000
        provider = fakes.Provider()
        store = InMemorySessionStore()
        acks = []

        def on_progress(ack, total):
            acks.append(ack)
            if len(acks) == pause_after:
                engine.pause()

        engine = make_engine(provider, store, chunk_size, on_progress=on_progress)

        async def scenario():
            state = await engine.start(fakes.source(chunks * chunk_size), "Clip")
            return state, await store.load()

        state, persisted = asyncio.run(scenario())

        if pause_after < chunks:
            assert state.phase == TransferPhase.PAUSED
            assert len(provider.calls) == pause_after
            assert persisted.acknowledged_offset == pause_after * chunk_size
        else:
            assert state.phase == TransferPhase.COMPLETED
        assert persisted.acknowledged_offset == acks[-1]

    @pytest.mark.asyncio
    async def test_resume_after_pause_in_same_engine(self, fakes) -> None:
        provider = fakes.Provider()
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=10,
                             on_progress=lambda ack, total: engine.pause())
        source = fakes.source(30)

        first = await engine.start(source, "Clip")
        engine.on_progress = None
        second = await engine.resume(source)

        assert first.is_paused and first.acknowledged_offset == 10
        assert second.is_complete
        assert provider.calls == [(0, 10), (10, 10), (20, 10)]

    @pytest.mark.asyncio
    async def test_abandon_clears_record(self, fakes) -> None:
        store = InMemorySessionStore()
        engine = make_engine(fakes.Provider(), store, chunk_size=10,
                             on_progress=lambda ack, total: engine.pause())

        await engine.start(fakes.source(30), "Clip")
        await engine.abandon()

        assert await store.load() is None
        assert engine.phase == TransferPhase.IDLE
        assert engine.session is None


class TestScenarios:

    @pytest.mark.asyncio
    async def test_twelve_mib_in_three_chunks(self, fakes) -> None:
        provider = fakes.Provider()
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=5 * MIB)

        state = await engine.start(fakes.source(12 * MIB), "Clip")

        assert provider.calls == [(0, 5 * MIB), (5 * MIB, 5 * MIB), (10 * MIB, 2 * MIB)]
        assert state.acknowledged_offset == 12 * MIB
        assert state.is_complete

    @pytest.mark.asyncio
    async def test_twelve_mib_whole_file_in_one_call(self, fakes) -> None:
        provider = fakes.WholeFileProvider()
        progress = []
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=5 * MIB,
                             on_progress=lambda ack, total: progress.append((ack, total)))

        state = await engine.start(fakes.source(12 * MIB), "Clip")

        assert provider.calls == [(0, 12 * MIB)]
        assert state.acknowledged_offset == 12 * MIB
        assert progress[-1] == (12 * MIB, 12 * MIB)

    @pytest.mark.asyncio
    async def test_empty_file_is_refused(self, fakes) -> None:
        provider = fakes.Provider()
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=10)

        with pytest.raises(ValueError):
            await engine.start(fakes.source(0), "Clip")

        assert provider.sessions_created == 0

    @pytest.mark.asyncio
    async def test_second_transfer_on_busy_engine_fails(self, fakes) -> None:
        provider = fakes.Provider()
        gate = asyncio.Event()
        original = provider.transfer_bytes

        async def gated(*args, **kwargs):
            await gate.wait()
            return await original(*args, **kwargs)

        provider.transfer_bytes = gated
        engine = make_engine(provider, InMemorySessionStore(), chunk_size=10)

        running = asyncio.create_task(engine.start(fakes.source(10), "Clip"))
        await asyncio.sleep(0)

        with pytest.raises(TransferStateError):
            await engine.start(fakes.source(10), "Other")

        gate.set()
        state = await running
        assert state.is_complete

    @pytest.mark.asyncio
    async def test_session_carries_fingerprint(self, fakes) -> None:
        store = InMemorySessionStore()
        source = fakes.source(10, name="clip.mp4", last_modified=42)

        await make_engine(fakes.Provider(), store, chunk_size=10).start(source, "Clip")

        persisted = await store.load()
        assert persisted.fingerprint == FileFingerprint("clip.mp4", 10, 42)
        assert persisted.display_name == "Clip"
