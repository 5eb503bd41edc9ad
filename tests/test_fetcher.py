"""
Tests for the single-attempt transcript fetcher.
"""

import pytest

from conftest import FakeProvider
from dealflow_sync.fetcher import TranscriptFetcher
from dealflow_sync.models.session import FetchStatus
from dealflow_sync.models.transcript import Segment, SyncTarget
from dealflow_sync.store import InMemoryStore
from dealflow_sync.utils.clock import ManualClock
from dealflow_sync.utils.exceptions import (
    PermanentProviderError,
    PersistenceError,
    RateLimitError,
    TransientProviderError,
)


class BrokenStore(InMemoryStore):
    async def put_transcript(self, record):
        raise RuntimeError("disk full")


class TestTranscriptFetcher:
    """Test suite for TranscriptFetcher."""

    @pytest.mark.asyncio
    async def test_ready_transcript_is_persisted(
        self,
        store: InMemoryStore,
        clock: ManualClock,
        target_m1: SyncTarget,
        sample_segments: list[Segment],
    ) -> None:
        """Test a ready answer is stored and returned."""
        fetcher = TranscriptFetcher(FakeProvider([sample_segments]), store, clock)

        outcome = await fetcher.fetch_once(target_m1)

        assert outcome.status == FetchStatus.READY
        assert outcome.is_ready
        stored = await store.get_transcript("M1")
        assert stored is outcome.record
        assert stored.segment_count == 3
        assert stored.fetched_at == clock.now()

    @pytest.mark.asyncio
    async def test_same_payload_twice_persists_once(
        self,
        store: InMemoryStore,
        clock: ManualClock,
        target_m1: SyncTarget,
        sample_segments: list[Segment],
    ) -> None:
        """Test fetching the same ready payload twice yields one record."""
        provider = FakeProvider(default=sample_segments)
        fetcher = TranscriptFetcher(provider, store, clock)

        first = await fetcher.fetch_once(target_m1)
        await clock.advance(60)
        second = await fetcher.fetch_once(target_m1)

        assert provider.call_count == 2
        assert store.transcript_writes == 1
        assert second.record.fetched_at == first.record.fetched_at

    @pytest.mark.asyncio
    async def test_changed_payload_replaces_record(
        self,
        store: InMemoryStore,
        clock: ManualClock,
        target_m1: SyncTarget,
        sample_segments: list[Segment],
    ) -> None:
        """Test a different segment set replaces, never appends."""
        longer = [*sample_segments, Segment(speaker="Prospect", text="Sounds good.", start_offset=12.0)]
        fetcher = TranscriptFetcher(FakeProvider([sample_segments, longer]), store, clock)

        await fetcher.fetch_once(target_m1)
        await fetcher.fetch_once(target_m1)

        stored = await store.get_transcript("M1")
        assert stored.segment_count == 4
        assert store.transcript_writes == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, []])
    async def test_not_ready(
        self, store: InMemoryStore, clock: ManualClock, target_m1: SyncTarget, payload
    ) -> None:
        """Test not-ready and empty answers persist nothing."""
        fetcher = TranscriptFetcher(FakeProvider([payload]), store, clock)

        outcome = await fetcher.fetch_once(target_m1)

        assert outcome.status == FetchStatus.NOT_READY
        assert outcome.record is None
        assert await store.get_transcript("M1") is None

    @pytest.mark.asyncio
    async def test_transient_error_is_reported(
        self, store: InMemoryStore, clock: ManualClock, target_m1: SyncTarget
    ) -> None:
        """Test transient errors become an outcome, not an exception."""
        provider = FakeProvider([RateLimitError(service="meetgeek", retry_after=30)])
        fetcher = TranscriptFetcher(provider, store, clock)

        outcome = await fetcher.fetch_once(target_m1)

        assert outcome.status == FetchStatus.TRANSIENT_ERROR
        assert outcome.retry_after == 30

    @pytest.mark.asyncio
    async def test_network_error_is_transient(
        self, store: InMemoryStore, clock: ManualClock, target_m1: SyncTarget
    ) -> None:
        """Test a plain transient provider error."""
        provider = FakeProvider([TransientProviderError("Network error occurred")])
        outcome = await TranscriptFetcher(provider, store, clock).fetch_once(target_m1)

        assert outcome.status == FetchStatus.TRANSIENT_ERROR
        assert outcome.error == "Network error occurred"

    @pytest.mark.asyncio
    async def test_permanent_error_is_reported(
        self, store: InMemoryStore, clock: ManualClock, target_m1: SyncTarget
    ) -> None:
        """Test permanent errors become an outcome, not an exception."""
        provider = FakeProvider([PermanentProviderError("Meeting not found", status_code=404)])
        outcome = await TranscriptFetcher(provider, store, clock).fetch_once(target_m1)

        assert outcome.status == FetchStatus.PERMANENT_ERROR
        assert outcome.error == "Meeting not found"

    @pytest.mark.asyncio
    async def test_storage_failure_raises_persistence_error(
        self,
        sample_deal,
        clock: ManualClock,
        target_m1: SyncTarget,
        sample_segments: list[Segment],
    ) -> None:
        """Test a failed write is not reported as ready."""
        fetcher = TranscriptFetcher(FakeProvider([sample_segments]), BrokenStore(), clock)

        with pytest.raises(PersistenceError) as exc_info:
            await fetcher.fetch_once(target_m1)

        assert exc_info.value.key == "M1"
