"""
Tests for the sync orchestrator entry points.
"""

import asyncio

import pytest

from conftest import ACCOUNT_ID, DEAL_ID, FakeAnalysisEngine, FakeMomentumModel, FakeProvider
from dealflow_sync.analysis.engine import OpenAIAnalysisEngine
from dealflow_sync.analysis.momentum_model import HeuristicMomentumModel, OpenAIMomentumModel
from dealflow_sync.bus import ChangeNotificationBus
from dealflow_sync.models.session import AbandonReason, IntensivePolicy, SessionState
from dealflow_sync.models.transcript import Segment
from dealflow_sync.orchestrator import SyncOrchestrator
from dealflow_sync.provider_client import MeetGeekClient
from dealflow_sync.store import InMemoryStore
from dealflow_sync.utils.clock import ManualClock
from dealflow_sync.utils.config import Settings
from dealflow_sync.utils.exceptions import (
    ConfigurationError,
    PermanentProviderError,
    RateLimitError,
    ValidationError,
)


class TestManualSync:
    """Tests for manual_sync_now."""

    @pytest.mark.asyncio
    async def test_success(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        engine: FakeAnalysisEngine,
        store: InMemoryStore,
        sample_segments: list[Segment],
    ) -> None:
        """Test a ready transcript is stored, analyzed and scored inline."""
        provider.default = sample_segments

        result = await orchestrator.manual_sync_now("M2")

        assert result
        assert result.reason == "Transcript synced and analyzed"
        assert result.cascade.momentum.score == 10.0
        assert await store.get_transcript("M2") is not None
        assert engine.calls == ["M2"]
        assert orchestrator.get_session("M2").state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_rejected_while_polling(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        clock: ManualClock,
    ) -> None:
        """Test a manual sync during intensive polling makes no provider call."""
        await orchestrator.start_intensive("M2")
        await clock.settle()
        calls_before = provider.call_count

        result = await orchestrator.manual_sync_now("M2")

        assert not result
        assert result.reason == "Sync already in progress for this meeting"
        assert provider.call_count == calls_before
        assert orchestrator.get_session("M2").state == SessionState.POLLING
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_manual_syncs(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        sample_segments: list[Segment],
    ) -> None:
        """Test two simultaneous clicks produce one provider call."""
        provider.default = sample_segments
        provider.gate = asyncio.Event()
        provider.entered = asyncio.Event()

        first = asyncio.create_task(orchestrator.manual_sync_now("M2"))
        await provider.entered.wait()
        second = await orchestrator.manual_sync_now("M2")
        provider.gate.set()

        assert await first
        assert not second
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, orchestrator: SyncOrchestrator) -> None:
        """Test a meeting the store does not know."""
        result = await orchestrator.manual_sync_now("nope")

        assert not result
        assert result.reason == "Meeting not found"

    @pytest.mark.asyncio
    async def test_not_ready(
        self, orchestrator: SyncOrchestrator, provider: FakeProvider
    ) -> None:
        """Test a not-ready answer closes the session so background can retry."""
        result = await orchestrator.manual_sync_now("M2")

        assert not result
        assert "not ready" in result.reason
        session = orchestrator.get_session("M2")
        assert session.abandon_reason == AbandonReason.NOT_READY
        assert orchestrator.registry.live_sessions() == []

    @pytest.mark.asyncio
    async def test_permanent_error(
        self, orchestrator: SyncOrchestrator, provider: FakeProvider
    ) -> None:
        """Test a permanent provider error is reported."""
        provider.script = [PermanentProviderError("Meeting not found in MeetGeek", status_code=404)]

        result = await orchestrator.manual_sync_now("M2")

        assert not result
        assert result.reason == "Transcript unavailable: Meeting not found in MeetGeek"
        assert orchestrator.get_session("M2").permanent_failure

    @pytest.mark.asyncio
    async def test_transient_error(
        self, orchestrator: SyncOrchestrator, provider: FakeProvider
    ) -> None:
        """Test a rate-limited provider is reported as temporary."""
        provider.script = [RateLimitError(service="meetgeek", retry_after=60)]

        result = await orchestrator.manual_sync_now("M2")

        assert not result
        assert result.reason.startswith("Transcript provider temporarily unavailable")
        assert orchestrator.get_session("M2").abandon_reason == AbandonReason.TRANSIENT_ERROR

    @pytest.mark.asyncio
    async def test_analysis_failure_still_syncs(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        engine: FakeAnalysisEngine,
        store: InMemoryStore,
        sample_segments: list[Segment],
    ) -> None:
        """Test a failed analysis leaves the transcript stored and the session completed."""
        provider.default = sample_segments
        engine.fail = True

        result = await orchestrator.manual_sync_now("M2")

        assert result
        assert result.reason == "Transcript synced, but analysis failed: Engine unavailable"
        assert await store.get_transcript("M2") is not None
        assert await store.get_analysis("M2") is None
        assert orchestrator.get_session("M2").state == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_momentum_failure_is_reported(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        momentum_model: FakeMomentumModel,
        sample_segments: list[Segment],
    ) -> None:
        """Test the reason mentions a momentum failure."""
        provider.default = sample_segments
        momentum_model.fail = True

        result = await orchestrator.manual_sync_now("M2")

        assert result
        assert "momentum update failed" in result.reason


class TestStartIntensive:
    """Tests for start_intensive."""

    @pytest.mark.asyncio
    async def test_unknown_meeting_raises(self, orchestrator: SyncOrchestrator) -> None:
        """Test an unknown meeting is a validation error."""
        with pytest.raises(ValidationError):
            await orchestrator.start_intensive("nope")

    @pytest.mark.asyncio
    async def test_after_manual_sync_completed(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        clock: ManualClock,
        sample_segments: list[Segment],
    ) -> None:
        """Test a completed meeting can be polled again."""
        provider.default = sample_segments
        await orchestrator.manual_sync_now("M2")

        session = await orchestrator.start_intensive(
            "M2", IntensivePolicy(max_attempts=1, interval_seconds=0)
        )
        await clock.settle()

        assert session.state == SessionState.COMPLETED
        assert provider.call_count == 2


class TestCancellation:
    """Tests for explicit cancellation and shutdown."""

    @pytest.mark.asyncio
    async def test_cancel_deal(self, orchestrator: SyncOrchestrator, clock: ManualClock) -> None:
        """Test deal-wide cancellation counts closed sessions."""
        for meeting_id in ("M1", "M2"):
            await orchestrator.start_intensive(meeting_id)
        await clock.settle()

        assert await orchestrator.cancel_deal(DEAL_ID) == 2
        assert await orchestrator.cancel_deal(DEAL_ID) == 0

    @pytest.mark.asyncio
    async def test_cancel_during_cascade_keeps_analysis(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        engine: FakeAnalysisEngine,
        store: InMemoryStore,
        sample_segments: list[Segment],
    ) -> None:
        """Test cancelling a syncing session lets its analysis finish."""
        provider.default = sample_segments
        engine.gate = asyncio.Event()
        engine.entered = asyncio.Event()
        session = await orchestrator.start_intensive("M1")
        await engine.entered.wait()

        assert await orchestrator.cancel_deal(DEAL_ID) == 1
        assert session.state == SessionState.ABANDONED
        assert await orchestrator.start_intensive("M1") is None

        engine.gate.set()
        await orchestrator.pipeline.drain()

        assert await store.get_transcript("M1") is not None
        assert await store.get_analysis("M1") is not None
        assert engine.calls == ["M1"]
        assert session.abandon_reason == AbandonReason.CANCELLED
        assert await orchestrator.start_intensive("M1") is not None
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_running_cascade(
        self,
        orchestrator: SyncOrchestrator,
        provider: FakeProvider,
        engine: FakeAnalysisEngine,
        store: InMemoryStore,
        clock: ManualClock,
        sample_segments: list[Segment],
    ) -> None:
        """Test shutdown does not strand a stored transcript without analysis."""
        provider.default = sample_segments
        engine.gate = asyncio.Event()
        engine.entered = asyncio.Event()
        await orchestrator.start_intensive("M1")
        await engine.entered.wait()

        shutdown = asyncio.create_task(orchestrator.shutdown())
        await clock.settle()
        assert not shutdown.done()

        engine.gate.set()
        await shutdown

        assert await store.get_analysis("M1") is not None
        assert orchestrator.pipeline.deliveries_in_flight == 0
        assert orchestrator.registry.live_sessions() == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_meeting(self, orchestrator: SyncOrchestrator) -> None:
        assert not await orchestrator.cancel_meeting("M1")

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(
        self,
        orchestrator: SyncOrchestrator,
        bus: ChangeNotificationBus,
        clock: ManualClock,
    ) -> None:
        """Test shutdown closes sessions, loops and subscriptions."""
        await orchestrator.start_intensive("M1")
        orchestrator.ensure_background_coverage(ACCOUNT_ID)
        await clock.settle()

        await orchestrator.shutdown()

        assert orchestrator.registry.live_sessions() == []
        assert not orchestrator.background.is_covering(ACCOUNT_ID)
        assert bus.subscription_count == 0
        assert clock.pending_sleepers == 0

    @pytest.mark.asyncio
    async def test_stop_background_coverage(
        self, orchestrator: SyncOrchestrator, clock: ManualClock
    ) -> None:
        """Test coverage can be stopped and started again."""
        orchestrator.ensure_background_coverage(ACCOUNT_ID)
        await clock.settle()

        await orchestrator.stop_background_coverage(ACCOUNT_ID)

        assert not orchestrator.listener.is_listening(ACCOUNT_ID)
        assert orchestrator.ensure_background_coverage(ACCOUNT_ID)
        await orchestrator.shutdown()


class TestFromSettings:
    """Tests for building an orchestrator from configuration."""

    def test_missing_keys(self, store: InMemoryStore, bus: ChangeNotificationBus) -> None:
        """Test missing API keys are reported together."""
        settings = Settings(meetgeek_api_key="", openai_api_key="")

        with pytest.raises(ConfigurationError) as exc_info:
            SyncOrchestrator.from_settings(store, bus, settings)

        assert set(exc_info.value.missing_keys) == {"MEETGEEK_API_KEY", "OPENAI_API_KEY"}

    def test_builds_real_adapters(
        self, store: InMemoryStore, bus: ChangeNotificationBus
    ) -> None:
        """Test the MeetGeek client and OpenAI adapters are wired."""
        settings = Settings(
            meetgeek_api_key="k", openai_api_key="k", use_local_momentum_model=False
        )
        orchestrator = SyncOrchestrator.from_settings(store, bus, settings)

        assert isinstance(orchestrator.provider, MeetGeekClient)
        assert isinstance(orchestrator.cascade.engine, OpenAIAnalysisEngine)
        assert isinstance(orchestrator.recomputer.model, OpenAIMomentumModel)

    def test_local_momentum_model(
        self, store: InMemoryStore, bus: ChangeNotificationBus
    ) -> None:
        """Test the heuristic model is the default."""
        settings = Settings(meetgeek_api_key="k", openai_api_key="k")

        orchestrator = SyncOrchestrator.from_settings(store, bus, settings)

        assert isinstance(orchestrator.recomputer.model, HeuristicMomentumModel)
