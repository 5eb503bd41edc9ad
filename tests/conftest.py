"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from dealflow_sync.bus import ChangeNotificationBus
from dealflow_sync.models.insight import (
    AnalysisRecord,
    Deal,
    DealHistory,
    MeetingInsights,
    MomentumResult,
    MomentumTrend,
)
from dealflow_sync.models.transcript import Meeting, Segment, SyncTarget
from dealflow_sync.orchestrator import SyncOrchestrator
from dealflow_sync.registry import SessionRegistry
from dealflow_sync.store import InMemoryStore
from dealflow_sync.utils.clock import ManualClock
from dealflow_sync.utils.config import Settings
from dealflow_sync.utils.exceptions import AnalysisFailedError, MomentumComputeFailedError

START = datetime(2026, 1, 6, 10, 0, 0, tzinfo=timezone.utc)
ACCOUNT_ID = "acct_001"
DEAL_ID = "deal_001"


# =============================================================================
# Fakes
# =============================================================================


class FakeProvider:
    """
    Scripted transcript provider.

    Each call consumes the next script item: ``None`` means not ready, a list
    of segments means ready, an exception instance is raised. When the
    script runs out ``default`` is used. If ``gate`` is set, every call
    waits on it after signalling ``entered``.
    """

    def __init__(self, script: Optional[list[Any]] = None, default: Any = None) -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def fetch_transcript(self, meeting_id: str) -> Optional[list[Segment]]:
        self.calls.append(meeting_id)
        item = self.script.pop(0) if self.script else self.default
        if self.gate is not None:
            if self.entered is not None:
                self.entered.set()
            await self.gate.wait()
        if isinstance(item, Exception):
            raise item
        return item


class FakeAnalysisEngine:
    """
    Analysis engine returning fixed insights, or failing on demand.

    If ``gate`` is set, every call waits on it after signalling ``entered``.
    """

    def __init__(self, insights: Optional[MeetingInsights] = None, fail: bool = False) -> None:
        self.insights = insights or MeetingInsights(
            pain_points=["Manual reporting takes two days every month"],
            next_steps=["Send pricing proposal by Friday"],
            green_flags=["VP of Sales joined the call"],
            red_flags=[],
            summary="Prospect is evaluating options for Q2.",
            meeting_quality_score=75,
            suggested_stage="qualified",
        )
        self.fail = fail
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None

    async def analyze(self, transcript) -> MeetingInsights:
        self.calls.append(transcript.meeting_id)
        if self.gate is not None:
            if self.entered is not None:
                self.entered.set()
            await self.gate.wait()
        if self.fail:
            raise AnalysisFailedError(
                "Engine unavailable", meeting_id=transcript.meeting_id, stage="engine"
            )
        return self.insights


class FakeMomentumModel:
    """
    Momentum model scoring ten points per analysis.

    ``on_compute`` is awaited with the history before returning, which lets
    tests change the store while a computation is in progress.
    """

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.histories: list[DealHistory] = []
        self.on_compute = None

    async def compute(self, history: DealHistory) -> MomentumResult:
        self.histories.append(history)
        if self.on_compute is not None:
            await self.on_compute(history)
        if self.fail:
            raise MomentumComputeFailedError("Model unavailable", deal_id=history.deal.deal_id)
        return MomentumResult(
            score=10.0 * len(history.analyses),
            trend=MomentumTrend.STEADY,
            reasoning=",".join(a.meeting_id for a in history.analyses),
        )


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def sample_segments() -> list[Segment]:
    """Create a list of sample segments."""
    return [
        Segment(speaker="Rep", text="Thanks for joining today.", start_offset=0.0, end_offset=3.0),
        Segment(
            speaker="Prospect",
            text="Our team spends two days every month on manual reporting.",
            start_offset=3.0,
            end_offset=9.0,
        ),
        Segment(
            speaker="Rep",
            text="I'll send a pricing proposal by Friday.",
            start_offset=9.0,
        ),
    ]


@pytest.fixture
def sample_deal() -> Deal:
    """Create a sample deal."""
    return Deal(
        deal_id=DEAL_ID,
        account_id=ACCOUNT_ID,
        company_name="Acme Corp",
        stage="qualified",
        value_amount=48000,
        created_at=START - timedelta(days=20),
    )


def make_meeting(meeting_id: str, days_ago: float = 1.0, deal_id: str = DEAL_ID) -> Meeting:
    return Meeting(
        meeting_id=meeting_id,
        deal_id=deal_id,
        account_id=ACCOUNT_ID,
        title=f"Call {meeting_id}",
        start_time=START - timedelta(days=days_ago),
    )


def make_analysis(meeting_id: str, minutes_after_start: int = 0, **insights: Any) -> AnalysisRecord:
    return AnalysisRecord(
        meeting_id=meeting_id,
        deal_id=DEAL_ID,
        account_id=ACCOUNT_ID,
        analyzed_at=START + timedelta(minutes=minutes_after_start),
        **insights,
    )


@pytest.fixture
def sample_meetings() -> list[Meeting]:
    """Create meetings M1-M3 for the sample deal."""
    return [make_meeting("M1", 3), make_meeting("M2", 2), make_meeting("M3", 1)]


@pytest.fixture
def target_m1() -> SyncTarget:
    return SyncTarget(meeting_id="M1", deal_id=DEAL_ID, account_id=ACCOUNT_ID)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Virtual clock starting at a fixed time."""
    return ManualClock(start=START)


@pytest.fixture
def store(sample_deal: Deal, sample_meetings: list[Meeting]) -> InMemoryStore:
    """In-memory store seeded with the sample deal and its meetings."""
    return InMemoryStore(deals=[sample_deal], meetings=sample_meetings)


@pytest.fixture
def bus() -> ChangeNotificationBus:
    return ChangeNotificationBus()


@pytest.fixture
def registry(clock: ManualClock) -> SessionRegistry:
    return SessionRegistry(clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def engine() -> FakeAnalysisEngine:
    return FakeAnalysisEngine()


@pytest.fixture
def momentum_model() -> FakeMomentumModel:
    return FakeMomentumModel()


@pytest.fixture
def sync_settings() -> Settings:
    """Settings with short, explicit timings."""
    return Settings(
        meetgeek_api_key="test_meetgeek_key",
        openai_api_key="test_openai_key",
        intensive_interval_seconds=120,
        intensive_max_attempts=15,
        background_interval_seconds=900,
        background_min_interval_seconds=300,
        background_initial_delay_seconds=30,
    )


@pytest.fixture
def orchestrator(
    store: InMemoryStore,
    provider: FakeProvider,
    engine: FakeAnalysisEngine,
    momentum_model: FakeMomentumModel,
    bus: ChangeNotificationBus,
    sync_settings: Settings,
    clock: ManualClock,
) -> SyncOrchestrator:
    """Orchestrator wired to the fakes and the virtual clock."""
    return SyncOrchestrator(
        store,
        provider,
        engine,
        momentum_model,
        bus,
        settings=sync_settings,
        clock=clock,
    )


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set up mock environment variables."""
    env_vars = {
        "MEETGEEK_API_KEY": "test_meetgeek_key",
        "MEETGEEK_API_URL": "https://api.meetgeek.test",
        "OPENAI_API_KEY": "test_openai_key",
        "INTENSIVE_MAX_ATTEMPTS": "5",
        "BACKGROUND_INTERVAL_SECONDS": "600",
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "development",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars
