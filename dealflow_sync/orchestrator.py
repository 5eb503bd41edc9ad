"""
Sync orchestrator.

The public façade of the sync layer. Wires the registry, fetcher, pipeline,
schedulers, listener, cascade and momentum recomputation together and
exposes the three inbound triggers: a meeting was booked, a UI session
mounted for an account, and a user asked for a sync right now.
"""

import asyncio
from typing import Optional

from dealflow_sync.analysis.engine import AnalysisEngine, OpenAIAnalysisEngine
from dealflow_sync.analysis.momentum_model import (
    HeuristicMomentumModel,
    MomentumModel,
    OpenAIMomentumModel,
)
from dealflow_sync.bus import ChangeNotificationBus
from dealflow_sync.cascade import AnalysisCascade
from dealflow_sync.fetcher import TranscriptFetcher
from dealflow_sync.listener import EventListener
from dealflow_sync.models.session import (
    AbandonReason,
    BackgroundPolicy,
    FetchStatus,
    IntensivePolicy,
    ManualSyncResult,
    SessionState,
    SyncSession,
)
from dealflow_sync.momentum import MomentumRecomputer
from dealflow_sync.pipeline import SyncPipeline
from dealflow_sync.provider_client import MeetGeekClient, TranscriptProvider
from dealflow_sync.registry import SessionRegistry
from dealflow_sync.scheduler import BackgroundPoller, IntensivePoller
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.config import Settings, get_settings
from dealflow_sync.utils.deduplication import DuplicateDetector
from dealflow_sync.utils.exceptions import (
    ConfigurationError,
    SessionAlreadyActiveError,
    ValidationError,
)
from dealflow_sync.utils.logger import get_contextual_logger, get_logger

logger = get_logger("main")


class SyncOrchestrator:
    """
    Composes the sync components behind three triggers.

    Example:
        orchestrator = SyncOrchestrator(store, provider, engine, model, bus)
        await orchestrator.start_intensive("meeting-123")
        orchestrator.ensure_background_coverage("account-1")
        result = await orchestrator.manual_sync_now("meeting-456")
    """

    def __init__(
        self,
        store: PersistenceStore,
        provider: TranscriptProvider,
        engine: AnalysisEngine,
        momentum_model: MomentumModel,
        bus: ChangeNotificationBus,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.store = store
        self.provider = provider
        self.bus = bus

        sync = self.settings.sync
        self.registry = SessionRegistry(self.clock)
        self.fetcher = TranscriptFetcher(provider, store, self.clock)
        self.recomputer = MomentumRecomputer(
            store, momentum_model, self.clock, max_passes=sync.momentum_max_passes
        )
        self.cascade = AnalysisCascade(
            store,
            engine,
            self.recomputer,
            self.clock,
            DuplicateDetector(similarity_threshold=sync.dedup_similarity_threshold),
        )
        self.pipeline = SyncPipeline(self.registry, self.fetcher, self.cascade, store)
        self.intensive = IntensivePoller(self.registry, self.pipeline, self.clock)
        self.background = BackgroundPoller(
            self.registry,
            self.pipeline,
            store,
            self.clock,
            policy=BackgroundPolicy(
                interval_seconds=sync.background_interval_seconds,
                min_interval_seconds=sync.background_min_interval_seconds,
            ),
            initial_delay_seconds=sync.background_initial_delay_seconds,
        )
        self.listener = EventListener(
            bus, self.registry, self.pipeline, store, self.clock
        )
        self._intensive_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        store: PersistenceStore,
        bus: ChangeNotificationBus,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> "SyncOrchestrator":
        """
        Build an orchestrator with the MeetGeek provider and OpenAI adapters.

        Raises:
            ConfigurationError: Required API keys are missing.
        """
        settings = settings or get_settings()
        missing = settings.validate_required()
        if missing:
            raise ConfigurationError(
                "Missing required configuration", missing_keys=missing
            )

        provider = MeetGeekClient(
            api_key=settings.provider.api_key,
            api_url=settings.provider.api_url,
            timeout=settings.provider.timeout,
        )
        engine = OpenAIAnalysisEngine(
            api_key=settings.ai.openai_api_key, model=settings.ai.analysis_model
        )
        if settings.ai.use_local_momentum_model:
            momentum_model: MomentumModel = HeuristicMomentumModel()
        else:
            momentum_model = OpenAIMomentumModel(
                api_key=settings.ai.openai_api_key, model=settings.ai.momentum_model
            )

        return cls(store, provider, engine, momentum_model, bus, settings, clock)

    def get_session(self, meeting_id: str) -> Optional[SyncSession]:
        """Latest sync session for a meeting, live or not."""
        return self.registry.get(meeting_id)

    def intensive_policy(self) -> IntensivePolicy:
        return IntensivePolicy(
            max_attempts=self.settings.sync.intensive_max_attempts,
            interval_seconds=self.settings.sync.intensive_interval_seconds,
        )

    async def start_intensive(
        self,
        meeting_id: str,
        policy: Optional[IntensivePolicy] = None,
    ) -> Optional[SyncSession]:
        """
        Begin short-interval polling for a freshly booked meeting.

        Args:
            meeting_id: Meeting to poll
            policy: Overrides the configured attempt budget and interval

        Returns:
            The new session, or None if the meeting already has live work.

        Raises:
            ValidationError: The meeting is unknown.
        """
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise ValidationError(
                "Meeting not found", field="meeting_id", value=meeting_id
            )

        try:
            session = await self.registry.acquire(
                meeting.target, policy or self.intensive_policy()
            )
        except SessionAlreadyActiveError as e:
            logger.info(
                f"Not starting intensive polling for {meeting_id}: session {e.state}"
            )
            return None

        task = self.intensive.start(session)
        self._intensive_tasks.add(task)
        task.add_done_callback(self._on_intensive_done)
        return session

    def _on_intensive_done(self, task: asyncio.Task) -> None:
        self._intensive_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Intensive polling task {task.get_name()} failed: {error}", exc_info=error)

    def ensure_background_coverage(
        self, account_id: str, deal_id: Optional[str] = None
    ) -> bool:
        """
        Make sure the account has a background loop and an event listener.

        Safe to call on every UI mount; repeated calls do nothing.

        Returns:
            True if anything was started.
        """
        listening = self.listener.listen(account_id, deal_id)
        covering = self.background.cover(account_id, deal_id)
        return listening or covering

    async def stop_background_coverage(self, account_id: str) -> None:
        await self.background.stop(account_id)
        await self.listener.stop(account_id)

    async def manual_sync_now(self, meeting_id: str) -> ManualSyncResult:
        """
        Fetch and analyze a meeting's transcript inline.

        Returns immediately with a failure if sync work is already running
        for the meeting; no provider call is made in that case.

        Returns:
            Success flag with a human-readable reason (truthy on success).
        """
        log = get_contextual_logger("main", meeting_id=meeting_id)

        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            return ManualSyncResult(
                success=False, reason="Meeting not found", meeting_id=meeting_id
            )

        try:
            session = await self.registry.acquire(
                meeting.target, IntensivePolicy(max_attempts=1, interval_seconds=0)
            )
        except SessionAlreadyActiveError:
            log.info("Manual sync skipped, sync already in progress")
            return ManualSyncResult(
                success=False,
                reason="Sync already in progress for this meeting",
                meeting_id=meeting_id,
            )

        result = await self.pipeline.run_attempt(session)

        if result.delivered:
            cascade = result.cascade
            if cascade.analysis_error:
                reason = f"Transcript synced, but analysis failed: {cascade.analysis_error}"
            elif cascade.momentum_error:
                reason = f"Transcript synced and analyzed, but momentum update failed: {cascade.momentum_error}"
            else:
                reason = "Transcript synced and analyzed"
            log.info(reason)
            return ManualSyncResult(
                success=True, reason=reason, meeting_id=meeting_id, cascade=cascade
            )

        if result.discarded or result.fetch is None:
            reason = (
                f"Sync stopped: {session.abandon_reason.value}"
                if session.abandon_reason
                else "Sync was cancelled"
            )
            return ManualSyncResult(success=False, reason=reason, meeting_id=meeting_id)

        status = result.fetch.status
        if status == FetchStatus.PERMANENT_ERROR:
            reason = f"Transcript unavailable: {result.fetch.error}"
        elif status == FetchStatus.TRANSIENT_ERROR:
            reason = f"Transcript provider temporarily unavailable: {result.fetch.error}"
            await self.registry.release(
                session, SessionState.ABANDONED, AbandonReason.TRANSIENT_ERROR,
                error=result.fetch.error,
            )
        else:
            reason = "Transcript not ready yet. Please try again in a few minutes."
            await self.registry.release(
                session, SessionState.ABANDONED, AbandonReason.NOT_READY
            )

        log.info(f"Manual sync failed: {reason}")
        return ManualSyncResult(success=False, reason=reason, meeting_id=meeting_id)

    async def cancel_meeting(self, meeting_id: str) -> bool:
        """Abandon a meeting's open session, if any."""
        session = self.registry.get(meeting_id)
        if session is None:
            return False
        return await self.registry.release(
            session, SessionState.ABANDONED, AbandonReason.CANCELLED
        )

    async def cancel_deal(self, deal_id: str) -> int:
        """Abandon every open session of a deal. Returns how many were closed."""
        return len(await self.registry.release_deal(deal_id))

    async def shutdown(self) -> None:
        """
        Stop every loop and subscription and close the provider client.

        Cascades already under way run to completion first.
        """
        await self.listener.stop_all()
        await self.background.stop_all()

        for session in self.registry.live_sessions():
            await self.registry.release(
                session, SessionState.ABANDONED, AbandonReason.CANCELLED
            )
        tasks = list(self._intensive_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.pipeline.drain()

        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        logger.info("Sync orchestrator shut down")
