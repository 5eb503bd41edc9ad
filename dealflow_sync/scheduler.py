"""
Poll scheduler.

Two cadences drive provider attempts:

- Intensive: one task per meeting, first attempt immediately, then a fixed
  interval until the attempt budget runs out.
- Background: one task per account, periodically sweeping every meeting
  that still has no persisted transcript.

Each tick awaits its attempt before sleeping again, so attempts for one
session never overlap.
"""

import asyncio
from typing import Optional

from dealflow_sync.models.session import (
    AbandonReason,
    BackgroundPolicy,
    IntensivePolicy,
    SessionState,
    SyncSession,
)
from dealflow_sync.models.transcript import Meeting
from dealflow_sync.pipeline import SyncPipeline
from dealflow_sync.registry import SessionRegistry
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.exceptions import SessionAlreadyActiveError
from dealflow_sync.utils.logger import get_contextual_logger, get_logger

logger = get_logger("scheduler")


class IntensivePoller:
    """
    Runs bounded, short-interval polling for individual meetings.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pipeline: SyncPipeline,
        clock: Optional[Clock] = None,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.clock = clock or SystemClock()

    def start(self, session: SyncSession) -> asyncio.Task:
        """Spawn the polling loop for an acquired intensive session."""
        task = asyncio.create_task(
            self.run(session), name=f"intensive-{session.meeting_id}"
        )
        self.registry.attach_timer(session, task)
        return task

    async def run(self, session: SyncSession) -> None:
        """
        Poll until the transcript is delivered, the session is closed, or
        the attempt budget is spent.
        """
        if not isinstance(session.policy, IntensivePolicy):
            raise ValueError("Intensive polling requires an intensive policy")

        policy = session.policy
        log = get_contextual_logger("scheduler", meeting_id=session.meeting_id)
        log.info(
            f"Intensive polling started: up to {policy.max_attempts} attempts "
            f"every {policy.interval_seconds:.0f}s"
        )

        while session.state == SessionState.POLLING:
            result = await self.pipeline.run_attempt(session)
            if result.delivered or session.state != SessionState.POLLING:
                break

            if session.attempts_made >= policy.max_attempts:
                log.info(f"No transcript after {session.attempts_made} attempts")
                await self.registry.release(
                    session,
                    SessionState.ABANDONED,
                    AbandonReason.ATTEMPTS_EXHAUSTED,
                )
                break

            delay = policy.interval_seconds
            if result.fetch is not None and result.fetch.retry_after:
                delay = max(delay, float(result.fetch.retry_after))
            await self.clock.sleep(delay)


class BackgroundPoller:
    """
    Periodic, per-account sweeps for meetings still missing a transcript.

    Covers ad hoc meetings, meetings whose intensive session gave up, and
    meetings that existed before the process started.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pipeline: SyncPipeline,
        store: PersistenceStore,
        clock: Optional[Clock] = None,
        policy: Optional[BackgroundPolicy] = None,
        initial_delay_seconds: float = 30.0,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.store = store
        self.clock = clock or SystemClock()
        self.policy = policy or BackgroundPolicy()
        self.initial_delay_seconds = initial_delay_seconds
        self._last_checked: dict[str, float] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._deal_filters: dict[str, Optional[str]] = {}

    def is_covering(self, account_id: str) -> bool:
        task = self._tasks.get(account_id)
        return task is not None and not task.done()

    def cover(self, account_id: str, deal_id: Optional[str] = None) -> bool:
        """
        Start the account's background loop if it is not already running.

        Returns:
            True if a new loop was started.
        """
        if self.is_covering(account_id):
            return False
        self._deal_filters[account_id] = deal_id
        self._tasks[account_id] = asyncio.create_task(
            self._loop(account_id), name=f"background-{account_id}"
        )
        logger.info(f"Background coverage started for account {account_id}")
        return True

    async def stop(self, account_id: str) -> None:
        task = self._tasks.pop(account_id, None)
        self._deal_filters.pop(account_id, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Background coverage stopped for account {account_id}")

    async def stop_all(self) -> None:
        for account_id in list(self._tasks):
            await self.stop(account_id)

    async def _loop(self, account_id: str) -> None:
        await self.clock.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.check_account(account_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Background check failed for account {account_id}: {e}",
                    exc_info=True,
                )
            await self.clock.sleep(self.policy.interval_seconds)

    async def pending_meetings(
        self, account_id: str, deal_id: Optional[str] = None
    ) -> list[Meeting]:
        """Meetings with no persisted transcript that are still worth polling."""
        pending = []
        for meeting in await self.store.list_meetings(account_id, deal_id):
            if await self.store.get_transcript(meeting.meeting_id) is not None:
                continue
            session = self.registry.get(meeting.meeting_id)
            if session is not None and session.permanent_failure:
                continue
            pending.append(meeting)
        return pending

    async def check_account(self, account_id: str, force: bool = False) -> int:
        """
        Make one attempt for each of the account's uncovered meetings.

        Calls closer together than the policy's minimum interval are
        skipped unless ``force`` is set.

        Returns:
            Number of attempts made.
        """
        now = self.clock.monotonic()
        last = self._last_checked.get(account_id)
        if not force and last is not None and now - last < self.policy.min_interval_seconds:
            logger.debug(
                f"Skipping check for account {account_id}, last checked {now - last:.0f}s ago"
            )
            return 0
        self._last_checked[account_id] = now

        deal_id = self._deal_filters.get(account_id)
        meetings = await self.pending_meetings(account_id, deal_id)
        logger.info(
            f"Background check for account {account_id}: {len(meetings)} meetings without transcript"
        )

        attempts = 0
        for meeting in meetings:
            # Another entry point may have synced the meeting since the sweep began.
            if await self.store.get_transcript(meeting.meeting_id) is not None:
                continue
            try:
                session = await self.registry.acquire(meeting.target, self.policy)
            except SessionAlreadyActiveError:
                continue

            stored = await self.store.get_transcript(meeting.meeting_id)
            if stored is not None:
                session.transcript_fetched_at = stored.fetched_at
                await self.registry.release(session, SessionState.COMPLETED)
                continue

            result = await self.pipeline.run_attempt(session)
            if not result.discarded:
                attempts += 1
            if session.state == SessionState.POLLING:
                await self.registry.suspend(session)

        return attempts
