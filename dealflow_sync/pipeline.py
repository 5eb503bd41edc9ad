"""
Attempt and delivery discipline shared by every sync entry point.

An attempt is one provider fetch made on behalf of a polling session. A
delivery takes a ready transcript through syncing, the analysis cascade
and completion. The intensive loop, the background checker, the event
listener and manual sync all go through these two steps, so the session
state machine is driven the same way regardless of what triggered the work.
"""

import asyncio
from typing import Optional

from dealflow_sync.cascade import AnalysisCascade
from dealflow_sync.fetcher import TranscriptFetcher
from dealflow_sync.models.session import (
    AbandonReason,
    CascadeOutcome,
    FetchOutcome,
    FetchStatus,
    SessionState,
    SyncSession,
)
from dealflow_sync.models.transcript import TranscriptRecord
from dealflow_sync.registry import SessionRegistry
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.exceptions import PersistenceError
from dealflow_sync.utils.logger import get_contextual_logger


class AttemptResult:
    """What one attempt did: the fetch outcome and, if delivered, the cascade."""

    __slots__ = ("fetch", "cascade", "discarded")

    def __init__(
        self,
        fetch: Optional[FetchOutcome] = None,
        cascade: Optional[CascadeOutcome] = None,
        discarded: bool = False,
    ) -> None:
        self.fetch = fetch
        self.cascade = cascade
        self.discarded = discarded

    @property
    def delivered(self) -> bool:
        return self.cascade is not None


class SyncPipeline:
    """
    Drives sessions through fetch, syncing, cascade and release.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        fetcher: TranscriptFetcher,
        cascade: AnalysisCascade,
        store: PersistenceStore,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.cascade = cascade
        self.store = store
        self._deliveries: set[asyncio.Task] = set()

    @property
    def deliveries_in_flight(self) -> int:
        return sum(1 for task in self._deliveries if not task.done())

    async def drain(self) -> None:
        """Wait for every started cascade to finish."""
        while True:
            pending = [task for task in self._deliveries if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def run_attempt(self, session: SyncSession) -> AttemptResult:
        """
        Make one provider attempt for a polling session.

        If the session was cancelled while the provider call was in flight
        the result is discarded. A transcript pushed during the call takes
        precedence over a not-ready answer. A permanent provider error
        abandons the session; everything else leaves it polling for the
        caller's policy to decide.
        """
        log = get_contextual_logger("scheduler", meeting_id=session.meeting_id)

        if not await self.registry.begin_attempt(session):
            return AttemptResult(discarded=True)

        storage_error: Optional[PersistenceError] = None
        try:
            outcome = await self.fetcher.fetch_once(session.target)
        except PersistenceError as e:
            storage_error = e
        finally:
            pending = await self.registry.end_attempt(session)

        if storage_error is not None:
            log.error(f"Transcript fetched but not stored: {storage_error}")
            await self.registry.release(
                session,
                SessionState.ABANDONED,
                AbandonReason.PERSISTENCE_ERROR,
                error=storage_error.message,
            )
            return AttemptResult(discarded=True)

        if not self.registry.is_live(session):
            log.info("Session closed while attempt was in flight, discarding result")
            return AttemptResult(fetch=outcome, discarded=True)

        if outcome.error:
            session.last_error = outcome.error

        if outcome.is_ready:
            cascade = await self.deliver(session, outcome.record)
            return AttemptResult(fetch=outcome, cascade=cascade)

        if pending is not None:
            log.info("Transcript arrived during attempt, delivering pushed copy")
            cascade = await self.deliver(session, pending, persist=True)
            return AttemptResult(fetch=outcome, cascade=cascade)

        if outcome.status == FetchStatus.PERMANENT_ERROR:
            await self.registry.release(
                session,
                SessionState.ABANDONED,
                AbandonReason.PERMANENT_ERROR,
                error=outcome.error,
            )
        else:
            log.debug(
                f"Attempt {session.attempts_made} finished: {outcome.status.value}"
            )

        return AttemptResult(fetch=outcome)

    async def deliver(
        self,
        session: SyncSession,
        record: TranscriptRecord,
        claimed: bool = False,
        persist: bool = False,
    ) -> Optional[CascadeOutcome]:
        """
        Take a ready transcript through syncing, the cascade and completion.

        Args:
            session: Session the transcript belongs to
            record: The transcript
            claimed: The session is already in syncing
            persist: Store the transcript first (pushed copies)

        Returns:
            The cascade outcome, or None if the session could not be claimed
            or the transcript could not be stored.
        """
        log = get_contextual_logger("scheduler", meeting_id=session.meeting_id)

        if not claimed and not await self.registry.claim_for_sync(session):
            log.debug("Session no longer claimable, skipping delivery")
            return None

        if persist:
            try:
                record = await self.store.put_transcript(record)
            except Exception as e:
                log.error(f"Failed to store pushed transcript: {e}")
                await self.registry.finish_delivery(
                    session,
                    SessionState.ABANDONED,
                    AbandonReason.PERSISTENCE_ERROR,
                    error=str(e),
                )
                return None
            except asyncio.CancelledError:
                await self.registry.finish_delivery(
                    session, SessionState.ABANDONED, AbandonReason.CANCELLED
                )
                raise

        session.transcript_fetched_at = record.fetched_at

        # Once started, the cascade runs to completion even if the driving
        # task is cancelled; the transcript is already persisted.
        delivery = asyncio.ensure_future(self._complete(session))
        self._deliveries.add(delivery)
        delivery.add_done_callback(self._deliveries.discard)
        return await asyncio.shield(delivery)

    async def _complete(self, session: SyncSession) -> CascadeOutcome:
        try:
            return await self.cascade.run(session.target)
        finally:
            await self.registry.finish_delivery(session)
