"""
Sync session registry.

The single source of truth for whether sync work is already in flight for a
meeting. Every entry point (intensive loop, background check, pushed event,
manual sync) goes through ``acquire`` before touching the provider, which
guarantees at most one live session per meeting.
"""

import asyncio
from enum import Enum
from typing import Optional

from dealflow_sync.models.session import (
    AbandonReason,
    SessionState,
    SyncPolicy,
    SyncSession,
)
from dealflow_sync.models.transcript import SyncTarget, TranscriptRecord
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.exceptions import SessionAlreadyActiveError
from dealflow_sync.utils.logger import get_logger

logger = get_logger("registry")


class ShortCircuit(str, Enum):
    """What happened when a pushed transcript met the registry."""

    CLAIMED = "claimed"
    DEFERRED = "deferred"
    IGNORED = "ignored"
    NO_SESSION = "no_session"


class _Entry:
    """Registry-private bookkeeping kept next to each session."""

    __slots__ = ("session", "timer", "in_flight", "delivering", "pending_record")

    def __init__(self, session: SyncSession) -> None:
        self.session = session
        self.timer: Optional[asyncio.Task] = None
        self.in_flight = False
        self.delivering = False
        self.pending_record: Optional[TranscriptRecord] = None


class SessionRegistry:
    """
    In-memory table of sync sessions keyed by meeting ID.

    All transitions happen under one lock. Sessions are replaced, never
    duplicated: a terminal session stays visible through ``get`` until a new
    one is acquired for the same meeting.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._lock = asyncio.Lock()
        self._entries: dict[str, _Entry] = {}

    async def acquire(self, target: SyncTarget, policy: SyncPolicy) -> SyncSession:
        """
        Open (or resume) a polling session for a meeting.

        An idle session under the same kind of policy is resumed with its
        attempt count intact. Any other idle or terminal session is replaced
        by a fresh one.

        Raises:
            SessionAlreadyActiveError: The meeting is already polling or syncing,
                or a closed session's cascade is still running.
        """
        async with self._lock:
            entry = self._entries.get(target.meeting_id)
            if entry is not None and entry.session.state.is_live:
                raise SessionAlreadyActiveError(
                    target.meeting_id, state=entry.session.state.value
                )
            if entry is not None and entry.delivering:
                raise SessionAlreadyActiveError(
                    target.meeting_id, state=SessionState.SYNCING.value
                )

            if (
                entry is not None
                and entry.session.state == SessionState.IDLE
                and entry.session.policy.kind == policy.kind
            ):
                entry.session.state = SessionState.POLLING
                entry.session.policy = policy
                logger.debug(
                    f"Resumed {policy.kind} session for meeting {target.meeting_id} "
                    f"after {entry.session.attempts_made} attempts"
                )
                return entry.session

            if entry is not None and entry.timer is not None and not entry.timer.done():
                entry.timer.cancel()

            session = SyncSession(
                target=target,
                policy=policy,
                state=SessionState.POLLING,
                created_at=self._clock.now(),
            )
            self._entries[target.meeting_id] = _Entry(session)
            logger.info(f"Opened {policy.kind} session for meeting {target.meeting_id}")
            return session

    def get(self, meeting_id: str) -> Optional[SyncSession]:
        """Latest session for a meeting, live or not."""
        entry = self._entries.get(meeting_id)
        return entry.session if entry else None

    def is_live(self, session: SyncSession) -> bool:
        """True while ``session`` is still the meeting's polling/syncing session."""
        entry = self._entries.get(session.meeting_id)
        return (
            entry is not None
            and entry.session.session_id == session.session_id
            and session.state.is_live
        )

    def live_sessions(self) -> list[SyncSession]:
        return [e.session for e in self._entries.values() if e.session.state.is_live]

    def attach_timer(self, session: SyncSession, task: asyncio.Task) -> None:
        """Remember the task that drives a session so release can cancel it."""
        entry = self._own_entry(session)
        if entry is not None:
            entry.timer = task

    async def begin_attempt(self, session: SyncSession) -> bool:
        """
        Mark a provider attempt as in flight.

        Returns:
            False if the session is no longer polling; the attempt must not run.
        """
        async with self._lock:
            entry = self._own_entry(session)
            if entry is None or session.state != SessionState.POLLING:
                return False
            entry.in_flight = True
            session.attempts_made += 1
            session.last_attempt_at = self._clock.now()
            return True

    async def end_attempt(self, session: SyncSession) -> Optional[TranscriptRecord]:
        """
        Clear the in-flight mark.

        Returns:
            A transcript pushed while the attempt was running, if any.
        """
        async with self._lock:
            entry = self._own_entry(session)
            if entry is None:
                return None
            entry.in_flight = False
            pending, entry.pending_record = entry.pending_record, None
            return pending

    async def claim_for_sync(self, session: SyncSession) -> bool:
        """Move a polling or idle session to syncing."""
        async with self._lock:
            entry = self._own_entry(session)
            if entry is None or session.state not in (
                SessionState.POLLING,
                SessionState.IDLE,
            ):
                return False
            session.state = SessionState.SYNCING
            entry.delivering = True
            return True

    async def suspend(self, session: SyncSession) -> bool:
        """Park a polling session as idle until its next tick."""
        async with self._lock:
            entry = self._own_entry(session)
            if entry is None or session.state != SessionState.POLLING:
                return False
            session.state = SessionState.IDLE
            return True

    async def short_circuit(
        self, meeting_id: str, record: TranscriptRecord
    ) -> tuple[ShortCircuit, Optional[SyncSession]]:
        """
        Let a pushed transcript take over whatever session the meeting has.

        - polling, nothing in flight: timer cancelled, session claimed
        - polling, attempt in flight: record handed to that attempt
        - idle: session claimed
        - syncing: nothing to do
        - no live or idle session: caller seeds one
        """
        async with self._lock:
            entry = self._entries.get(meeting_id)
            if entry is not None and entry.delivering:
                return ShortCircuit.IGNORED, entry.session
            if entry is None or entry.session.state.is_terminal:
                return ShortCircuit.NO_SESSION, None

            session = entry.session
            if session.state == SessionState.SYNCING:
                return ShortCircuit.IGNORED, session

            if session.state == SessionState.POLLING and entry.in_flight:
                entry.pending_record = record
                return ShortCircuit.DEFERRED, session

            self._cancel_timer(entry)
            session.state = SessionState.SYNCING
            entry.delivering = True
            return ShortCircuit.CLAIMED, session

    async def release(
        self,
        session: SyncSession,
        state: SessionState,
        reason: Optional[AbandonReason] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Close a session as completed or abandoned.

        The session's timer is cancelled unless an attempt is in flight (its
        result will be discarded), the session is syncing (its cascade runs
        to completion) or the caller is the timer task itself.

        Returns:
            False if the session was already closed or replaced.
        """
        if not state.is_terminal:
            raise ValueError(f"Cannot release a session into {state.value}")

        async with self._lock:
            entry = self._own_entry(session)
            if entry is None or session.state.is_terminal:
                return False

            syncing = session.state == SessionState.SYNCING
            session.state = state
            session.closed_at = self._clock.now()
            session.abandon_reason = reason
            if error is not None:
                session.last_error = error
            entry.pending_record = None
            if not entry.in_flight and not syncing:
                self._cancel_timer(entry)

        if state == SessionState.ABANDONED:
            logger.info(
                f"Abandoned session for meeting {session.meeting_id}: "
                f"{reason.value if reason else 'unspecified'}"
            )
        else:
            logger.info(f"Completed session for meeting {session.meeting_id}")
        return True

    async def finish_delivery(
        self,
        session: SyncSession,
        state: SessionState = SessionState.COMPLETED,
        reason: Optional[AbandonReason] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        End a delivery started by ``claim_for_sync`` or ``short_circuit``.

        Closes the session unless it was already released while syncing, in
        which case the earlier closed state stands. Either way the meeting
        accepts new sessions again.
        """
        async with self._lock:
            entry = self._own_entry(session)
            if entry is not None:
                entry.delivering = False
        return await self.release(session, state, reason, error)

    async def release_deal(
        self, deal_id: str, reason: AbandonReason = AbandonReason.CANCELLED
    ) -> list[SyncSession]:
        """Abandon every open session belonging to a deal."""
        sessions = [
            e.session
            for e in list(self._entries.values())
            if e.session.target.deal_id == deal_id and not e.session.state.is_terminal
        ]
        released = []
        for session in sessions:
            if await self.release(session, SessionState.ABANDONED, reason):
                released.append(session)
        return released

    def _own_entry(self, session: SyncSession) -> Optional[_Entry]:
        entry = self._entries.get(session.meeting_id)
        if entry is None or entry.session.session_id != session.session_id:
            return None
        return entry

    @staticmethod
    def _cancel_timer(entry: _Entry) -> None:
        timer = entry.timer
        entry.timer = None
        if timer is None or timer.done():
            return
        if timer is asyncio.current_task():
            return
        timer.cancel()
