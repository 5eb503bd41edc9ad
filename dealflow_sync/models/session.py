"""
Data models for sync sessions, polling policies and attempt outcomes.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from dealflow_sync.models.insight import AnalysisRecord, MomentumState
from dealflow_sync.models.transcript import SyncTarget, TranscriptRecord


class SessionState(str, Enum):
    """Lifecycle of a sync session: Idle -> Polling -> Syncing -> Completed | Abandoned."""

    IDLE = "idle"
    POLLING = "polling"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_live(self) -> bool:
        """Polling or syncing: work is in progress for the meeting."""
        return self in (SessionState.POLLING, SessionState.SYNCING)

    @property
    def is_terminal(self) -> bool:
        """Completed or abandoned."""
        return self in (SessionState.COMPLETED, SessionState.ABANDONED)


class IntensivePolicy(BaseModel):
    """Short interval, bounded attempts. Used right after a meeting is scheduled."""

    kind: Literal["intensive"] = "intensive"
    max_attempts: int = Field(default=15, ge=1)
    interval_seconds: float = Field(default=120.0, ge=0)


class BackgroundPolicy(BaseModel):
    """Long interval, unbounded attempts, throttled per account."""

    kind: Literal["background"] = "background"
    interval_seconds: float = Field(default=900.0, gt=0)
    min_interval_seconds: float = Field(default=300.0, ge=0)


SyncPolicy = Union[IntensivePolicy, BackgroundPolicy]


class AbandonReason(str, Enum):
    """Why a session was abandoned."""

    ATTEMPTS_EXHAUSTED = "attempt budget exhausted"
    PERMANENT_ERROR = "permanent provider error"
    CANCELLED = "cancelled"
    NOT_READY = "transcript not ready"
    TRANSIENT_ERROR = "transient provider error"
    PERSISTENCE_ERROR = "persistence error"


class SyncSession(BaseModel):
    """
    Ephemeral bookkeeping for one meeting's sync work.

    Owned and mutated by the session registry only.
    """

    session_id: str = Field(default_factory=lambda: uuid4().hex)
    target: SyncTarget
    policy: SyncPolicy = Field(discriminator="kind")
    state: SessionState = SessionState.IDLE
    attempts_made: int = Field(default=0, ge=0)
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    abandon_reason: Optional[AbandonReason] = None
    last_error: Optional[str] = None
    transcript_fetched_at: Optional[datetime] = None

    @property
    def meeting_id(self) -> str:
        return self.target.meeting_id

    @property
    def is_intensive(self) -> bool:
        return self.policy.kind == "intensive"

    @property
    def attempts_remaining(self) -> Optional[int]:
        """Attempts left under an intensive policy; None when unbounded."""
        if isinstance(self.policy, IntensivePolicy):
            return max(self.policy.max_attempts - self.attempts_made, 0)
        return None

    @property
    def permanent_failure(self) -> bool:
        """The provider said this meeting will never have a transcript."""
        return self.abandon_reason == AbandonReason.PERMANENT_ERROR


class FetchStatus(str, Enum):
    """Outcome class of one provider attempt."""

    READY = "ready"
    NOT_READY = "not_ready"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"


class FetchOutcome(BaseModel):
    """
    Structured result of ``TranscriptFetcher.fetch_once``.
    """

    status: FetchStatus
    record: Optional[TranscriptRecord] = None
    error: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def is_ready(self) -> bool:
        return self.status == FetchStatus.READY and self.record is not None


class CascadeOutcome(BaseModel):
    """
    Result of running analysis and momentum for one meeting.

    Each stage reports independently; a momentum failure never hides a
    persisted analysis and vice versa.
    """

    meeting_id: str
    deal_id: str
    analysis: Optional[AnalysisRecord] = None
    analysis_error: Optional[str] = None
    momentum: Optional[MomentumState] = None
    momentum_error: Optional[str] = None

    @property
    def analysis_succeeded(self) -> bool:
        return self.analysis is not None


class ManualSyncResult(BaseModel):
    """
    Outcome of a user-triggered sync, with a human-readable reason for the UI.
    """

    success: bool
    reason: str
    meeting_id: str
    cascade: Optional[CascadeOutcome] = None

    def __bool__(self) -> bool:
        return self.success
