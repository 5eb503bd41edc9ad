"""
Data models for the deal flow transcript sync layer.

This package contains Pydantic models for:
- transcript: meetings, sync targets and fetched transcripts
- insight: analysis records, deals and momentum
- session: sync sessions, policies and attempt outcomes
- events: change notification bus events
"""

from dealflow_sync.models.events import ChangeEvent, ChangeTable, ChangeType
from dealflow_sync.models.insight import (
    AnalysisRecord,
    Deal,
    DealHistory,
    DealStage,
    MeetingInsights,
    MomentumResult,
    MomentumState,
    MomentumTrend,
    StageTransition,
)
from dealflow_sync.models.session import (
    AbandonReason,
    BackgroundPolicy,
    CascadeOutcome,
    FetchOutcome,
    FetchStatus,
    IntensivePolicy,
    ManualSyncResult,
    SessionState,
    SyncPolicy,
    SyncSession,
)
from dealflow_sync.models.transcript import (
    Meeting,
    Segment,
    SyncTarget,
    TranscriptRecord,
)

__all__ = [
    # Transcript models
    "Meeting",
    "Segment",
    "SyncTarget",
    "TranscriptRecord",
    # Insight models
    "AnalysisRecord",
    "Deal",
    "DealHistory",
    "DealStage",
    "MeetingInsights",
    "MomentumResult",
    "MomentumState",
    "MomentumTrend",
    "StageTransition",
    # Session models
    "AbandonReason",
    "BackgroundPolicy",
    "CascadeOutcome",
    "FetchOutcome",
    "FetchStatus",
    "IntensivePolicy",
    "ManualSyncResult",
    "SessionState",
    "SyncPolicy",
    "SyncSession",
    # Event models
    "ChangeEvent",
    "ChangeTable",
    "ChangeType",
]
