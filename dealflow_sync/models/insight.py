"""
Data models for analysis results and deal momentum.

These models represent the output of the analysis engine, the per-meeting
analysis record, and the deal-level momentum derived from it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MomentumTrend(str, Enum):
    """Trend classification of a deal's momentum."""

    ACCELERATING = "accelerating"
    STEADY = "steady"
    DECELERATING = "decelerating"
    STALLED = "stalled"


class DealStage(str, Enum):
    """Pipeline stages, in order."""

    INTERESTED = "interested"
    QUALIFIED = "qualified"
    DEMO = "demo"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class MeetingInsights(BaseModel):
    """
    Structured insights returned by the analysis engine for one transcript.
    """

    pain_points: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    green_flags: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    organizational_context: list[str] = Field(default_factory=list)
    competitor_mentions: list[str] = Field(default_factory=list)
    sentiment_and_engagement: list[str] = Field(default_factory=list)
    summary: str = Field(default="", description="Two or three sentence outcome summary")
    meeting_quality_score: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="Meeting quality on a 0-100 scale",
    )
    suggested_stage: Optional[str] = Field(
        default=None, description="Stage the engine believes the deal is in"
    )

    @field_validator(
        "pain_points",
        "next_steps",
        "green_flags",
        "red_flags",
        "organizational_context",
        "competitor_mentions",
        "sentiment_and_engagement",
        mode="before",
    )
    @classmethod
    def drop_blank_bullets(cls, v: Optional[list]) -> list[str]:
        """Coerce to a list of trimmed, non-empty strings."""
        if not v:
            return []
        return [str(item).strip() for item in v if str(item).strip()]

    @property
    def is_empty(self) -> bool:
        """True when the engine found nothing at all."""
        return not any(
            (
                self.pain_points,
                self.next_steps,
                self.green_flags,
                self.red_flags,
                self.organizational_context,
                self.competitor_mentions,
                self.sentiment_and_engagement,
                self.summary,
            )
        )


class AnalysisRecord(MeetingInsights):
    """
    The current analysis of one meeting.

    One record per meeting; re-analysis overwrites it.
    """

    meeting_id: str = Field(min_length=1)
    deal_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    analyzed_at: datetime = Field(description="When the analysis was produced")


class StageTransition(BaseModel):
    """A move of a deal from one pipeline stage to another."""

    from_stage: Optional[str] = None
    to_stage: str
    changed_at: datetime


class Deal(BaseModel):
    """
    A tracked deal, as far as momentum scoring is concerned.
    """

    deal_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    company_name: str = Field(default="")
    stage: str = Field(default=DealStage.INTERESTED.value)
    value_amount: Optional[float] = Field(default=None, ge=0)
    created_at: datetime
    close_date: Optional[datetime] = None
    stage_history: list[StageTransition] = Field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        """Won or lost deals are no longer scored."""
        return self.stage in (DealStage.WON.value, DealStage.LOST.value)


class MomentumResult(BaseModel):
    """
    Output of a momentum model for one deal.
    """

    score: float = Field(ge=-100.0, le=100.0, description="Momentum, -100 to 100")
    trend: MomentumTrend = Field(default=MomentumTrend.STEADY)
    opportunities: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    reasoning: str = Field(default="")

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        """Clamp out-of-range scores instead of rejecting them."""
        return max(-100.0, min(100.0, float(v)))


class MomentumState(MomentumResult):
    """
    A deal's current momentum. Each computation fully replaces the previous one.
    """

    deal_id: str = Field(min_length=1)
    analysis_count: int = Field(
        default=0, ge=0, description="Number of analyses the score was derived from"
    )
    last_computed_at: datetime


class DealHistory(BaseModel):
    """
    Everything a momentum model sees about a deal, read at invocation time.
    """

    deal: Deal
    analyses: list[AnalysisRecord] = Field(
        default_factory=list, description="Analyses oldest first"
    )
    meeting_times: list[datetime] = Field(
        default_factory=list, description="Start times of the deal's meetings"
    )
    previous: Optional[MomentumState] = None
    as_of: datetime

    @property
    def latest_analysis(self) -> Optional[AnalysisRecord]:
        """Most recent analysis, if any."""
        return self.analyses[-1] if self.analyses else None

    @property
    def last_meeting_at(self) -> Optional[datetime]:
        """Start of the most recent meeting that has already begun."""
        past = [t for t in self.meeting_times if t <= self.as_of]
        return max(past) if past else None

    @property
    def days_since_last_meeting(self) -> Optional[float]:
        """Days between the last meeting and ``as_of``."""
        last = self.last_meeting_at
        if last is None:
            return None
        return (self.as_of - last).total_seconds() / 86400

    @property
    def days_in_pipeline(self) -> float:
        """Days since the deal was created."""
        return max((self.as_of - self.deal.created_at).total_seconds() / 86400, 0.0)
