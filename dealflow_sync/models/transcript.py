"""
Data models for meetings and their transcripts.

These models represent what the transcript provider hands back and what is
persisted once a transcript has been fetched.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dealflow_sync.utils.deduplication import get_segments_fingerprint


class SyncTarget(BaseModel):
    """
    Identifies one unit of sync work.

    A meeting belongs to exactly one deal; a deal belongs to exactly one account.
    """

    model_config = ConfigDict(frozen=True)

    meeting_id: str = Field(min_length=1, description="Provider meeting identifier")
    deal_id: str = Field(min_length=1, description="Owning deal")
    account_id: str = Field(min_length=1, description="Owning account")


class Meeting(BaseModel):
    """
    A meeting row as known to the persistence store.
    """

    meeting_id: str = Field(min_length=1, description="Provider meeting identifier")
    deal_id: str = Field(min_length=1, description="Owning deal")
    account_id: str = Field(min_length=1, description="Owning account")
    title: str = Field(default="Meeting", description="Meeting title")
    start_time: Optional[datetime] = Field(
        default=None, description="Scheduled or actual start"
    )
    end_time: Optional[datetime] = Field(
        default=None, description="Scheduled or actual end"
    )

    @property
    def target(self) -> SyncTarget:
        """The sync target this meeting resolves to."""
        return SyncTarget(
            meeting_id=self.meeting_id,
            deal_id=self.deal_id,
            account_id=self.account_id,
        )


class Segment(BaseModel):
    """
    A single segment of a transcript.

    Represents one utterance from a speaker with timing information.
    """

    speaker: str = Field(
        default="Unknown speaker",
        description="Speaker identifier or name"
    )
    text: str = Field(
        description="The spoken text content"
    )
    start_offset: float = Field(
        default=0.0,
        ge=0,
        description="Offset in seconds from transcript start"
    )
    end_offset: Optional[float] = Field(
        default=None,
        ge=0,
        description="End offset in seconds (optional)"
    )

    @property
    def duration(self) -> Optional[float]:
        """Calculate segment duration if end offset is available."""
        if self.end_offset is not None:
            return self.end_offset - self.start_offset
        return None

    @field_validator("text")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip leading/trailing whitespace from text."""
        return v.strip()


class TranscriptRecord(BaseModel):
    """
    A fetched transcript, persisted once per meeting.

    The dedup key is ``meeting_id``: storing the same segment set again is a
    no-op and a different set replaces the previous one.
    """

    meeting_id: str = Field(min_length=1, description="Provider meeting identifier")
    deal_id: str = Field(min_length=1, description="Owning deal")
    account_id: str = Field(min_length=1, description="Owning account")
    segments: list[Segment] = Field(
        min_length=1,
        description="Ordered speaker-attributed segments",
    )
    fetched_at: datetime = Field(description="When the transcript was fetched")

    @property
    def target(self) -> SyncTarget:
        """The sync target this transcript belongs to."""
        return SyncTarget(
            meeting_id=self.meeting_id,
            deal_id=self.deal_id,
            account_id=self.account_id,
        )

    @property
    def fingerprint(self) -> str:
        """Stable fingerprint of the segment set, independent of fetch time."""
        return get_segments_fingerprint(
            f"{seg.speaker}|{seg.start_offset}|{seg.end_offset}|{seg.text}"
            for seg in self.segments
        )

    @property
    def segment_count(self) -> int:
        """Count number of segments."""
        return len(self.segments)

    @property
    def speakers(self) -> list[str]:
        """Unique speakers in order of first appearance."""
        return list(dict.fromkeys(seg.speaker for seg in self.segments))

    def to_plain_text(self, include_speakers: bool = True) -> str:
        """
        Convert transcript to plain text format.

        Args:
            include_speakers: Include speaker labels

        Returns:
            One line per segment, ``Speaker: text``
        """
        lines = []
        for seg in self.segments:
            if include_speakers:
                lines.append(f"{seg.speaker}: {seg.text}")
            else:
                lines.append(seg.text)

        return "\n".join(lines)
