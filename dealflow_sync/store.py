"""
Persistence store boundary.

The sync layer treats storage as a transactional key/value and append
surface. ``PersistenceStore`` is the contract; ``InMemoryStore`` is the
in-process implementation used by default and in tests.
"""

import asyncio
from collections import defaultdict
from typing import Iterable, Optional, Protocol

from dealflow_sync.models.insight import AnalysisRecord, Deal, MomentumState
from dealflow_sync.models.transcript import Meeting, TranscriptRecord
from dealflow_sync.utils.logger import get_logger

logger = get_logger("store")


class PersistenceStore(Protocol):
    """Durable storage for deals, meetings, transcripts, analyses and momentum."""

    async def get_deal(self, deal_id: str) -> Optional[Deal]: ...

    async def put_deal(self, deal: Deal) -> None: ...

    async def delete_deal(self, deal_id: str) -> None: ...

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]: ...

    async def put_meeting(self, meeting: Meeting) -> None: ...

    async def delete_meeting(self, meeting_id: str) -> None: ...

    async def list_meetings(
        self, account_id: str, deal_id: Optional[str] = None
    ) -> list[Meeting]: ...

    async def get_transcript(self, meeting_id: str) -> Optional[TranscriptRecord]: ...

    async def put_transcript(self, record: TranscriptRecord) -> TranscriptRecord: ...

    async def get_analysis(self, meeting_id: str) -> Optional[AnalysisRecord]: ...

    async def put_analysis(self, record: AnalysisRecord) -> None: ...

    async def list_analyses(self, deal_id: str) -> list[AnalysisRecord]: ...

    async def analysis_revision(self, deal_id: str) -> int: ...

    async def get_momentum(self, deal_id: str) -> Optional[MomentumState]: ...

    async def put_momentum(
        self, state: MomentumState, expected_revision: Optional[int] = None
    ) -> bool: ...


class InMemoryStore:
    """
    Process-local implementation of ``PersistenceStore``.

    Every write is overwrite-by-key under a single lock. Each deal carries an
    analysis revision that increments whenever one of its analyses is
    written, so momentum writes can be made conditional on the analysis set
    they were computed from.
    """

    def __init__(
        self,
        deals: Optional[Iterable[Deal]] = None,
        meetings: Optional[Iterable[Meeting]] = None,
    ) -> None:
        self._lock = asyncio.Lock()
        self._deals: dict[str, Deal] = {d.deal_id: d for d in deals or []}
        self._meetings: dict[str, Meeting] = {m.meeting_id: m for m in meetings or []}
        self._transcripts: dict[str, TranscriptRecord] = {}
        self._analyses: dict[str, AnalysisRecord] = {}
        self._momentum: dict[str, MomentumState] = {}
        self._analysis_revisions: defaultdict[str, int] = defaultdict(int)
        self.transcript_writes = 0

    # -- deals ---------------------------------------------------------------

    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        return self._deals.get(deal_id)

    async def put_deal(self, deal: Deal) -> None:
        async with self._lock:
            self._deals[deal.deal_id] = deal

    async def delete_deal(self, deal_id: str) -> None:
        async with self._lock:
            self._deals.pop(deal_id, None)
            self._momentum.pop(deal_id, None)
            for meeting_id in [
                m.meeting_id for m in self._meetings.values() if m.deal_id == deal_id
            ]:
                self._drop_meeting(meeting_id)

    # -- meetings ------------------------------------------------------------

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self._meetings.get(meeting_id)

    async def put_meeting(self, meeting: Meeting) -> None:
        async with self._lock:
            self._meetings[meeting.meeting_id] = meeting

    async def delete_meeting(self, meeting_id: str) -> None:
        async with self._lock:
            self._drop_meeting(meeting_id)

    def _drop_meeting(self, meeting_id: str) -> None:
        self._meetings.pop(meeting_id, None)
        self._transcripts.pop(meeting_id, None)
        analysis = self._analyses.pop(meeting_id, None)
        if analysis is not None:
            self._analysis_revisions[analysis.deal_id] += 1

    async def list_meetings(
        self, account_id: str, deal_id: Optional[str] = None
    ) -> list[Meeting]:
        meetings = [
            m
            for m in self._meetings.values()
            if m.account_id == account_id and (deal_id is None or m.deal_id == deal_id)
        ]
        return sorted(
            meetings,
            key=lambda m: (m.start_time is None, m.start_time.timestamp() if m.start_time else 0.0),
        )

    # -- transcripts ---------------------------------------------------------

    async def get_transcript(self, meeting_id: str) -> Optional[TranscriptRecord]:
        return self._transcripts.get(meeting_id)

    async def put_transcript(self, record: TranscriptRecord) -> TranscriptRecord:
        """
        Store a transcript, keyed by meeting.

        Re-storing the same segment set keeps the existing record (and its
        ``fetched_at``); a different set replaces the old one wholesale.

        Returns:
            The record now stored for the meeting.
        """
        async with self._lock:
            existing = self._transcripts.get(record.meeting_id)
            if existing is not None and existing.fingerprint == record.fingerprint:
                logger.debug(
                    f"Transcript for meeting {record.meeting_id} unchanged, keeping stored copy"
                )
                return existing

            if existing is not None:
                logger.info(
                    f"Replacing transcript for meeting {record.meeting_id} "
                    f"({existing.segment_count} -> {record.segment_count} segments)"
                )

            self._transcripts[record.meeting_id] = record
            self.transcript_writes += 1
            return record

    # -- analyses ------------------------------------------------------------

    async def get_analysis(self, meeting_id: str) -> Optional[AnalysisRecord]:
        return self._analyses.get(meeting_id)

    async def put_analysis(self, record: AnalysisRecord) -> None:
        async with self._lock:
            self._analyses[record.meeting_id] = record
            self._analysis_revisions[record.deal_id] += 1

    async def list_analyses(self, deal_id: str) -> list[AnalysisRecord]:
        analyses = [a for a in self._analyses.values() if a.deal_id == deal_id]
        return sorted(analyses, key=lambda a: a.analyzed_at)

    async def analysis_revision(self, deal_id: str) -> int:
        return self._analysis_revisions[deal_id]

    # -- momentum ------------------------------------------------------------

    async def get_momentum(self, deal_id: str) -> Optional[MomentumState]:
        return self._momentum.get(deal_id)

    async def put_momentum(
        self, state: MomentumState, expected_revision: Optional[int] = None
    ) -> bool:
        """
        Replace a deal's momentum.

        When ``expected_revision`` is given the write only happens if the
        deal's analysis revision still matches it.

        Returns:
            True if the state was written.
        """
        async with self._lock:
            if (
                expected_revision is not None
                and self._analysis_revisions[state.deal_id] != expected_revision
            ):
                return False
            self._momentum[state.deal_id] = state
            return True
