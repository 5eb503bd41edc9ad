"""
Analysis cascade.

Runs once per newly persisted transcript: analysis, then persistence of the
analysis, then momentum recomputation for the owning deal. The stages are
isolated: a failed analysis is reported without retry, and a failed
momentum computation never touches the analysis that preceded it.
"""

from typing import Optional

from dealflow_sync.analysis.engine import AnalysisEngine
from dealflow_sync.models.insight import AnalysisRecord
from dealflow_sync.models.session import CascadeOutcome
from dealflow_sync.models.transcript import SyncTarget
from dealflow_sync.momentum import MomentumRecomputer
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.deduplication import DuplicateDetector
from dealflow_sync.utils.exceptions import AnalysisFailedError, MomentumComputeFailedError
from dealflow_sync.utils.logger import get_contextual_logger


class AnalysisCascade:
    """
    Transcript -> analysis -> momentum.
    """

    def __init__(
        self,
        store: PersistenceStore,
        engine: AnalysisEngine,
        recomputer: MomentumRecomputer,
        clock: Optional[Clock] = None,
        detector: Optional[DuplicateDetector] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.recomputer = recomputer
        self.clock = clock or SystemClock()
        self.detector = detector or DuplicateDetector()

    async def analyze(self, target: SyncTarget) -> AnalysisRecord:
        """
        Analyze a meeting's persisted transcript and store the result.

        Pain points and next steps are de-duplicated before storage. The
        stored record overwrites any previous analysis of the meeting.

        Raises:
            AnalysisFailedError: No transcript, engine failure, or the
                analysis could not be stored.
        """
        transcript = await self.store.get_transcript(target.meeting_id)
        if transcript is None:
            raise AnalysisFailedError(
                "No transcript found for this meeting",
                meeting_id=target.meeting_id,
                stage="load_transcript",
            )

        try:
            insights = await self.engine.analyze(transcript)
        except AnalysisFailedError:
            raise
        except Exception as e:
            raise AnalysisFailedError(
                f"Analysis engine failed: {e}",
                meeting_id=target.meeting_id,
                stage="engine",
                cause=e,
            )

        record = AnalysisRecord(
            **insights.model_dump(exclude={"pain_points", "next_steps"}),
            pain_points=self.detector.deduplicate(insights.pain_points),
            next_steps=self.detector.deduplicate(insights.next_steps),
            meeting_id=target.meeting_id,
            deal_id=target.deal_id,
            account_id=target.account_id,
            analyzed_at=self.clock.now(),
        )

        try:
            await self.store.put_analysis(record)
        except Exception as e:
            raise AnalysisFailedError(
                f"Failed to store analysis: {e}",
                meeting_id=target.meeting_id,
                stage="persist",
                cause=e,
            )
        return record

    async def run(self, target: SyncTarget) -> CascadeOutcome:
        """
        Run the whole cascade for one meeting.

        Never raises for stage failures; each stage's error is reported in
        the outcome.
        """
        log = get_contextual_logger(
            "cascade", meeting_id=target.meeting_id, deal_id=target.deal_id
        )
        outcome = CascadeOutcome(meeting_id=target.meeting_id, deal_id=target.deal_id)

        try:
            outcome.analysis = await self.analyze(target)
        except AnalysisFailedError as e:
            log.error(f"Analysis failed: {e}")
            outcome.analysis_error = e.message
            return outcome

        log.info(
            f"Analysis stored ({len(outcome.analysis.pain_points)} pain points, "
            f"{len(outcome.analysis.next_steps)} next steps)"
        )

        try:
            outcome.momentum = await self.recomputer.recompute(target.deal_id)
        except MomentumComputeFailedError as e:
            log.error(f"Momentum recomputation failed: {e}")
            outcome.momentum_error = e.message

        return outcome
