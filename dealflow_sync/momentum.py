"""
Deal momentum recomputation.

Momentum is always derived from a full reread of the deal's current
analyses, never patched incrementally. The write is conditional on the
analysis set not having changed while the model was running, so a slow
computation cannot overwrite the result of a fresher one.
"""

from typing import Optional

from dealflow_sync.analysis.momentum_model import MomentumModel
from dealflow_sync.models.insight import DealHistory, MomentumState
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.exceptions import MomentumComputeFailedError, PersistenceError
from dealflow_sync.utils.logger import get_logger

logger = get_logger("momentum")


class MomentumRecomputer:
    """
    Recomputes and persists a deal's momentum from its current analyses.
    """

    def __init__(
        self,
        store: PersistenceStore,
        model: MomentumModel,
        clock: Optional[Clock] = None,
        max_passes: int = 3,
    ) -> None:
        self.store = store
        self.model = model
        self.clock = clock or SystemClock()
        self.max_passes = max_passes

    async def load_history(self, deal_id: str) -> DealHistory:
        """
        Read everything the model needs about a deal, as of now.

        Raises:
            MomentumComputeFailedError: The deal does not exist.
        """
        deal = await self.store.get_deal(deal_id)
        if deal is None:
            raise MomentumComputeFailedError("Deal not found", deal_id=deal_id)

        analyses = await self.store.list_analyses(deal_id)
        meetings = await self.store.list_meetings(deal.account_id, deal_id)
        previous = await self.store.get_momentum(deal_id)

        return DealHistory(
            deal=deal,
            analyses=analyses,
            meeting_times=[m.start_time for m in meetings if m.start_time is not None],
            previous=previous,
            as_of=self.clock.now(),
        )

    async def recompute(self, deal_id: str) -> MomentumState:
        """
        Recompute a deal's momentum and replace the stored state.

        If an analysis for the deal is written while the model is running,
        the result is discarded and the computation repeats on the fresh
        set, up to ``max_passes`` times.

        Args:
            deal_id: Deal to recompute

        Returns:
            The stored momentum state

        Raises:
            MomentumComputeFailedError: The model failed, the deal is gone,
                or the analyses kept changing. The previous state is kept.
        """
        for attempt in range(1, self.max_passes + 1):
            revision = await self.store.analysis_revision(deal_id)
            history = await self.load_history(deal_id)

            try:
                result = await self.model.compute(history)
            except MomentumComputeFailedError:
                raise
            except Exception as e:
                raise MomentumComputeFailedError(
                    f"Momentum model failed: {e}", deal_id=deal_id, cause=e
                )

            state = MomentumState(
                **result.model_dump(),
                deal_id=deal_id,
                analysis_count=len(history.analyses),
                last_computed_at=self.clock.now(),
            )

            try:
                written = await self.store.put_momentum(state, expected_revision=revision)
            except PersistenceError as e:
                raise MomentumComputeFailedError(
                    "Failed to store momentum", deal_id=deal_id, cause=e
                )

            if written:
                logger.info(
                    f"Momentum for deal {deal_id}: {state.score:.0f} ({state.trend.value}) "
                    f"from {state.analysis_count} analyses"
                )
                return state

            logger.info(
                f"Analyses for deal {deal_id} changed during pass {attempt}, recomputing"
            )

        raise MomentumComputeFailedError(
            f"Analyses kept changing after {self.max_passes} passes",
            deal_id=deal_id,
        )
