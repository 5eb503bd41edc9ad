"""
Transcript fetcher.

Makes exactly one provider attempt per call and reports a structured outcome
instead of raising, so the schedulers can apply their own policy.
"""

from typing import Optional

from dealflow_sync.models.session import FetchOutcome, FetchStatus
from dealflow_sync.models.transcript import SyncTarget, TranscriptRecord
from dealflow_sync.provider_client import TranscriptProvider
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.exceptions import (
    PermanentProviderError,
    PersistenceError,
    TransientProviderError,
)
from dealflow_sync.utils.logger import get_contextual_logger


class TranscriptFetcher:
    """
    Single-attempt transcript retrieval with idempotent persistence.
    """

    def __init__(
        self,
        provider: TranscriptProvider,
        store: PersistenceStore,
        clock: Optional[Clock] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.clock = clock or SystemClock()

    async def fetch_once(self, target: SyncTarget) -> FetchOutcome:
        """
        Ask the provider for a meeting's transcript once.

        A ready transcript is persisted before returning; re-fetching the
        same transcript does not create a second copy. Nothing is persisted
        for any other outcome.

        Args:
            target: Meeting to fetch

        Returns:
            READY with the stored record, NOT_READY, TRANSIENT_ERROR or
            PERMANENT_ERROR.

        Raises:
            PersistenceError: The transcript was fetched but could not be stored.
        """
        log = get_contextual_logger("provider", meeting_id=target.meeting_id)

        try:
            segments = await self.provider.fetch_transcript(target.meeting_id)
        except PermanentProviderError as e:
            log.warning(f"Permanent provider error: {e.message}")
            return FetchOutcome(status=FetchStatus.PERMANENT_ERROR, error=e.message)
        except TransientProviderError as e:
            log.info(f"Transient provider error: {e.message}")
            return FetchOutcome(
                status=FetchStatus.TRANSIENT_ERROR,
                error=e.message,
                retry_after=e.retry_after,
            )

        if not segments:
            log.debug("Transcript not ready")
            return FetchOutcome(status=FetchStatus.NOT_READY)

        record = TranscriptRecord(
            meeting_id=target.meeting_id,
            deal_id=target.deal_id,
            account_id=target.account_id,
            segments=segments,
            fetched_at=self.clock.now(),
        )
        try:
            stored = await self.store.put_transcript(record)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to store transcript: {e}",
                entity="transcript",
                key=target.meeting_id,
                cause=e,
            )

        log.info(f"Transcript ready ({stored.segment_count} segments)")
        return FetchOutcome(status=FetchStatus.READY, record=stored)
