"""
Change event listener.

Consumes row-level change events for an account. A pushed transcript
short-circuits whatever polling the meeting has; deletions cancel the
sessions they orphan.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from dealflow_sync.bus import ChangeNotificationBus, Subscription
from dealflow_sync.models.events import ChangeEvent, ChangeTable, ChangeType
from dealflow_sync.models.session import (
    AbandonReason,
    IntensivePolicy,
    SessionState,
)
from dealflow_sync.models.transcript import SyncTarget, TranscriptRecord
from dealflow_sync.pipeline import SyncPipeline
from dealflow_sync.provider_client import (
    TRANSCRIPT_PAYLOAD_KEYS,
    parse_transcript_segments,
)
from dealflow_sync.registry import SessionRegistry, ShortCircuit
from dealflow_sync.store import PersistenceStore
from dealflow_sync.utils.clock import Clock, SystemClock
from dealflow_sync.utils.exceptions import SessionAlreadyActiveError
from dealflow_sync.utils.logger import get_contextual_logger, get_logger

logger = get_logger("listener")


class EventListener:
    """
    Bridges the change notification bus to the session registry.
    """

    def __init__(
        self,
        bus: ChangeNotificationBus,
        registry: SessionRegistry,
        pipeline: SyncPipeline,
        store: PersistenceStore,
        clock: Optional[Clock] = None,
    ) -> None:
        self.bus = bus
        self.registry = registry
        self.pipeline = pipeline
        self.store = store
        self.clock = clock or SystemClock()
        self._subscriptions: dict[str, Subscription] = {}

    def is_listening(self, account_id: str) -> bool:
        return account_id in self._subscriptions

    def listen(self, account_id: str, deal_id: Optional[str] = None) -> bool:
        """
        Subscribe to an account's events, once.

        Returns:
            True if a new subscription was created.
        """
        if account_id in self._subscriptions:
            return False
        self._subscriptions[account_id] = self.bus.subscribe(
            self.handle_event, account_id, deal_id
        )
        logger.info(f"Listening for changes on account {account_id}")
        return True

    async def stop(self, account_id: str) -> None:
        subscription = self._subscriptions.pop(account_id, None)
        if subscription is not None:
            await self.bus.unsubscribe(subscription)

    async def stop_all(self) -> None:
        for account_id in list(self._subscriptions):
            await self.stop(account_id)

    async def handle_event(self, event: ChangeEvent) -> None:
        """Dispatch one change event."""
        if event.table == ChangeTable.TRANSCRIPTS and event.event_type in (
            ChangeType.INSERT,
            ChangeType.UPDATE,
        ):
            await self._on_transcript(event)
        elif event.table == ChangeTable.MEETINGS and event.event_type == ChangeType.DELETE:
            await self._on_meeting_deleted(event)
        elif event.table == ChangeTable.DEALS and event.event_type == ChangeType.DELETE:
            await self._on_deal_deleted(event)
        else:
            logger.debug(
                f"Ignoring {event.table.value} {event.event_type.value} event"
            )

    async def _record_from_event(self, event: ChangeEvent) -> Optional[TranscriptRecord]:
        meeting_id = event.meeting_id
        if not meeting_id:
            return None

        payload = event.record
        has_segments = any(payload.get(key) for key in TRANSCRIPT_PAYLOAD_KEYS)
        segments = parse_transcript_segments(payload) if has_segments else []
        if not segments:
            # Row notification without the segment payload: use what was stored.
            return await self.store.get_transcript(meeting_id)

        deal_id = event.row_deal_id
        if deal_id is None:
            meeting = await self.store.get_meeting(meeting_id)
            deal_id = meeting.deal_id if meeting else None
        if deal_id is None:
            return None

        fetched_at = payload.get("fetched_at") or payload.get("created_at")
        try:
            record = TranscriptRecord(
                meeting_id=meeting_id,
                deal_id=deal_id,
                account_id=event.account_id,
                segments=segments,
                fetched_at=fetched_at or self.clock.now(),
            )
        except PydanticValidationError as e:
            logger.warning(f"Malformed transcript event for meeting {meeting_id}: {e}")
            return None

        stored = await self.store.get_transcript(meeting_id)
        if stored is not None and stored.fingerprint == record.fingerprint:
            return stored
        return record

    async def _on_transcript(self, event: ChangeEvent) -> None:
        record = await self._record_from_event(event)
        if record is None:
            logger.debug("Transcript event without a usable transcript, ignoring")
            return

        log = get_contextual_logger("listener", meeting_id=record.meeting_id)

        latest = self.registry.get(record.meeting_id)
        if (
            latest is not None
            and latest.state == SessionState.COMPLETED
            and latest.transcript_fetched_at == record.fetched_at
        ):
            log.debug("Transcript already synced, ignoring duplicate notification")
            return

        result, session = await self.registry.short_circuit(record.meeting_id, record)

        if result == ShortCircuit.CLAIMED:
            log.info("Pushed transcript short-circuited polling")
            await self.pipeline.deliver(session, record, claimed=True, persist=True)
        elif result == ShortCircuit.DEFERRED:
            log.info("Pushed transcript handed to in-flight attempt")
        elif result == ShortCircuit.IGNORED:
            log.debug("Session already syncing, ignoring pushed transcript")
        else:
            await self._seed(record)

    async def _seed(self, record: TranscriptRecord) -> None:
        log = get_contextual_logger("listener", meeting_id=record.meeting_id)
        target = SyncTarget(
            meeting_id=record.meeting_id,
            deal_id=record.deal_id,
            account_id=record.account_id,
        )
        try:
            session = await self.registry.acquire(
                target, IntensivePolicy(max_attempts=1, interval_seconds=0)
            )
        except SessionAlreadyActiveError:
            log.debug("Session opened concurrently, leaving transcript to it")
            return

        log.info("Seeded session from pushed transcript")
        await self.pipeline.deliver(session, record, persist=True)

    async def _on_meeting_deleted(self, event: ChangeEvent) -> None:
        meeting_id = event.meeting_id or event.record.get("id")
        if not meeting_id:
            return
        session = self.registry.get(str(meeting_id))
        if session is not None and await self.registry.release(
            session, SessionState.ABANDONED, AbandonReason.CANCELLED
        ):
            logger.info(f"Meeting {meeting_id} deleted, session cancelled")

    async def _on_deal_deleted(self, event: ChangeEvent) -> None:
        deal_id = event.row_deal_id
        if not deal_id:
            return
        released = await self.registry.release_deal(deal_id)
        if released:
            logger.info(f"Deal {deal_id} deleted, cancelled {len(released)} sessions")
