"""
In-process change notification bus.

Publishes row-level change events to subscribers filtered by account and,
optionally, deal. Each subscription owns a queue and a consumer task, so a
slow handler never blocks the publisher or other subscribers.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from dealflow_sync.models.events import ChangeEvent
from dealflow_sync.utils.logger import get_logger

logger = get_logger("listener")

EventHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    """A live subscription: filter, queue and the task draining it."""

    def __init__(
        self,
        handler: EventHandler,
        account_id: str,
        deal_id: Optional[str] = None,
    ) -> None:
        self.subscription_id = uuid4().hex
        self.handler = handler
        self.account_id = account_id
        self.deal_id = deal_id
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    def wants(self, event: ChangeEvent) -> bool:
        return event.matches(self.account_id, self.deal_id)

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Handler failed for {event.table.value} {event.event_type.value} "
                    f"on account {self.account_id}: {e}",
                    exc_info=True,
                )
            finally:
                self.queue.task_done()

    def start(self) -> None:
        self.task = asyncio.create_task(
            self._consume(), name=f"bus-subscription-{self.account_id}"
        )


class ChangeNotificationBus:
    """
    Publish/subscribe hub for row-level change events.

    Example:
        bus = ChangeNotificationBus()
        sub = bus.subscribe(handler, account_id="acct-1")
        await bus.publish(event)
        await bus.join()
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        handler: EventHandler,
        account_id: str,
        deal_id: Optional[str] = None,
    ) -> Subscription:
        """
        Register a handler for an account's events.

        Must be called from within a running event loop.

        Args:
            handler: Coroutine function invoked once per matching event
            account_id: Only events for this account are delivered
            deal_id: Optionally narrow delivery to one deal

        Returns:
            The subscription, to pass to ``unsubscribe``.
        """
        subscription = Subscription(handler, account_id, deal_id)
        subscription.start()
        self._subscriptions[subscription.subscription_id] = subscription
        logger.debug(
            f"Subscribed to account {account_id}"
            + (f" deal {deal_id}" if deal_id else "")
        )
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering to a subscription and wait for its task to end."""
        self._subscriptions.pop(subscription.subscription_id, None)
        if subscription.task is not None and not subscription.task.done():
            subscription.task.cancel()
            try:
                await subscription.task
            except asyncio.CancelledError:
                pass

    async def publish(self, event: ChangeEvent) -> int:
        """
        Enqueue an event for every matching subscription.

        Returns:
            Number of subscriptions the event was delivered to.
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.wants(event):
                subscription.queue.put_nowait(event)
                delivered += 1
        return delivered

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for subscription in list(self._subscriptions.values()):
            await subscription.queue.join()

    async def close(self) -> None:
        """Cancel every subscription."""
        for subscription in list(self._subscriptions.values()):
            await self.unsubscribe(subscription)
