"""Change notifications for hour slots.

The slot store publishes a ``ChangeEvent`` after every committed save or
finalization, and the clock job publishes ``hour_locked`` when the plant hour
rolls over. Subscribers receive the events for one slot kind and one plant
day. Delivery is at-least-once and events for different hours may arrive in
any order, so consumers re-read the store rather than trusting payloads.

Publishers may run on any thread (request handlers, the scheduler's worker
pool); each subscription is bound to the event loop that created it and
events are handed to that loop thread-safely.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import date

from hydrolog.logbook.errors import LogbookError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Something changed for one kind of slot on one plant day.

    Attributes:
        kind: Slot kind name ("generator" or "transformer").
        day: Plant day.
        hour: Hour that changed; None for day-wide changes.
        stream_id: Equipment stream (transformer number), if any.
        change_type: "upsert", "finalize" or "hour_locked".
        actor: Who caused the change, when known.
    """
    kind: str
    day: date
    hour: int | None
    stream_id: int | None = None
    change_type: str = "upsert"
    actor: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "day": self.day.isoformat(),
            "hour": self.hour,
            "stream_id": self.stream_id,
            "change_type": self.change_type,
            "actor": self.actor,
        }


class Subscription:
    """Async iterator over the change events of one kind and day."""

    def __init__(self, broker: "ChangeBroker", kind: str, day: date):
        self.broker = broker
        self.kind = kind
        self.day = day
        self.loop = asyncio.get_running_loop()
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        return event.kind == self.kind and event.day == self.day

    def deliver(self, event: ChangeEvent) -> bool:
        """Hand an event to the subscriber's loop. False if the loop is gone."""
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)
        except RuntimeError:
            logger.debug(f"Dropping subscription for {self.kind} {self.day}: loop closed")
            return False
        return True

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.broker.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class ChangeBroker:
    """In-process publish/subscribe hub for slot changes."""

    def __init__(self):
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, kind: str, day: date) -> Subscription:
        """Subscribe from inside a running event loop."""
        subscription = Subscription(self, kind, day)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscriber. Returns the count."""
        with self._lock:
            targets = [s for s in self._subscribers if s.matches(event)]

        delivered = 0
        for subscription in targets:
            if subscription.deliver(event):
                delivered += 1
            else:
                self.unsubscribe(subscription)
        logger.debug(f"Published {event.change_type} {event.kind} {event.day} hour={event.hour} to {delivered}")
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


change_broker = ChangeBroker()


class RealtimeSynchronizer:
    """Feeds a collective log session with other operators' changes.

    Whether an event is applied, ignored, or triggers a re-fetch is decided
    by ``CollectiveLogSession.apply_remote_change``; this class only owns the
    subscription and the background task.
    """

    def __init__(self, session, store):
        self.session = session
        self.store = store
        self._task: asyncio.Task | None = None
        self._subscription: Subscription | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._subscription = self.store.subscribe_day_changes(self.session.kind, self.session.day)
        self._task = asyncio.create_task(self._run(self._subscription))

    async def stop(self) -> None:
        """Close the subscription and end the task.

        Called from the task itself (a remote ``hour_locked`` event that
        crosses midnight restarts the synchronizer), the task is not
        cancelled; the closed subscription ends its loop after the current
        event.
        """
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def restart(self) -> None:
        await self.stop()
        self.start()

    async def _run(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self.session.apply_remote_change(event)
            except LogbookError as e:
                logger.warning(f"Could not apply remote change {event.to_dict()}: {e}")
