"""Status event bus: one broadcast channel for deployment progress.

Events live in a single fixed-capacity ring buffer shared by all
subscribers; each subscriber only keeps a read cursor into it. Producers
never wait for consumers. A subscriber that falls more than ``capacity``
events behind has its cursor moved to the oldest retained event and
receives a ``LagNotice`` with the number of events it missed.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from types import TracebackType

from stackyard.lib.errors import SubscriptionClosedError
from stackyard.lib.logging_config import get_logger
from stackyard.models.events import LagNotice, StatusEvent

logger = get_logger(__name__)

BusItem = StatusEvent | LagNotice


class Subscription:
    """Handle receiving every event emitted after it was created.

    Iterate with ``async for`` or call ``recv()``; close it (or use it as a
    context manager) to release its slot on the bus.
    """

    def __init__(self, bus: StatusEventBus, cursor: int) -> None:
        """Create a subscription starting at sequence number ``cursor``."""
        self._bus = bus
        self._cursor = cursor
        self._wakeup = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the subscription has been closed."""
        return self._closed

    @property
    def pending(self) -> int:
        """Number of retained events not yet received."""
        return self._bus._pending_for(self)

    def try_recv(self) -> BusItem | None:
        """Return the next item without waiting, or None if caught up."""
        return self._bus._next_for(self)

    async def recv(self) -> BusItem:
        """Wait for the next event (or lag notice).

        Raises:
            SubscriptionClosedError: If the subscription is closed and drained
        """
        self._loop = asyncio.get_running_loop()
        while True:
            item = self.try_recv()
            if item is not None:
                return item
            if self._closed:
                raise SubscriptionClosedError()
            self._wakeup.clear()
            # An emit may have landed between the check and the clear
            item = self.try_recv()
            if item is not None:
                return item
            if self._closed:
                raise SubscriptionClosedError()
            await self._wakeup.wait()

    def close(self) -> None:
        """Detach from the bus; pending items can still be drained."""
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._notify()

    def _notify(self) -> None:
        loop = self._loop
        if loop is None:
            self._wakeup.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._wakeup.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._wakeup.set)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BusItem:
        try:
            return await self.recv()
        except SubscriptionClosedError:
            raise StopAsyncIteration from None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class StatusEventBus:
    """Multi-producer, multi-consumer broadcast of StatusEvents.

    Safe to use from several tasks and threads without external locking.

    Attributes:
        capacity: Number of events retained in the ring buffer
    """

    def __init__(
        self,
        capacity: int = 256,
        *,
        on_emit: Callable[[StatusEvent, int], None] | None = None,
        on_lag: Callable[[int], None] | None = None,
    ) -> None:
        """Initialize the bus.

        Args:
            capacity: Ring buffer capacity (must be positive)
            on_emit: Called with each event and its receiver count
            on_lag: Called with the number of events a subscriber missed
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._buffer: list[StatusEvent | None] = [None] * capacity
        self._tail = 0
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()
        self._closed = False
        self._on_emit = on_emit
        self._on_lag = on_lag

    @property
    def subscriber_count(self) -> int:
        """Number of open subscriptions."""
        with self._lock:
            return len(self._subscribers)

    @property
    def closed(self) -> bool:
        """Whether the bus has been closed."""
        return self._closed

    def emit(self, event: StatusEvent) -> int:
        """Broadcast an event without blocking.

        The event is dropped when nobody is subscribed; late subscribers
        never see earlier events.

        Returns:
            Number of subscriptions that will receive the event
        """
        with self._lock:
            if self._closed or not self._subscribers:
                receivers: list[Subscription] = []
            else:
                self._buffer[self._tail % self.capacity] = event
                self._tail += 1
                receivers = list(self._subscribers)

        for subscription in receivers:
            subscription._notify()
        if self._on_emit is not None:
            self._on_emit(event, len(receivers))
        logger.debug(
            f"Emitted {event.phase.value}/{event.severity.value} for "
            f"'{event.app_name}' to {len(receivers)} subscriber(s)"
        )
        return len(receivers)

    def subscribe(self) -> Subscription:
        """Create a subscription that sees every event emitted from now on.

        Raises:
            SubscriptionClosedError: If the bus has been closed
        """
        with self._lock:
            if self._closed:
                raise SubscriptionClosedError()
            subscription = Subscription(self, self._tail)
            self._subscribers.add(subscription)
        return subscription

    def close(self) -> None:
        """Close the bus and every subscription on it."""
        with self._lock:
            self._closed = True
            subscriptions = list(self._subscribers)
        for subscription in subscriptions:
            subscription.close()

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def _pending_for(self, subscription: Subscription) -> int:
        with self._lock:
            oldest = max(0, self._tail - self.capacity)
            return self._tail - max(subscription._cursor, oldest)

    def _next_for(self, subscription: Subscription) -> BusItem | None:
        missed = 0
        with self._lock:
            oldest = max(0, self._tail - self.capacity)
            if subscription._cursor < oldest:
                missed = oldest - subscription._cursor
                subscription._cursor = oldest
            elif subscription._cursor >= self._tail:
                return None
            else:
                event = self._buffer[subscription._cursor % self.capacity]
                subscription._cursor += 1
                return event

        if self._on_lag is not None:
            self._on_lag(missed)
        logger.warning(f"Subscriber lagged behind the event bus by {missed} event(s)")
        return LagNotice(missed=missed)
