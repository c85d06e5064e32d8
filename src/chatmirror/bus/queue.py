"""
Debounce batcher for pushed events.

Bursts of socket frames (a flurry of acks, a group chat waking up) are
collected for a short window and handed to the consumer as one batch, so the
view redraws once per burst instead of once per frame.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Self

from chatmirror.bus.events import Event

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[Event]], Awaitable[None]]


class EventBatcher:
    """
    Buffer plus timer.

    The window starts at the first buffered event and is not extended by
    later ones. A full buffer (`max_batch`) flushes immediately. Deliveries
    are serialized through a lock, so batches reach the handler in arrival
    order and never overlap.
    """

    def __init__(
        self,
        handler: BatchHandler,
        window_s: float = 0.05,
        max_batch: int = 200,
    ) -> None:
        self._handler = handler
        self._window_s = window_s
        self._max_batch = max(1, max_batch)
        self._buffer: list[Event] = []
        self._timer: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def pending(self) -> int:
        """Events buffered and not yet handed off."""
        return len(self._buffer)

    def push(self, event: Event) -> None:
        """Buffer an event and arm the flush timer if it is not running."""
        if self._closed:
            return
        self._buffer.append(event)

        if len(self._buffer) >= self._max_batch:
            self._cancel_timer()
            self._spawn_delivery(self._take())
        elif self._timer is None:
            self._timer = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._window_s)
        self._timer = None
        await self._deliver(self._take())

    async def flush(self) -> None:
        """Deliver whatever is buffered right now."""
        self._cancel_timer()
        await self._deliver(self._take())

    def _take(self) -> list[Event]:
        batch, self._buffer = self._buffer, []
        return batch

    def _spawn_delivery(self, batch: list[Event]) -> None:
        task = asyncio.create_task(self._deliver(batch))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, batch: list[Event]) -> None:
        if not batch:
            return
        async with self._lock:
            logger.debug(f"Delivering batch of {len(batch)} events")
            try:
                await self._handler(batch)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Event batch handler failed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def clear(self) -> None:
        """Drop buffered events and cancel the pending flush."""
        dropped = len(self._buffer)
        self._buffer.clear()
        self._cancel_timer()
        if dropped:
            logger.debug(f"Dropped {dropped} buffered events")

    def start(self) -> Self:
        self._closed = False
        return self

    async def close(self) -> None:
        """Drop buffered events and wait out in-flight deliveries."""
        self._closed = True
        self.clear()
        for task in list(self._deliveries):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._deliveries.clear()
