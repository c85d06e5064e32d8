"""
Session-level presence broadcasting.

Shows the account as online while the user is active and flips it to offline
after a period of inactivity. Also keeps the presence subscription for the
foreground chat alive; the remote drops subscriptions after a few minutes.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable

from chatmirror.models import PresenceState

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT_S = 30.0
DEFAULT_CHECK_INTERVAL_S = 5.0
DEFAULT_RESUBSCRIBE_INTERVAL_S = 5 * 60


class ActivityMonitor:
    """
    Online/offline broadcaster driven by user activity.

    Status changes are applied optimistically and reverted if the broadcast
    fails. Failures are logged, never raised.
    """

    def __init__(
        self,
        set_presence: Callable[[PresenceState], Awaitable[None]],
        subscribe: Callable[[str], Awaitable[None]],
        current_chat: Callable[[], str | None],
        inactivity_timeout_s: float = DEFAULT_INACTIVITY_TIMEOUT_S,
        check_interval_s: float = DEFAULT_CHECK_INTERVAL_S,
        resubscribe_interval_s: float = DEFAULT_RESUBSCRIBE_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._set_presence = set_presence
        self._subscribe = subscribe
        self._current_chat = current_chat
        self.inactivity_timeout_s = inactivity_timeout_s
        self.check_interval_s = check_interval_s
        self.resubscribe_interval_s = resubscribe_interval_s
        self._clock = clock

        self.status = PresenceState.OFFLINE
        self._last_activity = clock()
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def idle_for(self) -> float:
        return self._clock() - self._last_activity

    async def _broadcast(self, state: PresenceState) -> bool:
        previous = self.status
        self.status = state
        try:
            await self._set_presence(state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.status = previous
            logger.debug(f"Failed to set presence {state.value}: {e}")
            return False
        logger.debug(f"Session presence: {state.value}")
        return True

    async def mark_activity(self) -> None:
        """Record user input; come back online if currently offline."""
        self._last_activity = self._clock()
        if self.status is not PresenceState.ONLINE:
            await self._broadcast(PresenceState.ONLINE)

    async def check_inactivity(self) -> None:
        """Go offline once the inactivity timeout has passed."""
        if self.status is PresenceState.ONLINE and self.idle_for >= self.inactivity_timeout_s:
            await self._broadcast(PresenceState.OFFLINE)

    async def resubscribe(self) -> None:
        """Re-assert presence interest for the foreground chat."""
        chat_id = self._current_chat()
        if chat_id is None:
            return
        try:
            await self._subscribe(chat_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Presence re-subscribe for {chat_id} failed: {e}")

    async def _every(self, interval_s: float, action: Callable[[], Awaitable[None]]) -> None:
        while self._running:
            await asyncio.sleep(interval_s)
            if self._running:
                await action()

    async def start(self) -> None:
        """Go online and start the inactivity and re-subscribe timers."""
        if self._running:
            return
        self._running = True
        await self.mark_activity()
        self._tasks = [
            asyncio.create_task(self._every(self.check_interval_s, self.check_inactivity)),
            asyncio.create_task(self._every(self.resubscribe_interval_s, self.resubscribe)),
        ]

    async def stop(self) -> None:
        """Cancel timers and go offline."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        if self.status is PresenceState.ONLINE:
            await self._broadcast(PresenceState.OFFLINE)
