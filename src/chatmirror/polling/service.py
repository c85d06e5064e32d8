"""
Polling scheduler: the pull half of synchronization.

Catches anything the event socket missed (dropped frames, events emitted
while disconnected) by periodically re-reading the chat list and the
foreground conversation.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_CHATS_INTERVAL_S = 3.0
DEFAULT_MESSAGES_INTERVAL_S = 2.0


class PollingScheduler:
    """
    Two independent periodic refreshes.

    - chats: every `chats_interval_s` while started
    - messages: every `messages_interval_s`, only while `current_chat()`
      returns a chat id

    Each tick is spawned so the timer keeps its cadence; a tick that finds
    the previous one of the same kind still in flight is skipped. Errors are
    logged at debug level and swallowed: the next tick is the retry.
    """

    def __init__(
        self,
        poll_chats: Callable[[], Awaitable[None]],
        poll_messages: Callable[[str], Awaitable[None]],
        current_chat: Callable[[], str | None],
        chats_interval_s: float = DEFAULT_CHATS_INTERVAL_S,
        messages_interval_s: float = DEFAULT_MESSAGES_INTERVAL_S,
    ) -> None:
        self._poll_chats = poll_chats
        self._poll_messages = poll_messages
        self._current_chat = current_chat
        self.chats_interval_s = chats_interval_s
        self.messages_interval_s = messages_interval_s

        self._running = False
        self._loops: list[asyncio.Task[None]] = []
        self._ticks: set[asyncio.Task[None]] = set()
        self._chats_in_flight = False
        self._messages_in_flight = False

    @property
    def running(self) -> bool:
        return self._running

    async def tick_chats(self) -> bool:
        """
        Refresh the chat list once.

        Returns:
            False if skipped because a previous refresh is still running.
        """
        if self._chats_in_flight:
            logger.debug("Chat poll still in flight, skipping")
            return False
        self._chats_in_flight = True
        try:
            await self._poll_chats()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Chat poll failed: {e}")
        finally:
            self._chats_in_flight = False
        return True

    async def tick_messages(self) -> bool:
        """
        Refresh the foreground conversation once.

        Returns:
            False if skipped (no foreground chat, or a refresh in flight).
        """
        chat_id = self._current_chat()
        if chat_id is None:
            return False
        if self._messages_in_flight:
            logger.debug("Message poll still in flight, skipping")
            return False
        self._messages_in_flight = True
        try:
            await self._poll_messages(chat_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Message poll for {chat_id} failed: {e}")
        finally:
            self._messages_in_flight = False
        return True

    def _spawn(self, tick: Callable[[], Awaitable[bool]]) -> None:
        task = asyncio.create_task(tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _run_loop(
        self, interval_s: float, tick: Callable[[], Awaitable[bool]]
    ) -> None:
        while self._running:
            await asyncio.sleep(interval_s)
            if self._running:  # stopped during sleep
                self._spawn(tick)

    def start(self) -> None:
        """Start both loops. No-op if already running."""
        if self._running:
            return
        self._running = True
        self._loops = [
            asyncio.create_task(self._run_loop(self.chats_interval_s, self.tick_chats)),
            asyncio.create_task(
                self._run_loop(self.messages_interval_s, self.tick_messages)
            ),
        ]
        logger.info(
            f"Polling started (chats every {self.chats_interval_s}s, "
            f"messages every {self.messages_interval_s}s)"
        )

    async def stop(self) -> None:
        """Stop both loops and cancel in-flight ticks."""
        self._running = False
        tasks = [*self._loops, *self._ticks]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._loops.clear()
        self._ticks.clear()
