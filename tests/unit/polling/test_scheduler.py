import asyncio

import pytest

from chatmirror.errors import NetworkError
from chatmirror.polling.service import PollingScheduler


class SlowPoll:
    def __init__(self):
        self.calls = []
        self.release = asyncio.Event()

    async def __call__(self, *args):
        self.calls.append(args)
        await self.release.wait()


@pytest.mark.asyncio
async def test_overlapping_chat_tick_is_skipped_not_queued():
    poll_chats = SlowPoll()
    scheduler = PollingScheduler(poll_chats, SlowPoll(), current_chat=lambda: None)

    first = asyncio.create_task(scheduler.tick_chats())
    await asyncio.sleep(0)

    assert await scheduler.tick_chats() is False
    poll_chats.release.set()
    assert await first is True
    assert len(poll_chats.calls) == 1

    assert await scheduler.tick_chats() is True
    assert len(poll_chats.calls) == 2


@pytest.mark.asyncio
async def test_message_tick_needs_a_foreground_chat():
    polled = []

    async def poll_messages(chat_id):
        polled.append(chat_id)

    async def poll_chats():
        pass

    current = {"chat": None}
    scheduler = PollingScheduler(poll_chats, poll_messages, current_chat=lambda: current["chat"])

    assert await scheduler.tick_messages() is False
    current["chat"] = "1@c.us"
    assert await scheduler.tick_messages() is True
    assert polled == ["1@c.us"]


@pytest.mark.asyncio
async def test_errors_are_swallowed_and_guard_released():
    attempts = []

    async def failing():
        attempts.append(1)
        raise NetworkError()

    async def poll_messages(chat_id):
        raise RuntimeError("boom")

    scheduler = PollingScheduler(failing, poll_messages, current_chat=lambda: "1@c.us")

    assert await scheduler.tick_chats() is True
    assert await scheduler.tick_chats() is True
    assert await scheduler.tick_messages() is True
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_loops_run_on_their_cadence_and_stop_cleanly():
    chats, messages = [], []

    async def poll_chats():
        chats.append(1)

    async def poll_messages(chat_id):
        messages.append(chat_id)

    scheduler = PollingScheduler(
        poll_chats,
        poll_messages,
        current_chat=lambda: "1@c.us",
        chats_interval_s=0.01,
        messages_interval_s=0.01,
    )
    scheduler.start()
    await asyncio.sleep(0.06)
    await scheduler.stop()

    assert not scheduler.running
    assert chats and messages
    count = len(chats)
    await asyncio.sleep(0.03)
    assert len(chats) == count
