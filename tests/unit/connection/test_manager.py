import asyncio
import json

import pytest

from chatmirror.connection.manager import ConnectionManager, build_ws_url, mask_url
from chatmirror.models import ConnectionState


class FakeSocket:
    def __init__(self, frames=(), hold=False):
        self.frames = list(frames)
        self.hold = hold
        self.closed = False

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame
        if self.hold:
            await asyncio.Event().wait()

    async def close(self):
        self.closed = True


class _Session:
    def __init__(self, plan):
        self.plan = plan

    async def __aenter__(self):
        if isinstance(self.plan, Exception):
            raise self.plan
        return self.plan

    async def __aexit__(self, *exc_info):
        return False


class FakeConnector:
    """Socket factory that plays back a script of failures and sockets."""

    def __init__(self, plans):
        self.plans = list(plans)
        self.calls = []

    def __call__(self, url, headers):
        self.calls.append((url, headers))
        plan = self.plans.pop(0) if self.plans else FakeSocket(hold=True)
        return _Session(plan)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def frame(event, payload):
    return json.dumps({"event": event, "session": "default", "payload": payload})


def make_manager(connector, batches, sleep, resyncs=None, debounce_s=0.001):
    async def on_events(batch):
        batches.append([e.event for e in batch])

    async def on_connected():
        if resyncs is not None:
            resyncs.append(True)

    return ConnectionManager(
        "ws://waha.local/ws",
        on_events,
        api_key="secret",
        on_connected=on_connected,
        socket_factory=connector,
        debounce_s=debounce_s,
        sleep=sleep,
    )


def test_reconnect_delays_double_up_to_cap():
    manager = ConnectionManager("ws://x/ws", on_events=None)
    assert [manager.reconnect_delay(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]


@pytest.mark.asyncio
async def test_failures_then_connect_walks_the_state_machine():
    connector = FakeConnector(
        [
            ConnectionRefusedError("down"),
            ConnectionRefusedError("down"),
            FakeSocket([frame("chat.archive", {"id": "1@c.us"}), "{garbage"], hold=True),
        ]
    )
    batches, resyncs, sleep = [], [], RecordingSleep()
    manager = make_manager(connector, batches, sleep, resyncs)
    states = []
    manager.add_listener(states.append)

    manager.connect()
    await wait_until(lambda: batches)

    assert states == [
        ConnectionState.CONNECTING,
        ConnectionState.RECONNECT_SCHEDULED,
        ConnectionState.CONNECTING,
        ConnectionState.RECONNECT_SCHEDULED,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
    ]
    assert sleep.delays == [1.0, 2.0]
    assert manager.reconnect_attempts == 0
    assert resyncs == [True]
    assert batches == [["chat.archive"]]
    assert manager.dropped_frames == 1
    assert connector.calls[0][1] == {"X-Api-Key": "secret"}

    await manager.disconnect()
    assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_server_close_schedules_reconnect_and_resyncs_again():
    connector = FakeConnector([FakeSocket([]), FakeSocket(hold=True)])
    batches, resyncs, sleep = [], [], RecordingSleep()
    manager = make_manager(connector, batches, sleep, resyncs)

    manager.connect()
    await wait_until(lambda: len(resyncs) == 2)

    assert sleep.delays == [1.0]
    assert manager.connected

    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_is_terminal_and_drops_buffered_events():
    connector = FakeConnector(
        [FakeSocket([frame("chat.archive", {"id": "1@c.us"})], hold=True)]
    )
    batches, sleep = [], RecordingSleep()
    manager = make_manager(connector, batches, sleep, debounce_s=10)

    manager.connect()
    await wait_until(lambda: manager.batcher.pending == 1)
    await manager.disconnect()
    await asyncio.sleep(0.01)

    assert batches == []
    assert manager.state is ConnectionState.DISCONNECTED
    assert len(connector.calls) == 1
    assert sleep.delays == []


def test_ws_url_building():
    url = build_ws_url("https://waha.example.com/", api_key="k", events=("message.any", "message.ack"))
    assert url == "wss://waha.example.com/ws?session=*&events=message.any&events=message.ack&x-api-key=k"
    assert build_ws_url("http://localhost:3000", events=()) == "ws://localhost:3000/ws?session=*"
    assert mask_url(url).endswith("x-api-key=***")
