"""
Connection manager for the push channel.

Owns the single WebSocket to the remote service, reconnects with capped
exponential backoff, decodes frames and feeds them through the debounce
batcher.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from chatmirror.bus.events import SUBSCRIBED_EVENTS, Event, decode_event
from chatmirror.bus.queue import BatchHandler, EventBatcher
from chatmirror.errors import MalformedEventError, classify
from chatmirror.models import ConnectionState
from chatmirror.retry import compute_delay

logger = logging.getLogger(__name__)


class Socket(Protocol):
    """The part of a WebSocket connection the manager relies on."""

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


# Async context manager yielding a Socket, e.g. `websockets.connect(url)`
SocketFactory = Callable[[str, dict[str, str]], Any]
StateListener = Callable[[ConnectionState], None]


def default_socket_factory(url: str, headers: dict[str, str]) -> Any:
    return websockets.connect(url, additional_headers=headers, ping_interval=20)


def build_ws_url(
    base_url: str,
    api_key: str | None = None,
    events: tuple[str, ...] = SUBSCRIBED_EVENTS,
) -> str:
    """
    Derive the event socket URL from the REST base URL.

    `http://host:3000` -> `ws://host:3000/ws?session=*&events=...&x-api-key=...`
    """
    parts = urlsplit(base_url.rstrip("/"))
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    path = parts.path if parts.path.endswith("/ws") else f"{parts.path}/ws"

    params: list[tuple[str, str]] = [("session", "*")]
    params.extend(("events", name) for name in events)
    if api_key:
        params.append(("x-api-key", api_key))

    return urlunsplit((scheme, parts.netloc, path, urlencode(params, safe="*"), ""))


def mask_url(url: str) -> str:
    """Hide the API key in a URL before it reaches the log."""
    parts = urlsplit(url)
    if "x-api-key=" not in parts.query:
        return url
    query = "&".join(
        "x-api-key=***" if item.startswith("x-api-key=") else item
        for item in parts.query.split("&")
    )
    return urlunsplit(parts._replace(query=query))


class ConnectionManager:
    """
    Keeps the event socket alive.

    State machine:
        disconnected -> connecting -> connected
        connected -> reconnect_scheduled -> connecting   (on close/error)
        any -> disconnected                               (on disconnect())

    The reconnect attempt counter resets only after a successful connect.
    """

    def __init__(
        self,
        url: str,
        on_events: BatchHandler,
        *,
        api_key: str | None = None,
        on_connected: Callable[[], Awaitable[None]] | None = None,
        socket_factory: SocketFactory = default_socket_factory,
        debounce_s: float = 0.05,
        reconnect_base_s: float = 1.0,
        reconnect_max_s: float = 30.0,
        jitter: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._headers = {"X-Api-Key": api_key} if api_key else {}
        self._on_connected = on_connected
        self._socket_factory = socket_factory
        self._batcher = EventBatcher(on_events, window_s=debounce_s)
        self._reconnect_base_s = reconnect_base_s
        self._reconnect_max_s = reconnect_max_s
        self._jitter = jitter
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[StateListener] = []
        self._task: asyncio.Task[None] | None = None
        self._socket: Any | None = None
        self._closing = False
        self.reconnect_attempts = 0
        self.dropped_frames = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def batcher(self) -> EventBatcher:
        return self._batcher

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based)."""
        return compute_delay(
            attempt,
            self._reconnect_base_s,
            self._reconnect_max_s,
            jitter=self._jitter,
        )

    def connect(self) -> None:
        """Start the connection loop. No-op if it is already running."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._batcher.start()
        self._task = asyncio.create_task(self._run())

    async def disconnect(self) -> None:
        """Close the socket for good: cancel timers and drop buffered events."""
        self._closing = True
        if self._socket is not None:
            with contextlib.suppress(Exception):
                await self._socket.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        await self._batcher.close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _run(self) -> None:
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            logger.info(f"Connecting to {mask_url(self.url)}")
            try:
                async with self._socket_factory(self.url, self._headers) as socket:
                    self._socket = socket
                    self.reconnect_attempts = 0
                    self._set_state(ConnectionState.CONNECTED)
                    logger.info("Event socket connected")
                    await self._resync()
                    await self._read(socket)
                logger.info("Event socket closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify(e)
                logger.warning(f"Event socket error: {error.message} ({e})")
            finally:
                self._socket = None

            if self._closing:
                break

            self._batcher.clear()
            self.reconnect_attempts += 1
            delay = self.reconnect_delay(self.reconnect_attempts)
            self._set_state(ConnectionState.RECONNECT_SCHEDULED)
            logger.info(
                f"Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts})"
            )
            await self._sleep(delay)

    async def _resync(self) -> None:
        if self._on_connected is None:
            return
        try:
            await self._on_connected()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Post-connect resync failed")

    async def _read(self, socket: Any) -> None:
        async for frame in socket:
            event = self._decode(frame)
            if event is not None:
                self._batcher.push(event)

    def _decode(self, frame: str | bytes) -> Event | None:
        try:
            return decode_event(frame)
        except MalformedEventError as e:
            self.dropped_frames += 1
            logger.warning(f"Dropping malformed frame: {e.message}")
            return None
