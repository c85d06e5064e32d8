"""
Sync engine: the single owner of local state.

Wires the push channel (connection manager + event batcher), the pull
channel (polling scheduler), the cache and the stores together. Every write
to chats, messages, presence and cache happens here, on the event loop; the
components it drives only fetch, time and decode.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from chatmirror.bus.events import (
    ChatArchiveEvent,
    Event,
    MessageAckEvent,
    MessageEvent,
    MessageReactionEvent,
    MessageRevokedEvent,
    PresenceUpdateEvent,
    SessionStatusEvent,
    UnknownEvent,
)
from chatmirror.cache import CacheKeys, TTLCache
from chatmirror.client.base import RemoteClient
from chatmirror.config.schema import Config, SyncOptions
from chatmirror.connection.manager import ConnectionManager, SocketFactory, build_ws_url
from chatmirror.errors import ErrorReporter, SyncError
from chatmirror.ids import format_phone, is_group_chat, is_self_chat, is_status_broadcast
from chatmirror.models import Chat, Message, Profile, Session, SessionStatus
from chatmirror.notify import (
    AlertPolicy,
    LoggingNotificationSink,
    NotificationSink,
    resolve_sender_name,
    should_alert,
)
from chatmirror.polling.service import PollingScheduler
from chatmirror.presence.activity import ActivityMonitor
from chatmirror.presence.tracker import PresenceTracker
from chatmirror.retry import RetryPolicy, RetryPresets, with_retry
from chatmirror.store.chats import ChatFilter, ChatStore
from chatmirror.store.messages import MessageStore
from chatmirror.view.base import ChatListPresenter, ViewListener
from chatmirror.view.diff import ChangeType, ChatRow, RenderPlan

logger = logging.getLogger(__name__)

T = TypeVar("T")

MESSAGE_PAGE_SIZE = 50
# Delay before re-reading after a push, so the remote has the new state
CHAT_REFRESH_DELAY_S = 0.5
MESSAGE_RELOAD_DELAY_S = 0.1


class SyncEngine:
    """
    Mirrors one remote session into local state.

    Lifecycle:
        engine = SyncEngine(client, config)
        await engine.start()        # initial pull, socket, polling
        await engine.open_chat(id)  # foreground a conversation
        await engine.stop()
    """

    def __init__(
        self,
        client: RemoteClient,
        config: Config | None = None,
        *,
        cache: TTLCache | None = None,
        errors: ErrorReporter | None = None,
        notifier: NotificationSink | None = None,
        presenter: ChatListPresenter | None = None,
        socket_factory: SocketFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config or Config()
        self.options: SyncOptions = self.config.sync_options()
        self.alert_policy: AlertPolicy = self.config.alert_policy()
        self.cache = cache or TTLCache(
            max_entries=self.config.cache.max_entries,
            default_ttl=self.config.cache.default_ttl_s,
            clock=clock,
        )
        self.errors = errors or ErrorReporter()
        self.notifier = notifier or LoggingNotificationSink(
            show_previews=self.config.notifications.show_previews
        )
        self.presenter = presenter
        self._socket_factory = socket_factory
        self._clock = clock
        self._sleep = sleep

        self.chats = ChatStore()
        self.messages = MessageStore()
        self.presence = PresenceTracker(
            typing_timeout_s=self.config.presence.typing_timeout_s, clock=clock
        )
        self.contacts: dict[str, str] = {}
        self.sessions: list[Session] = []
        self.profile: Profile | None = None

        self.session: str | None = None
        self.session_status: SessionStatus | None = None
        self.current_chat: str | None = None
        self.chat_filter = ChatFilter.ALL
        self.search_query = ""
        self.show_archived = False

        self.polling = PollingScheduler(
            poll_chats=self.poll_chats,
            poll_messages=self.poll_messages,
            current_chat=lambda: self.current_chat,
            chats_interval_s=self.config.polling.chats_interval_s,
            messages_interval_s=self.config.polling.messages_interval_s,
        )
        self.activity = ActivityMonitor(
            set_presence=self.client.set_presence,
            subscribe=self.client.subscribe_presence,
            current_chat=lambda: self.current_chat,
            inactivity_timeout_s=self.config.presence.inactivity_timeout_s,
            check_interval_s=self.config.presence.check_interval_s,
            resubscribe_interval_s=self.config.presence.resubscribe_interval_s,
            clock=clock,
        )
        self.connection: ConnectionManager | None = None

        self._listeners: list[ViewListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._chat_refresh: asyncio.Task[None] | None = None
        self._message_reload: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def me_id(self) -> str | None:
        return self.presence.my_id

    # ===== View notifications =====

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: ChangeType) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("View listener failed")

    def display_name(self, chat: Chat) -> str:
        """Chat name, then saved contact name, then the phone number."""
        if chat.name and chat.name != chat.id:
            name = chat.name
        else:
            name = self.contacts.get(chat.id) or format_phone(chat.id)
        if is_self_chat(chat.id, self.me_id):
            return f"{name} (You)"
        return name

    def visible_rows(self) -> list[ChatRow]:
        typing = self.presence.typing_chats()
        names = {chat.id: self.display_name(chat) for chat in self.chats.all()}
        return [
            ChatRow(chat, names[chat.id], chat.id in typing)
            for chat in self.chats.visible(
                self.chat_filter, self.search_query, self.show_archived, names
            )
        ]

    def render(self) -> RenderPlan | None:
        """Push the current chat list through the presenter, if any."""
        if self.presenter is None:
            return None
        return self.presenter.render(self.visible_rows(), self.me_id)

    def select(self, index: int | None) -> None:
        if self.presenter is not None and not self.presenter.select(index):
            return
        self._emit(ChangeType.SELECTION)

    def scroll(self, offset: int) -> None:
        if self.presenter is not None and not self.presenter.scroll(offset):
            return
        self._emit(ChangeType.SCROLL)

    def set_filter(
        self,
        chat_filter: ChatFilter | None = None,
        query: str | None = None,
        show_archived: bool | None = None,
    ) -> None:
        if chat_filter is not None:
            self.chat_filter = chat_filter
        if query is not None:
            self.search_query = query
        if show_archived is not None:
            self.show_archived = show_archived
        self._emit(ChangeType.VIEW)

    # ===== Background task helpers =====

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _report(
        self, action: str, call: Callable[[], Awaitable[T]], notify: bool = True
    ) -> T | None:
        """Run a background call; classify and record failures instead of raising."""
        try:
            return await call()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle(e, notify=notify, context={"action": action})
            return None

    async def _user_action(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a user-initiated call; failures are reported and re-raised."""
        try:
            return await call()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.errors.handle(e, context={"action": action})
            raise

    def _on_retry(self, attempt: int, delay: float, error: SyncError) -> None:
        logger.debug(f"Retry {attempt} in {delay:.2f}s: {error.message}")

    async def _retry(self, operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
        return await with_retry(
            operation, policy, on_retry=self._on_retry, sleep=self._sleep
        )

    # ===== Pull side =====

    def _require_session(self) -> str:
        if self.session is None:
            raise RuntimeError("No active session; call start() first")
        return self.session

    async def load_sessions(self) -> list[Session]:
        self.sessions = await self._retry(self.client.list_sessions, RetryPresets.STANDARD)
        if self.session is not None:
            for session in self.sessions:
                if session.name == self.session:
                    self.session_status = session.status
                    if session.me_id and not self.me_id:
                        self.presence.my_id = session.me_id
        return self.sessions

    async def load_chats(self, force: bool = False) -> list[Chat]:
        """
        Refresh the chat list, through the cache unless `force`.

        The chats TTL is shorter than the poll interval, so scheduled polls
        reach the remote while bursts of reads inside one poll period share
        a single fetch.
        """
        key = CacheKeys.chats(self._require_session())
        chats = None if force else self.cache.get(key)
        if chats is None:
            chats = await self._retry(self.client.get_chats_overview, RetryPresets.STANDARD)
            self.cache.set(key, chats, ttl=self.config.cache.chats_ttl_s)
        self.chats.set_chats(chats)
        self._emit(ChangeType.DATA)
        return self.chats.all()

    async def poll_chats(self) -> None:
        await self.load_chats()

    async def load_messages(self, chat_id: str) -> list[Message]:
        snapshot = await self._retry(
            lambda: self.client.get_messages(chat_id, MESSAGE_PAGE_SIZE), RetryPresets.QUICK
        )
        merged = self.messages.set_messages(chat_id, snapshot)
        self._emit(ChangeType.DATA)
        return merged

    async def poll_messages(self, chat_id: str) -> None:
        """Refresh a chat's messages if it is (still) in the foreground."""
        if chat_id != self.current_chat:
            return
        snapshot = await self._retry(
            lambda: self.client.get_messages(chat_id, MESSAGE_PAGE_SIZE), RetryPresets.QUICK
        )
        if chat_id != self.current_chat:
            logger.debug(f"Dropping message poll for {chat_id}: no longer foreground")
            return
        self.messages.set_messages(chat_id, snapshot)
        self._emit(ChangeType.DATA)

    async def load_contacts(self) -> dict[str, str]:
        key = CacheKeys.contacts(self._require_session())
        contacts = self.cache.get(key)
        if contacts is None:
            contacts = await self._retry(self.client.get_contacts, RetryPresets.GENTLE)
            self.cache.set(key, contacts, ttl=self.config.cache.contacts_ttl_s)
        self.contacts = dict(contacts)
        self._emit(ChangeType.DATA)
        return self.contacts

    async def fetch_my_profile(self) -> Profile:
        key = CacheKeys.profile(self._require_session())
        profile = self.cache.get(key)
        if profile is None:
            profile = await self._retry(self.client.get_my_profile, RetryPresets.QUICK)
            self.cache.set(key, profile)
        self.profile = profile
        if profile.id:
            self.presence.my_id = profile.id
        return profile

    async def load_lid_mappings(self) -> int:
        mappings = await self._retry(self.client.get_lid_mappings, RetryPresets.QUICK)
        added = self.presence.add_lid_mappings(mappings)
        if added:
            logger.debug(f"Loaded {added} LID mappings")
            self._emit(ChangeType.DATA)
        return added

    async def resync(self) -> None:
        """Pull after (re)connecting, to catch events missed while offline."""
        if self.session is None:
            return
        self.cache.delete(CacheKeys.chats(self.session))
        await self._report("resync_chats", lambda: self.load_chats(force=True), notify=False)
        chat_id = self.current_chat
        if chat_id is not None:
            await self._report(
                "resync_messages", lambda: self.load_messages(chat_id), notify=False
            )

    def _schedule_chat_refresh(self) -> None:
        """Coalesced delayed chat-list reload after a pushed message."""
        if self._chat_refresh is not None and not self._chat_refresh.done():
            return

        async def refresh() -> None:
            await asyncio.sleep(CHAT_REFRESH_DELAY_S)
            await self._report("refresh_chats", self.load_chats, notify=False)

        self._chat_refresh = self._spawn(refresh())

    def _schedule_message_reload(self, chat_id: str) -> None:
        if self._message_reload is not None and not self._message_reload.done():
            return

        async def reload() -> None:
            await asyncio.sleep(MESSAGE_RELOAD_DELAY_S)
            if chat_id == self.current_chat:
                await self._report(
                    "reload_messages", lambda: self.load_messages(chat_id), notify=False
                )

        self._message_reload = self._spawn(reload())

    # ===== Push side =====

    async def handle_events(self, events: list[Event]) -> None:
        """
        Apply one debounced batch.

        Events for other sessions are ignored. Listeners hear about each kind
        of change once per batch, however many events caused it.
        """
        changes: set[ChangeType] = set()
        for event in events:
            if self.session and event.session and event.session != self.session:
                continue
            try:
                change = self._apply(event)
            except Exception:
                logger.exception(f"Failed to apply {event.event} event")
                continue
            if change is not None:
                changes.add(change)

        for change in ChangeType:
            if change in changes:
                self._emit(change)

    def _apply(self, event: Event) -> ChangeType | None:
        if isinstance(event, MessageEvent):
            return self._on_message(event.message)
        if isinstance(event, MessageAckEvent):
            return self._on_ack(event)
        if isinstance(event, MessageReactionEvent):
            return self._on_reaction(event)
        if isinstance(event, MessageRevokedEvent):
            return self._on_revoked(event)
        if isinstance(event, PresenceUpdateEvent):
            changed = self.presence.ingest(event.chat_id, event.presences(self._clock()))
            return ChangeType.DATA if changed else None
        if isinstance(event, ChatArchiveEvent):
            if self.session:
                self.cache.delete(CacheKeys.chats(self.session))
            changed = self.chats.set_archived(event.chat_id, event.archived)
            return ChangeType.DATA if changed else None
        if isinstance(event, SessionStatusEvent):
            return self._on_session_status(event)
        if isinstance(event, UnknownEvent):
            logger.debug(f"Ignoring event: {event.event}")
        return None

    def _on_session_status(self, event: SessionStatusEvent) -> ChangeType:
        previous, self.session_status = self.session_status, event.status
        logger.info(f"Session {event.session or self.session}: {event.status.value}")
        if event.status is SessionStatus.WORKING and previous is not SessionStatus.WORKING:
            self._spawn(self.resync())
        return ChangeType.OTHER

    def _on_message(self, message: Message) -> ChangeType | None:
        chat_id = message.chat_id
        if not chat_id:
            return None

        if not message.from_me and message.sender:
            self.presence.clear_typing_for_sender(message.sender)

        self.chats.note_message(message)
        if chat_id == self.current_chat or chat_id in self.messages.chats():
            self.messages.append_message(chat_id, message)
        if chat_id == self.current_chat and message.from_me:
            self._schedule_message_reload(chat_id)

        if self.session:
            self.cache.delete(CacheKeys.chats(self.session))
        self._schedule_chat_refresh()

        if self.options.notifications_enabled and should_alert(
            message, self.current_chat, self.alert_policy
        ):
            self._spawn(self._alert(message))
        return ChangeType.DATA

    async def _alert(self, message: Message) -> None:
        chat = self.chats.get(message.chat_id)
        known = chat.name if chat and chat.name and chat.name != chat.id else None
        is_group = is_group_chat(message.chat_id)
        sender = resolve_sender_name(
            message.sender,
            self.contacts,
            (None if is_group else known) or message.push_name,
        )
        await self._report(
            "notify",
            lambda: self.notifier.notify(
                sender,
                message.body,
                is_group,
                is_status_broadcast(message.chat_id),
                known if is_group else None,
            ),
            notify=False,
        )

    def _on_ack(self, event: MessageAckEvent) -> ChangeType | None:
        ack = event.ack
        changed = self.messages.update_ack(event.chat_id, event.message_id, ack)
        changed |= self.chats.update_last_message_ack(event.chat_id, event.message_id, ack)
        return ChangeType.DATA if changed else None

    def _on_reaction(self, event: MessageReactionEvent) -> ChangeType | None:
        if event.payload.from_me and self.me_id:
            sender: str | None = self.me_id
        else:
            sender = event.sender or None
        for chat_id in dict.fromkeys([event.chat_id, self.current_chat]):
            if chat_id and self.messages.update_reaction(
                chat_id, event.message_id, sender, event.emoji
            ):
                return ChangeType.DATA
        return None

    def _on_revoked(self, event: MessageRevokedEvent) -> ChangeType | None:
        for chat_id in dict.fromkeys([event.chat_id, self.current_chat]):
            if chat_id and self.messages.mark_revoked(chat_id, event.message_id):
                return ChangeType.DATA
        return None

    # ===== Foreground chat =====

    async def open_chat(self, chat_id: str) -> None:
        """Foreground a chat: load its messages, watch its presence."""
        if self.current_chat is not None and self.current_chat != chat_id:
            await self.close_chat()
        self.current_chat = chat_id
        self.chats.mark_read(chat_id)
        self._emit(ChangeType.VIEW)

        await self._report("load_messages", lambda: self.load_messages(chat_id))
        await self._report(
            "subscribe_presence", lambda: self.client.subscribe_presence(chat_id), notify=False
        )
        presences = await self._report(
            "get_presence", lambda: self.client.get_presence(chat_id), notify=False
        )
        if presences and self.presence.ingest(chat_id, presences):
            self._emit(ChangeType.DATA)
        await self.activity.start()

    async def close_chat(self) -> None:
        if self.current_chat is None:
            return
        await self.activity.stop()
        self.current_chat = None
        self._emit(ChangeType.VIEW)

    async def mark_activity(self) -> None:
        if self.activity.running:
            await self.activity.mark_activity()

    # ===== User actions =====

    async def send_message(
        self, text: str, chat_id: str | None = None, reply_to: str | None = None
    ) -> Message | None:
        target = chat_id or self.current_chat
        if target is None:
            raise ValueError("No chat to send to")
        sent = await self._user_action(
            "send_message", lambda: self.client.send_text(target, text, reply_to)
        )
        if sent is not None:
            self.messages.append_message(target, sent)
            self.chats.note_message(sent)
            self._emit(ChangeType.DATA)
        if target == self.current_chat:
            self._schedule_message_reload(target)
        await self.mark_activity()
        return sent

    async def set_typing(self, typing: bool) -> None:
        chat_id = self.current_chat
        if chat_id is None:
            return
        await self._report(
            "send_typing", lambda: self.client.send_typing(chat_id, typing), notify=False
        )

    async def react(self, chat_id: str, message_id: str, emoji: str) -> None:
        await self._user_action("react", lambda: self.client.react(message_id, emoji))
        if self.messages.update_reaction(chat_id, message_id, self.me_id, emoji):
            self._emit(ChangeType.DATA)

    async def archive_chat(self, chat_id: str) -> None:
        await self._user_action("archive_chat", lambda: self.client.archive_chat(chat_id))
        self._chat_changed(self.chats.set_archived(chat_id, True))

    async def unarchive_chat(self, chat_id: str) -> None:
        await self._user_action("unarchive_chat", lambda: self.client.unarchive_chat(chat_id))
        self._chat_changed(self.chats.set_archived(chat_id, False))

    async def delete_chat(self, chat_id: str) -> None:
        await self._user_action("delete_chat", lambda: self.client.delete_chat(chat_id))
        if self.current_chat == chat_id:
            await self.close_chat()
        self.messages.clear(chat_id)
        self.presence.clear(chat_id)
        self._chat_changed(self.chats.remove(chat_id))

    def _chat_changed(self, changed: bool) -> None:
        if self.session:
            self.cache.delete(CacheKeys.chats(self.session))
        if changed:
            self._emit(ChangeType.DATA)

    # ===== Lifecycle =====

    def _build_connection(self) -> ConnectionManager:
        server = self.config.server
        settings = self.config.connection
        kwargs: dict[str, Any] = {}
        if self._socket_factory is not None:
            kwargs["socket_factory"] = self._socket_factory
        return ConnectionManager(
            build_ws_url(server.url, server.api_key or None),
            self.handle_events,
            api_key=server.api_key or None,
            on_connected=self.resync,
            debounce_s=settings.debounce_ms / 1000,
            reconnect_base_s=settings.reconnect_base_s,
            reconnect_max_s=settings.reconnect_max_s,
            jitter=settings.jitter,
            **kwargs,
        )

    async def start(self, session: str | None = None, push: bool = True) -> None:
        """
        Bind to a session, pull initial state, then open the push channel
        and (if enabled) start polling.
        """
        if self._running:
            return
        self.session = session or self.config.session
        self.client.use_session(self.session)
        self._running = True
        logger.info(f"Starting sync for session '{self.session}'")

        await self._report("load_sessions", self.load_sessions, notify=False)
        await self._report("fetch_my_profile", self.fetch_my_profile, notify=False)
        await self._report("load_lid_mappings", self.load_lid_mappings, notify=False)
        await self._report("load_chats", self.load_chats)
        await self._report("load_contacts", self.load_contacts, notify=False)

        if push:
            self.connection = self._build_connection()
            self.connection.connect()
        if self.options.enable_polling:
            self.polling.start()

    async def stop(self) -> None:
        """Stop every loop and drop pending work."""
        self._running = False
        await self.polling.stop()
        await self.close_chat()
        if self.connection is not None:
            await self.connection.disconnect()
            self.connection = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        logger.info("Sync stopped")
