"""
Chat collection and visible-list filtering.
"""

import logging
from dataclasses import replace
from enum import Enum

from chatmirror.ids import is_group_chat, same_message
from chatmirror.models import Ack, Chat, LastMessage, Message
from chatmirror.store.messages import merge_ack

logger = logging.getLogger(__name__)


class ChatFilter(str, Enum):
    ALL = "all"
    UNREAD = "unread"
    FAVORITES = "favorites"  # pinned chats
    GROUPS = "groups"


class ChatStore:
    """
    Ordered chat list.

    Order is the remote's (most recent first) as of the last snapshot.
    Chats are only removed by an explicit `remove()`; a snapshot that omits
    a chat does not drop it.
    """

    def __init__(self) -> None:
        self._chats: dict[str, Chat] = {}

    def __len__(self) -> int:
        return len(self._chats)

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._chats

    def get(self, chat_id: str) -> Chat | None:
        return self._chats.get(chat_id)

    def all(self) -> list[Chat]:
        return list(self._chats.values())

    def set_chats(self, snapshot: list[Chat]) -> list[Chat]:
        """
        Replace the list with a fetched snapshot.

        A snapshot's last-message ack never moves backwards for the same last
        message. Local chats missing from the snapshot are kept after the
        snapshot's chats, newest first.
        """
        merged: dict[str, Chat] = {}
        for incoming in snapshot:
            if not incoming.id or incoming.id in merged:
                continue
            known = self._chats.get(incoming.id)
            merged[incoming.id] = self._merge(known, incoming) if known else incoming

        retained = [chat for chat_id, chat in self._chats.items() if chat_id not in merged]
        retained.sort(key=_last_timestamp, reverse=True)
        for chat in retained:
            merged[chat.id] = chat

        self._chats = merged
        return self.all()

    @staticmethod
    def _merge(known: Chat, incoming: Chat) -> Chat:
        old, new = known.last_message, incoming.last_message
        if old is None or new is None or not same_message(old.id, new.id):
            return incoming
        ack = merge_ack(old.ack, new.ack)
        if ack == new.ack:
            return incoming
        return replace(incoming, last_message=replace(new, ack=ack))

    def note_message(self, message: Message) -> bool:
        """
        Reflect a pushed message in its chat's summary.

        The chat keeps its position; an unseen chat is created at the top.

        Returns:
            True if a new chat was created.
        """
        chat_id = message.chat_id
        if not chat_id:
            return False
        summary = LastMessage.from_message(message)
        chat = self._chats.get(chat_id)
        if chat is None:
            self._chats = {chat_id: Chat(id=chat_id, last_message=summary), **self._chats}
            logger.debug(f"New chat from pushed message: {chat_id}")
            return True

        current = chat.last_message
        if current is not None and same_message(current.id, message.id):
            summary = replace(summary, ack=merge_ack(current.ack, summary.ack))
        elif current is not None and current.timestamp > message.timestamp:
            return False
        self._chats[chat_id] = replace(chat, last_message=summary)
        return False

    def update_last_message_ack(self, chat_id: str, message_id: str, ack: Ack | None) -> bool:
        """Apply an ack to the chat summary, only if it is for the last message."""
        chat = self._chats.get(chat_id)
        if chat is None or chat.last_message is None or ack is None:
            return False
        last = chat.last_message
        if not same_message(last.id, message_id):
            return False
        new_ack = merge_ack(last.ack, ack)
        if new_ack == last.ack:
            return False
        self._chats[chat_id] = replace(chat, last_message=replace(last, ack=new_ack))
        return True

    def set_archived(self, chat_id: str, archived: bool) -> bool:
        chat = self._chats.get(chat_id)
        if chat is None or chat.archived == archived:
            return False
        self._chats[chat_id] = replace(chat, archived=archived)
        return True

    def mark_read(self, chat_id: str) -> bool:
        chat = self._chats.get(chat_id)
        if chat is None or chat.unread_count == 0:
            return False
        self._chats[chat_id] = replace(chat, unread_count=0)
        return True

    def remove(self, chat_id: str) -> bool:
        return self._chats.pop(chat_id, None) is not None

    def clear(self) -> None:
        self._chats.clear()

    def visible(
        self,
        chat_filter: ChatFilter = ChatFilter.ALL,
        query: str = "",
        show_archived: bool = False,
        names: dict[str, str] | None = None,
    ) -> list[Chat]:
        """
        Chats for the list view.

        Args:
            chat_filter: Category filter
            query: Case-insensitive substring of the display name or id
            show_archived: List archived chats instead of the inbox
            names: Resolved display names (e.g. from contacts) used for search
        """
        needle = query.strip().lower()
        result = []
        for chat in self._chats.values():
            if chat.archived != show_archived:
                continue
            if chat_filter is ChatFilter.UNREAD and chat.unread_count <= 0:
                continue
            if chat_filter is ChatFilter.FAVORITES and not chat.pinned:
                continue
            if chat_filter is ChatFilter.GROUPS and not is_group_chat(chat.id):
                continue
            if needle:
                name = (names or {}).get(chat.id) or chat.name
                if needle not in name.lower() and needle not in chat.id.lower():
                    continue
            result.append(chat)
        return result


def _last_timestamp(chat: Chat) -> float:
    return chat.last_message.timestamp if chat.last_message else 0.0
