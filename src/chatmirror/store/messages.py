"""
Message store.

Per-chat message lists, newest first. Fetched snapshots and pushed events
land here in any order; every merge is idempotent so the outcome does not
depend on which side arrived first.
"""

import logging
from dataclasses import replace

from chatmirror.ids import message_key, same_message
from chatmirror.models import Ack, Message

logger = logging.getLogger(__name__)

UNKNOWN_SENDER = "unknown"


def merge_ack(local: Ack | None, incoming: Ack | None) -> Ack | None:
    """Forward-only ack merge; an absent incoming ack keeps the local one."""
    if incoming is None:
        return local
    if incoming.supersedes(local):
        return incoming
    return local


def _sort(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: m.timestamp, reverse=True)


class MessageStore:
    """In-memory messages per chat, sorted by timestamp descending."""

    def __init__(self) -> None:
        self._chats: dict[str, list[Message]] = {}

    def get(self, chat_id: str) -> list[Message]:
        return list(self._chats.get(chat_id, []))

    def chats(self) -> list[str]:
        return list(self._chats)

    def find(self, chat_id: str, message_id: str) -> Message | None:
        index = self._index(chat_id, message_id)
        return None if index is None else self._chats[chat_id][index]

    def _index(self, chat_id: str, message_id: str) -> int | None:
        messages = self._chats.get(chat_id)
        if not messages or not message_id:
            return None
        for i, message in enumerate(messages):
            if message.id == message_id:
                return i
        for i, message in enumerate(messages):
            if same_message(message.id, message_id):
                return i
        return None

    def set_messages(self, chat_id: str, snapshot: list[Message]) -> list[Message]:
        """
        Merge a fetched page into the chat.

        Within the snapshot's timestamp window the snapshot decides which
        messages exist. Local messages outside the window (newer pushes,
        older history) are kept. Per message, an empty reaction map or a
        missing ack in the snapshot keeps the local value, and a local
        revoked flag is never undone. An empty snapshot clears the chat.

        Returns:
            The merged list.
        """
        if not snapshot:
            self._chats.pop(chat_id, None)
            return []

        local = {m.id: m for m in self._chats.get(chat_id, [])}
        by_key = {message_key(m.id): m for m in local.values() if m.id}
        matched: set[str] = set()
        oldest = min(m.timestamp for m in snapshot)
        newest = max(m.timestamp for m in snapshot)

        merged: dict[str, Message] = {}
        for incoming in snapshot:
            known = (
                merged.get(incoming.id)
                or local.get(incoming.id)
                or by_key.get(message_key(incoming.id))
            )
            if known is not None:
                matched.add(known.id)
                incoming = replace(
                    incoming,
                    reactions=incoming.reactions or known.reactions,
                    ack=merge_ack(known.ack, incoming.ack),
                    revoked=incoming.revoked or known.revoked,
                )
            merged[incoming.id] = incoming

        for message in local.values():
            if message.id in merged or message.id in matched:
                continue
            if message.timestamp > newest or message.timestamp < oldest:
                merged[message.id] = message

        result = _sort(list(merged.values()))
        self._chats[chat_id] = result
        return list(result)

    def append_message(self, chat_id: str, message: Message) -> bool:
        """
        Add a pushed message.

        A message already present is replaced in place, keeping its known
        reactions, ack and revoked flag.

        Returns:
            True if the message was new.
        """
        messages = self._chats.setdefault(chat_id, [])
        index = self._index(chat_id, message.id)
        if index is not None:
            known = messages[index]
            messages[index] = replace(
                message,
                id=known.id,
                reactions=message.reactions or known.reactions,
                ack=merge_ack(known.ack, message.ack),
                revoked=message.revoked or known.revoked,
            )
            return False

        messages.append(message)
        self._chats[chat_id] = _sort(messages)
        return True

    def update_ack(self, chat_id: str, message_id: str, ack: Ack | None) -> bool:
        """
        Advance a message's delivery state.

        Returns:
            True if the stored ack changed.
        """
        index = self._index(chat_id, message_id)
        if index is None or ack is None:
            return False
        message = self._chats[chat_id][index]
        new_ack = merge_ack(message.ack, ack)
        if new_ack == message.ack:
            return False
        self._chats[chat_id][index] = replace(message, ack=new_ack)
        return True

    def update_reaction(
        self, chat_id: str, message_id: str, sender_id: str | None, emoji: str
    ) -> bool:
        """
        Set or remove (empty `emoji`) one sender's reaction.

        Returns:
            False if the chat or message is unknown.
        """
        index = self._index(chat_id, message_id)
        if index is None:
            return False
        message = self._chats[chat_id][index]
        self._chats[chat_id][index] = message.with_reaction(
            sender_id or UNKNOWN_SENDER, emoji
        )
        return True

    def mark_revoked(self, chat_id: str, message_id: str) -> bool:
        index = self._index(chat_id, message_id)
        if index is None:
            return False
        message = self._chats[chat_id][index]
        self._chats[chat_id][index] = replace(message, revoked=True)
        return True

    def clear(self, chat_id: str | None = None) -> None:
        if chat_id is None:
            self._chats.clear()
        else:
            self._chats.pop(chat_id, None)
