"""
Per-chat presence tracking.

Holds the latest presence state for every participant of every chat and
answers "is someone typing here?" for the conversation header and the chat
list. Self-originated presence is never recorded, so the local account never
appears to be typing to itself.
"""

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace

from chatmirror.ids import is_self_chat, normalize_id
from chatmirror.models import Presence, PresenceState

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TIMEOUT_S = 30.0


class PresenceTracker:
    """
    Ephemeral presence state keyed by chat, then by participant.

    Participants are compared by normalized id, with LID aliases resolved to
    phone ids through the mapping table.
    """

    def __init__(
        self,
        my_id: str | None = None,
        typing_timeout_s: float = DEFAULT_TYPING_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.my_id = my_id
        self.typing_timeout_s = typing_timeout_s
        self._clock = clock
        self._chats: dict[str, dict[str, Presence]] = {}
        self._lid_to_phone: dict[str, str] = {}

    def add_lid_mappings(self, mappings: Mapping[str, str] | Iterable[tuple[str, str]]) -> int:
        """
        Register LID -> phone aliases.

        Returns:
            Number of mappings added or changed.
        """
        items = mappings.items() if isinstance(mappings, Mapping) else mappings
        changed = 0
        for lid, phone in items:
            key, value = normalize_id(lid), normalize_id(phone)
            if key and value and self._lid_to_phone.get(key) != value:
                self._lid_to_phone[key] = value
                changed += 1
        return changed

    def canonical(self, participant: str) -> str:
        """Normalized participant id with any LID alias resolved."""
        user = normalize_id(participant)
        return self._lid_to_phone.get(user, user)

    def is_self(self, participant: str) -> bool:
        if not self.my_id or not participant:
            return False
        return self.canonical(participant) == self.canonical(self.my_id)

    def _is_self_chat(self, chat_id: str) -> bool:
        if not self.my_id:
            return False
        return is_self_chat(chat_id, self.my_id) or (
            chat_id.endswith("@lid") and self.is_self(chat_id)
        )

    def ingest(self, chat_id: str, presences: Iterable[Presence]) -> bool:
        """
        Record presence updates for a chat.

        Self-originated entries are dropped and the self-chat is ignored
        entirely. Each remaining entry supersedes the previous one for the
        same participant.

        Returns:
            True if anything was recorded.
        """
        if self._is_self_chat(chat_id):
            logger.debug(f"Ignoring presence for self-chat {chat_id}")
            return False

        now = self._clock()
        changed = False
        for presence in presences:
            participant = presence.participant or chat_id
            if self.is_self(participant):
                continue
            entries = self._chats.setdefault(chat_id, {})
            entries[self.canonical(participant)] = replace(
                presence, participant=participant, received_at=now
            )
            changed = True
        return changed

    def _live_typing(self, chat_id: str) -> Presence | None:
        entries = self._chats.get(chat_id)
        if not entries or self._is_self_chat(chat_id):
            return None
        now = self._clock()
        for key, presence in entries.items():
            if not presence.state.is_typing:
                continue
            if now - presence.received_at >= self.typing_timeout_s:
                continue
            if self.is_self(key):
                continue
            return presence
        return None

    def is_typing(self, chat_id: str) -> bool:
        """True while a non-self participant is typing or recording in the chat."""
        return self._live_typing(chat_id) is not None

    def typing_participant(self, chat_id: str) -> str | None:
        presence = self._live_typing(chat_id)
        return presence.participant if presence else None

    def typing_chats(self) -> dict[str, str]:
        """Chat id -> typing participant, for every chat with live typing."""
        typing: dict[str, str] = {}
        for chat_id in self._chats:
            participant = self.typing_participant(chat_id)
            if participant is not None:
                typing[chat_id] = participant
        return typing

    def is_online(self, chat_id: str) -> bool:
        entries = self._chats.get(chat_id, {})
        return any(p.state is not PresenceState.OFFLINE for p in entries.values())

    def presences(self, chat_id: str) -> list[Presence]:
        return list(self._chats.get(chat_id, {}).values())

    def clear_typing_for_sender(self, sender: str) -> list[str]:
        """
        Force a sender's typing/recording entries to `paused` in every chat.

        Called when a message from that sender arrives: the message itself
        proves they stopped typing.

        Returns:
            Ids of the chats that changed.
        """
        key = self.canonical(sender)
        if not key:
            return []
        now = self._clock()
        changed: list[str] = []
        for chat_id, entries in self._chats.items():
            presence = entries.get(key)
            if presence is not None and presence.state.is_typing:
                entries[key] = replace(
                    presence, state=PresenceState.PAUSED, received_at=now
                )
                changed.append(chat_id)
        return changed

    def clear(self, chat_id: str | None = None) -> None:
        if chat_id is None:
            self._chats.clear()
        else:
            self._chats.pop(chat_id, None)
