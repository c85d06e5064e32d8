"""
Domain models mirrored from the remote account.

Payload normalization lives here too: the remote sends loosely-typed JSON
(ids as strings or objects, reactions in two shapes, acks as ints or names),
and only the normalized form is ever stored.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any

from chatmirror.ids import id_string


class SessionStatus(str, Enum):
    STARTING = "STARTING"
    SCAN_QR_CODE = "SCAN_QR_CODE"  # awaiting pairing
    WORKING = "WORKING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, value: Any) -> "SessionStatus":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.FAILED


class Ack(IntEnum):
    """Delivery state of a message, ordered by progress."""

    FAILED = -1
    PENDING = 0
    SENT = 1
    DELIVERED = 2
    READ = 3

    @classmethod
    def parse(cls, value: Any) -> "Ack | None":
        """
        Parse a remote ack (int or name). Returns None when absent.

        The remote's PLAYED (4) is folded into READ.
        """
        if value is None or value == "":
            return None
        if isinstance(value, str):
            names = {
                "ERROR": cls.FAILED,
                "PENDING": cls.PENDING,
                "SERVER": cls.SENT,
                "DEVICE": cls.DELIVERED,
                "READ": cls.READ,
                "PLAYED": cls.READ,
            }
            if value.upper() in names:
                return names[value.upper()]
            try:
                value = int(value)
            except ValueError:
                return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        if number < 0:
            return cls.FAILED
        return cls(min(number, cls.READ))

    def supersedes(self, other: "Ack | None") -> bool:
        """Acks only move forward; FAILED always applies."""
        if other is None or self is Ack.FAILED:
            return True
        if other is Ack.FAILED:
            return True
        return self >= other


class PresenceState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    TYPING = "typing"
    RECORDING = "recording"
    PAUSED = "paused"

    @classmethod
    def parse(cls, value: Any) -> "PresenceState":
        text = str(value or "").lower()
        if text == "composing":
            return cls.TYPING
        try:
            return cls(text)
        except ValueError:
            return cls.OFFLINE

    @property
    def is_typing(self) -> bool:
        return self in (PresenceState.TYPING, PresenceState.RECORDING)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


@dataclass
class Session:
    name: str
    status: SessionStatus = SessionStatus.STARTING
    me_id: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Session":
        me = data.get("me") or {}
        return cls(
            name=str(data.get("name", "")),
            status=SessionStatus.parse(data.get("status")),
            me_id=id_string(me.get("id")) or None if isinstance(me, dict) else None,
        )


@dataclass(frozen=True)
class Reaction:
    emoji: str
    sender_id: str


@dataclass
class Message:
    """
    A single chat message.

    `ack` is None when the source did not include delivery state, and
    `reactions` is empty when the source did not include reaction data;
    merges treat both as "unknown" rather than "cleared".
    """

    id: str
    chat_id: str
    timestamp: float
    sender: str = ""
    body: str = ""
    from_me: bool = False
    ack: Ack | None = None
    reactions: dict[str, Reaction] = field(default_factory=dict)
    revoked: bool = False
    has_media: bool = False
    reply_to: str | None = None
    push_name: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any], chat_id: str | None = None) -> "Message":
        """
        Normalize a remote message payload.

        Args:
            data: Message JSON from a fetch or a pushed event
            chat_id: Owning chat, if already known; otherwise derived from
                `to` (own messages) or `from` (incoming)
        """
        from_me = bool(data.get("fromMe", False))
        if chat_id is None:
            chat_id = id_string(data.get("to") if from_me else data.get("from"))
        raw = data.get("_data") or {}
        if not isinstance(raw, dict):
            raw = {}
        message_id = id_string(data.get("id"))
        reply_to = data.get("replyTo")
        return cls(
            id=message_id,
            chat_id=chat_id,
            timestamp=_timestamp(data.get("timestamp")),
            sender=id_string(data.get("participant") or data.get("from")),
            body=str(data.get("body") or ""),
            from_me=from_me,
            ack=Ack.parse(data.get("ack", data.get("ackName"))),
            reactions=parse_reactions(message_id, data.get("reactions"), raw.get("reactions")),
            revoked=data.get("type") == "revoked",
            has_media=bool(data.get("hasMedia", False)),
            reply_to=id_string(reply_to.get("id")) if isinstance(reply_to, dict) else None,
            push_name=raw.get("notifyName") or raw.get("pushName"),
        )

    def with_reaction(self, sender_id: str, emoji: str) -> "Message":
        """Copy with `sender_id`'s reaction replaced; empty emoji removes it."""
        reactions = dict(self.reactions)
        reactions.pop(sender_id, None)
        if emoji:
            reactions[sender_id] = Reaction(emoji, sender_id)
        return replace(self, reactions=reactions)


@dataclass
class LastMessage:
    """Chat-list summary of a chat's most recent message."""

    id: str
    timestamp: float
    ack: Ack | None = None
    from_me: bool = False
    preview: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "LastMessage":
        return cls(
            id=id_string(data.get("id")),
            timestamp=_timestamp(data.get("timestamp")),
            ack=Ack.parse(data.get("ack", data.get("ackName"))),
            from_me=bool(data.get("fromMe", False)),
            preview=preview_text(data),
        )

    @classmethod
    def from_message(cls, message: Message) -> "LastMessage":
        return cls(
            id=message.id,
            timestamp=message.timestamp,
            ack=message.ack,
            from_me=message.from_me,
            preview=preview_text({"body": message.body, "hasMedia": message.has_media}),
        )


@dataclass
class Chat:
    id: str
    name: str = ""
    archived: bool = False
    muted: bool = False
    pinned: bool = False
    unread_count: int = 0
    last_message: LastMessage | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Chat":
        """
        Normalize a chat list / overview entry.

        Flags may sit on the top level or inside the raw `_chat` object,
        depending on the remote engine.
        """
        raw = data.get("_chat") or {}
        if not isinstance(raw, dict):
            raw = {}

        def flag(*names: str) -> Any:
            for source in (data, raw):
                for name in names:
                    if source.get(name) is not None:
                        return source[name]
            return None

        last = data.get("lastMessage")
        return cls(
            id=id_string(data.get("id")),
            name=str(data.get("name") or ""),
            archived=bool(flag("archived", "archive")),
            muted=bool(flag("isMuted", "muted")),
            pinned=bool(flag("pinned", "pin")),
            unread_count=int(flag("unreadCount") or 0),
            last_message=LastMessage.from_payload(last) if isinstance(last, dict) else None,
        )


@dataclass
class Presence:
    participant: str
    state: PresenceState
    last_seen: float | None = None
    received_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_payload(cls, data: dict[str, Any], received_at: float | None = None) -> "Presence":
        last_seen = data.get("lastSeen")
        return cls(
            participant=id_string(data.get("participant")),
            state=PresenceState.parse(data.get("lastKnownPresence")),
            last_seen=float(last_seen) if last_seen else None,
            received_at=time.monotonic() if received_at is None else received_at,
        )


def parse_reactions(
    message_id: str,
    normalized: Any,
    aggregated: Any,
) -> dict[str, Reaction]:
    """
    Build the per-sender reaction map.

    Accepts either the flat `[{text, from}]` shape or the aggregated
    `[{aggregateEmoji, senders: [{id}]}]` shape found in raw message data.
    """
    reactions: dict[str, Reaction] = {}
    if isinstance(normalized, list):
        for item in normalized:
            if not isinstance(item, dict):
                continue
            emoji = item.get("text") or item.get("reaction") or ""
            sender = id_string(item.get("from") or item.get("senderId")) or "unknown"
            if emoji:
                reactions[sender] = Reaction(emoji, sender)
    if reactions or not isinstance(aggregated, list):
        return reactions
    for group in aggregated:
        if not isinstance(group, dict):
            continue
        emoji = group.get("aggregateEmoji") or ""
        for sender in group.get("senders") or []:
            sender_id = id_string(sender.get("id") if isinstance(sender, dict) else sender)
            if emoji and sender_id:
                reactions[sender_id] = Reaction(emoji, sender_id)
    return reactions


_MEDIA_LABELS = {
    "image": "Photo",
    "video": "Video",
    "audio": "Audio",
    "ptt": "Audio",
    "document": "Document",
    "location": "Location",
    "vcard": "Contact",
    "call_log": "Call",
}


def preview_text(data: dict[str, Any]) -> str:
    """Single-line preview of a message payload for the chat list."""
    for key in ("body", "caption"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return " ".join(value.split())
    label = _MEDIA_LABELS.get(str(data.get("type") or ""))
    if label:
        return label
    if data.get("hasMedia"):
        return "Media"
    return "Message"


def _timestamp(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class Profile:
    """The local account as the remote reports it."""

    id: str
    name: str = ""
    picture: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            id=id_string(data.get("id")),
            name=str(data.get("name") or data.get("pushName") or ""),
            picture=data.get("picture"),
        )
