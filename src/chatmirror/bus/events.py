"""
Pushed event types.

Each frame on the socket is a JSON envelope `{"event", "session", "payload"}`.
Known event names decode into a typed model; anything else becomes an
`UnknownEvent` so new server-side events never break the stream.
"""

import json
import logging
from typing import Annotated, Any, ClassVar

import pydantic
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from chatmirror.errors import MalformedEventError
from chatmirror.ids import id_string
from chatmirror.models import Ack, Message, Presence, SessionStatus

logger = logging.getLogger(__name__)

RemoteId = Annotated[str, BeforeValidator(id_string)]

# Event names requested when opening the socket
SUBSCRIBED_EVENTS = (
    "session.status",
    "message.any",
    "message.ack",
    "message.ack.group",
    "message.reaction",
    "message.revoked",
    "presence.update",
    "chat.archive",
)


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Addressed(_Model):
    """Payload fields shared by message-shaped objects."""

    id: RemoteId = ""
    from_: RemoteId = Field("", alias="from")
    to: RemoteId = ""
    from_me: bool = Field(False, alias="fromMe")
    participant: RemoteId | None = None

    @property
    def chat_id(self) -> str:
        """Chat the message belongs to: `to` for own messages, `from` otherwise."""
        return self.to if self.from_me else self.from_


class SessionStatusPayload(_Model):
    status: SessionStatus
    name: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> SessionStatus:
        return SessionStatus.parse(value)


class AckPayload(_Addressed):
    ack: Any = None
    ack_name: str | None = Field(None, alias="ackName")


class ReactionBody(_Model):
    text: str = ""
    message_id: RemoteId = Field("", alias="messageId")


class ReactionPayload(_Addressed):
    reaction: ReactionBody


class RevokedPayload(_Model):
    after: dict[str, Any] | None = None
    before: dict[str, Any] | None = None
    revoked_message_id: RemoteId | None = Field(None, alias="revokedMessageId")


class PresencePayload(_Model):
    id: RemoteId
    presences: list[dict[str, Any]] = Field(default_factory=list)


class ArchivePayload(_Model):
    id: RemoteId
    archived: bool = True


class Event(_Model):
    """Base envelope. `names` lists the event strings a subclass decodes."""

    names: ClassVar[tuple[str, ...]] = ()

    event: str
    session: str = ""


class SessionStatusEvent(Event):
    names = ("session.status",)
    payload: SessionStatusPayload

    @property
    def status(self) -> SessionStatus:
        return self.payload.status


class MessageEvent(Event):
    names = ("message.any",)
    payload: dict[str, Any]

    @field_validator("payload")
    @classmethod
    def _require_id(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not id_string(value.get("id")):
            raise ValueError("message payload has no id")
        return value

    @property
    def message(self) -> Message:
        return Message.from_payload(self.payload)


class MessageAckEvent(Event):
    names = ("message.ack", "message.ack.group")
    payload: AckPayload

    @property
    def chat_id(self) -> str:
        return self.payload.chat_id

    @property
    def message_id(self) -> str:
        return self.payload.id

    @property
    def ack(self) -> Ack | None:
        value = self.payload.ack
        return Ack.parse(self.payload.ack_name if value is None else value)


class MessageReactionEvent(Event):
    names = ("message.reaction",)
    payload: ReactionPayload

    @property
    def chat_id(self) -> str:
        return self.payload.chat_id

    @property
    def message_id(self) -> str:
        return self.payload.reaction.message_id

    @property
    def emoji(self) -> str:
        return self.payload.reaction.text

    @property
    def sender(self) -> str:
        """Reacting participant; empty when the frame does not say."""
        return self.payload.participant or self.payload.from_


class MessageRevokedEvent(Event):
    names = ("message.revoked",)
    payload: RevokedPayload

    def _original(self) -> dict[str, Any]:
        return self.payload.before or self.payload.after or {}

    @property
    def chat_id(self) -> str:
        """Chat of the revoked message; empty if neither snapshot is present."""
        data = self._original()
        from_me = bool(data.get("fromMe", False))
        return id_string(data.get("to") if from_me else data.get("from"))

    @property
    def message_id(self) -> str:
        if self.payload.revoked_message_id:
            return self.payload.revoked_message_id
        return id_string(self._original().get("id"))


class PresenceUpdateEvent(Event):
    names = ("presence.update",)
    payload: PresencePayload

    @property
    def chat_id(self) -> str:
        return self.payload.id

    def presences(self, received_at: float | None = None) -> list[Presence]:
        return [
            Presence.from_payload(item, received_at)
            for item in self.payload.presences
            if isinstance(item, dict)
        ]


class ChatArchiveEvent(Event):
    names = ("chat.archive",)
    payload: ArchivePayload

    @property
    def chat_id(self) -> str:
        return self.payload.id

    @property
    def archived(self) -> bool:
        return self.payload.archived


class UnknownEvent(Event):
    payload: Any = None


_EVENT_TYPES: dict[str, type[Event]] = {
    name: cls
    for cls in (
        SessionStatusEvent,
        MessageEvent,
        MessageAckEvent,
        MessageReactionEvent,
        MessageRevokedEvent,
        PresenceUpdateEvent,
        ChatArchiveEvent,
    )
    for name in cls.names
}


def decode_event(raw: str | bytes | dict[str, Any]) -> Event:
    """
    Decode one socket frame.

    Args:
        raw: Text/binary frame, or an already-parsed JSON object

    Returns:
        The typed event, or `UnknownEvent` for unrecognized names.

    Raises:
        MalformedEventError: Invalid JSON, non-object envelope, missing event
            name, or a payload that does not fit its event type.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedEventError("Frame is not valid JSON") from e
    else:
        data = raw

    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        raise MalformedEventError("Frame has no event name")

    event_type = _EVENT_TYPES.get(data["event"], UnknownEvent)
    try:
        return event_type.model_validate(data)
    except pydantic.ValidationError as e:
        raise MalformedEventError(
            f"Invalid {data['event']} payload", {"event": data["event"]}
        ) from e
