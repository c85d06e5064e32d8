import json

import pytest

from chatmirror.bus.events import (
    ChatArchiveEvent,
    MessageAckEvent,
    MessageEvent,
    MessageReactionEvent,
    MessageRevokedEvent,
    PresenceUpdateEvent,
    SessionStatusEvent,
    UnknownEvent,
    decode_event,
)
from chatmirror.errors import MalformedEventError
from chatmirror.models import Ack, PresenceState, SessionStatus


def frame(event, payload, session="default"):
    return json.dumps({"event": event, "session": session, "payload": payload})


def test_session_status():
    event = decode_event(frame("session.status", {"status": "WORKING"}))
    assert isinstance(event, SessionStatusEvent)
    assert event.status is SessionStatus.WORKING
    assert event.session == "default"


def test_message_any():
    event = decode_event(
        frame(
            "message.any",
            {"id": "false_1@c.us_A", "from": "1@c.us", "to": "9@c.us", "body": "hi", "timestamp": 5},
        )
    )
    assert isinstance(event, MessageEvent)
    assert event.message.chat_id == "1@c.us"
    assert event.message.body == "hi"


def test_ack_chat_follows_direction():
    outgoing = decode_event(
        frame("message.ack", {"id": "true_1@c.us_A", "from": "9@c.us", "to": "1@c.us", "fromMe": True, "ack": 3})
    )
    assert isinstance(outgoing, MessageAckEvent)
    assert outgoing.chat_id == "1@c.us"
    assert outgoing.ack is Ack.READ

    by_name = decode_event(
        frame("message.ack.group", {"id": "x", "from": "1-2@g.us", "ackName": "DEVICE"})
    )
    assert by_name.chat_id == "1-2@g.us"
    assert by_name.ack is Ack.DELIVERED


def test_reaction():
    event = decode_event(
        frame(
            "message.reaction",
            {
                "id": "r1",
                "from": "1-2@g.us",
                "participant": "3@c.us",
                "reaction": {"text": "👍", "messageId": "true_1-2@g.us_M"},
            },
        )
    )
    assert isinstance(event, MessageReactionEvent)
    assert (event.chat_id, event.message_id, event.sender, event.emoji) == (
        "1-2@g.us",
        "true_1-2@g.us_M",
        "3@c.us",
        "👍",
    )


def test_revoked_uses_before_snapshot():
    event = decode_event(
        frame(
            "message.revoked",
            {"before": {"id": "false_1@c.us_OLD", "from": "1@c.us", "to": "9@c.us"}, "after": None},
        )
    )
    assert isinstance(event, MessageRevokedEvent)
    assert event.chat_id == "1@c.us"
    assert event.message_id == "false_1@c.us_OLD"


def test_presence_update():
    event = decode_event(
        frame(
            "presence.update",
            {"id": "1@c.us", "presences": [{"participant": "1@c.us", "lastKnownPresence": "typing"}]},
        )
    )
    assert isinstance(event, PresenceUpdateEvent)
    [presence] = event.presences(received_at=7.0)
    assert presence.state is PresenceState.TYPING
    assert presence.received_at == 7.0


def test_chat_archive():
    event = decode_event(frame("chat.archive", {"id": "1@c.us", "archived": False}))
    assert isinstance(event, ChatArchiveEvent)
    assert event.archived is False


def test_unknown_event_falls_back():
    event = decode_event(frame("group.v2.join", {"anything": 1}))
    assert isinstance(event, UnknownEvent)
    assert event.event == "group.v2.join"


def test_accepts_parsed_dict_and_bytes():
    data = {"event": "chat.archive", "payload": {"id": "1@c.us"}}
    assert isinstance(decode_event(data), ChatArchiveEvent)
    assert isinstance(decode_event(json.dumps(data).encode()), ChatArchiveEvent)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        json.dumps({"payload": {}}),
        frame("message.any", {"body": "no id"}),
        frame("presence.update", {"presences": []}),
        frame("message.reaction", {"id": "r1"}),
    ],
)
def test_malformed_frames_raise(raw):
    with pytest.raises(MalformedEventError):
        decode_event(raw)
