from chatmirror.ids import (
    format_phone,
    is_group_chat,
    is_self_chat,
    message_key,
    normalize_id,
    same_message,
    same_party,
)
from chatmirror.models import Ack, Chat, Message, PresenceState, Session, SessionStatus


def test_normalize_id_strips_suffix_and_device():
    assert normalize_id("123:4@s.whatsapp.net") == "123"
    assert normalize_id({"_serialized": "123@c.us"}) == "123"
    assert normalize_id("123") == "123"
    assert same_party("123@c.us", "123:7@s.whatsapp.net")
    assert not same_party("", "")


def test_chat_kinds():
    assert is_group_chat("1-2@g.us")
    assert is_self_chat("123@c.us", "123@s.whatsapp.net")
    assert not is_self_chat("1-2@g.us", "1-2@g.us")
    assert format_phone("905551234567@c.us") == "+905551234567"


def test_message_ids_match_on_short_key():
    assert same_message("true_123@c.us_ABC", "ABC")
    assert not same_message("true_123@c.us_ABC", "true_123@c.us_ABD")
    assert not same_message("", "")


def test_ack_parsing():
    assert Ack.parse(None) is None
    assert Ack.parse(-1) is Ack.FAILED
    assert Ack.parse(4) is Ack.READ
    assert Ack.parse("PLAYED") is Ack.READ
    assert Ack.parse("DEVICE") is Ack.DELIVERED
    assert Ack.parse("2") is Ack.DELIVERED
    assert Ack.parse("garbage") is None


def test_ack_supersedes():
    assert Ack.READ.supersedes(Ack.SENT)
    assert not Ack.SENT.supersedes(Ack.READ)
    assert Ack.FAILED.supersedes(Ack.READ)
    assert Ack.SENT.supersedes(None)


def test_message_from_payload_incoming():
    message = Message.from_payload(
        {
            "id": "false_111@c.us_AAA",
            "from": "111@c.us",
            "to": "999@c.us",
            "fromMe": False,
            "timestamp": 1700000000,
            "body": "hi",
            "ack": 4,
            "_data": {"notifyName": "Ann"},
        }
    )
    assert message.chat_id == "111@c.us"
    assert message.sender == "111@c.us"
    assert message.ack is Ack.READ
    assert message.push_name == "Ann"
    assert message.reactions == {}


def test_message_from_payload_own_message_uses_to():
    message = Message.from_payload(
        {"id": "true_111@c.us_BBB", "from": "999@c.us", "to": "111@c.us", "fromMe": True}
    )
    assert message.chat_id == "111@c.us"
    assert message.ack is None


def test_reactions_from_aggregated_raw_data():
    message = Message.from_payload(
        {
            "id": "m1",
            "from": "1@c.us",
            "_data": {
                "reactions": [
                    {"aggregateEmoji": "👍", "senders": [{"id": "2@c.us"}, {"id": "3@c.us"}]}
                ]
            },
        }
    )
    assert set(message.reactions) == {"2@c.us", "3@c.us"}
    assert message.reactions["2@c.us"].emoji == "👍"


def test_with_reaction_replaces_and_removes():
    message = Message(id="m1", chat_id="c", timestamp=1)
    reacted = message.with_reaction("s", "❤️").with_reaction("s", "😂")
    assert reacted.reactions["s"].emoji == "😂"
    assert reacted.with_reaction("s", "").reactions == {}


def test_chat_from_payload_reads_nested_flags():
    chat = Chat.from_payload(
        {
            "id": {"_serialized": "1-2@g.us"},
            "name": "Team",
            "_chat": {"unreadCount": 3, "archive": True, "pin": 1},
            "lastMessage": {"id": "x", "timestamp": 5, "body": "line one\nline two", "ack": 1},
        }
    )
    assert chat.id == "1-2@g.us"
    assert chat.unread_count == 3
    assert chat.archived and chat.pinned
    assert chat.last_message.preview == "line one line two"
    assert chat.last_message.ack is Ack.SENT


def test_session_and_presence_enums():
    session = Session.from_payload({"name": "default", "status": "scan_qr_code", "me": {"id": "1@c.us"}})
    assert session.status is SessionStatus.SCAN_QR_CODE
    assert session.me_id == "1@c.us"
    assert SessionStatus.parse("nonsense") is SessionStatus.FAILED
    assert PresenceState.parse("composing") is PresenceState.TYPING
    assert PresenceState.parse("recording").is_typing


def test_group_message_key_is_the_stanza_id():
    assert message_key("false_1-2@g.us_3EB0AAAA_555@c.us") == "3EB0AAAA"
    assert message_key("3EB0AAAA") == "3EB0AAAA"
    assert not same_message("false_1-2@g.us_3EB0AAAA_555@c.us", "false_1-2@g.us_3EB0BBBB_555@c.us")
    assert same_message("false_1-2@g.us_3EB0AAAA_555@c.us", "3EB0AAAA")
