"""
Chat and participant id helpers.

Ids are opaque strings with a suffix that encodes the addressing family:

- direct: `123@c.us`, `123@s.whatsapp.net`, `987@lid`
- group: `123-456@g.us`
- broadcast: `status@broadcast`, `123@newsletter`

Multi-device ids may also carry a device part (`123:12@s.whatsapp.net`).
"""

from typing import Any

GROUP_SUFFIX = "@g.us"
BROADCAST_SUFFIXES = ("@broadcast", "@newsletter")
STATUS_BROADCAST = "status@broadcast"


def id_string(value: Any) -> str:
    """
    Coerce a remote id to a plain string.

    The remote sometimes serializes ids as `{"_serialized": "..."}` objects.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        serialized = value.get("_serialized")
        if isinstance(serialized, str):
            return serialized
        user, server = value.get("user"), value.get("server")
        if user and server:
            return f"{user}@{server}"
    return str(value)


def normalize_id(value: Any) -> str:
    """
    Reduce an id to its bare user part.

    `"123:4@s.whatsapp.net"`, `"123@c.us"` and `"123"` all normalize to `"123"`.
    """
    text = id_string(value).strip()
    user = text.split("@", 1)[0]
    return user.split(":", 1)[0]


def same_party(a: Any, b: Any) -> bool:
    """True if both ids address the same account, ignoring suffix and device."""
    left, right = normalize_id(a), normalize_id(b)
    return bool(left) and left == right


def is_group_chat(chat_id: str) -> bool:
    return chat_id.endswith(GROUP_SUFFIX)


def is_status_broadcast(chat_id: str) -> bool:
    return chat_id == STATUS_BROADCAST


def is_broadcast_chat(chat_id: str) -> bool:
    return chat_id.endswith(BROADCAST_SUFFIXES)


def is_self_chat(chat_id: str, my_id: str | None) -> bool:
    """A chat addressed to the local account itself."""
    if not my_id or is_group_chat(chat_id) or is_broadcast_chat(chat_id):
        return False
    return same_party(chat_id, my_id)


def format_phone(chat_id: str) -> str:
    """`"905551234567@c.us"` -> `"+905551234567"`; non-phone ids pass through."""
    user = normalize_id(chat_id)
    if user.isdigit() and not chat_id.endswith("@lid"):
        return f"+{user}"
    return chat_id


def message_key(message_id: Any) -> str:
    """
    Short key of a message id.

    Serialized message ids look like `true_123@c.us_3EB0ABC`, with a fourth
    `_<participant>` part in groups. The third part (the stanza id) is
    stable across the list, overview and event payloads; ids with fewer
    parts are their own key.
    """
    text = id_string(message_id)
    parts = text.split("_")
    if len(parts) >= 3:
        return parts[2]
    return text


def same_message(a: Any, b: Any) -> bool:
    left, right = id_string(a), id_string(b)
    if not left or not right:
        return False
    return left == right or message_key(left) == message_key(right)
