"""
New-message alerts.

The engine decides *whether* to alert and *what* to say; delivering the alert
(desktop notification, bell, toast) is up to a `NotificationSink`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from chatmirror.ids import format_phone, is_group_chat, is_status_broadcast, normalize_id
from chatmirror.models import Message

logger = logging.getLogger(__name__)

MAX_PREVIEW_CHARS = 100
MEDIA_PREVIEW = "[Media]"


class NotificationSink(ABC):
    """Delivers an alert to the user."""

    @abstractmethod
    async def notify(
        self,
        sender: str,
        preview: str,
        is_group: bool,
        is_status: bool,
        group_name: str | None = None,
    ) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes alerts to the log. Default sink for headless runs."""

    def __init__(self, show_previews: bool = True) -> None:
        self.show_previews = show_previews

    async def notify(
        self,
        sender: str,
        preview: str,
        is_group: bool,
        is_status: bool,
        group_name: str | None = None,
    ) -> None:
        title, body = format_alert(
            sender, preview, is_group, is_status, group_name, self.show_previews
        )
        logger.info(f"Notification: {title}: {body}")


@dataclass
class AlertPolicy:
    """Which kinds of incoming messages raise an alert."""

    enabled: bool = True
    messages: bool = True
    groups: bool = True
    status: bool = False

    def allows(self, chat_id: str) -> bool:
        if not self.enabled:
            return False
        if is_status_broadcast(chat_id):
            return self.status
        if is_group_chat(chat_id):
            return self.groups
        return self.messages


def should_alert(message: Message, current_chat: str | None, policy: AlertPolicy) -> bool:
    """Alert for others' messages outside the foreground chat, per policy."""
    if message.from_me or not message.chat_id:
        return False
    if current_chat is not None and message.chat_id == current_chat:
        return False
    return policy.allows(message.chat_id)


def resolve_sender_name(
    sender_id: str,
    contacts: dict[str, str],
    fallback: str | None = None,
) -> str:
    """
    Best display name for a sender.

    Saved contact name, then `fallback` (known chat name or push name), then
    the formatted phone number.
    """
    name = contacts.get(sender_id) or contacts.get(normalize_id(sender_id))
    if name:
        return name
    if fallback:
        return fallback
    return format_phone(sender_id)


def truncate_preview(text: str, limit: int = MAX_PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def format_alert(
    sender: str,
    preview: str,
    is_group: bool,
    is_status: bool,
    group_name: str | None = None,
    show_previews: bool = True,
) -> tuple[str, str]:
    """
    Title and body for an alert.

    Returns:
        (title, body)
    """
    if is_status:
        return f"{sender} posted a status", "New status update"

    title = f"{sender} in {group_name}" if is_group and group_name else sender
    body = truncate_preview(preview or MEDIA_PREVIEW) if show_previews else "New message"
    return title, body
