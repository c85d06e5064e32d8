"""Local chat and message state."""

from chatmirror.store.chats import ChatFilter, ChatStore
from chatmirror.store.messages import MessageStore

__all__ = ["ChatFilter", "ChatStore", "MessageStore"]
