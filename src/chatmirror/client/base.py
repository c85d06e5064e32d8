"""
Remote chat service interface.
"""

from abc import ABC, abstractmethod

from chatmirror.models import Chat, Message, Presence, PresenceState, Profile, Session


class RemoteClient(ABC):
    """
    Request/response access to the remote account.

    Calls other than `list_sessions` act on the bound `session`. Failures
    raise taxonomy errors (`chatmirror.errors`).
    """

    session: str = "default"

    def use_session(self, session: str) -> None:
        self.session = session

    @abstractmethod
    async def list_sessions(self) -> list[Session]:
        pass

    @abstractmethod
    async def get_chats(self, limit: int | None = None) -> list[Chat]:
        pass

    @abstractmethod
    async def get_chats_overview(self, limit: int = 1000) -> list[Chat]:
        """Lightweight chat list including last-message summaries."""
        pass

    @abstractmethod
    async def get_messages(self, chat_id: str, limit: int = 50) -> list[Message]:
        """Most recent messages of a chat, newest first."""
        pass

    @abstractmethod
    async def get_contacts(self, limit: int = 5000) -> dict[str, str]:
        """Contact id -> display name."""
        pass

    @abstractmethod
    async def get_lid_mappings(self) -> dict[str, str]:
        """LID -> phone id aliases."""
        pass

    @abstractmethod
    async def get_presence(self, chat_id: str) -> list[Presence]:
        pass

    @abstractmethod
    async def subscribe_presence(self, chat_id: str) -> None:
        pass

    @abstractmethod
    async def set_presence(self, state: PresenceState, chat_id: str | None = None) -> None:
        """Broadcast own presence, session-wide or to one chat."""
        pass

    @abstractmethod
    async def get_my_profile(self) -> Profile:
        pass

    @abstractmethod
    async def send_text(
        self, chat_id: str, text: str, reply_to: str | None = None
    ) -> Message | None:
        pass

    @abstractmethod
    async def send_typing(self, chat_id: str, typing: bool = True) -> None:
        pass

    @abstractmethod
    async def react(self, message_id: str, emoji: str) -> None:
        """React to a message; an empty emoji removes the reaction."""
        pass

    @abstractmethod
    async def archive_chat(self, chat_id: str) -> None:
        pass

    @abstractmethod
    async def unarchive_chat(self, chat_id: str) -> None:
        pass

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        pass

    async def close(self) -> None:
        """Release transport resources."""
