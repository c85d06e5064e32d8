"""
WAHA (WhatsApp HTTP API) client.

Thin httpx wrapper: builds the REST paths, attaches the API key, maps
failures onto the error taxonomy and normalizes payloads into models.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from chatmirror.client.base import RemoteClient
from chatmirror.errors import NetworkError, classify
from chatmirror.ids import id_string
from chatmirror.models import Chat, Message, Presence, PresenceState, Profile, Session
from chatmirror.network import NetworkMonitor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


def _path_id(chat_id: str) -> str:
    return quote(chat_id, safe="")


class WahaClient(RemoteClient):
    """
    Async client for a WAHA server.

    Args:
        base_url: Server root, e.g. `http://localhost:3000`
        api_key: Sent as `X-Api-Key` when set
        session: Session the per-session calls act on
        timeout: Request timeout in seconds
        network: Optional monitor fed with request outcomes
        transport: Custom httpx transport (tests use `httpx.MockTransport`)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        session: str = "default",
        timeout: float = DEFAULT_TIMEOUT_S,
        network: NetworkMonitor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.network = network
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, params=params, json=json_data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = classify(e, {"method": method, "path": path})
            if self.network is not None:
                if isinstance(error, NetworkError):
                    self.network.mark_failure(error)
                else:
                    self.network.mark_online()
            raise error from e

        if self.network is not None:
            self.network.mark_online()
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _session_path(self, suffix: str) -> str:
        return f"/api/{quote(self.session, safe='')}/{suffix}"

    async def list_sessions(self) -> list[Session]:
        data = await self._request("GET", "/api/sessions", params={"all": "true"})
        return [Session.from_payload(item) for item in data or [] if isinstance(item, dict)]

    async def get_chats(self, limit: int | None = None) -> list[Chat]:
        params = {"sortBy": "conversationTimestamp", "sortOrder": "desc"}
        if limit is not None:
            params["limit"] = str(limit)
        data = await self._request("GET", self._session_path("chats"), params=params)
        return [Chat.from_payload(item) for item in data or [] if isinstance(item, dict)]

    async def get_chats_overview(self, limit: int = 1000) -> list[Chat]:
        data = await self._request(
            "GET", self._session_path("chats/overview"), params={"limit": str(limit)}
        )
        return [Chat.from_payload(item) for item in data or [] if isinstance(item, dict)]

    async def get_messages(self, chat_id: str, limit: int = 50) -> list[Message]:
        data = await self._request(
            "GET",
            self._session_path(f"chats/{_path_id(chat_id)}/messages"),
            params={
                "limit": str(limit),
                "downloadMedia": "false",
                "sortBy": "messageTimestamp",
                "sortOrder": "desc",
            },
        )
        return [
            Message.from_payload(item, chat_id)
            for item in data or []
            if isinstance(item, dict)
        ]

    async def get_contacts(self, limit: int = 5000) -> dict[str, str]:
        data = await self._request(
            "GET",
            "/api/contacts/all",
            params={"session": self.session, "limit": str(limit)},
        )
        contacts: dict[str, str] = {}
        for item in data or []:
            if not isinstance(item, dict):
                continue
            contact_id = id_string(item.get("id"))
            name = item.get("name") or item.get("pushname") or item.get("shortName")
            if contact_id and name:
                contacts[contact_id] = name
        return contacts

    async def get_lid_mappings(self) -> dict[str, str]:
        data = await self._request("GET", self._session_path("lids"))
        mappings: dict[str, str] = {}
        for item in data or []:
            if isinstance(item, dict) and item.get("lid") and item.get("pn"):
                mappings[id_string(item["lid"])] = id_string(item["pn"])
        return mappings

    async def get_presence(self, chat_id: str) -> list[Presence]:
        data = await self._request("GET", self._session_path(f"presence/{_path_id(chat_id)}"))
        if not isinstance(data, dict):
            return []
        return [
            Presence.from_payload(item)
            for item in data.get("presences") or []
            if isinstance(item, dict)
        ]

    async def subscribe_presence(self, chat_id: str) -> None:
        await self._request(
            "POST", self._session_path(f"presence/{_path_id(chat_id)}/subscribe")
        )

    async def set_presence(self, state: PresenceState, chat_id: str | None = None) -> None:
        body: dict[str, Any] = {"presence": state.value}
        if chat_id is not None:
            body["chatId"] = chat_id
        await self._request("POST", self._session_path("presence"), json_data=body)

    async def get_my_profile(self) -> Profile:
        data = await self._request("GET", self._session_path("profile"))
        return Profile.from_payload(data if isinstance(data, dict) else {})

    async def send_text(
        self, chat_id: str, text: str, reply_to: str | None = None
    ) -> Message | None:
        body: dict[str, Any] = {"session": self.session, "chatId": chat_id, "text": text}
        if reply_to:
            body["reply_to"] = reply_to
        data = await self._request("POST", "/api/sendText", json_data=body)
        if isinstance(data, dict) and data.get("id"):
            return Message.from_payload({"fromMe": True, **data}, chat_id)
        return None

    async def send_typing(self, chat_id: str, typing: bool = True) -> None:
        path = "/api/startTyping" if typing else "/api/stopTyping"
        await self._request("POST", path, json_data={"session": self.session, "chatId": chat_id})

    async def react(self, message_id: str, emoji: str) -> None:
        await self._request(
            "PUT",
            "/api/reaction",
            json_data={"session": self.session, "messageId": message_id, "reaction": emoji},
        )

    async def archive_chat(self, chat_id: str) -> None:
        await self._request("POST", self._session_path(f"chats/{_path_id(chat_id)}/archive"))

    async def unarchive_chat(self, chat_id: str) -> None:
        await self._request("POST", self._session_path(f"chats/{_path_id(chat_id)}/unarchive"))

    async def delete_chat(self, chat_id: str) -> None:
        await self._request("DELETE", self._session_path(f"chats/{_path_id(chat_id)}"))
