"""
Configuration schema using Pydantic v2.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatmirror.notify import AlertPolicy


class ServerConfig(BaseModel):
    """Remote WAHA server."""

    url: str = "http://localhost:3000"
    api_key: str = ""
    timeout_s: float = 30.0

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class PollingConfig(BaseModel):
    enabled: bool = True
    chats_interval_s: float = Field(default=3.0, gt=0)
    messages_interval_s: float = Field(default=2.0, gt=0)


class ConnectionConfig(BaseModel):
    """Event socket reconnect and debounce behaviour."""

    debounce_ms: int = Field(default=50, ge=0)
    reconnect_base_s: float = Field(default=1.0, gt=0)
    reconnect_max_s: float = Field(default=30.0, gt=0)
    jitter: bool = False


class PresenceConfig(BaseModel):
    typing_timeout_s: float = 30.0
    inactivity_timeout_s: float = 30.0
    check_interval_s: float = 5.0
    resubscribe_interval_s: float = 5 * 60


class CacheConfig(BaseModel):
    max_entries: int = Field(default=100, ge=1)
    default_ttl_s: float = 5 * 60
    chats_ttl_s: float = 2.0  # shorter than the chat poll so polls hit the remote
    contacts_ttl_s: float = 5 * 60


class NotificationConfig(BaseModel):
    """Alerts for messages outside the foreground chat."""

    enabled: bool = True
    messages: bool = True
    groups: bool = True
    status: bool = False
    show_previews: bool = True


@dataclass(frozen=True)
class SyncOptions:
    """Startup switches handed to the engine."""

    enable_polling: bool = True
    notifications_enabled: bool = True


class Config(BaseSettings):
    """
    Root configuration.

    Loads from ~/.chatmirror/config.json and environment variables
    with CHATMIRROR_ prefix (nested: CHATMIRROR_SERVER__URL).
    """

    session: str = "default"
    server: ServerConfig = Field(default_factory=ServerConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    presence: PresenceConfig = Field(default_factory=PresenceConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    model_config = SettingsConfigDict(
        env_prefix="CHATMIRROR_",
        env_nested_delimiter="__",
    )

    def sync_options(self) -> SyncOptions:
        return SyncOptions(
            enable_polling=self.polling.enabled,
            notifications_enabled=self.notifications.enabled,
        )

    def alert_policy(self) -> AlertPolicy:
        return AlertPolicy(
            enabled=self.notifications.enabled,
            messages=self.notifications.messages,
            groups=self.notifications.groups,
            status=self.notifications.status,
        )
