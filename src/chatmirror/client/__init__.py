"""Remote service clients."""

from chatmirror.client.base import RemoteClient
from chatmirror.client.waha import WahaClient

__all__ = ["RemoteClient", "WahaClient"]
