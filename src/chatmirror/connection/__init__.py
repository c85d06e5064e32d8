"""Push channel connection management."""

from chatmirror.connection.manager import ConnectionManager, build_ws_url

__all__ = ["ConnectionManager", "build_ws_url"]
