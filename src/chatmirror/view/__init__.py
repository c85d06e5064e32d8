"""Chat list diffing and rendering."""

from chatmirror.view.base import ChatListPresenter, ChatListRenderer, ConsoleRenderer
from chatmirror.view.diff import ChangeType, ChatRow, ListDiffEngine, RenderAction, RenderPlan

__all__ = [
    "ChangeType",
    "ChatListPresenter",
    "ChatListRenderer",
    "ChatRow",
    "ConsoleRenderer",
    "ListDiffEngine",
    "RenderAction",
    "RenderPlan",
]
