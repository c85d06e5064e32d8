"""
View layer interfaces and the chat list presenter.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime

import typer

from chatmirror.models import Ack
from chatmirror.view.diff import ChangeType, ChatRow, ListDiffEngine, RenderAction, RenderPlan

logger = logging.getLogger(__name__)

ViewListener = Callable[[ChangeType], None]

ACK_MARKS = {
    Ack.FAILED: "!",
    Ack.PENDING: "…",
    Ack.SENT: "✓",
    Ack.DELIVERED: "✓✓",
    Ack.READ: "✓✓*",
}


class ChatListRenderer(ABC):
    """
    Draws the chat list.

    Implementations must provide:
    - `rebuild()` - redraw every row
    - `patch()` - redraw the given rows in place
    - `restyle()` - change a row's selected/unselected styling only
    - `scroll_to()` - move the viewport
    """

    @abstractmethod
    def rebuild(self, rows: Sequence[ChatRow], selected: int | None) -> None:
        pass

    @abstractmethod
    def patch(self, updates: Sequence[tuple[int, ChatRow]], selected: int | None) -> None:
        pass

    @abstractmethod
    def restyle(self, index: int, selected: bool) -> None:
        pass

    @abstractmethod
    def scroll_to(self, offset: int) -> None:
        pass


class ChatListPresenter:
    """Feeds rows through the diff engine and forwards the plan to a renderer."""

    def __init__(self, renderer: ChatListRenderer, diff: ListDiffEngine | None = None):
        self.renderer = renderer
        self.diff = diff or ListDiffEngine()
        self._row_count = 0

    def render(self, rows: Sequence[ChatRow], account_id: str | None = None) -> RenderPlan:
        plan = self.diff.plan(rows, account_id)
        self._row_count = len(plan.rows)
        selected = self.diff.selected

        if plan.action is RenderAction.REBUILD:
            if selected is not None and selected >= len(plan.rows):
                self.diff.select(len(plan.rows) - 1 if plan.rows else None)
            self.renderer.rebuild(plan.rows, self.diff.selected)
        elif plan.action is RenderAction.PATCH:
            self.renderer.patch([(i, plan.rows[i]) for i in plan.patched], selected)
        return plan

    def select(self, index: int | None) -> bool:
        """Restyle only the previously and newly selected rows."""
        if index is not None:
            if self._row_count == 0:
                index = None
            else:
                index = max(0, min(index, self._row_count - 1))
        change = self.diff.select(index)
        if change is None:
            return False
        if change.previous is not None and change.previous < self._row_count:
            self.renderer.restyle(change.previous, False)
        if change.current is not None:
            self.renderer.restyle(change.current, True)
        return True

    def scroll(self, offset: int) -> bool:
        new_offset = self.diff.scroll(offset)
        if new_offset is None:
            return False
        self.renderer.scroll_to(new_offset)
        return True

    def reset(self) -> None:
        self.diff.reset()
        self._row_count = 0


def format_row(row: ChatRow, selected: bool = False, width: int = 80) -> str:
    """One-line text rendering of a chat row."""
    chat = row.chat
    last = chat.last_message
    marker = ">" if selected else " "
    name = row.name or chat.id

    if row.typing:
        preview = "typing..."
    elif last is not None:
        ack = ACK_MARKS.get(last.ack, "") if last.from_me and last.ack is not None else ""
        preview = f"{ack} {last.preview}".strip()
    else:
        preview = ""

    when = datetime.fromtimestamp(last.timestamp).strftime("%H:%M") if last and last.timestamp else ""
    flags = "".join(
        [
            " [pinned]" if chat.pinned else "",
            " [muted]" if chat.muted else "",
            f" ({chat.unread_count})" if chat.unread_count else "",
        ]
    )
    line = f"{marker} {name}{flags}  {when}  {preview}"
    return line if len(line) <= width else line[: width - 3] + "..."


class ConsoleRenderer(ChatListRenderer):
    """Line-oriented renderer for the headless CLI."""

    def __init__(self, write: Callable[[str], None] = typer.echo, width: int = 100):
        self._write = write
        self._width = width
        self._rows: list[ChatRow] = []

    def rebuild(self, rows: Sequence[ChatRow], selected: int | None) -> None:
        self._rows = list(rows)
        self._write(f"--- {len(self._rows)} chats ---")
        for i, row in enumerate(self._rows):
            self._write(format_row(row, i == selected, self._width))

    def patch(self, updates: Sequence[tuple[int, ChatRow]], selected: int | None) -> None:
        for index, row in updates:
            if index < len(self._rows):
                self._rows[index] = row
            self._write(f"~ {format_row(row, index == selected, self._width)}")

    def restyle(self, index: int, selected: bool) -> None:
        if selected and index < len(self._rows):
            self._write(f"* {format_row(self._rows[index], True, self._width)}")

    def scroll_to(self, offset: int) -> None:
        logger.debug(f"Scroll offset: {offset}")
