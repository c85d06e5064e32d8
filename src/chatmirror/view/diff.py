"""
List diff engine for the chat list.

Decides the cheapest redraw for a new list state by comparing two hashes
against what was last rendered:

- structure hash: the ordered row ids
- content hash: every row's fingerprint plus the account id

Same structure and content means nothing to do. Same structure with new
content patches only the rows whose fingerprint changed. A new structure
rebuilds the list. Selection and scroll are tracked apart from both hashes,
so moving the cursor never triggers a data redraw.
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from chatmirror.models import Chat


class ChangeType(str, Enum):
    """What a view listener is being told about."""

    DATA = "data"
    SELECTION = "selection"
    SCROLL = "scroll"
    VIEW = "view"
    OTHER = "other"


class RenderAction(str, Enum):
    NOOP = "noop"
    PATCH = "patch"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class ChatRow:
    """One chat list row as the view draws it."""

    chat: Chat
    name: str
    typing: bool = False

    @property
    def id(self) -> str:
        return self.chat.id

    def fingerprint(self) -> str:
        last = self.chat.last_message
        parts = [
            self.chat.id,
            last.id if last else "",
            f"{last.timestamp:.3f}" if last else "",
            str(int(last.ack)) if last and last.ack is not None else "",
            last.preview if last else "",
            self.name,
            "m" if self.chat.muted else "",
            "p" if self.chat.pinned else "",
            str(self.chat.unread_count),
            "t" if self.typing else "",
        ]
        return "|".join(parts)


@dataclass
class RenderPlan:
    """
    Outcome of a diff.

    Attributes:
        action: What the renderer should do
        rows: The full new row list
        patched: Indexes into `rows` to redraw (PATCH only)
    """

    action: RenderAction
    rows: list[ChatRow] = field(default_factory=list)
    patched: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class SelectionChange:
    previous: int | None
    current: int | None


def _digest(parts: Sequence[str]) -> str:
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()


class ListDiffEngine:
    """Remembers the last rendered state and plans the next redraw."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Forget rendered state; the next plan is always a rebuild."""
        self._structure: str | None = None
        self._content: str | None = None
        self._fingerprints: dict[str, str] = {}
        self._account_id: str | None = None
        self.selected: int | None = None
        self.scroll_offset = 0

    def plan(self, rows: Sequence[ChatRow], account_id: str | None = None) -> RenderPlan:
        rows = list(rows)
        fingerprints = {row.id: row.fingerprint() for row in rows}
        structure = _digest([row.id for row in rows])
        content = _digest([account_id or "", *(fingerprints[row.id] for row in rows)])

        previous = self._fingerprints
        account_changed = account_id != self._account_id
        first_render = self._structure is None

        self._fingerprints = fingerprints
        self._account_id = account_id

        if first_render or structure != self._structure:
            self._structure, self._content = structure, content
            return RenderPlan(RenderAction.REBUILD, rows)

        if content == self._content:
            return RenderPlan(RenderAction.NOOP, rows)

        self._content = content
        patched = [
            i
            for i, row in enumerate(rows)
            if account_changed or previous.get(row.id) != fingerprints[row.id]
        ]
        return RenderPlan(RenderAction.PATCH, rows, patched)

    def select(self, index: int | None) -> SelectionChange | None:
        """Move the selection. Returns None when it did not move."""
        if index == self.selected:
            return None
        change = SelectionChange(self.selected, index)
        self.selected = index
        return change

    def scroll(self, offset: int) -> int | None:
        """Set the scroll offset. Returns the new offset, or None if unchanged."""
        offset = max(0, offset)
        if offset == self.scroll_offset:
            return None
        self.scroll_offset = offset
        return offset
