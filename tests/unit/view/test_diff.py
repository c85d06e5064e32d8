from dataclasses import replace

from chatmirror.models import Ack, Chat, LastMessage
from chatmirror.view.base import ChatListPresenter, ChatListRenderer, format_row
from chatmirror.view.diff import ChatRow, ListDiffEngine, RenderAction, SelectionChange


def row(chat_id, ts=1.0, last_id="m1", typing=False, **chat_fields):
    chat = Chat(id=chat_id, last_message=LastMessage(id=last_id, timestamp=ts), **chat_fields)
    return ChatRow(chat, chat_fields.get("name") or chat_id, typing)


def abc():
    return [row("A"), row("B"), row("C")]


def test_first_plan_rebuilds():
    assert ListDiffEngine().plan(abc()).action is RenderAction.REBUILD


def test_unchanged_rows_are_noop_with_zero_patches():
    diff = ListDiffEngine()
    diff.plan(abc(), "me")

    plan = diff.plan(abc(), "me")

    assert plan.action is RenderAction.NOOP
    assert plan.patched == []


def test_new_message_in_b_patches_exactly_b():
    diff = ListDiffEngine()
    diff.plan(abc())

    rows = abc()
    rows[1] = row("B", ts=2.0, last_id="m2")
    plan = diff.plan(rows)

    assert plan.action is RenderAction.PATCH
    assert plan.patched == [1]


def test_ack_typing_and_unread_changes_patch():
    diff = ListDiffEngine()
    diff.plan(abc())

    rows = abc()
    rows[0] = replace(rows[0], typing=True)
    last = replace(rows[2].chat.last_message, ack=Ack.READ)
    rows[2] = replace(rows[2], chat=replace(rows[2].chat, last_message=last, unread_count=1))

    assert diff.plan(rows).patched == [0, 2]


def test_reorder_rebuilds():
    diff = ListDiffEngine()
    diff.plan(abc())
    rows = abc()
    assert diff.plan([rows[1], rows[0], rows[2]]).action is RenderAction.REBUILD
    assert diff.plan(rows[:2]).action is RenderAction.REBUILD


def test_account_change_patches_every_row():
    diff = ListDiffEngine()
    diff.plan(abc(), "me@c.us")

    plan = diff.plan(abc(), "other@c.us")

    assert plan.action is RenderAction.PATCH
    assert plan.patched == [0, 1, 2]


def test_selection_and_scroll_bypass_hashes():
    diff = ListDiffEngine()
    diff.plan(abc())

    assert diff.select(1) == SelectionChange(None, 1)
    assert diff.select(1) is None
    assert diff.select(2) == SelectionChange(1, 2)
    assert diff.scroll(5) == 5
    assert diff.scroll(5) is None
    assert diff.plan(abc()).action is RenderAction.NOOP


def test_reset_forces_rebuild():
    diff = ListDiffEngine()
    diff.plan(abc())
    diff.select(1)
    diff.reset()
    assert diff.selected is None
    assert diff.plan(abc()).action is RenderAction.REBUILD


class RecordingRenderer(ChatListRenderer):
    def __init__(self):
        self.calls = []

    def rebuild(self, rows, selected):
        self.calls.append(("rebuild", [r.id for r in rows], selected))

    def patch(self, updates, selected):
        self.calls.append(("patch", [i for i, _ in updates]))

    def restyle(self, index, selected):
        self.calls.append(("restyle", index, selected))

    def scroll_to(self, offset):
        self.calls.append(("scroll", offset))


def test_presenter_drives_renderer():
    renderer = RecordingRenderer()
    presenter = ChatListPresenter(renderer)

    presenter.render(abc())
    presenter.render(abc())
    rows = abc()
    rows[2] = row("C", ts=9.0, last_id="m9")
    presenter.render(rows)
    presenter.select(0)
    presenter.select(2)
    presenter.select(99)
    presenter.scroll(3)

    assert renderer.calls == [
        ("rebuild", ["A", "B", "C"], None),
        ("patch", [2]),
        ("restyle", 0, True),
        ("restyle", 0, False),
        ("restyle", 2, True),
        ("scroll", 3),
    ]


def test_presenter_clamps_selection_on_shrink():
    renderer = RecordingRenderer()
    presenter = ChatListPresenter(renderer)
    presenter.render(abc())
    presenter.select(2)

    presenter.render(abc()[:1])

    assert renderer.calls[-1] == ("rebuild", ["A"], 0)


def test_format_row_shows_typing_and_flags():
    text = format_row(row("A", name="Alice", unread_count=3, pinned=True, typing=True), selected=True)
    assert text.startswith("> Alice [pinned] (3)")
    assert text.endswith("typing...")
