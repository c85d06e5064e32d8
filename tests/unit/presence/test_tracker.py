from chatmirror.models import Presence, PresenceState
from chatmirror.presence.tracker import PresenceTracker

ME = "999@c.us"
ALICE = "111@c.us"
GROUP = "1-2@g.us"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def presence(participant, state):
    return Presence(participant=participant, state=state)


def test_typing_from_other_participant():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    tracker.ingest(ALICE, [presence(ALICE, PresenceState.TYPING)])

    assert tracker.is_typing(ALICE)
    assert tracker.typing_participant(ALICE) == ALICE
    assert tracker.typing_chats() == {ALICE: ALICE}


def test_self_presence_never_counts_as_typing():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    tracker.ingest(GROUP, [presence("999:3@s.whatsapp.net", PresenceState.TYPING)])

    assert not tracker.is_typing(GROUP)
    assert tracker.presences(GROUP) == []


def test_self_chat_is_ignored_entirely():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    assert not tracker.ingest("999@s.whatsapp.net", [presence(ALICE, PresenceState.TYPING)])
    assert not tracker.is_typing("999@s.whatsapp.net")


def test_latest_state_supersedes_per_participant():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    tracker.ingest(GROUP, [presence(ALICE, PresenceState.TYPING)])
    tracker.ingest(GROUP, [presence(ALICE, PresenceState.PAUSED)])

    assert not tracker.is_typing(GROUP)
    assert len(tracker.presences(GROUP)) == 1


def test_typing_expires_after_timeout():
    clock = FakeClock()
    tracker = PresenceTracker(my_id=ME, typing_timeout_s=30, clock=clock)
    tracker.ingest(ALICE, [presence(ALICE, PresenceState.RECORDING)])

    clock.now = 29.9
    assert tracker.is_typing(ALICE)
    clock.now = 30.0
    assert not tracker.is_typing(ALICE)


def test_clear_typing_for_sender_across_chats():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    tracker.ingest(ALICE, [presence(ALICE, PresenceState.TYPING)])
    tracker.ingest(GROUP, [presence("111:2@s.whatsapp.net", PresenceState.TYPING)])

    changed = tracker.clear_typing_for_sender(ALICE)

    assert sorted(changed) == sorted([ALICE, GROUP])
    assert not tracker.is_typing(ALICE)
    assert not tracker.is_typing(GROUP)
    assert tracker.presences(GROUP)[0].state is PresenceState.PAUSED


def test_lid_aliases_resolve_to_phone_ids():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    assert tracker.add_lid_mappings({"555@lid": ALICE, "777@lid": ME}) == 2

    tracker.ingest(GROUP, [presence("555@lid", PresenceState.TYPING)])
    assert tracker.clear_typing_for_sender(ALICE) == [GROUP]

    # own LID is recognized as self
    tracker.ingest(GROUP, [presence("777@lid", PresenceState.TYPING)])
    assert not tracker.is_typing(GROUP)


def test_direct_chat_entry_without_participant_uses_chat_id():
    tracker = PresenceTracker(my_id=ME, clock=FakeClock())
    tracker.ingest(ALICE, [presence("", PresenceState.ONLINE)])
    assert tracker.is_online(ALICE)
    assert not tracker.is_typing(ALICE)
