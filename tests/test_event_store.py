"""Tests for the per-room bounded event cache."""
import pytest

from matui.event_store import MAX_PENDING_FOLDS, PENDING_FOLD_TTL_S, EventStore
from matui.models import MembershipContent, Event

from tests.factories import ALICE, BOB, ROOM, edit, media, reaction, redaction, text


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestCapacity:
    def test_keeps_newest_n(self):
        store = EventStore(max_events=8192)
        events = [text(f"m{i}") for i in range(9000)]
        for e in events:
            store.insert(e)
        assert len(store) == 8192
        assert all(e.event_id not in store for e in events[:808])
        assert all(e.event_id in store for e in events[808:])

    def test_fifo_order(self):
        store = EventStore(max_events=3)
        events = [text(str(i)) for i in range(5)]
        for e in events:
            store.insert(e)
        assert [m.body for m in store.iter()] == ["2", "3", "4"]
        assert [m.body for m in store.iter_newest()] == ["4", "3", "2"]

    def test_iteration_is_restartable(self):
        store = EventStore()
        for i in range(3):
            store.insert(text(str(i)))
        assert list(store.iter()) == list(store.iter())

    def test_negative_capacity_is_unlimited(self):
        store = EventStore(max_events=-1)
        for i in range(50):
            store.insert(text(str(i)))
        assert len(store) == 50

    def test_set_capacity_trims(self):
        store = EventStore(max_events=10)
        for i in range(10):
            store.insert(text(str(i)))
        assert store.set_capacity(4) == 6
        assert [m.body for m in store] == ["6", "7", "8", "9"]

    def test_duplicate_id_is_ignored(self):
        store = EventStore()
        e = text("hi")
        assert store.insert(e) is True
        assert store.insert(e) is False
        assert len(store) == 1

    def test_evicted_id_is_not_readded(self):
        store = EventStore(max_events=1)
        first = text("a")
        store.insert(first)
        store.insert(text("b"))
        assert store.insert(first) is False
        assert first.event_id not in store


class TestEdits:
    def test_edit_replaces_body(self):
        store = EventStore()
        e1 = text("helo")
        store.insert(e1)
        store.insert(edit(e1.event_id, "hello"))
        assert len(store) == 1
        message = store.get(e1.event_id)
        assert message.body == "hello"
        assert message.history == ["helo"]
        assert message.edited

    def test_repeated_edit_delivery_applies_once(self):
        store = EventStore()
        e1 = text("a")
        store.insert(e1)
        fix = edit(e1.event_id, "b")
        store.insert(fix)
        assert store.insert(fix) is False
        assert store.get(e1.event_id).history == ["a"]

    def test_edit_of_evicted_target_changes_nothing(self):
        store = EventStore(max_events=1)
        old = text("old")
        store.insert(old)
        newer = text("new")
        store.insert(newer)
        before = [(m.event_id, m.body) for m in store]
        assert store.insert(edit(old.event_id, "changed")) is False
        assert [(m.event_id, m.body) for m in store] == before
        assert store.pending_count == 0


class TestReactions:
    def test_toggle_twice_restores_state(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        store.insert(reaction(e1.event_id, "👍"))
        assert store.get(e1.event_id).reactions == {"👍": {BOB: store.reaction_event_id(e1.event_id, BOB, "👍")}}
        store.insert(reaction(e1.event_id, "👍"))
        assert store.get(e1.event_id).reactions == {}

    def test_repeated_reaction_delivery_applies_once(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        r = reaction(e1.event_id, "👍")
        assert store.insert(r) is True
        assert store.insert(r) is False
        assert "👍" in store.get(e1.event_id).reactions

    def test_reactions_from_different_senders(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        store.insert(reaction(e1.event_id, "❤️", sender=ALICE))
        store.insert(reaction(e1.event_id, "❤️", sender=BOB))
        assert list(store.get(e1.event_id).reactions["❤️"]) == [ALICE, BOB]

    def test_reaction_keys_by_sender(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        store.insert(reaction(e1.event_id, "😂", sender=ALICE))
        store.insert(reaction(e1.event_id, "👍", sender=BOB))
        assert store.get(e1.event_id).reaction_keys_by(ALICE) == ["😂"]

    def test_redacting_reaction_removes_it(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        r = reaction(e1.event_id, "👍")
        store.insert(r)
        assert store.insert(redaction(r.event_id)) is True
        assert store.get(e1.event_id).reactions == {}
        assert e1.event_id in store

    def test_reaction_event_id_lookup(self):
        store = EventStore()
        e1 = text("hi")
        store.insert(e1)
        r = reaction(e1.event_id, "👍", sender=ALICE)
        store.insert(r)
        assert store.reaction_event_id(e1.event_id, ALICE, "👍") == r.event_id
        assert store.reaction_event_id(e1.event_id, BOB, "👍") is None
        assert store.reaction_event_id("$missing", ALICE, "👍") is None


class TestRedactions:
    def test_redaction_removes_message(self):
        store = EventStore()
        e1, e2 = text("a"), text("b")
        store.insert(e1)
        store.insert(e2)
        assert store.insert(redaction(e1.event_id)) is True
        assert [m.event_id for m in store] == [e2.event_id]
        assert store.index_of(e2.event_id) == 0

    def test_folds_for_redacted_message_are_dropped(self):
        store = EventStore()
        e1 = text("a")
        store.insert(e1)
        store.insert(redaction(e1.event_id))
        assert store.insert(edit(e1.event_id, "zombie")) is False
        assert store.pending_count == 0
        assert len(store) == 0


class TestPendingFolds:
    def test_fold_before_target_is_applied_on_arrival(self):
        store = EventStore()
        r = reaction("$later", "👍")
        assert store.insert(r) is False
        assert store.pending_count == 1
        store.insert(text("late", event_id="$later"))
        assert store.pending_count == 0
        assert "👍" in store.get("$later").reactions

    def test_edit_before_target(self):
        store = EventStore()
        store.insert(edit("$later", "fixed"))
        store.insert(text("broken", event_id="$later"))
        assert store.get("$later").body == "fixed"

    def test_pending_folds_expire(self):
        clock = FakeClock()
        store = EventStore(clock=clock)
        store.insert(reaction("$never", "👍"))
        clock.now += PENDING_FOLD_TTL_S + 1
        store.insert(text("other"))
        assert store.pending_count == 0
        store.insert(text("late", event_id="$never"))
        assert store.get("$never").reactions == {}

    def test_pending_buffer_is_bounded(self):
        store = EventStore()
        for i in range(MAX_PENDING_FOLDS + 10):
            store.insert(reaction(f"$t{i}", "👍"))
        assert store.pending_count == MAX_PENDING_FOLDS

    def test_redaction_of_pending_reaction_target(self):
        store = EventStore()
        e1 = text("hi")
        r = reaction(e1.event_id, "👍")
        store.insert(r)
        store.insert(e1)
        store.insert(redaction(r.event_id))
        assert store.get(e1.event_id).reactions == {}


class TestMessages:
    def test_media_and_membership_bodies(self):
        store = EventStore()
        pic = media("cat.png")
        store.insert(pic)
        joined = Event("$m", ROOM, BOB, 1, MembershipContent("join", "Bob"))
        store.insert(joined)
        assert store.get(pic.event_id).is_media
        assert store.get("$m").body == "Bob joined the room"

    def test_snapshot_tracks_mutation(self):
        store = EventStore()
        e1 = text("a")
        store.insert(e1)
        first = store.snapshot()
        store.insert(text("b"))
        assert len(first) == 1
        assert len(store.snapshot()) == 2

    @pytest.mark.parametrize(
        "senders,expected",
        [([], ""), (["alice"], "alice"), (["alice", "bob"], "alice and bob"), (["a", "b", "c"], "a, b and c")],
    )
    def test_pretty_senders(self, senders, expected):
        from matui.models import pretty_senders
        assert pretty_senders(senders) == expected
