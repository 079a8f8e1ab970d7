import random
from datetime import timedelta

import pytest

from app.services import state_machine as sm
from app.services.speed_dating import (
    CoordinatorRegistry,
    InvalidAction,
    SpeedDatingCoordinator,
    UnknownCandidate,
    combine_rejection_reason,
    connection_id_for,
)
from app.store import DocumentStore, doc_path

ROOM = "speed_alice_bob"


def _kinds(snapshot):
    return [n["kind"] for n in snapshot["notices"]]


@pytest.fixture
def pair(store, make_user):
    make_user("alice", "female")
    make_user("bob", "male")
    alice = SpeedDatingCoordinator(store, "alice", rng=random.Random(0))
    bob = SpeedDatingCoordinator(store, "bob", rng=random.Random(1))
    return alice, bob


def _to_results(alice, bob, clock):
    first = alice.start_search()
    assert first["step"] == sm.SEARCHING
    assert "no_users_available" in _kinds(first)
    clock.advance(2)
    b = bob.start_search()
    clock.advance(5)
    a = alice.tick()
    return a, b


def _to_chat(alice, bob, clock):
    _to_results(alice, bob, clock)
    bob.select("alice")
    bob.connect()
    alice.select("bob")
    return alice.connect()


def test_two_searchers_in_one_window_both_see_matches(pair, clock):
    alice, bob = pair
    a, b = _to_results(alice, bob, clock)
    assert a["step"] == sm.RESULTS and b["step"] == sm.RESULTS
    assert "matches_found" in _kinds(a) and "matches_found" in _kinds(b)
    assert [c["id"] for c in a["candidates"]] == ["bob"]
    assert [c["id"] for c in b["candidates"]] == ["alice"]
    assert a["syncGroup"] == b["syncGroup"]


def test_connect_creates_one_connection_with_both_profiles(pair, store, clock):
    alice, bob = pair
    snap = _to_chat(alice, bob, clock)
    assert snap["step"] == sm.CHAT
    assert snap["connectionId"] == ROOM

    rooms = store.collection("speedDatingConnections").get()
    assert [r.id for r in rooms] == [ROOM]
    profiles = rooms[0].get("userProfiles")
    assert set(profiles) == {"alice", "bob"}
    assert profiles["alice"]["displayName"] == "Alice"
    assert profiles["bob"]["continuePermanently"] is False
    assert rooms[0].get("status") == "temporary"

    messages = store.collection(doc_path("speedDatingConnections", ROOM, "messages")).get()
    assert len(messages) == 1
    assert messages[0].get("isSystemMessage") is True

    assert store.collection("speedDatingSessions").get() == []
    assert snap["chatRemainingSeconds"] == 4 * 3600


def test_ending_chat_leaves_no_messages_and_partner_exits(pair, store, clock):
    alice, bob = pair
    _to_chat(alice, bob, clock)
    store.set(doc_path("speedDatingConnections", ROOM, "messages", "m1"), {"text": "hey", "senderId": "bob"})

    snap = bob.end_chat()
    assert snap["step"] == sm.REJECTION
    assert store.collection(doc_path("speedDatingConnections", ROOM, "messages")).get() == []
    assert not store.get(doc_path("speedDatingConnections", ROOM)).exists

    a = alice.tick()
    assert a["step"] == sm.EXITED
    assert "chat_ended_by_partner" in _kinds(a)

    done = bob.submit_rejection("Not my type", "too quiet")
    assert done["step"] == sm.EXITED
    reviews = store.collection(doc_path("users", "alice", "rejectionReviews")).get()
    assert [r.get("reason") for r in reviews] == ["Not my type - too quiet"]
    assert len(store.collection("speedDatingFeedback").get()) == 1


def test_promotion_requires_both_flags(pair, store, clock):
    alice, bob = pair
    _to_chat(alice, bob, clock)

    waiting = alice.continue_permanently()
    assert waiting["step"] == sm.CHAT
    assert "waiting_for_partner" in _kinds(waiting)
    room = store.get(doc_path("speedDatingConnections", ROOM))
    assert room.get("status") == "temporary"
    assert room.get("userProfiles.alice.continuePermanently") is True
    assert store.collection("matches").get() == []

    promoted = bob.continue_permanently()
    assert promoted["step"] == sm.CONGRATULATIONS
    match = store.get(doc_path("matches", ROOM))
    assert match.get("status") == "permanent"
    assert match.get("matchType") == "speed-dating-match"
    assert len(store.collection(doc_path("matches", ROOM, "messages")).get()) == 2
    assert not store.get(doc_path("speedDatingConnections", ROOM)).exists
    assert store.collection(doc_path("speedDatingConnections", ROOM, "messages")).get() == []

    a = alice.tick()
    assert a["step"] == sm.CONGRATULATIONS
    assert a["permanentMatchId"] == ROOM


def test_detail_returns_to_results_after_countdown(pair, clock):
    alice, bob = pair
    _to_results(alice, bob, clock)
    snap = alice.select("bob")
    assert snap["step"] == sm.DETAIL
    assert snap["detailRemainingSeconds"] == 5
    clock.advance(6)
    assert alice.tick()["step"] == sm.RESULTS


def test_unknown_candidate_and_wrong_state(pair, clock):
    alice, bob = pair
    with pytest.raises(InvalidAction):
        alice.connect()
    _to_results(alice, bob, clock)
    with pytest.raises(UnknownCandidate):
        alice.select("mallory")


def test_search_times_out_and_cleans_up(store, clock, make_user):
    make_user("alice", "female")
    alice = SpeedDatingCoordinator(store, "alice", rng=random.Random(0))
    alice.start_search()
    clock.advance(150)
    assert alice.tick()["step"] == sm.SEARCHING
    clock.advance(151)
    snap = alice.tick()
    assert snap["step"] == sm.EXITED
    assert "search_timed_out" in _kinds(snap)
    assert store.collection("speedDatingSessions").get() == []


def test_only_one_session_per_user(store, clock, make_user):
    make_user("alice", "female")
    alice = SpeedDatingCoordinator(store, "alice")
    alice.start_search()
    clock.advance(1)
    alice.start_search()
    sessions = store.collection("speedDatingSessions").where("userId", "==", "alice").get()
    assert len(sessions) == 1


def test_resume_reuses_recent_session(store, clock, make_user):
    make_user("alice", "female")
    make_user("bob", "male")
    store.set(
        doc_path("speedDatingSessions", "old_alice"),
        {"userId": "alice", "status": "searching", "createdAt": clock.now - timedelta(seconds=60), "syncGroup": 0},
    )
    store.set(
        doc_path("speedDatingSessions", "bob_s"),
        {"userId": "bob", "status": "searching", "createdAt": clock.now - timedelta(seconds=30), "syncGroup": 0},
    )
    alice = SpeedDatingCoordinator(store, "alice", rng=random.Random(0))
    snap = alice.resume()
    assert snap["step"] == sm.RESULTS
    assert snap["sessionId"] == "old_alice"


def test_chat_reminder_then_expiry(pair, store, clock):
    alice, bob = pair
    _to_chat(alice, bob, clock)
    clock.advance(3 * 3600 + 1)
    assert "chat_reminder" in _kinds(alice.tick())
    clock.advance(3600)
    snap = alice.tick()
    assert snap["step"] == sm.REJECTION
    assert not store.get(doc_path("speedDatingConnections", ROOM)).exists


def test_back_from_chat_ends_it(pair, store, clock):
    alice, bob = pair
    _to_chat(alice, bob, clock)
    snap = alice.back()
    assert snap["step"] == sm.EXITED
    assert not store.get(doc_path("speedDatingConnections", ROOM)).exists
    assert "chat_ended_by_partner" in _kinds(bob.tick())


def test_reconnect_after_partner_already_connected_reuses_room(pair, store, clock):
    alice, bob = pair
    _to_chat(alice, bob, clock)
    assert len(store.collection("speedDatingConnections").get()) == 1
    assert len(store.collection(doc_path("speedDatingConnections", ROOM, "messages")).get()) == 1


def test_rejection_reason_formatting():
    assert combine_rejection_reason("Not my type", "rude") == "Not my type - rude"
    assert combine_rejection_reason("Other", "") == "Other"
    assert combine_rejection_reason(None, None) == "No reason provided"
    assert connection_id_for("bob", "alice") == "speed_alice_bob"


@pytest.fixture
def split_pair(store, session_factory, clock, make_user):
    # two stores on one database stand in for two API workers
    make_user("alice", "female")
    make_user("bob", "male")
    other = DocumentStore(session_factory, clock=clock)
    alice = SpeedDatingCoordinator(store, "alice", rng=random.Random(0))
    bob = SpeedDatingCoordinator(other, "bob", rng=random.Random(1))
    return alice, bob


def test_partner_ending_chat_in_another_worker_is_seen_on_tick(split_pair, store, clock):
    alice, bob = split_pair
    assert _to_chat(alice, bob, clock)["step"] == sm.CHAT

    assert bob.end_chat()["step"] == sm.REJECTION
    assert not store.get(doc_path("speedDatingConnections", ROOM)).exists

    a = alice.tick()
    assert a["step"] == sm.EXITED
    assert "chat_ended_by_partner" in _kinds(a)
    assert a["connectionId"] is None


def test_partner_timer_closing_room_in_another_worker_leads_to_rejection(split_pair, clock):
    alice, bob = split_pair
    _to_chat(alice, bob, clock)
    clock.advance(4 * 3600 + 1)

    assert bob.tick()["step"] == sm.REJECTION
    a = alice.tick()
    assert a["step"] == sm.REJECTION
    assert "chat_expired" in _kinds(a)
    assert alice.submit_rejection("Other")["step"] == sm.EXITED


def test_promotion_in_another_worker_is_seen_on_tick(split_pair, clock):
    alice, bob = split_pair
    _to_chat(alice, bob, clock)
    assert bob.continue_permanently()["step"] == sm.CHAT
    assert alice.continue_permanently()["step"] == sm.CONGRATULATIONS

    b = bob.tick()
    assert b["step"] == sm.CONGRATULATIONS
    assert b["permanentMatchId"] == ROOM


def test_promotion_with_dotted_user_ids(store, clock, make_user):
    make_user("a.lice", "female")
    make_user("b.ob", "male")
    alice = SpeedDatingCoordinator(store, "a.lice", rng=random.Random(0))
    bob = SpeedDatingCoordinator(store, "b.ob", rng=random.Random(1))
    _to_results(alice, bob, clock)
    bob.select("a.lice")
    bob.connect()
    alice.select("b.ob")
    room_id = alice.connect()["connectionId"]
    assert room_id == "speed_a.lice_b.ob"

    assert "waiting_for_partner" in _kinds(alice.continue_permanently())
    profiles = store.get(doc_path("speedDatingConnections", room_id)).get("userProfiles")
    assert set(profiles) == {"a.lice", "b.ob"}
    assert profiles["a.lice"]["continuePermanently"] is True
    assert profiles["a.lice"]["displayName"] == "A.Lice"

    promoted = bob.continue_permanently()
    assert promoted["step"] == sm.CONGRATULATIONS
    assert store.get(doc_path("matches", room_id)).get("status") == "permanent"


class _Ticker:
    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def test_registry_drops_exited_and_idle_coordinators(store, make_user):
    make_user("alice", "female")
    ticker = _Ticker()
    registry = CoordinatorRegistry(store, idle_seconds=60, clock=ticker)

    alice = registry.get("alice")
    assert registry.get("alice") is alice
    registry.release("alice", {"step": sm.SEARCHING})
    assert "alice" in registry
    registry.release("alice", {"step": sm.EXITED})
    assert "alice" not in registry and len(registry) == 0

    registry.get("carol")
    ticker.value = 30
    dave = registry.get("dave")
    ticker.value = 61
    registry.get("erin")
    assert "carol" not in registry
    assert "dave" in registry and "erin" in registry

    ticker.value = 1000
    assert registry.get("dave") is dave
    assert len(registry) == 1 and "dave" in registry
