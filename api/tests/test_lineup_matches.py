import random

import pytest

from app.config import LINEUP_MATCH_WELCOME_MESSAGE
from app.services.lineup import LineupError, like_path, like_record
from app.services.lineup_matches import (
    NoIncomingLike,
    check_for_match,
    confirm_match,
    dismiss_match,
    lineup_match_id,
    user_matches,
)
from app.store import doc_path

SESSION = "s1"


def _like(store, from_user, to_user, **fields):
    store.set(like_path(from_user, to_user), {**like_record(from_user, to_user, SESSION), **fields})


@pytest.fixture
def people(make_user):
    make_user("adam", "male")
    make_user("bella", "female")
    make_user(
        "cara",
        "female",
        ageRange="50 to 60",
        interests=["Gaming"],
        lifestyle=[],
        location="Oslo, Norway",
    )
    make_user("dina", "female")


def test_incoming_likes_are_scored_and_sorted(store, people):
    _like(store, "cara", "adam")
    _like(store, "bella", "adam")
    _like(store, "adam", "bella")
    _like(store, "dina", "adam", status="dismissed")
    _like(store, "ghost", "adam")

    matches = user_matches(store, "adam", rng=random.Random(0))
    assert [m.user_id for m in matches] == ["bella", "cara"]
    assert matches[0].match_percentage > matches[1].match_percentage
    assert matches[0].is_mutual is True
    assert matches[1].is_mutual is False

    row = matches[0].to_dict()
    assert row["displayName"] == "Bella"
    assert row["isMutualMatch"] is True
    assert row["likedAt"] == store.now().isoformat()


def test_check_for_match_looks_at_the_other_direction(store, people):
    _like(store, "adam", "bella")
    assert check_for_match(store, "adam", "bella") is False
    _like(store, "bella", "adam")
    assert check_for_match(store, "adam", "bella") is True


def test_confirm_opens_chat_with_welcome_and_notifications(store, people):
    _like(store, "bella", "adam")

    out = confirm_match(store, "adam", "bella")
    match_id = lineup_match_id("bella", "adam")
    assert out == {"matchId": match_id, "created": True}
    assert match_id == "lineup_adam_bella"

    match = store.get(doc_path("matches", match_id))
    assert match.get("status") == "permanent"
    assert match.get("source") == "lineup"
    assert match.get("sessionId") == SESSION
    assert set(match.get("users")) == {"adam", "bella"}
    assert match.get("userProfiles")["bella"]["displayName"] == "Bella"

    messages = store.collection(doc_path("matches", match_id, "messages")).get()
    assert [m.get("text") for m in messages] == [LINEUP_MATCH_WELCOME_MESSAGE]
    assert messages[0].get("senderId") == "system"

    notes = store.collection("notifications").where("type", "==", "lineup_match").get()
    assert {n.get("userId") for n in notes} == {"adam", "bella"}
    by_user = {n.get("userId"): n for n in notes}
    assert by_user["adam"].get("message") == "You have a new match with Bella!"
    assert by_user["bella"].get("data") == {"matchUserId": "adam", "matchId": match_id}

    assert store.get(like_path("bella", "adam")).get("status") == "matched"
    assert store.get(like_path("adam", "bella")).get("status") == "matched"
    assert user_matches(store, "adam", rng=random.Random(0)) == []


def test_confirm_is_idempotent(store, people):
    _like(store, "bella", "adam")
    first = confirm_match(store, "adam", "bella")
    again = confirm_match(store, "bella", "adam")
    assert again == {"matchId": first["matchId"], "created": False}
    assert len(store.collection("matches").get()) == 1
    assert len(store.collection("notifications").get()) == 2


def test_confirm_requires_incoming_like(store, people):
    _like(store, "adam", "bella")
    with pytest.raises(NoIncomingLike):
        confirm_match(store, "adam", "bella")
    with pytest.raises(LineupError):
        confirm_match(store, "adam", "adam")
    with pytest.raises(LineupError):
        confirm_match(store, "adam", "nobody")
    assert store.collection("matches").get() == []


def test_dismiss_takes_like_off_the_list(store, people):
    _like(store, "bella", "adam")
    assert dismiss_match(store, "adam", "bella") is True
    assert dismiss_match(store, "adam", "bella") is False
    assert dismiss_match(store, "adam", "cara") is False
    assert store.get(like_path("bella", "adam")).get("status") == "dismissed"
    assert user_matches(store, "adam") == []
