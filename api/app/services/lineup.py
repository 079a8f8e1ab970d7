from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from ..config import SPOTLIGHT_DURATION_SECONDS
from ..store import SERVER_TIMESTAMP, DocumentStore, Increment, doc_path
from .countdown import remaining_seconds
from .lineup_rotation import (
    GENDERS,
    current_field,
    join_record_path,
    rotation_time_field,
    session_path,
)

logger = logging.getLogger(__name__)

ACTION_COUNTERS = {"like": "likeCount", "pop": "popCount", "view": "viewCount"}


class LineupError(Exception):
    pass


class NotEligible(LineupError):
    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(f"Not eligible to join for another {seconds_remaining}s")
        self.seconds_remaining = seconds_remaining


class AlreadyCompleted(LineupError):
    pass


class SessionNotFound(LineupError):
    pass


def check_user_eligibility(store: DocumentStore, user_id: str, now: datetime | None = None) -> tuple[bool, int]:
    now = now or store.now()
    record = store.get(doc_path("userEliminations", user_id))
    eligible_at = record.get("eligibleAt") if record.exists else None
    if not isinstance(eligible_at, datetime) or eligible_at <= now:
        return True, 0
    return False, math.ceil((eligible_at - now).total_seconds())


def remaining_spotlight_seconds(session: dict[str, Any], gender: str, now: datetime) -> int:
    last = session.get(rotation_time_field(gender)) or session.get("lastRotationTime")
    if not isinstance(last, datetime):
        return SPOTLIGHT_DURATION_SECONDS
    return remaining_seconds(last, SPOTLIGHT_DURATION_SECONDS, now)


def _normalize_gender(value: Any) -> str:
    gender = str(value or "").strip().lower()
    if gender not in GENDERS:
        raise LineupError(f"Unsupported gender: {value!r}")
    return gender


def _find_active_session(store: DocumentStore, category: str) -> str | None:
    sessions = (
        store.collection("lineupSessions")
        .where("status", "==", "active")
        .where("category", "array-contains", category)
        .order_by("createdAt")
        .limit(1)
        .get()
    )
    return sessions[0].id if sessions else None


def join_lineup(
    store: DocumentStore,
    user_id: str,
    category: str,
    *,
    gender: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Join the active lineup for ``category`` or open a new one.

    Two users opening a category at the same moment can each create a
    session; the later one simply stays small.
    """
    now = now or store.now()
    eligible, wait = check_user_eligibility(store, user_id, now)
    if not eligible:
        raise NotEligible(wait)

    if gender is None:
        gender = store.get(doc_path("users", user_id)).get("gender")
    gender = _normalize_gender(gender)

    session_id = _find_active_session(store, category)
    if session_id:
        def _join(txn) -> bool:
            session = txn.get(session_path(session_id))
            if not session.exists or session.get("status") != "active":
                return False
            join = txn.get(join_record_path(session_id, user_id))
            if join.exists:
                if join.get("completed"):
                    raise AlreadyCompleted(f"{user_id} already had a turn in {session_id}")
                return True
            txn.set(
                join_record_path(session_id, user_id),
                {"gender": gender, "joinedAt": SERVER_TIMESTAMP, "completed": False},
            )
            return True

        if store.run_transaction(_join):
            logger.info("[LINEUP] user=%s joined session=%s", user_id, session_id)
            return {"sessionId": session_id, "created": False, "gender": gender}

    session_id = store.new_id()
    batch = store.batch()
    batch.set(
        session_path(session_id),
        {
            "status": "active",
            "category": [category],
            "createdAt": SERVER_TIMESTAMP,
            "primaryGender": gender,
            current_field(gender): user_id,
            rotation_time_field(gender): SERVER_TIMESTAMP,
            "currentContestantId": user_id,
            "lastRotationTime": SERVER_TIMESTAMP,
        },
    )
    batch.set(
        join_record_path(session_id, user_id),
        {"gender": gender, "joinedAt": SERVER_TIMESTAMP, "completed": False},
    )
    batch.commit()
    logger.info("[LINEUP] user=%s opened session=%s category=%s", user_id, session_id, category)
    return {"sessionId": session_id, "created": True, "gender": gender}


def like_path(from_user: str, to_user: str) -> str:
    return doc_path("likes", f"{from_user}_{to_user}")


def like_record(from_user: str, to_user: str, session_id: str | None) -> dict[str, Any]:
    return {
        "fromUserId": from_user,
        "toUserId": to_user,
        "sessionId": session_id,
        "status": "pending",
        "source": "lineup",
        "createdAt": SERVER_TIMESTAMP,
    }


def record_action(store: DocumentStore, session_id: str, from_user: str, to_user: str, action: str) -> str:
    counter = ACTION_COUNTERS.get(action)
    if counter is None:
        raise LineupError(f"Unsupported action: {action}")
    if not store.get(session_path(session_id)).exists:
        raise SessionNotFound(session_id)

    action_id = store.new_id()
    batch = store.batch()
    batch.set(
        doc_path("lineupSessions", session_id, "actions", action_id),
        {"fromUserId": from_user, "toUserId": to_user, "action": action, "timestamp": SERVER_TIMESTAMP},
    )
    batch.set(
        doc_path("lineupSessions", session_id, "spotlightStats", to_user),
        {counter: Increment(1), "lastUpdated": SERVER_TIMESTAMP},
        merge=True,
    )
    if action == "like":
        batch.set(like_path(from_user, to_user), like_record(from_user, to_user, session_id))
    batch.commit()
    return action_id


def submit_rotation_request(
    store: DocumentStore,
    session_id: str,
    user_id: str,
    gender: str,
    now: datetime | None = None,
) -> str:
    now = now or store.now()
    request_id = store.new_id()
    store.set(
        doc_path("rotationRequests", request_id),
        {
            "sessionId": session_id,
            "userId": user_id,
            "gender": _normalize_gender(gender),
            "requestTime": now,
            "status": "pending",
        },
    )
    return request_id


def spotlight_state(store: DocumentStore, session_id: str, now: datetime | None = None) -> dict[str, Any] | None:
    now = now or store.now()
    session = store.get(session_path(session_id))
    if not session.exists:
        return None
    data = session.data or {}
    tracks = {}
    for gender in GENDERS:
        tracks[gender] = {
            "currentContestantId": data.get(current_field(gender)),
            "remainingSeconds": remaining_spotlight_seconds(data, gender, now) if data.get(current_field(gender)) else 0,
        }
    latest = store.get(doc_path("lineupSessions", session_id, "rotationEvents", "latest"))
    return {
        "sessionId": session_id,
        "status": data.get("status"),
        "tracks": tracks,
        "latestRotation": latest.to_dict(),
    }
