"""Spotlight rotation for lineup sessions.

Each session runs two independent tracks (male and female). The timer job,
client rotation requests and the elimination job all advance a track through
``rotate_contestant`` or ``apply_rotation`` so there is one rotation rule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ..config import (
    ROTATION_REQUEST_BATCH_SIZE,
    ROTATION_REQUEST_MAX_AGE_SECONDS,
    SPOTLIGHT_DURATION_SECONDS,
    TURN_NOTIFICATION_MESSAGE,
)
from ..store import SERVER_TIMESTAMP, DocumentStore, StoreError, doc_path
from .events import NOTIFICATION_LINEUP_TURN, enqueue_notification, write_rotation_event

logger = logging.getLogger(__name__)

GENDERS = ("male", "female")

ROTATED = "rotated"
NOT_DUE = "not_due"
NO_ALTERNATIVE = "no_alternative"
EMPTY = "empty"
STALE = "stale"
INACTIVE = "inactive"
NOT_FOUND = "not_found"

JOB_ERRORS = (StoreError, SQLAlchemyError, ValueError, TypeError)


@dataclass
class RotationResult:
    outcome: str
    session_id: str
    gender: str
    previous_contestant_id: str | None = None
    new_contestant_id: str | None = None
    rotation_id: str | None = None

    @property
    def rotated(self) -> bool:
        return self.outcome == ROTATED


def current_field(gender: str) -> str:
    return f"current{gender.capitalize()}ContestantId"


def rotation_time_field(gender: str) -> str:
    return f"{gender}LastRotationTime"


def session_path(session_id: str) -> str:
    return doc_path("lineupSessions", session_id)


def join_record_path(session_id: str, user_id: str) -> str:
    return doc_path("lineupSessions", session_id, "contestantJoinTimes", user_id)


def next_contestant(ordered: list[str], current: str | None) -> str | None:
    """FIFO successor of ``current``, wrapping to the front.

    Returns None when the successor would be ``current`` itself.
    """
    if not ordered:
        return None
    if current is None or current not in ordered:
        nxt = ordered[0]
    else:
        nxt = ordered[(ordered.index(current) + 1) % len(ordered)]
    return None if nxt == current else nxt


def ordered_contestants(reader, session_id: str, gender: str) -> list[str]:
    """Not-completed contestants of one gender, earliest join first."""
    docs = (
        reader.collection(doc_path("lineupSessions", session_id, "contestantJoinTimes"))
        .where("gender", "==", gender)
        .where("completed", "==", False)
        .order_by("joinedAt")
        .get()
    )
    return [d.id for d in docs]


def apply_rotation(
    txn,
    session_id: str,
    session_data: dict[str, Any],
    gender: str,
    outgoing_id: str | None,
    incoming_id: str | None,
    *,
    reason: str,
    complete_outgoing: bool = True,
) -> str | None:
    """Stage a rotation on ``txn``; returns the rotation event id when an
    incoming contestant takes the spotlight."""
    if incoming_id is not None:
        updates: dict[str, Any] = {
            current_field(gender): incoming_id,
            rotation_time_field(gender): SERVER_TIMESTAMP,
        }
        primary = session_data.get("primaryGender") or "male"
        legacy_current = session_data.get("currentContestantId")
        if primary == gender or (outgoing_id is not None and legacy_current == outgoing_id):
            updates["currentContestantId"] = incoming_id
            updates["lastRotationTime"] = SERVER_TIMESTAMP
        txn.update(session_path(session_id), updates)

    if outgoing_id and complete_outgoing:
        txn.set(
            join_record_path(session_id, outgoing_id),
            {"completed": True, "completedAt": SERVER_TIMESTAMP},
            merge=True,
        )

    if incoming_id is None:
        return None

    rotation_id = write_rotation_event(
        txn,
        session_id=session_id,
        previous_contestant_id=outgoing_id,
        new_contestant_id=incoming_id,
        gender=gender,
        reason=reason,
    )
    enqueue_notification(
        txn,
        user_id=incoming_id,
        notification_type=NOTIFICATION_LINEUP_TURN,
        message=TURN_NOTIFICATION_MESSAGE,
        data={"sessionId": session_id},
    )
    return rotation_id


def rotate_contestant(
    store: DocumentStore,
    session_id: str,
    gender: str,
    expected_current_id: str | None,
    *,
    now: datetime | None = None,
    reason: str = "timer",
    force: bool = False,
) -> RotationResult:
    """Advance one gender track if it still shows ``expected_current_id``.

    Without ``force`` the spotlight must have run its full duration. A track
    that was never stamped gets stamped now and waits a full period. A
    current contestant whose turn is already completed (eliminated) is
    replaced as soon as anyone else is waiting.
    """
    if gender not in GENDERS:
        raise ValueError(f"Unknown gender track: {gender}")
    now = now or store.now()

    def _rotate(txn) -> RotationResult:
        snap = txn.get(session_path(session_id))
        if not snap.exists:
            return RotationResult(NOT_FOUND, session_id, gender)
        data = snap.data or {}
        current = data.get(current_field(gender))
        if data.get("status") != "active":
            return RotationResult(INACTIVE, session_id, gender, current)
        if current != expected_current_id:
            return RotationResult(STALE, session_id, gender, current)

        finished = bool(current) and txn.get(join_record_path(session_id, current)).get("completed") is True
        if current and not force and not finished:
            last = data.get(rotation_time_field(gender))
            if last is None:
                txn.update(session_path(session_id), {rotation_time_field(gender): SERVER_TIMESTAMP})
                return RotationResult(NOT_DUE, session_id, gender, current)
            if now - last < timedelta(seconds=SPOTLIGHT_DURATION_SECONDS):
                return RotationResult(NOT_DUE, session_id, gender, current)

        incoming = next_contestant(ordered_contestants(txn, session_id, gender), current)
        if incoming is None:
            return RotationResult(NO_ALTERNATIVE if current else EMPTY, session_id, gender, current)

        rotation_id = apply_rotation(
            txn, session_id, data, gender, current, incoming, reason=reason, complete_outgoing=not finished
        )
        return RotationResult(ROTATED, session_id, gender, current, incoming, rotation_id)

    result = store.run_transaction(_rotate)
    if result.rotated:
        logger.info(
            "[ROTATION] session=%s gender=%s %s -> %s reason=%s",
            session_id,
            gender,
            result.previous_contestant_id,
            result.new_contestant_id,
            reason,
        )
    return result


def auto_select_contestant(store: DocumentStore, session_id: str, gender: str, *, now: datetime | None = None) -> RotationResult:
    return rotate_contestant(store, session_id, gender, None, now=now, reason="auto_select", force=True)


def run_rotation_job(store: DocumentStore, now: datetime | None = None) -> dict[str, int]:
    now = now or store.now()
    sessions = store.collection("lineupSessions").where("status", "==", "active").get()
    summary = {"sessions": len(sessions), "rotated": 0, "autoSelected": 0, "notDue": 0, "noAlternative": 0, "empty": 0, "skipped": 0, "errors": 0}

    for session in sessions:
        for gender in GENDERS:
            current = session.get(current_field(gender))
            try:
                if current:
                    result = rotate_contestant(store, session.id, gender, current, now=now, reason="timer")
                else:
                    result = auto_select_contestant(store, session.id, gender, now=now)
            except JOB_ERRORS:
                logger.exception("[ROTATION] session=%s gender=%s failed", session.id, gender)
                summary["errors"] += 1
                continue

            if result.rotated:
                summary["rotated" if current else "autoSelected"] += 1
            elif result.outcome == NOT_DUE:
                summary["notDue"] += 1
            elif result.outcome == NO_ALTERNATIVE:
                summary["noAlternative"] += 1
            elif result.outcome == EMPTY:
                summary["empty"] += 1
            else:
                summary["skipped"] += 1

    logger.info("[ROTATION] job summary=%s", summary)
    return summary


def _finish_request(store: DocumentStore, path: str, status: str, error: str | None = None) -> None:
    fields: dict[str, Any] = {"status": status, "processedAt": SERVER_TIMESTAMP}
    if error:
        fields["error"] = error
    store.update(path, fields)


def process_rotation_requests(store: DocumentStore, now: datetime | None = None) -> dict[str, int]:
    """Honor pending client rotation requests from the last few minutes."""
    now = now or store.now()
    cutoff = now - timedelta(seconds=ROTATION_REQUEST_MAX_AGE_SECONDS)
    requests = (
        store.collection("rotationRequests")
        .where("status", "==", "pending")
        .where("requestTime", ">=", cutoff)
        .order_by("requestTime")
        .limit(ROTATION_REQUEST_BATCH_SIZE)
        .get()
    )
    summary = {"processed": 0, "completed": 0, "failed": 0, "invalid": 0}

    for req in requests:
        session_id = str(req.get("sessionId") or "")
        user_id = req.get("userId")
        gender = str(req.get("gender") or "").lower()
        summary["processed"] += 1
        try:
            session = store.get(session_path(session_id)) if session_id else None
            if session is None or not session.exists:
                status, error = "failed", "Session not found"
            elif gender not in GENDERS or session.get(current_field(gender)) != user_id:
                status, error = "invalid", "Not current contestant"
            else:
                result = rotate_contestant(store, session_id, gender, user_id, now=now, reason="request", force=True)
                status, error = ("completed", None) if result.rotated else ("failed", "Rotation failed")
        except JOB_ERRORS as exc:
            logger.exception("[ROTATION] request=%s failed", req.id)
            status, error = "failed", str(exc) or "Rotation failed"

        try:
            _finish_request(store, req.path, status, error)
        except JOB_ERRORS:
            logger.exception("[ROTATION] could not record outcome for request=%s", req.id)
        summary[status] += 1

    if summary["processed"]:
        logger.info("[ROTATION] requests summary=%s", summary)
    return summary
