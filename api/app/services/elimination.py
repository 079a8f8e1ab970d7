from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..config import ELIMINATION_COOLDOWN_HOURS, ELIMINATION_NOTIFICATION_MESSAGE, ELIMINATION_POP_THRESHOLD
from ..store import SERVER_TIMESTAMP, DocumentStore, Increment, doc_path
from .events import NOTIFICATION_LINEUP_ELIMINATION, enqueue_notification
from .lineup_rotation import (
    GENDERS,
    JOB_ERRORS,
    apply_rotation,
    current_field,
    join_record_path,
    next_contestant,
    ordered_contestants,
    session_path,
)

logger = logging.getLogger(__name__)


def elimination_candidates(store: DocumentStore, session_id: str, threshold: int = ELIMINATION_POP_THRESHOLD) -> list[str]:
    stats = store.collection(doc_path("lineupSessions", session_id, "spotlightStats")).where("popCount", ">=", threshold).get()
    out: list[str] = []
    for stat in stats:
        join = store.get(join_record_path(session_id, stat.id))
        if join.exists and not join.get("completed"):
            out.append(stat.id)
    return out


def eliminate_contestant(
    store: DocumentStore,
    session_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
    reason: str = "pop_threshold",
) -> bool:
    """Pop ``user_id`` out of the lineup. Returns False when there was nothing to do."""
    now = now or store.now()

    def _eliminate(txn) -> bool:
        session = txn.get(session_path(session_id))
        join = txn.get(join_record_path(session_id, user_id))
        if not session.exists or not join.exists or join.get("completed"):
            return False

        data = session.data or {}
        gender = join.get("gender")
        if gender in GENDERS and data.get(current_field(gender)) == user_id:
            incoming = next_contestant(ordered_contestants(txn, session_id, gender), user_id)
            apply_rotation(txn, session_id, data, gender, user_id, incoming, reason="elimination", complete_outgoing=False)

        txn.update(
            join_record_path(session_id, user_id),
            {"completed": True, "completedAt": SERVER_TIMESTAMP, "eliminatedAt": SERVER_TIMESTAMP},
        )
        txn.set(
            doc_path("userEliminations", user_id),
            {
                "eliminatedAt": now,
                "eligibleAt": now + timedelta(hours=ELIMINATION_COOLDOWN_HOURS),
                "sessionId": session_id,
                "reason": reason,
            },
        )
        enqueue_notification(
            txn,
            user_id=user_id,
            notification_type=NOTIFICATION_LINEUP_ELIMINATION,
            message=ELIMINATION_NOTIFICATION_MESSAGE,
            data={"sessionId": session_id},
        )
        txn.set(session_path(session_id), {"eliminatedCount": Increment(1)}, merge=True)
        return True

    eliminated = store.run_transaction(_eliminate)
    if eliminated:
        logger.info("[ELIMINATION] session=%s user=%s reason=%s", session_id, user_id, reason)
    return eliminated


def run_elimination_job(store: DocumentStore, now: datetime | None = None) -> dict[str, int]:
    now = now or store.now()
    sessions = store.collection("lineupSessions").where("status", "==", "active").get()
    summary = {"sessions": len(sessions), "eliminated": 0, "errors": 0}

    for session in sessions:
        try:
            candidates = elimination_candidates(store, session.id)
        except JOB_ERRORS:
            logger.exception("[ELIMINATION] session=%s scan failed", session.id)
            summary["errors"] += 1
            continue
        for user_id in candidates:
            try:
                if eliminate_contestant(store, session.id, user_id, now=now):
                    summary["eliminated"] += 1
            except JOB_ERRORS:
                logger.exception("[ELIMINATION] session=%s user=%s failed", session.id, user_id)
                summary["errors"] += 1

    logger.info("[ELIMINATION] job summary=%s", summary)
    return summary
