import uuid
from typing import Any

from ..store import SERVER_TIMESTAMP, doc_path

NOTIFICATION_LINEUP_TURN = "lineup_turn"
NOTIFICATION_LINEUP_ELIMINATION = "lineup_elimination"
NOTIFICATION_LINEUP_MATCH = "lineup_match"


def enqueue_notification(
    writer,
    *,
    user_id: str,
    notification_type: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> str:
    """Queue a notification through any writer (store, batch or transaction)."""
    notification_id = uuid.uuid4().hex[:20]
    writer.set(
        doc_path("notifications", notification_id),
        {
            "userId": user_id,
            "type": notification_type,
            "message": message,
            "data": data or {},
            "createdAt": SERVER_TIMESTAMP,
            "isRead": False,
        },
    )
    return notification_id


def write_rotation_event(
    writer,
    *,
    session_id: str,
    previous_contestant_id: str | None,
    new_contestant_id: str,
    gender: str,
    reason: str,
) -> str:
    rotation_id = uuid.uuid4().hex[:20]
    writer.set(
        doc_path("lineupSessions", session_id, "rotationEvents", "latest"),
        {
            "timestamp": SERVER_TIMESTAMP,
            "rotationId": rotation_id,
            "previousContestantId": previous_contestant_id,
            "newContestantId": new_contestant_id,
            "gender": gender,
            "reason": reason,
        },
    )
    return rotation_id
