"""Live chat inside a lineup session.

All messages live under ``lineupSessions/{id}/messages``; who sees what is
decided on read. A spotlighted contestant sees everything sent by the
opposite gender. Everyone else sees the spotlight they are watching plus
the other people competing on that spotlight's side.
"""

from __future__ import annotations

from typing import Any

from ..config import LINEUP_MESSAGE_MAX_LENGTH
from ..store import SERVER_TIMESTAMP, DocumentStore, doc_path
from .lineup import LineupError, SessionNotFound
from .lineup_rotation import GENDERS, current_field, session_path
from .matching import opposite_gender

SYSTEM_SENDER = "system"


def _messages_path(session_id: str) -> str:
    return doc_path("lineupSessions", session_id, "messages")


def send_message(store: DocumentStore, session_id: str, sender_id: str, text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise LineupError("Message is empty")
    if len(text) > LINEUP_MESSAGE_MAX_LENGTH:
        raise LineupError("Message is too long")
    if not store.get(session_path(session_id)).exists:
        raise SessionNotFound(session_id)

    sender = store.get(doc_path("users", sender_id)).data or {}
    message_id = store.new_id()
    store.set(
        doc_path(_messages_path(session_id), message_id),
        {
            "senderId": sender_id,
            "senderName": sender.get("displayName") or "User",
            "senderPhoto": sender.get("photoURL") or "",
            "senderGender": str(sender.get("gender") or "").lower() or None,
            "text": text,
            "timestamp": SERVER_TIMESTAMP,
            "isRead": False,
        },
    )
    return message_id


class _GenderLookup:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._cache: dict[str, str | None] = {}

    def __call__(self, user_id: str | None, hint: Any = None) -> str | None:
        if hint:
            return str(hint).lower()
        if not user_id:
            return None
        if user_id not in self._cache:
            gender = self._store.get(doc_path("users", user_id)).get("gender")
            self._cache[user_id] = str(gender).lower() if gender else None
        return self._cache[user_id]


def visible_messages(store: DocumentStore, session_id: str, user_id: str) -> list[dict[str, Any]]:
    session = store.get(session_path(session_id))
    if not session.exists:
        raise SessionNotFound(session_id)
    data = session.data or {}
    gender_of = _GenderLookup(store)
    viewer_gender = gender_of(user_id)

    spotlights = {data.get(current_field(g)) for g in GENDERS} - {None}
    if user_id in spotlights:
        def _visible(sender_gender: str | None, sender_id: str) -> bool:
            return viewer_gender is None or (sender_gender is not None and sender_gender != viewer_gender)
    else:
        watched_gender = opposite_gender(viewer_gender)
        watched = data.get(current_field(watched_gender)) if watched_gender else data.get("currentContestantId")
        watched_side = gender_of(watched)

        def _visible(sender_gender: str | None, sender_id: str) -> bool:
            return sender_id == watched or (sender_gender is not None and sender_gender == watched_side)

    out: list[dict[str, Any]] = []
    for msg in store.collection(_messages_path(session_id)).order_by("timestamp").get():
        sender_id = str(msg.get("senderId") or "")
        if sender_id in (user_id, SYSTEM_SENDER) or _visible(gender_of(sender_id, msg.get("senderGender")), sender_id):
            out.append({"id": msg.id, **(msg.data or {})})
    return out
