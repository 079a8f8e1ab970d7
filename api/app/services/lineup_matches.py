"""Match selection after a lineup spotlight.

Likes received while in the spotlight become the contestant's match list.
Confirming one likes back when needed and opens a permanent chat in
``matches``; dismissing one takes it off the list.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..config import LINEUP_MATCH_NOTIFICATION_MESSAGE, LINEUP_MATCH_WELCOME_MESSAGE
from ..store import SERVER_TIMESTAMP, DocumentStore, doc_path
from .compatibility import score
from .events import NOTIFICATION_LINEUP_MATCH, enqueue_notification
from .lineup import LineupError, like_path, like_record

logger = logging.getLogger(__name__)


class NoIncomingLike(LineupError):
    pass


@dataclass
class LineupMatch:
    user_id: str
    display_name: str
    photo_url: str
    match_percentage: int
    liked_at: datetime | None
    is_mutual: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "displayName": self.display_name,
            "photoURL": self.photo_url,
            "matchPercentage": self.match_percentage,
            "likedAt": self.liked_at.isoformat() if self.liked_at else None,
            "isMutualMatch": self.is_mutual,
        }


def lineup_match_id(user_a: str, user_b: str) -> str:
    first, second = sorted((user_a, user_b))
    return f"lineup_{first}_{second}"


def check_for_match(store: DocumentStore, user_id: str, liked_user_id: str) -> bool:
    """True when ``liked_user_id`` already liked ``user_id``."""
    return store.get(like_path(liked_user_id, user_id)).exists


def user_matches(store: DocumentStore, user_id: str, *, rng: random.Random | None = None) -> list[LineupMatch]:
    me = store.get(doc_path("users", user_id)).data or {}
    likes = store.collection("likes").where("toUserId", "==", user_id).where("status", "==", "pending").get()

    out: list[LineupMatch] = []
    for like in likes:
        from_id = str(like.get("fromUserId") or "")
        profile = store.get(doc_path("users", from_id)) if from_id else None
        if profile is None or not profile.exists:
            continue
        data = profile.data or {}
        out.append(
            LineupMatch(
                user_id=from_id,
                display_name=str(data.get("displayName") or "User"),
                photo_url=str(data.get("photoURL") or ""),
                match_percentage=score(me, data, rng=rng).match_percentage,
                liked_at=like.get("createdAt"),
                is_mutual=store.get(like_path(user_id, from_id)).exists,
            )
        )
    out.sort(key=lambda m: m.match_percentage, reverse=True)
    logger.info("[LINEUP_MATCH] user=%s incoming=%s mutual=%s", user_id, len(out), sum(m.is_mutual for m in out))
    return out


def find_existing_chat(store: DocumentStore, user_a: str, user_b: str) -> str | None:
    for match in store.collection("matches").where("users", "array-contains", user_a).get():
        if user_b in (match.get("users") or []):
            return match.id
    return None


def _chat_profile(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "displayName": data.get("displayName") or "User",
        "photoURL": data.get("photoURL") or "",
        "gender": data.get("gender") or "",
    }


def confirm_match(store: DocumentStore, user_id: str, match_user_id: str, *, source: str = "lineup") -> dict[str, Any]:
    """Open a chat with someone who liked ``user_id``; reuses any existing one."""
    if user_id == match_user_id:
        raise LineupError("Cannot match with yourself")
    existing = find_existing_chat(store, user_id, match_user_id)
    if existing:
        return {"matchId": existing, "created": False}

    me = store.get(doc_path("users", user_id))
    other = store.get(doc_path("users", match_user_id))
    if not me.exists or not other.exists:
        raise LineupError("One or both users not found")
    my_name = str(me.get("displayName") or "User")
    other_name = str(other.get("displayName") or "User")

    match_id = lineup_match_id(user_id, match_user_id)
    match_path = doc_path("matches", match_id)

    def _create(txn) -> bool:
        if txn.get(match_path).exists:
            return False
        theirs = txn.get(like_path(match_user_id, user_id))
        if not theirs.exists:
            raise NoIncomingLike(f"{match_user_id} has not liked {user_id}")
        mine = txn.get(like_path(user_id, match_user_id))
        if mine.exists:
            txn.update(mine.path, {"status": "matched"})
        else:
            txn.set(mine.path, {**like_record(user_id, match_user_id, theirs.get("sessionId")), "status": "matched"})
        txn.update(theirs.path, {"status": "matched"})

        txn.set(
            match_path,
            {
                "users": [user_id, match_user_id],
                "userProfiles": {user_id: _chat_profile(me.data or {}), match_user_id: _chat_profile(other.data or {})},
                "status": "permanent",
                "source": source,
                "sessionId": theirs.get("sessionId"),
                "createdAt": SERVER_TIMESTAMP,
                "lastMessageTime": SERVER_TIMESTAMP,
                "unreadCount": {user_id: 0, match_user_id: 0},
            },
        )
        txn.set(
            doc_path(match_path, "messages", store.new_id()),
            {"text": LINEUP_MATCH_WELCOME_MESSAGE, "senderId": "system", "createdAt": SERVER_TIMESTAMP, "status": "sent"},
        )
        for uid, partner_id, partner_name in ((user_id, match_user_id, other_name), (match_user_id, user_id, my_name)):
            enqueue_notification(
                txn,
                user_id=uid,
                notification_type=NOTIFICATION_LINEUP_MATCH,
                message=LINEUP_MATCH_NOTIFICATION_MESSAGE.format(name=partner_name),
                data={"matchUserId": partner_id, "matchId": match_id},
            )
        return True

    created = store.run_transaction(_create)
    logger.info("[LINEUP_MATCH] %s + %s -> match=%s created=%s", user_id, match_user_id, match_id, created)
    return {"matchId": match_id, "created": created}


def dismiss_match(store: DocumentStore, user_id: str, from_user_id: str) -> bool:
    path = like_path(from_user_id, user_id)
    like = store.get(path)
    if not like.exists or like.get("status") != "pending":
        return False
    store.update(path, {"status": "dismissed"})
    return True
