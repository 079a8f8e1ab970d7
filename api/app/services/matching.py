from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..config import MATCH_RESULTS_LIMIT, SEARCH_SESSION_MAX_AGE_SECONDS
from ..store import DocumentStore, doc_path
from .compatibility import score

logger = logging.getLogger(__name__)


@dataclass
class MatchCandidate:
    id: str
    display_name: str
    age_range: str
    photo_url: str
    match_percentage: int
    scores: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "ageRange": self.age_range,
            "photoURL": self.photo_url,
            "matchPercentage": self.match_percentage,
            "scores": dict(self.scores),
        }


def _normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def opposite_gender(value: Any) -> str | None:
    g = _normalize_gender(value)
    if g == "male":
        return "female"
    if g == "female":
        return "male"
    return None


def rank_candidates(candidates: list[MatchCandidate], self_id: str, limit: int = MATCH_RESULTS_LIMIT) -> list[MatchCandidate]:
    seen: set[str] = set()
    unique: list[MatchCandidate] = []
    for c in candidates:
        if c.id == self_id or c.id in seen:
            continue
        seen.add(c.id)
        unique.append(c)
    unique.sort(key=lambda c: c.match_percentage, reverse=True)
    return unique[:limit]


def searching_user_ids(store: DocumentStore, now: datetime, max_age_seconds: int = SEARCH_SESSION_MAX_AGE_SECONDS) -> list[str]:
    cutoff = now - timedelta(seconds=max_age_seconds)
    sessions = (
        store.collection("speedDatingSessions")
        .where("status", "==", "searching")
        .where("createdAt", ">", cutoff)
        .get()
    )
    return [str(s.get("userId")) for s in sessions if s.get("userId")]


def find_matches(
    store: DocumentStore,
    user_id: str,
    user_profile: dict[str, Any],
    now: datetime,
    *,
    rng: random.Random | None = None,
    limit: int = MATCH_RESULTS_LIMIT,
) -> list[MatchCandidate]:
    """Score every fresh opposite-gender searcher and keep the best ``limit``.

    Sync groups are not consulted here; every searching session counts.
    """
    target = opposite_gender(user_profile.get("gender"))
    pool: list[MatchCandidate] = []
    for uid in searching_user_ids(store, now):
        if uid == user_id:
            continue
        profile = store.get(doc_path("users", uid))
        data = profile.data or {}
        if not profile.exists or not data.get("hasCompletedOnboarding"):
            continue
        if target and _normalize_gender(data.get("gender")) != target:
            continue
        result = score(user_profile, data, rng=rng)
        pool.append(
            MatchCandidate(
                id=uid,
                display_name=str(data.get("displayName") or "User"),
                age_range=str(data.get("ageRange") or "??"),
                photo_url=str(data.get("photoURL") or ""),
                match_percentage=result.match_percentage,
                scores=result.to_dict()["scores"],
            )
        )
    ranked = rank_candidates(pool, user_id, limit)
    logger.info("[MATCH] user=%s pool=%s returned=%s", user_id, len(pool), len(ranked))
    return ranked
