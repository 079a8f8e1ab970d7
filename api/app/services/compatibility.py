from __future__ import annotations

import math
import random
import re
from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_SCORING_CONFIG

INTEREST_WEIGHTS: dict[str, float] = {
    "Travel": 2.0,
    "Cooking": 1.8,
    "Photography": 1.7,
    "Art": 1.9,
    "Musics": 1.8,
    "K-Pop": 1.9,
    "Video games": 1.7,
    "Sports": 1.8,
    "Running": 1.7,
    "Gym": 1.8,
    "Yoga": 1.7,
    "Table-Tennis": 1.8,
    "Extreme sports": 1.9,
    "Skin-care": 1.7,
    "Shopping": 1.6,
    "Karaoke": 1.8,
    "Drinks": 1.7,
    "House parties": 1.8,
    "Travels": 1.9,
    "Swimming": 1.7,
}

LIFESTYLE_CATEGORIES: dict[str, tuple[str, ...]] = {
    "family": ("Family", "Start a family", "Marriage", "Longterm", "Long term relationship"),
    "casual": ("Casual dating", "Connects", "Chat", "House parties", "Friendsplus"),
    "romance": ("Romance", "Vacation"),
    "active": ("Active", "Active partner", "Touring", "Surfing", "Extreme sports", "Running", "Gym"),
    "creative": ("Art", "Photography", "Cooking", "Skin-care"),
}

_AGE_RANGE_RE = re.compile(r"(\d+).*?(\d+)")
DEFAULT_AGE_RANGE = (25, 30)


@dataclass
class CompatibilityScore:
    match_percentage: int
    base_score: float
    age_score: float
    interest_score: float
    lifestyle_score: float
    location_score: float
    shared_interests: list[str] = field(default_factory=list)
    shared_lifestyle: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matchPercentage": self.match_percentage,
            "scores": {
                "interests": round_half_up(self.interest_score),
                "lifestyle": round_half_up(self.lifestyle_score),
                "age": round_half_up(self.age_score),
                "location": round_half_up(self.location_score),
            },
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def boost(score: float, factor: float = 1.4) -> int:
    return min(100, round_half_up(score * factor))


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def age_midpoint(age_range: Any) -> int:
    lo, hi = DEFAULT_AGE_RANGE
    m = _AGE_RANGE_RE.search(str(age_range or ""))
    if m:
        lo, hi = int(m.group(1)), int(m.group(2))
    return (lo + hi) // 2


def age_score(user_gender: Any, user_mid: int, candidate_mid: int) -> float:
    gender = str(user_gender or "").strip().lower()
    if gender == "female" and candidate_mid < user_mid:
        return max(70, 100 - (user_mid - candidate_mid) * 5)
    if gender == "male" and candidate_mid > user_mid + 5:
        return max(75, 100 - (candidate_mid - (user_mid + 5)) * 4)
    return 100


def interest_score(user_interests: list[str], candidate_interests: list[str], cfg: dict[str, Any]) -> float:
    if not user_interests:
        return float(cfg["NO_INTERESTS_SCORE"])
    total = 0.0
    shared = 0.0
    for interest in user_interests:
        weight = INTEREST_WEIGHTS.get(interest, 1.0)
        total += weight
        if interest in candidate_interests:
            shared += weight
    return boost(shared / total * 100, cfg["BOOST_FACTOR"])


def _populated_categories(tags: list[str]) -> set[str]:
    return {name for name, items in LIFESTYLE_CATEGORIES.items() if any(i in tags for i in items)}


def lifestyle_score(user_lifestyle: list[str], candidate_lifestyle: list[str], cfg: dict[str, Any]) -> tuple[float, int, int]:
    """Returns (score, categories matched, categories the user populates)."""
    user_cats = _populated_categories(user_lifestyle)
    cand_cats = _populated_categories(candidate_lifestyle)
    matched = len(user_cats & cand_cats)
    if not user_lifestyle:
        return float(cfg["NO_LIFESTYLE_SCORE"]), matched, len(user_cats)

    categorical = matched / len(user_cats) * 100 if user_cats else 60.0
    shared = [t for t in candidate_lifestyle if t in user_lifestyle]
    direct = len(shared) / len(user_lifestyle) * 100
    return boost(categorical * 0.6 + direct * 0.4, cfg["BOOST_FACTOR"]), matched, len(user_cats)


def location_score(user_location: Any, candidate_location: Any) -> float:
    if not user_location or not candidate_location:
        return 75
    u_parts = [p.strip().lower() for p in str(user_location).split(",")]
    c_parts = [p.strip().lower() for p in str(candidate_location).split(",")]
    if u_parts[0] == c_parts[0]:
        return 100
    u_region = u_parts[1] if len(u_parts) > 1 else ""
    c_region = c_parts[1] if len(c_parts) > 1 else ""
    if u_region and c_region and u_region == c_region:
        return 90
    return 75


def weighted_total(
    interest: float,
    lifestyle: float,
    age: float,
    location: float,
    bonus: float = 0.0,
    cfg: dict[str, Any] | None = None,
) -> float:
    cfg = cfg or DEFAULT_SCORING_CONFIG
    return (
        interest * cfg["INTEREST_W"]
        + lifestyle * cfg["LIFESTYLE_W"]
        + age * cfg["AGE_W"]
        + location * cfg["LOCATION_W"]
        + cfg["BASELINE_SCORE"] * cfg["BASELINE_W"]
        + bonus
    )


def _clamp_percentage(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def score(
    user: dict[str, Any],
    candidate: dict[str, Any],
    *,
    rng: random.Random | None = None,
    cfg: dict[str, Any] | None = None,
) -> CompatibilityScore:
    """Score ``candidate`` from ``user``'s point of view.

    ``base_score`` is the deterministic part. ``match_percentage`` adds a
    0..JITTER_MAX point jitter drawn from ``rng`` and is clamped to 0..100.
    """
    cfg = {**DEFAULT_SCORING_CONFIG, **(cfg or {})}

    u_interests = _str_list(user.get("interests"))
    c_interests = _str_list(candidate.get("interests"))
    u_lifestyle = _str_list(user.get("lifestyle"))
    c_lifestyle = _str_list(candidate.get("lifestyle"))

    age = age_score(user.get("gender"), age_midpoint(user.get("ageRange")), age_midpoint(candidate.get("ageRange")))
    interests = interest_score(u_interests, c_interests, cfg)
    lifestyle, cats_matched, cats_total = lifestyle_score(u_lifestyle, c_lifestyle, cfg)
    location = location_score(user.get("location"), candidate.get("location"))

    shared_interests = [i for i in c_interests if i in u_interests]
    shared_lifestyle = [t for t in c_lifestyle if t in u_lifestyle]

    bonus_points = float(cfg["BONUS_POINTS"])
    bonus = 0.0
    if len(shared_interests) >= 3:
        bonus += bonus_points
    if len(shared_lifestyle) >= 2:
        bonus += bonus_points
    if cats_total > 1 and cats_matched == cats_total:
        bonus += bonus_points

    base = weighted_total(interests, lifestyle, age, location, bonus, cfg)
    jitter = (rng or random).randint(0, int(cfg["JITTER_MAX"]))

    return CompatibilityScore(
        match_percentage=_clamp_percentage(base + jitter),
        base_score=base,
        age_score=age,
        interest_score=interests,
        lifestyle_score=lifestyle,
        location_score=location,
        shared_interests=shared_interests,
        shared_lifestyle=shared_lifestyle,
    )


def base_score(user: dict[str, Any], candidate: dict[str, Any], cfg: dict[str, Any] | None = None) -> int:
    """Deterministic composite without jitter, clamped and rounded."""
    return _clamp_percentage(score(user, candidate, rng=random.Random(0), cfg=cfg).base_score)
