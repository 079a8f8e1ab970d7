from typing import Any, Literal

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    preferences: dict[str, Any] | None = None


class SelectCandidateRequest(BaseModel):
    candidate_id: str


class RejectCandidateRequest(BaseModel):
    candidate_id: str | None = None


class RejectionRequest(BaseModel):
    reason: str | None = None
    custom_review: str | None = Field(default=None, max_length=1000)


class JoinLineupRequest(BaseModel):
    category: str = Field(min_length=1)
    gender: Literal["male", "female"] | None = None


class LineupActionRequest(BaseModel):
    to_user_id: str
    action: Literal["like", "pop", "view"]


class RotationRequestCreate(BaseModel):
    gender: Literal["male", "female"]


class EligibilityResponse(BaseModel):
    eligible: bool
    seconds_remaining: int


class LineupMessageCreate(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
