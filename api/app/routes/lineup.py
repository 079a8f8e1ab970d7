from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..config import RL_LINEUP_ACTION_LIMIT, RL_ROTATION_REQUEST_LIMIT, RL_WINDOW_SECONDS
from ..deps import current_user_id, store_dependency
from ..schemas import (
    EligibilityResponse,
    JoinLineupRequest,
    LineupActionRequest,
    LineupMessageCreate,
    RotationRequestCreate,
)
from ..services import lineup as lineup_service
from ..services import lineup_chat, lineup_matches
from ..services.lineup import AlreadyCompleted, LineupError, NotEligible, SessionNotFound
from ..services.lineup_matches import NoIncomingLike
from ..services.rate_limit import rate_limit_dependency
from ..store import DocumentStore

router = APIRouter()
scaffold_router = APIRouter()

RL_LINEUP_ACTION = rate_limit_dependency("lineup_action", RL_LINEUP_ACTION_LIMIT, RL_WINDOW_SECONDS)
RL_ROTATION_REQUEST = rate_limit_dependency("rotation_request", RL_ROTATION_REQUEST_LIMIT, RL_WINDOW_SECONDS)


@scaffold_router.get("/health")
def lineup_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "lineup"}


@router.post("/lineup/join", dependencies=[RL_LINEUP_ACTION])
def join_lineup(
    payload: JoinLineupRequest,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    try:
        return lineup_service.join_lineup(store, user_id, payload.category, gender=payload.gender)
    except NotEligible as exc:
        raise HTTPException(
            status_code=403,
            detail={"message": str(exc), "seconds_remaining": exc.seconds_remaining},
        )
    except AlreadyCompleted as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except LineupError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/lineup/{session_id}/actions", dependencies=[RL_LINEUP_ACTION])
def record_action(
    session_id: str,
    payload: LineupActionRequest,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    if payload.to_user_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot act on yourself")
    try:
        action_id = lineup_service.record_action(store, session_id, user_id, payload.to_user_id, payload.action)
    except LineupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    out: dict[str, Any] = {"id": action_id, "action": payload.action}
    if payload.action == "like":
        out["isMatch"] = lineup_matches.check_for_match(store, user_id, payload.to_user_id)
    return out


@router.get("/lineup/matches")
def list_matches(
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    return {"matches": [m.to_dict() for m in lineup_matches.user_matches(store, user_id)]}


@router.post("/lineup/matches/{match_user_id}/confirm", dependencies=[RL_LINEUP_ACTION])
def confirm_match(
    match_user_id: str,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    try:
        return lineup_matches.confirm_match(store, user_id, match_user_id)
    except NoIncomingLike as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except LineupError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/lineup/matches/{match_user_id}/dismiss", dependencies=[RL_LINEUP_ACTION])
def dismiss_match(
    match_user_id: str,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    return {"dismissed": lineup_matches.dismiss_match(store, user_id, match_user_id)}


@router.post("/lineup/{session_id}/messages", dependencies=[RL_LINEUP_ACTION])
def send_message(
    session_id: str,
    payload: LineupMessageCreate,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    try:
        message_id = lineup_chat.send_message(store, session_id, user_id, payload.text)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    except LineupError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"id": message_id}


@router.get("/lineup/{session_id}/messages")
def list_messages(
    session_id: str,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    try:
        return {"messages": lineup_chat.visible_messages(store, session_id, user_id)}
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/lineup/{session_id}/rotation-requests", dependencies=[RL_ROTATION_REQUEST])
def request_rotation(
    session_id: str,
    payload: RotationRequestCreate,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> dict[str, Any]:
    request_id = lineup_service.submit_rotation_request(store, session_id, user_id, payload.gender)
    return {"id": request_id, "status": "pending"}


@router.get("/lineup/{session_id}/spotlight")
def get_spotlight(session_id: str, store: DocumentStore = Depends(store_dependency)) -> dict[str, Any]:
    state = lineup_service.spotlight_state(store, session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return state


@router.get("/lineup/eligibility", response_model=EligibilityResponse)
def get_eligibility(
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(store_dependency),
) -> EligibilityResponse:
    eligible, seconds_remaining = lineup_service.check_user_eligibility(store, user_id)
    return EligibilityResponse(eligible=eligible, seconds_remaining=seconds_remaining)
