from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException

from ..config import RL_SPEED_DATING_LIMIT, RL_WINDOW_SECONDS
from ..deps import current_user_id
from ..schemas import RejectCandidateRequest, RejectionRequest, SearchRequest, SelectCandidateRequest
from ..services import speed_dating as speed_dating_service
from ..services.rate_limit import rate_limit_dependency
from ..services.speed_dating import REJECTION_REASONS, InvalidAction, ProfileNotFound, UnknownCandidate

router = APIRouter()
scaffold_router = APIRouter()

RL_SPEED_DATING = rate_limit_dependency("speed_dating", RL_SPEED_DATING_LIMIT, RL_WINDOW_SECONDS)


@scaffold_router.get("/health")
def speed_dating_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "speed_dating"}


def _run(user_id: str, action: Callable[..., dict[str, Any]], *args: Any, **kwargs: Any) -> dict[str, Any]:
    registry = speed_dating_service.registry
    coordinator = registry.get(user_id)
    try:
        snapshot = action(coordinator, *args, **kwargs)
    except (UnknownCandidate, ProfileNotFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidAction as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    registry.release(user_id, snapshot)
    return snapshot


@router.post("/speed-dating/search", dependencies=[RL_SPEED_DATING])
def start_search(payload: SearchRequest | None = None, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    preferences = payload.preferences if payload else None
    return _run(user_id, lambda c: c.start_search(preferences=preferences))


@router.post("/speed-dating/resume", dependencies=[RL_SPEED_DATING])
def resume_search(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.resume())


@router.get("/speed-dating/state")
def get_state(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.tick())


@router.get("/speed-dating/rejection-reasons")
def list_rejection_reasons() -> dict[str, Any]:
    return {"reasons": list(REJECTION_REASONS)}


@router.post("/speed-dating/select", dependencies=[RL_SPEED_DATING])
def select_candidate(payload: SelectCandidateRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.select(payload.candidate_id))


@router.post("/speed-dating/results", dependencies=[RL_SPEED_DATING])
def back_to_results(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.back_to_results())


@router.post("/speed-dating/reject", dependencies=[RL_SPEED_DATING])
def reject_candidate(payload: RejectCandidateRequest | None = None, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    candidate_id = payload.candidate_id if payload else None
    return _run(user_id, lambda c: c.reject_candidate(candidate_id))


@router.post("/speed-dating/connect", dependencies=[RL_SPEED_DATING])
def connect(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.connect())


@router.post("/speed-dating/continue", dependencies=[RL_SPEED_DATING])
def continue_permanently(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.continue_permanently())


@router.post("/speed-dating/end-chat", dependencies=[RL_SPEED_DATING])
def end_chat(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.end_chat())


@router.post("/speed-dating/rejection", dependencies=[RL_SPEED_DATING])
def submit_rejection(payload: RejectionRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.submit_rejection(payload.reason, payload.custom_review))


@router.post("/speed-dating/back", dependencies=[RL_SPEED_DATING])
def leave(user_id: str = Depends(current_user_id)) -> dict[str, Any]:
    return _run(user_id, lambda c: c.back())
