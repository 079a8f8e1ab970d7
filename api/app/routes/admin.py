from typing import Any

from fastapi import APIRouter, Depends, Header

from ..config import ADMIN_TOKEN
from ..deps import store_dependency, validate_admin_token
from ..services.elimination import run_elimination_job
from ..services.lineup_rotation import process_rotation_requests, run_rotation_job
from ..store import DocumentStore

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def admin_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "admin"}


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    validate_admin_token(x_admin_token, ADMIN_TOKEN)


@router.post("/admin/lineup/rotate", dependencies=[Depends(require_admin)])
def trigger_rotation(store: DocumentStore = Depends(store_dependency)) -> dict[str, Any]:
    return {"job": "rotation", "summary": run_rotation_job(store)}


@router.post("/admin/lineup/requests", dependencies=[Depends(require_admin)])
def trigger_request_processing(store: DocumentStore = Depends(store_dependency)) -> dict[str, Any]:
    return {"job": "requests", "summary": process_rotation_requests(store)}


@router.post("/admin/lineup/eliminate", dependencies=[Depends(require_admin)])
def trigger_elimination(store: DocumentStore = Depends(store_dependency)) -> dict[str, Any]:
    return {"job": "elimination", "summary": run_elimination_job(store)}
