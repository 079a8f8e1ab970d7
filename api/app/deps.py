from fastapi import Header, HTTPException

from .store import DocumentStore, get_store


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def parse_user_id(raw_user_id: str | None) -> str:
    value = (raw_user_id or "").strip()
    if not value:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    if "/" in value or len(value) > 128:
        raise HTTPException(status_code=400, detail="X-User-Id is not a valid user id")
    return value


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    return parse_user_id(x_user_id)


def store_dependency() -> DocumentStore:
    return get_store()
