from fastapi import APIRouter, FastAPI

from .admin import router as admin_router, scaffold_router as admin_scaffold_router
from .lineup import router as lineup_router, scaffold_router as lineup_scaffold_router
from .speed_dating import router as speed_dating_router, scaffold_router as speed_dating_scaffold_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(speed_dating_router, tags=["speed-dating"])
    app.include_router(lineup_router, tags=["lineup"])
    app.include_router(admin_router, tags=["admin"])

    app.include_router(speed_dating_scaffold_router, prefix="/_scaffold/speed-dating", tags=["scaffold-speed-dating"])
    app.include_router(lineup_scaffold_router, prefix="/_scaffold/lineup", tags=["scaffold-lineup"])
    app.include_router(admin_scaffold_router, prefix="/_scaffold/admin", tags=["scaffold-admin"])


__all__ = ["include_modular_routers", "APIRouter"]
