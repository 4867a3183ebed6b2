from fastapi import APIRouter

from signaltrue.api.routes.health import router as health_router
from signaltrue.api.routes.projects import router as projects_router
from signaltrue.api.routes.attachments import router as attachments_router
from signaltrue.api.routes.internal import router as internal_router


def build_api_router(*, scanner_simulation_api_enabled: bool = False) -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(projects_router, tags=["projects"])
    api_router.include_router(attachments_router, tags=["attachments"])

    # test/dev only: runtime toggle of the simulated scanner verdict
    if scanner_simulation_api_enabled:
        api_router.include_router(internal_router, tags=["internal"])

    return api_router
