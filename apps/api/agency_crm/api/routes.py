from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from agency_crm.core.auth import AuthUser, get_current_user
from agency_crm.core.config import get_settings
from agency_crm.core.rbac import resolve_permissions
from agency_crm.crm.api import routers as crm_routers
from agency_crm.metrics import generate_metrics_payload, metrics_content_type
from agency_crm.tables.api import routers as table_routers

router = APIRouter()
for crm_router in crm_routers:
    router.include_router(crm_router)
for table_router in table_routers:
    router.include_router(table_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    return {
        "sub": user.sub,
        "roles": user.roles,
        "team_id": user.team_id,
        "permissions": sorted(resolve_permissions(user.roles)),
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in resolve_permissions(user.roles):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
