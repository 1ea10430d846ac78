from fastapi import APIRouter, Depends

from app.api.deps import authorize, repository_http_error
from app.core.security import get_human_principal
from app.schemas.dashboard import DashboardStatsOut
from app.services.dashboard import collect_dashboard_stats
from app.services.errors import RepositoryError
from app.services.repository import get_repository

router = APIRouter()


@router.get("/stats", response_model=DashboardStatsOut)
async def dashboard_stats(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> DashboardStatsOut:
    authorize(principal, "dashboard:read")
    try:
        stats = await collect_dashboard_stats(repository)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return DashboardStatsOut(**stats)
