from fastapi import APIRouter, Depends

from app.api.deps import authorize, repository_http_error
from app.core.security import get_human_principal
from app.schemas.postings import SettlementStatsOut
from app.services.dashboard import collect_settlement_stats
from app.services.errors import RepositoryError
from app.services.repository import get_repository

router = APIRouter()


@router.get("/stats", response_model=SettlementStatsOut)
async def settlement_stats(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> SettlementStatsOut:
    authorize(principal, "dashboard:read")
    try:
        stats = await collect_settlement_stats(repository)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return SettlementStatsOut(**stats)
