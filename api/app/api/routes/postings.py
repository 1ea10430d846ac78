import logging

from fastapi import APIRouter, Depends
from opentelemetry import trace

from app.api.deps import authorize, repository_http_error
from app.core.auth import Principal
from app.core.security import get_human_principal
from app.schemas.postings import PostingSettlementOut, SettlementUpdateRequest
from app.services.errors import RepositoryError
from app.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@router.get("/job-postings/{posting_id}", response_model=PostingSettlementOut)
async def get_job_posting(
    posting_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PostingSettlementOut:
    return await _get_posting("job_posting", posting_id, principal, repository)


@router.put("/job-postings/{posting_id}", response_model=PostingSettlementOut)
async def update_job_posting_settlement(
    posting_id: int,
    payload: SettlementUpdateRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PostingSettlementOut:
    return await _update_settlement("job_posting", posting_id, payload, principal, repository)


@router.get("/job-seekings/{posting_id}", response_model=PostingSettlementOut)
async def get_job_seeking(
    posting_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PostingSettlementOut:
    return await _get_posting("job_seeking", posting_id, principal, repository)


@router.put("/job-seekings/{posting_id}", response_model=PostingSettlementOut)
async def update_job_seeking_settlement(
    posting_id: int,
    payload: SettlementUpdateRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> PostingSettlementOut:
    return await _update_settlement("job_seeking", posting_id, payload, principal, repository)


async def _get_posting(kind: str, posting_id: int, principal: Principal, repository) -> PostingSettlementOut:
    authorize(principal, "matching:read")
    try:
        row = await repository.get_posting(kind=kind, posting_id=posting_id)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return PostingSettlementOut(**row)


async def _update_settlement(
    kind: str,
    posting_id: int,
    payload: SettlementUpdateRequest,
    principal: Principal,
    repository,
) -> PostingSettlementOut:
    authorize(principal, "settlement:write")

    with tracer.start_as_current_span("settlement.update") as span:
        span.set_attribute("posting.kind", kind)
        span.set_attribute("posting.id", posting_id)
        try:
            row = await repository.update_posting_settlement(
                kind=kind,
                posting_id=posting_id,
                settlement_status=payload.settlement_status,
                settlement_amount=payload.settlement_amount,
                settlement_memo=payload.settlement_memo,
                actor_id=principal.actor_id,
            )
        except RepositoryError as exc:
            raise repository_http_error(exc) from exc

    logger.info(
        "settlement updated kind=%s id=%s status=%s amount=%s actor=%s",
        kind,
        posting_id,
        row["settlement_status"],
        row["settlement_amount"],
        principal.actor_id,
    )
    return PostingSettlementOut(**row)
