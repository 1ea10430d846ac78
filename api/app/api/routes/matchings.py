import logging

from fastapi import APIRouter, Depends, Query, status as http_status
from opentelemetry import trace

from app.api.deps import authorize, repository_http_error
from app.core.config import Settings, get_settings
from app.core.security import get_human_principal
from app.schemas.matchings import (
    AuditEventOut,
    FeePreviewOut,
    FeePreviewRequest,
    MatchingCancelRequest,
    MatchingCreateRequest,
    MatchingOut,
    MatchingStatus,
    MatchingUpdateRequest,
)
from app.services.errors import RepositoryError
from app.services.fees import calculate_fee_breakdown
from app.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@router.post("", response_model=MatchingOut, status_code=http_status.HTTP_201_CREATED)
async def create_matching(
    payload: MatchingCreateRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> MatchingOut:
    authorize(principal, "matching:write")

    mark_in_progress = payload.mark_postings_in_progress
    if mark_in_progress is None:
        mark_in_progress = settings.mark_postings_in_progress_on_match

    with tracer.start_as_current_span("matching.create") as span:
        span.set_attribute("matching.job_posting_id", payload.job_posting_id)
        span.set_attribute("matching.job_seeking_posting_id", payload.job_seeking_posting_id)
        try:
            row = await repository.create_matching(
                job_posting_id=payload.job_posting_id,
                job_seeking_posting_id=payload.job_seeking_posting_id,
                agreed_salary=payload.agreed_salary,
                employer_fee_rate=payload.employer_fee_rate,
                employee_fee_rate=payload.employee_fee_rate,
                mark_postings_in_progress=mark_in_progress,
                actor_id=principal.actor_id,
            )
        except RepositoryError as exc:
            raise repository_http_error(exc) from exc

    logger.info(
        "matching created id=%s job_posting_id=%s job_seeking_posting_id=%s actor=%s",
        row["id"],
        row["job_posting_id"],
        row["job_seeking_posting_id"],
        principal.actor_id,
    )
    return MatchingOut(**row)


@router.get("", response_model=list[MatchingOut])
async def list_matchings(
    matching_status: MatchingStatus | None = Query(default=None, alias="status"),
    job_posting_id: int | None = Query(default=None, gt=0),
    job_seeking_posting_id: int | None = Query(default=None, gt=0),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[MatchingOut]:
    authorize(principal, "matching:read")
    try:
        rows = await repository.list_matchings(
            status=matching_status,
            job_posting_id=job_posting_id,
            job_seeking_posting_id=job_seeking_posting_id,
            limit=limit,
            offset=offset,
        )
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return [MatchingOut(**row) for row in rows]


@router.post("/fee-preview", response_model=FeePreviewOut)
async def preview_fees(
    payload: FeePreviewRequest,
    principal=Depends(get_human_principal),
    settings: Settings = Depends(get_settings),
) -> FeePreviewOut:
    authorize(principal, "matching:read")
    try:
        breakdown = calculate_fee_breakdown(
            agreed_salary=payload.agreed_salary,
            employer_fee_rate=payload.employer_fee_rate,
            employee_fee_rate=payload.employee_fee_rate,
            places=settings.fee_rounding_places,
        )
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return FeePreviewOut(
        employer_fee_amount=breakdown.employer_fee_amount,
        employee_fee_amount=breakdown.employee_fee_amount,
        total_fee_amount=breakdown.total_fee_amount,
    )


@router.get("/{matching_id}", response_model=MatchingOut)
async def get_matching(
    matching_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MatchingOut:
    authorize(principal, "matching:read")
    try:
        row = await repository.get_matching(matching_id=matching_id)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return MatchingOut(**row)


@router.put("/{matching_id}", response_model=MatchingOut)
async def update_matching(
    matching_id: int,
    payload: MatchingUpdateRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MatchingOut:
    authorize(principal, "matching:write")

    with tracer.start_as_current_span("matching.update") as span:
        span.set_attribute("matching.id", matching_id)
        try:
            row = await repository.update_matching(
                matching_id=matching_id,
                agreed_salary=payload.agreed_salary,
                employer_fee_rate=payload.employer_fee_rate,
                employee_fee_rate=payload.employee_fee_rate,
                matching_status=payload.matching_status,
                cancellation_reason=payload.cancellation_reason,
                actor_id=principal.actor_id,
            )
        except RepositoryError as exc:
            raise repository_http_error(exc) from exc

    logger.info("matching updated id=%s status=%s actor=%s", matching_id, row["matching_status"], principal.actor_id)
    return MatchingOut(**row)


@router.post("/{matching_id}/complete", response_model=MatchingOut)
async def complete_matching(
    matching_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MatchingOut:
    authorize(principal, "matching:write")

    with tracer.start_as_current_span("matching.complete") as span:
        span.set_attribute("matching.id", matching_id)
        try:
            row = await repository.complete_matching(matching_id=matching_id, actor_id=principal.actor_id)
        except RepositoryError as exc:
            raise repository_http_error(exc) from exc

    logger.info(
        "matching completed id=%s employer_fee=%s employee_fee=%s actor=%s",
        matching_id,
        row["employer_fee_amount"],
        row["employee_fee_amount"],
        principal.actor_id,
    )
    return MatchingOut(**row)


@router.post("/{matching_id}/cancel", response_model=MatchingOut)
async def cancel_matching(
    matching_id: int,
    payload: MatchingCancelRequest | None = None,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MatchingOut:
    authorize(principal, "matching:write")
    reason = payload.cancellation_reason if payload is not None else None

    with tracer.start_as_current_span("matching.cancel") as span:
        span.set_attribute("matching.id", matching_id)
        try:
            row = await repository.cancel_matching(
                matching_id=matching_id,
                cancellation_reason=reason,
                actor_id=principal.actor_id,
            )
        except RepositoryError as exc:
            raise repository_http_error(exc) from exc

    logger.info("matching cancelled id=%s actor=%s", matching_id, principal.actor_id)
    return MatchingOut(**row)


@router.get("/{matching_id}/events", response_model=list[AuditEventOut])
async def list_matching_events(
    matching_id: int,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[AuditEventOut]:
    authorize(principal, "matching:read")
    try:
        await repository.get_matching(matching_id=matching_id)
        rows = await repository.list_events(
            entity_type="matching",
            entity_id=matching_id,
            limit=limit,
            offset=offset,
        )
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return [AuditEventOut(**row) for row in rows]
