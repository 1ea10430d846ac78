import logging

from fastapi import APIRouter, Depends, Query, Response, status as http_status

from app.api.deps import authorize, repository_http_error
from app.core.auth import Principal
from app.core.security import get_human_principal
from app.schemas.memos import MemoEntityType, MemoOut, MemoWriteRequest
from app.services.errors import RepositoryError
from app.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/matchings/{entity_id}/memos", response_model=MemoOut, status_code=http_status.HTTP_201_CREATED)
async def add_matching_memo(
    entity_id: int,
    payload: MemoWriteRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MemoOut:
    return await _add_memo("matching", entity_id, payload, principal, repository)


@router.get("/matchings/{entity_id}/memos", response_model=list[MemoOut])
async def list_matching_memos(
    entity_id: int,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[MemoOut]:
    return await _list_memos("matching", entity_id, limit, offset, principal, repository)


@router.put("/matchings/{entity_id}/memos/{memo_id}", response_model=MemoOut)
async def update_matching_memo(
    entity_id: int,
    memo_id: int,
    payload: MemoWriteRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MemoOut:
    return await _update_memo("matching", entity_id, memo_id, payload, principal, repository)


@router.delete("/matchings/{entity_id}/memos/{memo_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_matching_memo(
    entity_id: int,
    memo_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> Response:
    return await _delete_memo("matching", entity_id, memo_id, principal, repository)


@router.post("/customers/{entity_id}/memos", response_model=MemoOut, status_code=http_status.HTTP_201_CREATED)
async def add_customer_memo(
    entity_id: int,
    payload: MemoWriteRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MemoOut:
    return await _add_memo("customer", entity_id, payload, principal, repository)


@router.get("/customers/{entity_id}/memos", response_model=list[MemoOut])
async def list_customer_memos(
    entity_id: int,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> list[MemoOut]:
    return await _list_memos("customer", entity_id, limit, offset, principal, repository)


@router.put("/customers/{entity_id}/memos/{memo_id}", response_model=MemoOut)
async def update_customer_memo(
    entity_id: int,
    memo_id: int,
    payload: MemoWriteRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> MemoOut:
    return await _update_memo("customer", entity_id, memo_id, payload, principal, repository)


@router.delete("/customers/{entity_id}/memos/{memo_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_customer_memo(
    entity_id: int,
    memo_id: int,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> Response:
    return await _delete_memo("customer", entity_id, memo_id, principal, repository)


async def _add_memo(
    entity_type: MemoEntityType,
    entity_id: int,
    payload: MemoWriteRequest,
    principal: Principal,
    repository,
) -> MemoOut:
    authorize(principal, "matching:write")
    try:
        row = await repository.add_memo(
            entity_type=entity_type,
            entity_id=entity_id,
            memo_content=payload.memo_content,
            actor_id=principal.actor_id,
        )
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    logger.info("memo added id=%s entity=%s:%s actor=%s", row["id"], entity_type, entity_id, principal.actor_id)
    return MemoOut(**row)


async def _list_memos(
    entity_type: MemoEntityType,
    entity_id: int,
    limit: int,
    offset: int,
    principal: Principal,
    repository,
) -> list[MemoOut]:
    authorize(principal, "matching:read")
    try:
        rows = await repository.list_memos(entity_type=entity_type, entity_id=entity_id, limit=limit, offset=offset)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return [MemoOut(**row) for row in rows]


async def _update_memo(
    entity_type: MemoEntityType,
    entity_id: int,
    memo_id: int,
    payload: MemoWriteRequest,
    principal: Principal,
    repository,
) -> MemoOut:
    authorize(principal, "matching:write")
    try:
        row = await repository.update_memo(
            entity_type=entity_type,
            entity_id=entity_id,
            memo_id=memo_id,
            memo_content=payload.memo_content,
        )
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    return MemoOut(**row)


async def _delete_memo(
    entity_type: MemoEntityType,
    entity_id: int,
    memo_id: int,
    principal: Principal,
    repository,
) -> Response:
    authorize(principal, "matching:write")
    try:
        await repository.delete_memo(entity_type=entity_type, entity_id=entity_id, memo_id=memo_id)
    except RepositoryError as exc:
        raise repository_http_error(exc) from exc
    logger.info("memo deleted id=%s entity=%s:%s actor=%s", memo_id, entity_type, entity_id, principal.actor_id)
    return Response(status_code=http_status.HTTP_204_NO_CONTENT)
