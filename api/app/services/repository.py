from __future__ import annotations

import json
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings
from app.services.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryInvalidTransitionError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)
from app.services.matching import (
    MATCHING_ACTIVE,
    MATCHING_CANCELLED,
    MATCHING_COMPLETED,
    MatchingTerms,
    plan_matching_update,
    price_matching,
    require_open_posting,
    terms_payload,
    validate_matching_transition,
)
from app.services.settlement import (
    POSTING_KINDS,
    SettleablePosting,
    SettlementChange,
    describe_posting,
    plan_settlement_change,
    posting_kind_spec,
    reconcile_posting,
)
from app.services.store import MEMO_ENTITY_TYPES, InMemoryRepository

__all__ = [
    "PostgresRepository",
    "RepositoryConflictError",
    "RepositoryError",
    "RepositoryInvalidTransitionError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "get_repository",
]

MATCHING_COLUMNS = """
  id,
  job_posting_id,
  job_seeking_posting_id,
  matched_at,
  agreed_salary,
  employer_fee_rate,
  employee_fee_rate,
  employer_fee_amount,
  employee_fee_amount,
  matching_status,
  cancellation_reason,
  cancelled_at,
  cancelled_by,
  completed_at,
  created_at,
  updated_at
"""

MEMO_COLUMNS = """
  id,
  entity_type,
  entity_id,
  memo_content,
  created_by,
  created_at,
  updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        fee_rounding_places: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.fee_rounding_places = max(0, fee_rounding_places)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_customer(self, *, customer_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select id, name, customer_type, created_at, updated_at
            from customers
            where id = $1 and deleted_at is null
            """,
            customer_id,
        )
        if not row:
            raise RepositoryNotFoundError("customer not found")
        return dict(row)

    async def count_customers(self) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval("select count(*) from customers where deleted_at is null")
        return int(value or 0)

    async def get_posting(self, *, kind: str, posting_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await self._fetch_posting_row(conn=pool, kind=kind, posting_id=posting_id)
        return describe_posting(kind, row, places=self.fee_rounding_places)

    async def summarize_postings(self, *, kind: str) -> list[dict[str, Any]]:
        kind_spec = posting_kind_spec(kind)
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select
              settlement_status,
              count(*) as posting_count,
              coalesce(sum(settlement_amount), 0) as amount_sum
            from {kind_spec.table}
            where deleted_at is null
            group by settlement_status
            """
        )
        return [dict(row) for row in rows]

    async def summarize_matchings(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              matching_status,
              count(*) as matching_count,
              coalesce(sum(employer_fee_amount), 0) as employer_fee_sum,
              coalesce(sum(employee_fee_amount), 0) as employee_fee_sum
            from matchings
            where deleted_at is null
            group by matching_status
            """
        )
        return [dict(row) for row in rows]

    async def create_matching(
        self,
        *,
        job_posting_id: int,
        job_seeking_posting_id: int,
        agreed_salary: Any,
        employer_fee_rate: Any,
        employee_fee_rate: Any,
        mark_postings_in_progress: bool,
        actor_id: str | None,
    ) -> dict[str, Any]:
        terms = price_matching(
            agreed_salary=agreed_salary,
            employer_fee_rate=employer_fee_rate,
            employee_fee_rate=employee_fee_rate,
            places=self.fee_rounding_places,
        )
        pool = await self._get_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    # Lock order is job posting first, then seeking, for every caller.
                    job_posting = await self._fetch_posting_row(
                        conn=conn, kind="job_posting", posting_id=job_posting_id, for_update=True
                    )
                    job_seeking = await self._fetch_posting_row(
                        conn=conn, kind="job_seeking", posting_id=job_seeking_posting_id, for_update=True
                    )
                    require_open_posting(job_posting, label="job posting")
                    require_open_posting(job_seeking, label="job seeking posting")

                    bound_row = await conn.fetchrow(
                        """
                        select id, job_posting_id, job_seeking_posting_id
                        from matchings
                        where matching_status = 'in_progress'
                          and deleted_at is null
                          and (job_posting_id = $1 or job_seeking_posting_id = $2)
                        limit 1
                        """,
                        job_posting_id,
                        job_seeking_posting_id,
                    )
                    if bound_row:
                        if bound_row["job_posting_id"] == job_posting_id:
                            raise RepositoryConflictError(f"job posting {job_posting_id} already has an active matching")
                        raise RepositoryConflictError(
                            f"job seeking posting {job_seeking_posting_id} already has an active matching"
                        )

                    row = await conn.fetchrow(
                        f"""
                        insert into matchings (
                          job_posting_id,
                          job_seeking_posting_id,
                          agreed_salary,
                          employer_fee_rate,
                          employee_fee_rate,
                          employer_fee_amount,
                          employee_fee_amount,
                          matching_status,
                          matched_at
                        )
                        values ($1, $2, $3, $4, $5, $6, $7, 'in_progress', now())
                        returning {MATCHING_COLUMNS}
                        """,
                        job_posting_id,
                        job_seeking_posting_id,
                        terms.agreed_salary,
                        terms.employer_fee_rate,
                        terms.employee_fee_rate,
                        terms.employer_fee_amount,
                        terms.employee_fee_amount,
                    )
                    if not row:
                        raise RepositoryConflictError("failed to create matching")

                    if mark_postings_in_progress:
                        for kind, posting in (("job_posting", job_posting), ("job_seeking", job_seeking)):
                            if posting["posting_status"] != "published":
                                continue
                            kind_spec = POSTING_KINDS[kind]
                            await conn.execute(
                                f"""
                                update {kind_spec.table}
                                set posting_status = 'in_progress', updated_at = now()
                                where id = $1
                                """,
                                posting["id"],
                            )
                            await self._record_event(
                                conn=conn,
                                entity_type=kind,
                                entity_id=posting["id"],
                                event_type="status_changed",
                                actor_id=actor_id,
                                payload={"from_status": "published", "to_status": "in_progress"},
                            )

                    matching = dict(row)
                    await self._record_event(
                        conn=conn,
                        entity_type="matching",
                        entity_id=matching["id"],
                        event_type="created",
                        actor_id=actor_id,
                        payload=terms_payload(matching),
                    )
                    return matching
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("posting already has an active matching") from exc

    async def get_matching(self, *, matching_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await self._fetch_matching_row(conn=pool, matching_id=matching_id)
        return dict(row)

    async def list_matchings(
        self,
        *,
        status: str | None,
        job_posting_id: int | None,
        job_seeking_posting_id: int | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        conditions: list[str] = ["deleted_at is null"]
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if status:
            conditions.append(f"matching_status = {bind(status)}")
        if job_posting_id is not None:
            conditions.append(f"job_posting_id = {bind(job_posting_id)}")
        if job_seeking_posting_id is not None:
            conditions.append(f"job_seeking_posting_id = {bind(job_seeking_posting_id)}")

        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await pool.fetch(
            f"""
            select {MATCHING_COLUMNS}
            from matchings
            where {" and ".join(conditions)}
            order by matched_at desc, id desc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [dict(row) for row in rows]

    async def update_matching(
        self,
        *,
        matching_id: int,
        agreed_salary: Any | None,
        employer_fee_rate: Any | None,
        employee_fee_rate: Any | None,
        matching_status: str | None,
        cancellation_reason: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                current = await self._fetch_matching_row(conn=conn, matching_id=matching_id, for_update=True)
                plan = plan_matching_update(
                    dict(current),
                    agreed_salary=agreed_salary,
                    employer_fee_rate=employer_fee_rate,
                    employee_fee_rate=employee_fee_rate,
                    matching_status=matching_status,
                    cancellation_reason=cancellation_reason,
                    places=self.fee_rounding_places,
                )
                matching = dict(current)
                if plan.terms_changed:
                    matching = await self._write_terms(conn=conn, matching_id=matching_id, terms=plan.terms)
                    await self._record_event(
                        conn=conn,
                        entity_type="matching",
                        entity_id=matching_id,
                        event_type="terms_updated",
                        actor_id=actor_id,
                        payload=terms_payload(matching),
                    )

                if plan.target_status == MATCHING_COMPLETED:
                    matching = await self._complete(conn=conn, matching=matching, actor_id=actor_id)
                elif plan.target_status == MATCHING_CANCELLED:
                    matching = await self._cancel(
                        conn=conn,
                        matching=matching,
                        cancellation_reason=plan.cancellation_reason,
                        actor_id=actor_id,
                    )
                return matching

    async def complete_matching(self, *, matching_id: int, actor_id: str | None) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                current = await self._fetch_matching_row(conn=conn, matching_id=matching_id, for_update=True)
                return await self._complete(conn=conn, matching=dict(current), actor_id=actor_id)

    async def cancel_matching(
        self,
        *,
        matching_id: int,
        cancellation_reason: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                current = await self._fetch_matching_row(conn=conn, matching_id=matching_id, for_update=True)
                return await self._cancel(
                    conn=conn,
                    matching=dict(current),
                    cancellation_reason=cancellation_reason,
                    actor_id=actor_id,
                )

    async def update_posting_settlement(
        self,
        *,
        kind: str,
        posting_id: int,
        settlement_status: str,
        settlement_amount: Any | None,
        settlement_memo: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await self._fetch_posting_row(conn=conn, kind=kind, posting_id=posting_id, for_update=True)
                change = plan_settlement_change(
                    SettleablePosting.from_row(kind, row),
                    settlement_status=settlement_status,
                    settlement_amount=settlement_amount,
                    settlement_memo=settlement_memo,
                )
                updated = await self._apply_settlement_change(
                    conn=conn,
                    kind=kind,
                    posting_id=posting_id,
                    change=change,
                    actor_id=actor_id,
                )
                return describe_posting(kind, updated, places=self.fee_rounding_places)

    async def add_memo(
        self,
        *,
        entity_type: str,
        entity_id: int,
        memo_content: str,
        actor_id: str | None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await self._require_memo_target(conn=conn, entity_type=entity_type, entity_id=entity_id)
                row = await conn.fetchrow(
                    f"""
                    insert into memos (entity_type, entity_id, memo_content, created_by)
                    values ($1, $2, $3, $4)
                    returning {MEMO_COLUMNS}
                    """,
                    entity_type,
                    entity_id,
                    memo_content,
                    actor_id,
                )
                if not row:
                    raise RepositoryConflictError("failed to create memo")
                return dict(row)

    async def list_memos(self, *, entity_type: str, entity_id: int, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        await self._require_memo_target(conn=pool, entity_type=entity_type, entity_id=entity_id)
        rows = await pool.fetch(
            f"""
            select {MEMO_COLUMNS}
            from memos
            where entity_type = $1 and entity_id = $2 and deleted_at is null
            order by created_at desc, id desc
            limit $3
            offset $4
            """,
            entity_type,
            entity_id,
            limit,
            offset,
        )
        return [dict(row) for row in rows]

    async def update_memo(
        self,
        *,
        entity_type: str,
        entity_id: int,
        memo_id: int,
        memo_content: str,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        await self._require_memo_target(conn=pool, entity_type=entity_type, entity_id=entity_id)
        row = await pool.fetchrow(
            f"""
            update memos
            set memo_content = $4, updated_at = now()
            where id = $1 and entity_type = $2 and entity_id = $3 and deleted_at is null
            returning {MEMO_COLUMNS}
            """,
            memo_id,
            entity_type,
            entity_id,
            memo_content,
        )
        if not row:
            raise RepositoryNotFoundError("memo not found")
        return dict(row)

    async def delete_memo(self, *, entity_type: str, entity_id: int, memo_id: int) -> None:
        pool = await self._get_pool()
        await self._require_memo_target(conn=pool, entity_type=entity_type, entity_id=entity_id)
        deleted_id = await pool.fetchval(
            """
            update memos
            set deleted_at = now()
            where id = $1 and entity_type = $2 and entity_id = $3 and deleted_at is null
            returning id
            """,
            memo_id,
            entity_type,
            entity_id,
        )
        if deleted_id is None:
            raise RepositoryNotFoundError("memo not found")

    async def list_events(self, *, entity_type: str, entity_id: int, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id, entity_type, entity_id, event_type, actor_id, payload, created_at
            from audit_events
            where entity_type = $1 and entity_id = $2
            order by id asc
            limit $3
            offset $4
            """,
            entity_type,
            entity_id,
            limit,
            offset,
        )
        return [self._event_row_to_dict(row) for row in rows]

    async def _complete(
        self,
        *,
        conn: asyncpg.Connection,
        matching: dict[str, Any],
        actor_id: str | None,
    ) -> dict[str, Any]:
        validate_matching_transition(from_status=str(matching["matching_status"]), to_status=MATCHING_COMPLETED)
        row = await conn.fetchrow(
            f"""
            update matchings
            set
              matching_status = 'completed',
              completed_at = now(),
              updated_at = now()
            where id = $1 and matching_status = 'in_progress'
            returning {MATCHING_COLUMNS}
            """,
            matching["id"],
        )
        if not row:
            raise RepositoryConflictError("matching changed concurrently; reload and retry")
        completed = dict(row)
        await self._record_event(
            conn=conn,
            entity_type="matching",
            entity_id=completed["id"],
            event_type="completed",
            actor_id=actor_id,
            payload=terms_payload(completed),
        )

        for kind, kind_spec in POSTING_KINDS.items():
            try:
                posting = await self._fetch_posting_row(
                    conn=conn,
                    kind=kind,
                    posting_id=completed[kind_spec.matching_column],
                    for_update=True,
                )
            except RepositoryNotFoundError:
                continue
            change = reconcile_posting(SettleablePosting.from_row(kind, posting), completed[kind_spec.matching_fee_field])
            await self._apply_settlement_change(
                conn=conn,
                kind=kind,
                posting_id=posting["id"],
                change=change,
                actor_id=actor_id,
                matching_id=completed["id"],
            )
        return completed

    async def _cancel(
        self,
        *,
        conn: asyncpg.Connection,
        matching: dict[str, Any],
        cancellation_reason: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        validate_matching_transition(from_status=str(matching["matching_status"]), to_status=MATCHING_CANCELLED)
        row = await conn.fetchrow(
            f"""
            update matchings
            set
              matching_status = 'cancelled',
              cancelled_at = now(),
              cancelled_by = $2,
              cancellation_reason = $3,
              updated_at = now()
            where id = $1 and matching_status = 'in_progress'
            returning {MATCHING_COLUMNS}
            """,
            matching["id"],
            actor_id,
            cancellation_reason,
        )
        if not row:
            raise RepositoryConflictError("matching changed concurrently; reload and retry")
        cancelled = dict(row)
        await self._record_event(
            conn=conn,
            entity_type="matching",
            entity_id=cancelled["id"],
            event_type="cancelled",
            actor_id=actor_id,
            payload={"cancellation_reason": cancellation_reason},
        )
        return cancelled

    async def _write_terms(
        self,
        *,
        conn: asyncpg.Connection,
        matching_id: int,
        terms: MatchingTerms,
    ) -> dict[str, Any]:
        row = await conn.fetchrow(
            f"""
            update matchings
            set
              agreed_salary = $2,
              employer_fee_rate = $3,
              employee_fee_rate = $4,
              employer_fee_amount = $5,
              employee_fee_amount = $6,
              updated_at = now()
            where id = $1 and matching_status = '{MATCHING_ACTIVE}'
            returning {MATCHING_COLUMNS}
            """,
            matching_id,
            terms.agreed_salary,
            terms.employer_fee_rate,
            terms.employee_fee_rate,
            terms.employer_fee_amount,
            terms.employee_fee_amount,
        )
        if not row:
            raise RepositoryConflictError("matching changed concurrently; reload and retry")
        return dict(row)

    async def _apply_settlement_change(
        self,
        *,
        conn: asyncpg.Connection,
        kind: str,
        posting_id: int,
        change: SettlementChange,
        actor_id: str | None,
        matching_id: int | None = None,
    ) -> dict[str, Any]:
        kind_spec = posting_kind_spec(kind)
        row = await conn.fetchrow(
            f"""
            update {kind_spec.table}
            set
              settlement_status = $2,
              settlement_amount = $3,
              settlement_memo = $4,
              updated_at = now()
            where id = $1
            returning {self._posting_columns(kind)}
            """,
            posting_id,
            change.settlement_status,
            change.settlement_amount,
            change.settlement_memo,
        )
        if not row:
            raise RepositoryNotFoundError(f"{kind_spec.label} not found")

        payload: dict[str, Any] = {
            "from_status": change.from_status,
            "to_status": change.settlement_status,
            "settlement_amount": str(change.settlement_amount) if change.settlement_amount is not None else None,
        }
        if matching_id is not None:
            payload["matching_id"] = matching_id
        await self._record_event(
            conn=conn,
            entity_type=kind,
            entity_id=posting_id,
            event_type=change.event_type,
            actor_id=actor_id,
            payload=payload,
        )
        return dict(row)

    async def _record_event(
        self,
        *,
        conn: asyncpg.Connection,
        entity_type: str,
        entity_id: int,
        event_type: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> None:
        await conn.execute(
            """
            insert into audit_events (entity_type, entity_id, event_type, actor_id, payload)
            values ($1, $2, $3, $4, $5::jsonb)
            """,
            entity_type,
            entity_id,
            event_type,
            actor_id,
            json.dumps(payload),
        )

    async def _require_memo_target(
        self,
        *,
        conn: asyncpg.Connection | asyncpg.Pool,
        entity_type: str,
        entity_id: int,
    ) -> None:
        if entity_type not in MEMO_ENTITY_TYPES:
            raise RepositoryValidationError(f"memos cannot be attached to {entity_type}", field="entity_type")
        table = "matchings" if entity_type == "matching" else "customers"
        exists = await conn.fetchval(
            f"select exists(select 1 from {table} where id = $1 and deleted_at is null)",
            entity_id,
        )
        if not exists:
            raise RepositoryNotFoundError(f"{entity_type} not found")

    async def _fetch_matching_row(
        self,
        *,
        conn: asyncpg.Connection | asyncpg.Pool,
        matching_id: int,
        for_update: bool = False,
    ) -> asyncpg.Record:
        row = await conn.fetchrow(
            f"""
            select {MATCHING_COLUMNS}
            from matchings
            where id = $1 and deleted_at is null
            {"for update" if for_update else ""}
            """,
            matching_id,
        )
        if not row:
            raise RepositoryNotFoundError("matching not found")
        return row

    async def _fetch_posting_row(
        self,
        *,
        conn: asyncpg.Connection | asyncpg.Pool,
        kind: str,
        posting_id: int,
        for_update: bool = False,
    ) -> dict[str, Any]:
        kind_spec = posting_kind_spec(kind)
        row = await conn.fetchrow(
            f"""
            select {self._posting_columns(kind)}
            from {kind_spec.table}
            where id = $1 and deleted_at is null
            {"for update" if for_update else ""}
            """,
            posting_id,
        )
        if not row:
            raise RepositoryNotFoundError(f"{kind_spec.label} not found")
        return dict(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("MD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _posting_columns(kind: str) -> str:
        kind_spec = posting_kind_spec(kind)
        return f"""
          id,
          customer_id,
          {kind_spec.salary_column},
          description,
          {kind_spec.fee_rate_column},
          posting_status,
          settlement_status,
          settlement_amount,
          settlement_memo,
          created_at,
          updated_at
        """

    @staticmethod
    def _event_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        payload = row["payload"]
        # asyncpg hands jsonb back as text unless a codec is registered.
        if isinstance(payload, str):
            payload = json.loads(payload)
        return {
            "id": int(row["id"]),
            "entity_type": row["entity_type"],
            "entity_id": int(row["entity_id"]),
            "event_type": row["event_type"],
            "actor_id": row["actor_id"],
            "payload": payload,
            "created_at": row["created_at"],
        }


@lru_cache
def get_repository() -> PostgresRepository | InMemoryRepository:
    settings = get_settings()
    if settings.storage_backend == "memory":
        return InMemoryRepository(fee_rounding_places=settings.fee_rounding_places)
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        fee_rounding_places=settings.fee_rounding_places,
    )
