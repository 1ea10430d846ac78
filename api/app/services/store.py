from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.services.errors import RepositoryConflictError, RepositoryNotFoundError, RepositoryValidationError
from app.services.matching import (
    MATCHING_ACTIVE,
    MATCHING_CANCELLED,
    MATCHING_COMPLETED,
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

MEMO_ENTITY_TYPES = {"matching", "customer"}


class InMemoryRepository:
    """Process-local store with the same contract as the Postgres repository.

    Every mutation runs under one lock, which gives the check-then-write
    atomicity the database gets from row locks.
    """

    def __init__(self, *, fee_rounding_places: int = 0) -> None:
        self.fee_rounding_places = fee_rounding_places
        self.customers: dict[int, dict[str, Any]] = {}
        self.postings: dict[str, dict[int, dict[str, Any]]] = {kind: {} for kind in POSTING_KINDS}
        self.matchings: dict[int, dict[str, Any]] = {}
        self.memos: dict[int, dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self._ids = {
            name: itertools.count(1)
            for name in ("customer", "job_posting", "job_seeking", "matching", "memo", "event")
        }
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        return None

    def add_customer(self, *, name: str, customer_type: str = "employer", customer_id: int | None = None) -> dict[str, Any]:
        now = _now()
        row = {
            "id": customer_id if customer_id is not None else next(self._ids["customer"]),
            "name": name,
            "customer_type": customer_type,
            "created_at": now,
            "updated_at": now,
        }
        self.customers[row["id"]] = row
        return dict(row)

    def add_posting(
        self,
        *,
        kind: str,
        customer_id: int,
        salary: Any,
        description: str = "",
        fee_rate: Any | None = None,
        posting_status: str = "published",
        posting_id: int | None = None,
    ) -> dict[str, Any]:
        kind_spec = posting_kind_spec(kind)
        if customer_id not in self.customers:
            raise RepositoryNotFoundError("customer not found")
        now = _now()
        row = {
            "id": posting_id if posting_id is not None else next(self._ids[kind]),
            "customer_id": customer_id,
            kind_spec.salary_column: Decimal(str(salary)),
            "description": description,
            kind_spec.fee_rate_column: Decimal(str(fee_rate)) if fee_rate is not None else None,
            "posting_status": posting_status,
            "settlement_status": "unsettled",
            "settlement_amount": None,
            "settlement_memo": None,
            "created_at": now,
            "updated_at": now,
        }
        self.postings[kind][row["id"]] = row
        return describe_posting(kind, row, places=self.fee_rounding_places)

    async def get_customer(self, *, customer_id: int) -> dict[str, Any]:
        row = self.customers.get(customer_id)
        if row is None:
            raise RepositoryNotFoundError("customer not found")
        return dict(row)

    async def count_customers(self) -> int:
        return len(self.customers)

    async def get_posting(self, *, kind: str, posting_id: int) -> dict[str, Any]:
        row = self._posting_row(kind, posting_id)
        return describe_posting(kind, row, places=self.fee_rounding_places)

    async def summarize_postings(self, *, kind: str) -> list[dict[str, Any]]:
        posting_kind_spec(kind)
        buckets: dict[str, dict[str, Any]] = {}
        for row in self.postings[kind].values():
            bucket = buckets.setdefault(
                row["settlement_status"],
                {"settlement_status": row["settlement_status"], "posting_count": 0, "amount_sum": Decimal(0)},
            )
            bucket["posting_count"] += 1
            bucket["amount_sum"] += row["settlement_amount"] or Decimal(0)
        return list(buckets.values())

    async def summarize_matchings(self) -> list[dict[str, Any]]:
        buckets: dict[str, dict[str, Any]] = {}
        for row in self.matchings.values():
            bucket = buckets.setdefault(
                row["matching_status"],
                {
                    "matching_status": row["matching_status"],
                    "matching_count": 0,
                    "employer_fee_sum": Decimal(0),
                    "employee_fee_sum": Decimal(0),
                },
            )
            bucket["matching_count"] += 1
            bucket["employer_fee_sum"] += row["employer_fee_amount"] or Decimal(0)
            bucket["employee_fee_sum"] += row["employee_fee_amount"] or Decimal(0)
        return list(buckets.values())

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
        async with self._lock:
            job_posting = self._posting_row("job_posting", job_posting_id)
            job_seeking = self._posting_row("job_seeking", job_seeking_posting_id)
            require_open_posting(job_posting, label="job posting")
            require_open_posting(job_seeking, label="job seeking posting")
            for row in self.matchings.values():
                if row["matching_status"] != MATCHING_ACTIVE:
                    continue
                if row["job_posting_id"] == job_posting_id:
                    raise RepositoryConflictError(f"job posting {job_posting_id} already has an active matching")
                if row["job_seeking_posting_id"] == job_seeking_posting_id:
                    raise RepositoryConflictError(
                        f"job seeking posting {job_seeking_posting_id} already has an active matching"
                    )

            now = _now()
            matching = {
                "id": next(self._ids["matching"]),
                "job_posting_id": job_posting_id,
                "job_seeking_posting_id": job_seeking_posting_id,
                "matched_at": now,
                **terms.as_dict(),
                "matching_status": MATCHING_ACTIVE,
                "cancellation_reason": None,
                "cancelled_at": None,
                "cancelled_by": None,
                "completed_at": None,
                "created_at": now,
                "updated_at": now,
            }
            self.matchings[matching["id"]] = matching

            if mark_postings_in_progress:
                for kind, row in (("job_posting", job_posting), ("job_seeking", job_seeking)):
                    if row["posting_status"] == "published":
                        row["posting_status"] = "in_progress"
                        row["updated_at"] = now
                        self._record_event(
                            kind, row["id"], "status_changed", actor_id, {"from_status": "published", "to_status": "in_progress"}
                        )

            self._record_event("matching", matching["id"], "created", actor_id, terms_payload(matching))
            return dict(matching)

    async def get_matching(self, *, matching_id: int) -> dict[str, Any]:
        return dict(self._matching_row(matching_id))

    async def list_matchings(
        self,
        *,
        status: str | None,
        job_posting_id: int | None,
        job_seeking_posting_id: int | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.matchings.values()
            if (status is None or row["matching_status"] == status)
            and (job_posting_id is None or row["job_posting_id"] == job_posting_id)
            and (job_seeking_posting_id is None or row["job_seeking_posting_id"] == job_seeking_posting_id)
        ]
        rows.sort(key=lambda row: (row["matched_at"], row["id"]), reverse=True)
        return [dict(row) for row in rows[offset : offset + limit]]

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
        async with self._lock:
            matching = self._matching_row(matching_id)
            plan = plan_matching_update(
                matching,
                agreed_salary=agreed_salary,
                employer_fee_rate=employer_fee_rate,
                employee_fee_rate=employee_fee_rate,
                matching_status=matching_status,
                cancellation_reason=cancellation_reason,
                places=self.fee_rounding_places,
            )
            if plan.terms_changed:
                matching.update(plan.terms.as_dict())
                matching["updated_at"] = _now()
                self._record_event("matching", matching_id, "terms_updated", actor_id, terms_payload(matching))

            if plan.target_status == MATCHING_COMPLETED:
                self._complete(matching, actor_id)
            elif plan.target_status == MATCHING_CANCELLED:
                self._cancel(matching, plan.cancellation_reason, actor_id)
            return dict(matching)

    async def complete_matching(self, *, matching_id: int, actor_id: str | None) -> dict[str, Any]:
        async with self._lock:
            matching = self._matching_row(matching_id)
            self._complete(matching, actor_id)
            return dict(matching)

    async def cancel_matching(
        self,
        *,
        matching_id: int,
        cancellation_reason: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        async with self._lock:
            matching = self._matching_row(matching_id)
            self._cancel(matching, cancellation_reason, actor_id)
            return dict(matching)

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
        async with self._lock:
            row = self._posting_row(kind, posting_id)
            change = plan_settlement_change(
                SettleablePosting.from_row(kind, row),
                settlement_status=settlement_status,
                settlement_amount=settlement_amount,
                settlement_memo=settlement_memo,
            )
            self._apply_settlement_change(kind, row, change, actor_id)
            return describe_posting(kind, row, places=self.fee_rounding_places)

    async def add_memo(
        self,
        *,
        entity_type: str,
        entity_id: int,
        memo_content: str,
        actor_id: str | None,
    ) -> dict[str, Any]:
        async with self._lock:
            self._require_memo_target(entity_type, entity_id)
            now = _now()
            memo = {
                "id": next(self._ids["memo"]),
                "entity_type": entity_type,
                "entity_id": entity_id,
                "memo_content": memo_content,
                "created_by": actor_id,
                "created_at": now,
                "updated_at": now,
                "deleted_at": None,
            }
            self.memos[memo["id"]] = memo
            return _public_memo(memo)

    async def list_memos(self, *, entity_type: str, entity_id: int, limit: int, offset: int) -> list[dict[str, Any]]:
        self._require_memo_target(entity_type, entity_id)
        rows = [
            memo
            for memo in self.memos.values()
            if memo["entity_type"] == entity_type and memo["entity_id"] == entity_id and memo["deleted_at"] is None
        ]
        rows.sort(key=lambda memo: (memo["created_at"], memo["id"]), reverse=True)
        return [_public_memo(memo) for memo in rows[offset : offset + limit]]

    async def update_memo(
        self,
        *,
        entity_type: str,
        entity_id: int,
        memo_id: int,
        memo_content: str,
    ) -> dict[str, Any]:
        async with self._lock:
            memo = self._memo_row(entity_type, entity_id, memo_id)
            memo["memo_content"] = memo_content
            memo["updated_at"] = _now()
            return _public_memo(memo)

    async def delete_memo(self, *, entity_type: str, entity_id: int, memo_id: int) -> None:
        async with self._lock:
            memo = self._memo_row(entity_type, entity_id, memo_id)
            memo["deleted_at"] = _now()

    async def list_events(self, *, entity_type: str, entity_id: int, limit: int, offset: int) -> list[dict[str, Any]]:
        rows = [event for event in self.events if event["entity_type"] == entity_type and event["entity_id"] == entity_id]
        return [dict(event) for event in rows[offset : offset + limit]]

    def _complete(self, matching: dict[str, Any], actor_id: str | None) -> None:
        validate_matching_transition(from_status=matching["matching_status"], to_status=MATCHING_COMPLETED)
        now = _now()
        matching["matching_status"] = MATCHING_COMPLETED
        matching["completed_at"] = now
        matching["updated_at"] = now
        self._record_event("matching", matching["id"], "completed", actor_id, terms_payload(matching))

        for kind, kind_spec in POSTING_KINDS.items():
            row = self.postings[kind].get(matching[kind_spec.matching_column])
            if row is None:
                continue
            change = reconcile_posting(SettleablePosting.from_row(kind, row), matching[kind_spec.matching_fee_field])
            self._apply_settlement_change(kind, row, change, actor_id, matching_id=matching["id"])

    def _cancel(self, matching: dict[str, Any], reason: str | None, actor_id: str | None) -> None:
        validate_matching_transition(from_status=matching["matching_status"], to_status=MATCHING_CANCELLED)
        now = _now()
        matching["matching_status"] = MATCHING_CANCELLED
        matching["cancelled_at"] = now
        matching["cancelled_by"] = actor_id
        matching["cancellation_reason"] = reason
        matching["updated_at"] = now
        self._record_event("matching", matching["id"], "cancelled", actor_id, {"cancellation_reason": reason})

    def _apply_settlement_change(
        self,
        kind: str,
        row: dict[str, Any],
        change: SettlementChange,
        actor_id: str | None,
        *,
        matching_id: int | None = None,
    ) -> None:
        row["settlement_status"] = change.settlement_status
        row["settlement_amount"] = change.settlement_amount
        row["settlement_memo"] = change.settlement_memo
        row["updated_at"] = _now()
        payload: dict[str, Any] = {
            "from_status": change.from_status,
            "to_status": change.settlement_status,
            "settlement_amount": str(change.settlement_amount) if change.settlement_amount is not None else None,
        }
        if matching_id is not None:
            payload["matching_id"] = matching_id
        self._record_event(kind, row["id"], change.event_type, actor_id, payload)

    def _record_event(
        self,
        entity_type: str,
        entity_id: int,
        event_type: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> None:
        self.events.append(
            {
                "id": next(self._ids["event"]),
                "entity_type": entity_type,
                "entity_id": entity_id,
                "event_type": event_type,
                "actor_id": actor_id,
                "payload": payload,
                "created_at": _now(),
            }
        )

    def _posting_row(self, kind: str, posting_id: int) -> dict[str, Any]:
        kind_spec = posting_kind_spec(kind)
        row = self.postings[kind].get(posting_id)
        if row is None:
            raise RepositoryNotFoundError(f"{kind_spec.label} not found")
        return row

    def _matching_row(self, matching_id: int) -> dict[str, Any]:
        row = self.matchings.get(matching_id)
        if row is None:
            raise RepositoryNotFoundError("matching not found")
        return row

    def _memo_row(self, entity_type: str, entity_id: int, memo_id: int) -> dict[str, Any]:
        self._require_memo_target(entity_type, entity_id)
        memo = self.memos.get(memo_id)
        if (
            memo is None
            or memo["deleted_at"] is not None
            or memo["entity_type"] != entity_type
            or memo["entity_id"] != entity_id
        ):
            raise RepositoryNotFoundError("memo not found")
        return memo

    def _require_memo_target(self, entity_type: str, entity_id: int) -> None:
        if entity_type not in MEMO_ENTITY_TYPES:
            raise RepositoryValidationError(f"memos cannot be attached to {entity_type}", field="entity_type")
        if entity_type == "matching":
            self._matching_row(entity_id)
        elif entity_id not in self.customers:
            raise RepositoryNotFoundError("customer not found")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _public_memo(memo: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in memo.items() if key != "deleted_at"}
