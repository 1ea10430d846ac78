import asyncio
from decimal import Decimal

import pytest

from app.services.errors import RepositoryConflictError, RepositoryInvalidTransitionError, RepositoryValidationError
from app.services.store import InMemoryRepository


def _seeded() -> InMemoryRepository:
    repo = InMemoryRepository(fee_rounding_places=0)
    employer = repo.add_customer(name="Acme")
    seeker = repo.add_customer(name="Lee", customer_type="job_seeker")
    repo.add_posting(kind="job_posting", customer_id=employer["id"], salary=4000000, fee_rate=10, posting_id=7)
    repo.add_posting(kind="job_seeking", customer_id=seeker["id"], salary=4000000, fee_rate=8, posting_id=12)
    repo.add_posting(kind="job_seeking", customer_id=seeker["id"], salary=4000000, fee_rate=8, posting_id=13)
    return repo


async def _create(repo: InMemoryRepository, job_seeking_posting_id: int) -> dict:
    return await repo.create_matching(
        job_posting_id=7,
        job_seeking_posting_id=job_seeking_posting_id,
        agreed_salary=4000000,
        employer_fee_rate=10,
        employee_fee_rate=8,
        mark_postings_in_progress=False,
        actor_id="op",
    )


def test_concurrent_creates_admit_one_active_matching() -> None:
    repo = _seeded()

    async def scenario() -> list[object]:
        return await asyncio.gather(_create(repo, 12), _create(repo, 13), return_exceptions=True)

    results = asyncio.run(scenario())

    created = [result for result in results if isinstance(result, dict)]
    conflicts = [result for result in results if isinstance(result, RepositoryConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1


def test_concurrent_complete_and_cancel_leave_one_terminal_state() -> None:
    repo = _seeded()

    async def scenario() -> list[object]:
        matching = await _create(repo, 12)
        return await asyncio.gather(
            repo.complete_matching(matching_id=matching["id"], actor_id="a"),
            repo.cancel_matching(matching_id=matching["id"], cancellation_reason=None, actor_id="b"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    assert sum(isinstance(result, RepositoryInvalidTransitionError) for result in results) == 1
    assert repo.matchings[1]["matching_status"] in {"completed", "cancelled"}


def test_completion_writes_audit_events_for_both_postings() -> None:
    repo = _seeded()

    async def scenario() -> None:
        matching = await _create(repo, 12)
        await repo.complete_matching(matching_id=matching["id"], actor_id="op")

    asyncio.run(scenario())

    seeded = [event for event in repo.events if event["event_type"] == "settlement_seeded"]
    assert {(event["entity_type"], event["entity_id"]) for event in seeded} == {("job_posting", 7), ("job_seeking", 12)}
    assert repo.postings["job_seeking"][12]["settlement_amount"] == Decimal("320000")


def test_memos_reject_unknown_entity_type() -> None:
    repo = _seeded()

    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.add_memo(entity_type="job_posting", entity_id=7, memo_content="x", actor_id=None))


def test_create_rejects_rates_the_rate_column_would_round() -> None:
    repo = _seeded()

    with pytest.raises(RepositoryValidationError) as exc_info:
        asyncio.run(
            repo.create_matching(
                job_posting_id=7,
                job_seeking_posting_id=12,
                agreed_salary=4000000,
                employer_fee_rate="10.125",
                employee_fee_rate=8,
                mark_postings_in_progress=False,
                actor_id="op",
            )
        )

    assert exc_info.value.field == "employer_fee_rate"
    assert asyncio.run(repo.list_matchings(status=None, job_posting_id=None, job_seeking_posting_id=None, limit=10, offset=0)) == []
