from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.services.store import InMemoryRepository
from conftest import AUTH_HEADERS, VIEWER, login_as


def _complete_matching(client: TestClient, job_posting_id: int = 7, job_seeking_posting_id: int = 12) -> int:
    created = client.post(
        "/matchings",
        json={
            "job_posting_id": job_posting_id,
            "job_seeking_posting_id": job_seeking_posting_id,
            "agreed_salary": 4000000,
            "employer_fee_rate": 10,
            "employee_fee_rate": 8,
        },
        headers=AUTH_HEADERS,
    )
    matching_id = created.json()["id"]
    assert client.post(f"/matchings/{matching_id}/complete", headers=AUTH_HEADERS).status_code == 200
    return matching_id


def test_posting_detail_includes_calculated_fee(api_client: TestClient) -> None:
    response = api_client.get("/job-postings/7", headers=AUTH_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["posting_type"] == "job_posting"
    assert Decimal(body["calculated_fee"]) == Decimal("400000")
    assert body["settlement_status"] == "unsettled"
    assert body["settlement_amount"] is None

    seeking = api_client.get("/job-seekings/12", headers=AUTH_HEADERS).json()
    assert Decimal(seeking["calculated_fee"]) == Decimal("304000")
    assert api_client.get("/job-seekings/999", headers=AUTH_HEADERS).status_code == 404


def test_completion_seeds_settlement_amounts(api_client: TestClient) -> None:
    _complete_matching(api_client)

    job_posting = api_client.get("/job-postings/7", headers=AUTH_HEADERS).json()
    job_seeking = api_client.get("/job-seekings/12", headers=AUTH_HEADERS).json()

    assert job_posting["settlement_status"] == "unsettled"
    assert Decimal(job_posting["settlement_amount"]) == Decimal("400000")
    assert Decimal(job_seeking["settlement_amount"]) == Decimal("320000")


def test_settle_then_unsettle_keeps_amount(api_client: TestClient) -> None:
    _complete_matching(api_client)

    settled = api_client.put(
        "/job-postings/7",
        json={"settlement_status": "settled", "settlement_memo": "wire received"},
        headers=AUTH_HEADERS,
    )
    assert settled.status_code == 200
    assert settled.json()["settlement_status"] == "settled"
    assert Decimal(settled.json()["settlement_amount"]) == Decimal("400000")

    again = api_client.put("/job-postings/7", json={"settlement_status": "settled"}, headers=AUTH_HEADERS)
    assert again.status_code == 400

    unsettled = api_client.put("/job-postings/7", json={"settlement_status": "unsettled"}, headers=AUTH_HEADERS)
    assert unsettled.status_code == 200
    body = unsettled.json()
    assert body["settlement_status"] == "unsettled"
    assert Decimal(body["settlement_amount"]) == Decimal("400000")
    assert body["settlement_memo"] == "wire received"


def test_unsettle_of_unsettled_posting_is_rejected(api_client: TestClient) -> None:
    response = api_client.put("/job-seekings/12", json={"settlement_status": "unsettled"}, headers=AUTH_HEADERS)

    assert response.status_code == 400


def test_settle_with_explicit_amount(api_client: TestClient) -> None:
    response = api_client.put(
        "/job-seekings/13",
        json={"settlement_status": "settled", "settlement_amount": "150000.50"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 200
    assert Decimal(response.json()["settlement_amount"]) == Decimal("150000.50")


@pytest.mark.parametrize(
    "payload",
    [
        {"settlement_status": "paid"},
        {"settlement_status": "settled", "settlement_amount": -1},
        {"settlement_status": "settled", "settlement_amount": "150000.505"},
        {"settlement_status": "settled", "settlement_amount": "1e30"},
        {},
    ],
)
def test_settlement_update_validates_payload(api_client: TestClient, payload: dict[str, object]) -> None:
    assert api_client.put("/job-postings/7", json=payload, headers=AUTH_HEADERS).status_code == 422


def test_completing_again_reopens_settled_posting(api_client: TestClient, memory_repo: InMemoryRepository) -> None:
    _complete_matching(api_client)
    api_client.put("/job-postings/7", json={"settlement_status": "settled"}, headers=AUTH_HEADERS)

    _complete_matching(api_client, job_posting_id=7, job_seeking_posting_id=13)

    row = memory_repo.postings["job_posting"][7]
    assert row["settlement_status"] == "unsettled"
    assert row["settlement_amount"] == Decimal("800000")


def test_settlement_stats(api_client: TestClient) -> None:
    _complete_matching(api_client)
    api_client.put("/job-seekings/12", json={"settlement_status": "settled"}, headers=AUTH_HEADERS)

    response = api_client.get("/settlements/stats", headers=AUTH_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["settled_count"] == 1
    assert body["unsettled_count"] == 5
    assert Decimal(body["settled_amount_sum"]) == Decimal("320000")
    assert Decimal(body["unsettled_amount_sum"]) == Decimal("400000")


def test_viewer_cannot_change_settlement(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    login_as(monkeypatch, VIEWER)

    response = api_client.put("/job-postings/7", json={"settlement_status": "settled"}, headers=AUTH_HEADERS)

    assert response.status_code == 403
    assert api_client.get("/settlements/stats", headers=AUTH_HEADERS).status_code == 200


def test_blank_memo_clears_and_omitted_memo_keeps(api_client: TestClient) -> None:
    settled = api_client.put(
        "/job-postings/8",
        json={"settlement_status": "settled", "settlement_memo": "paid by wire"},
        headers=AUTH_HEADERS,
    )
    assert settled.json()["settlement_memo"] == "paid by wire"

    reopened = api_client.put("/job-postings/8", json={"settlement_status": "unsettled"}, headers=AUTH_HEADERS)
    assert reopened.json()["settlement_memo"] == "paid by wire"

    cleared = api_client.put(
        "/job-postings/8",
        json={"settlement_status": "settled", "settlement_memo": ""},
        headers=AUTH_HEADERS,
    )
    assert cleared.status_code == 200
    assert cleared.json()["settlement_memo"] is None
    assert api_client.get("/job-postings/8", headers=AUTH_HEADERS).json()["settlement_memo"] is None
