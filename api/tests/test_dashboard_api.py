from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient

from conftest import AUTH_HEADERS


def _create(client: TestClient, job_posting_id: int, job_seeking_posting_id: int, salary: int, employer: int, employee: int) -> int:
    response = client.post(
        "/matchings",
        json={
            "job_posting_id": job_posting_id,
            "job_seeking_posting_id": job_seeking_posting_id,
            "agreed_salary": salary,
            "employer_fee_rate": employer,
            "employee_fee_rate": employee,
        },
        headers=AUTH_HEADERS,
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_dashboard_counts_only_completed_revenue(api_client: TestClient) -> None:
    completed = _create(api_client, 7, 12, 3000000, 10, 5)
    cancelled = _create(api_client, 8, 13, 4000000, 10, 8)
    _create(api_client, 9, 14, 4000000, 10, 8)
    api_client.post(f"/matchings/{completed}/complete", headers=AUTH_HEADERS)
    api_client.post(f"/matchings/{cancelled}/cancel", headers=AUTH_HEADERS)

    response = api_client.get("/dashboard/stats", headers=AUTH_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["total_customers"] == 2
    assert body["total_job_postings"] == 3
    assert body["total_job_seekers"] == 3
    assert body["active_matches"] == 1
    assert Decimal(body["total_revenue"]) == Decimal("450000")
    assert Decimal(body["pending_settlement_amount"]) == Decimal("450000")


def test_dashboard_on_empty_store(api_client: TestClient) -> None:
    body = api_client.get("/dashboard/stats", headers=AUTH_HEADERS).json()

    assert body["active_matches"] == 0
    assert Decimal(body["total_revenue"]) == Decimal("0")


def test_dashboard_requires_auth(api_client: TestClient) -> None:
    assert api_client.get("/dashboard/stats").status_code == 401
