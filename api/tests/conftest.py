from __future__ import annotations

import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import app.core.security as security
from app.core.config import get_settings
from app.main import app
from app.services.repository import get_repository
from app.services.store import InMemoryRepository

VIEWER = {"id": "viewer-1", "app_metadata": {"role": "viewer"}}
OPERATOR = {"id": "operator-1", "app_metadata": {"role": "operator"}}
ADMIN = {"id": "admin-1", "app_metadata": {"roles": ["viewer", "admin"]}}
AUTH_HEADERS = {"Authorization": "Bearer test-token"}


@pytest.fixture
def memory_repo() -> InMemoryRepository:
    repo = InMemoryRepository(fee_rounding_places=0)
    employer = repo.add_customer(name="Acme Corp", customer_type="employer")
    seeker = repo.add_customer(name="Kim Seeker", customer_type="job_seeker")
    for posting_id in (7, 8, 9):
        repo.add_posting(
            kind="job_posting",
            customer_id=employer["id"],
            salary="4000000",
            fee_rate="10",
            posting_id=posting_id,
        )
    for posting_id in (12, 13, 14):
        repo.add_posting(
            kind="job_seeking",
            customer_id=seeker["id"],
            salary="3800000",
            fee_rate="8",
            posting_id=posting_id,
        )
    return repo


@pytest.fixture
def api_client(memory_repo: InMemoryRepository, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    os.environ["MD_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["MD_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()
    app.dependency_overrides[get_repository] = lambda: memory_repo
    login_as(monkeypatch, OPERATOR)

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    os.environ.pop("MD_SUPABASE_URL", None)
    os.environ.pop("MD_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()


def login_as(monkeypatch: pytest.MonkeyPatch, user: dict[str, Any]) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return user

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
