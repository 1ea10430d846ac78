from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "bootstrap_admin.py"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=False,
        capture_output=True,
        text=True,
    )


def test_bootstrap_script_grants_role_by_user_id() -> None:
    user_id = "00000000-0000-0000-0000-000000000123"
    completed = _run_script("--user-id", user_id, "--role", "operator", "--actor", "cli")

    assert completed.returncode == 0
    output = completed.stdout
    assert "update auth.users" in output
    assert f"where id = '{user_id}'::uuid;" in output
    assert "jsonb_build_object('role', 'operator')" in output
    assert "insert into audit_events" in output
    assert "values ('user_role', 0, 'role_granted', 'cli'" in output


def test_bootstrap_script_grants_role_by_email() -> None:
    completed = _run_script("--email", "o'brien@example.com")

    assert completed.returncode == 0
    assert "where email = 'o''brien@example.com';" in completed.stdout
    assert "jsonb_build_object('email', 'o''brien@example.com', 'role', 'admin')" in completed.stdout


@pytest.mark.parametrize("role", ["moderator", "user"])
def test_bootstrap_script_rejects_unknown_roles(role: str) -> None:
    completed = _run_script("--email", "ops@example.com", "--role", role)

    assert completed.returncode != 0
    assert "invalid choice" in completed.stderr
