#!/usr/bin/env python3
"""Emit SQL that grants a matchdesk role to a Supabase user."""

from __future__ import annotations

import argparse

ROLES = ("viewer", "operator", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, actor: str) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
        target_payload = f"jsonb_build_object('user_id', {_quote_sql(user_id)}, 'role', {role_value})"
    elif email:
        target_where = f"email = {_quote_sql(email)}"
        target_payload = f"jsonb_build_object('email', {_quote_sql(email)}, 'role', {role_value})"
    else:
        raise ValueError("either user_id or email is required")

    return f"""-- matchdesk role grant
-- Run in the Supabase SQL editor or another privileged Postgres session.

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};

insert into audit_events (entity_type, entity_id, event_type, actor_id, payload)
values ('user_role', 0, 'role_granted', {_quote_sql(actor)}, {target_payload});
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL that grants a matchdesk role to a Supabase user.")
    parser.add_argument(
        "--role",
        choices=ROLES,
        default="admin",
        help="Role stored in auth.users.raw_app_meta_data.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument("--actor", default="system", help="actor_id recorded on the audit event")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email, actor=args.actor))


if __name__ == "__main__":
    main()
