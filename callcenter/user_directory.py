from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import psycopg2.extras

USER_ROLE_VALUES = {"customer", "employee", "admin"}
STAFF_ROLES = ("admin", "employee")
ADMIN_ROLES = ("admin",)


@dataclass
class UserContact:
    id: str
    name: Optional[str]
    email: str
    role: str

    @property
    def display_name(self) -> str:
        return self.name or self.email


def fetch_user_contact(conn, user_id: str) -> Optional[UserContact]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id::text AS id, name, email, role::text AS role
            FROM users
            WHERE id = %s
            LIMIT 1
            """,
            (user_id,),
        )
        row = cur.fetchone()
    if not row:
        return None
    return UserContact(id=row["id"], name=row.get("name"), email=row["email"], role=row["role"])


def list_user_ids_by_roles(conn, roles: Iterable[str]) -> List[str]:
    role_list = [role for role in dict.fromkeys(roles) if role in USER_ROLE_VALUES]
    if not role_list:
        return []
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            "SELECT id::text AS id FROM users WHERE role::text = ANY(%s) ORDER BY created_at ASC",
            (role_list,),
        )
        rows = cur.fetchall() or []
    return [row["id"] for row in rows]


def fetch_user_for_login(conn, email: str) -> Optional[Dict[str, Any]]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id::text AS id, name, email, role::text AS role, password_hash, created_at
            FROM users
            WHERE LOWER(email) = LOWER(%s)
            LIMIT 1
            """,
            (email,),
        )
        row = cur.fetchone()
    return dict(row) if row else None
