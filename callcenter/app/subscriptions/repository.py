"""Persistence layer for subscription rows."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ... import app_context
from ..entitlements.catalog import PREMIUM_KEYS
from ..entitlements.exceptions import StoreUnavailable
from ..entitlements.models import Subscription, SubscriptionType

_SUBSCRIPTION_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    service_key,
    is_global,
    subscription_type,
    remaining_credits,
    expires_at,
    is_active,
    amount,
    created_at,
    updated_at
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    try:
        connection = app_context.get_conn()
    except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
        raise StoreUnavailable() from exc
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_subscription(row: dict) -> Subscription:
    amount = row.get("amount")
    return Subscription(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        service_key=row.get("service_key"),
        is_global=bool(row.get("is_global")),
        subscription_type=SubscriptionType(row["subscription_type"]),
        remaining_credits=int(row.get("remaining_credits") or 0),
        expires_at=row.get("expires_at"),
        is_active=bool(row["is_active"]),
        amount=float(amount) if isinstance(amount, (Decimal, int, float)) else 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def transaction(self) -> Iterator[PgConnection]:
        """Yield a connection whose work commits or rolls back as one unit."""

        with managed_connection(self._conn) as (connection, _managed):
            yield connection

    @contextmanager
    def _cursor(self, conn: Optional[PgConnection] = None) -> Iterator[PgCursor]:
        with managed_connection(conn or self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
                if managed:
                    connection.rollback()
                raise StoreUnavailable() from exc
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def list_active_subscriptions(
        self,
        user_id: str,
        *,
        conn: Optional[PgConnection] = None,
    ) -> List[Subscription]:
        with self._cursor(conn) as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE user_id = %s AND is_active = TRUE
                ORDER BY created_at ASC
                """,
                (user_id,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def list_subscriptions(
        self,
        user_id: str,
        *,
        conn: Optional[PgConnection] = None,
    ) -> List[Subscription]:
        with self._cursor(conn) as cursor:
            cursor.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions
                WHERE user_id = %s
                ORDER BY created_at DESC
                """,
                (user_id,),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def lock_user_subscriptions(self, user_id: str, *, conn: Optional[PgConnection] = None) -> None:
        """Serialize purchases for one user until the surrounding transaction ends."""

        with self._cursor(conn) as cursor:
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))",
                (f"subscriptions:{user_id}",),
            )

    def deactivate_scope(
        self,
        user_id: str,
        *,
        is_global: bool,
        scope_keys: Sequence[str],
        conn: Optional[PgConnection] = None,
    ) -> List[Subscription]:
        with self._cursor(conn) as cursor:
            if is_global:
                cursor.execute(
                    f"""
                    UPDATE subscriptions
                    SET is_active = FALSE, updated_at = NOW()
                    WHERE user_id = %s AND is_global = TRUE AND is_active = TRUE
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                    """,
                    (user_id,),
                )
            else:
                cursor.execute(
                    f"""
                    UPDATE subscriptions
                    SET is_active = FALSE, updated_at = NOW()
                    WHERE user_id = %s
                      AND is_global = FALSE
                      AND is_active = TRUE
                      AND service_key = ANY(%s)
                    RETURNING {_SUBSCRIPTION_COLUMNS}
                    """,
                    (user_id, list(scope_keys)),
                )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def insert_subscription(
        self,
        *,
        user_id: str,
        service_key: Optional[str],
        is_global: bool,
        subscription_type: SubscriptionType,
        remaining_credits: int,
        expires_at: Optional[datetime],
        amount: float,
        conn: Optional[PgConnection] = None,
    ) -> Subscription:
        with self._cursor(conn) as cursor:
            cursor.execute(
                f"""
                INSERT INTO subscriptions (
                    user_id,
                    service_key,
                    is_global,
                    subscription_type,
                    remaining_credits,
                    expires_at,
                    amount,
                    is_active,
                    created_at,
                    updated_at
                )
                VALUES (%(user_id)s, %(service_key)s, %(is_global)s, %(subscription_type)s,
                        %(remaining_credits)s, %(expires_at)s, %(amount)s, TRUE, NOW(), NOW())
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                {
                    "user_id": user_id,
                    "service_key": service_key,
                    "is_global": is_global,
                    "subscription_type": subscription_type.value,
                    "remaining_credits": remaining_credits,
                    "expires_at": expires_at,
                    "amount": amount,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def consume_credit(
        self,
        user_id: str,
        *,
        service_keys: Sequence[str],
        prefix: Optional[str] = None,
        conn: Optional[PgConnection] = None,
    ) -> Optional[Subscription]:
        """Charge one credit in a single conditional write.

        The row is locked by the inner select and the outer ``remaining_credits > 0``
        guard is re-checked after any wait, so the balance never goes negative.
        """

        with self._cursor(conn) as cursor:
            cursor.execute(
                f"""
                UPDATE subscriptions AS s
                SET remaining_credits = s.remaining_credits - 1,
                    is_active = (s.remaining_credits - 1) > 0,
                    updated_at = NOW()
                WHERE s.id = (
                    SELECT id
                    FROM subscriptions
                    WHERE user_id = %(user_id)s
                      AND is_active = TRUE
                      AND is_global = FALSE
                      AND subscription_type = 'per-use'
                      AND remaining_credits > 0
                      AND NOT (service_key = ANY(%(premium_keys)s))
                      AND (
                          service_key = ANY(%(service_keys)s)
                          OR (
                              %(prefix)s::text IS NOT NULL
                              AND left(service_key, char_length(%(prefix)s::text)) = %(prefix)s::text
                          )
                      )
                    ORDER BY created_at ASC, id ASC
                    LIMIT 1
                    FOR UPDATE
                )
                  AND s.is_active = TRUE
                  AND s.remaining_credits > 0
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                {
                    "user_id": user_id,
                    "premium_keys": sorted(PREMIUM_KEYS),
                    "service_keys": list(service_keys),
                    "prefix": prefix,
                },
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None


__all__ = ["PostgresSubscriptionRepository", "managed_connection"]
