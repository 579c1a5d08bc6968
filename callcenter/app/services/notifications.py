from __future__ import annotations

import base64
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ... import app_context
from ...user_directory import list_user_ids_by_roles
from ..schemas.notifications import (
    Notification,
    NotificationCreate,
    NotificationListResponse,
    NotificationType,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_NOTIFICATION_COLUMNS = """
    n.id::text AS id,
    n.user_id::text AS user_id,
    n.type,
    n.title,
    n.message,
    n.related_id::text AS related_id,
    n.is_read,
    n.created_at
"""


@contextmanager
def _ensure_connection(conn: Optional[PgConnection]):
    if conn is not None:
        yield conn
        return
    owned_conn = app_context.get_conn()
    try:
        yield owned_conn
        owned_conn.commit()
    except Exception:
        owned_conn.rollback()
        raise
    finally:
        owned_conn.close()


def _encode_cursor(created_at: datetime, notification_id: str) -> str:
    payload = {"created_at": created_at.isoformat(), "id": notification_id}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        payload = json.loads(raw)
        created_at = datetime.fromisoformat(payload["created_at"])
        notification_id = str(payload["id"])
    except Exception as exc:
        raise ValueError("Invalid cursor") from exc
    return created_at, notification_id


def _coerce_notification(row: Mapping[str, Any]) -> Notification:
    data = {
        "id": str(row["id"]),
        "userId": str(row["user_id"]),
        "type": row["type"],
        "title": row["title"],
        "message": row["message"],
        "relatedId": str(row["related_id"]) if row.get("related_id") else None,
        "isRead": row.get("is_read", False),
        "createdAt": row["created_at"],
    }
    return Notification.model_validate(data)


def create_notification(
    event: NotificationCreate | Mapping[str, Any],
    *,
    conn: Optional[PgConnection] = None,
) -> Notification:
    if not isinstance(event, NotificationCreate):
        event = NotificationCreate.model_validate(event)

    with _ensure_connection(conn) as connection:
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO notifications (user_id, title, message, type, related_id, created_at)
                VALUES (%s, %s, %s, %s, %s, NOW())
                RETURNING id::text AS id,
                          user_id::text AS user_id,
                          type,
                          title,
                          message,
                          related_id::text AS related_id,
                          is_read,
                          created_at
                """,
                (
                    event.user_id,
                    event.title,
                    event.message,
                    event.type.value,
                    event.related_id,
                ),
            )
            row = cur.fetchone()
    if row is None:
        raise RuntimeError("Failed to insert notification")
    return _coerce_notification(row)


def notify_users(
    user_ids: Iterable[str],
    *,
    title: str,
    message: str,
    type: NotificationType,
    related_id: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> List[Notification]:
    recipients = list(dict.fromkeys(str(user_id) for user_id in user_ids))
    if not recipients:
        return []

    created: List[Notification] = []
    with _ensure_connection(conn) as connection:
        for user_id in recipients:
            created.append(
                create_notification(
                    NotificationCreate(
                        user_id=user_id,
                        type=type,
                        title=title,
                        message=message,
                        related_id=related_id,
                    ),
                    conn=connection,
                )
            )
    logger.info(
        "Notifications dispatched",
        extra={"notification_type": type.value, "recipients": len(created), "related_id": related_id},
    )
    return created


def notify_roles(
    roles: Sequence[str],
    *,
    title: str,
    message: str,
    type: NotificationType,
    related_id: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> List[Notification]:
    """Fan a notification out to every user holding one of ``roles``."""

    with _ensure_connection(conn) as connection:
        user_ids = list_user_ids_by_roles(connection, roles)
        return notify_users(
            user_ids,
            title=title,
            message=message,
            type=type,
            related_id=related_id,
            conn=connection,
        )


def list_notifications(
    user_id: str,
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> NotificationListResponse:
    page_size = max(1, min(int(limit), MAX_PAGE_SIZE))

    params: List[Any] = [user_id]
    cursor_clause = ""
    if cursor:
        created_at, notification_id = _decode_cursor(cursor)
        cursor_clause = (
            " AND (n.created_at < %s OR (n.created_at = %s AND n.id::text < %s))"
        )
        params.extend([created_at, created_at, notification_id])

    params.append(page_size + 1)

    query = f"""
        SELECT {_NOTIFICATION_COLUMNS}
        FROM notifications n
        WHERE n.user_id = %s{cursor_clause}
        ORDER BY n.created_at DESC, n.id::text DESC
        LIMIT %s
    """

    with _ensure_connection(conn) as connection:
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

    next_cursor = None
    if len(rows) > page_size:
        rows = rows[:page_size]
        last_row = rows[-1]
        next_cursor = _encode_cursor(last_row["created_at"], str(last_row["id"]))

    notifications = [_coerce_notification(row) for row in rows]
    return NotificationListResponse(items=notifications, nextCursor=next_cursor)


def unread_count(
    user_id: str,
    *,
    conn: Optional[PgConnection] = None,
) -> int:
    with _ensure_connection(conn) as connection:
        with connection.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM notifications WHERE user_id = %s AND is_read = FALSE",
                (user_id,),
            )
            row = cur.fetchone()
    return int(row[0]) if row else 0


def mark_read(
    notification_ids: Sequence[str],
    user_id: str,
    *,
    conn: Optional[PgConnection] = None,
) -> List[str]:
    ids = list(dict.fromkeys(str(notification_id) for notification_id in notification_ids))
    if not ids:
        return []

    with _ensure_connection(conn) as connection:
        with connection.cursor() as cur:
            cur.execute(
                """
                UPDATE notifications
                SET is_read = TRUE
                WHERE user_id = %s AND id::text = ANY(%s)
                RETURNING id::text
                """,
                (user_id, ids),
            )
            rows = cur.fetchall()
    return [row[0] for row in rows]


def mark_all_read(
    user_id: str,
    *,
    conn: Optional[PgConnection] = None,
) -> List[str]:
    with _ensure_connection(conn) as connection:
        with connection.cursor() as cur:
            cur.execute(
                """
                UPDATE notifications
                SET is_read = TRUE
                WHERE user_id = %s AND is_read = FALSE
                RETURNING id::text
                """,
                (user_id,),
            )
            rows = cur.fetchall()
    return [row[0] for row in rows]


def delete_notification(
    notification_id: str,
    user_id: str,
    *,
    conn: Optional[PgConnection] = None,
) -> bool:
    """Delete one of the user's own notifications; ``False`` when it does not exist."""

    with _ensure_connection(conn) as connection:
        with connection.cursor() as cur:
            cur.execute(
                "DELETE FROM notifications WHERE id::text = %s AND user_id = %s RETURNING id::text",
                (notification_id, user_id),
            )
            row = cur.fetchone()
    return row is not None


__all__ = [
    "create_notification",
    "delete_notification",
    "list_notifications",
    "mark_all_read",
    "mark_read",
    "notify_roles",
    "notify_users",
    "unread_count",
    "NotificationType",
]
