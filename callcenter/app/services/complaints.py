from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ...user_directory import STAFF_ROLES, fetch_user_contact
from ..schemas.complaints import Complaint, ComplaintCreate, ComplaintStatus
from ..schemas.notifications import NotificationType
from ..subscriptions.repository import managed_connection
from . import notifications as notifications_service

logger = logging.getLogger(__name__)

_COMPLAINT_COLUMNS = """
    c.id::text AS id,
    c.customer_id::text AS customer_id,
    u.name AS customer_name,
    c.subject,
    c.description,
    c.status,
    c.related_ticket,
    c.created_at,
    c.updated_at
"""


def _coerce_complaint(row: Mapping[str, Any]) -> Complaint:
    return Complaint.model_validate(
        {
            "id": str(row["id"]),
            "customerId": str(row["customer_id"]),
            "customerName": row.get("customer_name"),
            "subject": row["subject"],
            "description": row["description"],
            "status": row["status"],
            "relatedTicket": row.get("related_ticket"),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )


def _fetch_complaint(cur, complaint_id: str) -> Optional[Mapping[str, Any]]:
    cur.execute(
        f"""
        SELECT {_COMPLAINT_COLUMNS}
        FROM complaints c
        LEFT JOIN users u ON u.id = c.customer_id
        WHERE c.id::text = %s
        """,
        (complaint_id,),
    )
    return cur.fetchone()


def create_complaint(
    customer_id: str,
    payload: ComplaintCreate,
    *,
    conn: Optional[PgConnection] = None,
) -> Complaint:
    """File a complaint and let staff know about it."""

    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO complaints (customer_id, subject, description, status, related_ticket)
                VALUES (%s, %s, %s, 'open', %s)
                RETURNING id::text AS id
                """,
                (customer_id, payload.subject, payload.description, payload.related_ticket),
            )
            inserted = cur.fetchone()
            if inserted is None:
                raise RuntimeError("Failed to insert complaint")
            row = _fetch_complaint(cur, inserted["id"])
    if row is None:
        raise RuntimeError("Failed to load complaint")
    complaint = _coerce_complaint(row)
    logger.info("Complaint filed", extra={"complaint_id": complaint.id, "customer_id": customer_id})

    try:
        _notify_staff_complaint_filed(complaint)
    except Exception:
        logger.exception("Failed to notify staff about complaint", extra={"complaint_id": complaint.id})

    return complaint


def list_complaints(
    user_id: str,
    *,
    staff: bool = False,
    conn: Optional[PgConnection] = None,
) -> List[Complaint]:
    clause = "TRUE" if staff else "c.customer_id = %s"
    params = () if staff else (user_id,)
    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_COMPLAINT_COLUMNS}
                FROM complaints c
                LEFT JOIN users u ON u.id = c.customer_id
                WHERE {clause}
                ORDER BY c.created_at DESC
                """,
                params,
            )
            rows = cur.fetchall() or []
    return [_coerce_complaint(row) for row in rows]


def update_complaint_status(
    complaint_id: str,
    new_status: ComplaintStatus,
    *,
    conn: Optional[PgConnection] = None,
) -> Complaint:
    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                """
                UPDATE complaints
                SET status = %s, updated_at = NOW()
                WHERE id::text = %s
                RETURNING id::text AS id
                """,
                (new_status.value, complaint_id),
            )
            if cur.fetchone() is None:
                raise LookupError("Complaint not found")
            row = _fetch_complaint(cur, complaint_id)
    if row is None:
        raise LookupError("Complaint not found")
    complaint = _coerce_complaint(row)

    try:
        _notify_customer_complaint_updated(complaint)
    except Exception:
        logger.exception("Failed to notify customer about complaint", extra={"complaint_id": complaint.id})

    return complaint


def _notify_staff_complaint_filed(complaint: Complaint) -> None:
    with managed_connection() as (connection, _managed):
        contact = fetch_user_contact(connection, complaint.customer_id)
        customer = f"{contact.display_name} ({contact.email})" if contact else complaint.customer_id
        notifications_service.notify_roles(
            STAFF_ROLES,
            title="New complaint",
            message=f"Customer {customer} filed a complaint: {complaint.subject}.",
            type=NotificationType.COMPLAINT,
            related_id=complaint.id,
            conn=connection,
        )


def _notify_customer_complaint_updated(complaint: Complaint) -> None:
    notifications_service.notify_users(
        [complaint.customer_id],
        title="Complaint updated",
        message=f'Your complaint "{complaint.subject}" is now {complaint.status.value}.',
        type=NotificationType.COMPLAINT,
        related_id=complaint.id,
    )


__all__ = [
    "create_complaint",
    "list_complaints",
    "update_complaint_status",
]
