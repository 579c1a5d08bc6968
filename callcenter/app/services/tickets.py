from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ...user_directory import ADMIN_ROLES, STAFF_ROLES, fetch_user_contact
from ..entitlements import ServiceFamily
from ..feature_gates import GatedActionRunner
from ..schemas.notifications import NotificationType
from ..schemas.tickets import (
    RatingCreate,
    Ticket,
    TicketCreate,
    TicketCreateResponse,
    TicketStatus,
    TicketUpdate,
)
from ..subscriptions.repository import managed_connection
from . import notifications as notifications_service

logger = logging.getLogger(__name__)

TICKETING_SERVICE_KEY = ServiceFamily.TICKETING.value

_TICKET_COLUMNS = """
    id::text AS id,
    ticket_number,
    customer_id::text AS customer_id,
    title,
    description,
    category,
    priority::text AS priority,
    status::text AS status,
    assigned_to::text AS assigned_to,
    rated,
    created_at,
    updated_at
"""


def _coerce_ticket(row: Mapping[str, Any]) -> Ticket:
    return Ticket.model_validate(
        {
            "id": str(row["id"]),
            "ticketNumber": row["ticket_number"],
            "customerId": str(row["customer_id"]),
            "title": row["title"],
            "description": row["description"],
            "category": row["category"],
            "priority": row["priority"],
            "status": row["status"],
            "assignedTo": row.get("assigned_to"),
            "rated": bool(row.get("rated")),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )


def insert_ticket(conn: PgConnection, customer_id: str, payload: TicketCreate) -> Ticket:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO tickets (customer_id, title, description, category, priority, rated, is_archived)
            VALUES (%s, %s, %s, %s, %s, FALSE, FALSE)
            RETURNING {_TICKET_COLUMNS}
            """,
            (
                customer_id,
                payload.title,
                payload.description,
                payload.category,
                payload.priority.value,
            ),
        )
        row = cur.fetchone()
    if row is None:
        raise RuntimeError("Failed to insert ticket")
    return _coerce_ticket(row)


def list_tickets(
    user_id: str,
    *,
    staff: bool = False,
    conn: Optional[PgConnection] = None,
) -> List[Ticket]:
    clause = "is_archived = FALSE" if staff else "customer_id = %s AND is_archived = FALSE"
    params = () if staff else (user_id,)
    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE {clause} ORDER BY created_at DESC",
                params,
            )
            rows = cur.fetchall() or []
    return [_coerce_ticket(row) for row in rows]


def _notify_staff_ticket_created(customer_id: str, ticket: Ticket) -> None:
    with managed_connection() as (connection, _managed):
        contact = fetch_user_contact(connection, customer_id)
        customer = f"{contact.display_name} ({contact.email})" if contact else customer_id
        notifications_service.notify_roles(
            STAFF_ROLES,
            title="New ticket",
            message=f"Customer {customer} created ticket #{ticket.display_id}: {ticket.title}.",
            type=NotificationType.TICKET,
            related_id=ticket.id,
            conn=connection,
        )


def _notify_admins_ticket_rated(customer_id: str, ticket: Ticket, score: int) -> None:
    with managed_connection() as (connection, _managed):
        contact = fetch_user_contact(connection, customer_id)
        customer = f"{contact.display_name} ({contact.email})" if contact else customer_id
        notifications_service.notify_roles(
            ADMIN_ROLES,
            title="New ticket rating",
            message=f"Customer {customer} rated ticket #{ticket.display_id} {score}/5.",
            type=NotificationType.RATING,
            related_id=ticket.id,
            conn=connection,
        )


def create_ticket(
    customer_id: str,
    payload: TicketCreate,
    *,
    runner: GatedActionRunner,
) -> TicketCreateResponse:
    """Create a ticket once the customer's ticketing entitlement has been charged."""

    result = runner.run(
        customer_id,
        TICKETING_SERVICE_KEY,
        lambda conn: insert_ticket(conn, customer_id, payload),
        on_committed=lambda ticket: _notify_staff_ticket_created(customer_id, ticket),
    )
    ticket = result.value
    logger.info(
        "Ticket created",
        extra={
            "ticket_id": ticket.id,
            "customer_id": customer_id,
            "entitlement_source": result.decision.source.value,
        },
    )
    return TicketCreateResponse(
        ticket=ticket,
        display_id=ticket.display_id,
        entitlement_source=result.decision.source.value,
        remaining_credits=result.consumption.remaining_credits if result.consumption else None,
    )


def rate_ticket(
    ticket_id: str,
    customer_id: str,
    rating: RatingCreate,
    *,
    conn: Optional[PgConnection] = None,
) -> Ticket:
    """Record a customer's rating of their own resolved ticket."""

    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_TICKET_COLUMNS}
                FROM tickets
                WHERE id::text = %s AND customer_id = %s AND is_archived = FALSE
                FOR UPDATE
                """,
                (ticket_id, customer_id),
            )
            row = cur.fetchone()
            if row is None:
                raise LookupError("Ticket not found")
            ticket = _coerce_ticket(row)
            if ticket.status != TicketStatus.RESOLVED:
                raise PermissionError("Only resolved tickets can be rated")
            if ticket.rated:
                raise ValueError("Ticket has already been rated")

            cur.execute(
                """
                INSERT INTO user_ratings (user_id, service_id, entity_type, rating, feedback, created_at)
                VALUES (%s, %s, 'ticket', %s, %s, NOW())
                """,
                (customer_id, ticket.id, rating.rating, rating.feedback),
            )
            cur.execute(
                f"""
                UPDATE tickets
                SET rated = TRUE, updated_at = NOW()
                WHERE id::text = %s
                RETURNING {_TICKET_COLUMNS}
                """,
                (ticket.id,),
            )
            updated_row = cur.fetchone()
    updated = _coerce_ticket(updated_row) if updated_row else ticket

    try:
        _notify_admins_ticket_rated(customer_id, updated, rating.rating)
    except Exception:
        logger.exception("Failed to notify admins about ticket rating", extra={"ticket_id": updated.id})

    return updated


def _notify_customer_ticket_updated(ticket: Ticket) -> None:
    notifications_service.notify_users(
        [ticket.customer_id],
        title="Ticket updated",
        message=f"Your ticket #{ticket.display_id} is now {ticket.status.value}.",
        type=NotificationType.TICKET,
        related_id=ticket.id,
    )


def update_ticket(
    ticket_id: str,
    payload: TicketUpdate,
    *,
    conn: Optional[PgConnection] = None,
) -> Ticket:
    """Apply a staff triage change; the customer hears about status changes."""

    with managed_connection(conn) as (connection, _managed):
        if payload.assigned_to is not None:
            assignee = fetch_user_contact(connection, str(payload.assigned_to))
            if assignee is None or assignee.role not in STAFF_ROLES:
                raise ValueError("Tickets can only be assigned to an employee or admin")
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE tickets
                SET status = COALESCE(%s::ticket_status, status),
                    priority = COALESCE(%s::ticket_priority, priority),
                    assigned_to = COALESCE(%s::uuid, assigned_to),
                    updated_at = NOW()
                WHERE id::text = %s AND is_archived = FALSE
                RETURNING {_TICKET_COLUMNS}
                """,
                (
                    payload.status.value if payload.status else None,
                    payload.priority.value if payload.priority else None,
                    str(payload.assigned_to) if payload.assigned_to else None,
                    ticket_id,
                ),
            )
            row = cur.fetchone()
    if row is None:
        raise LookupError("Ticket not found")
    ticket = _coerce_ticket(row)
    logger.info(
        "Ticket updated",
        extra={"ticket_id": ticket.id, "status": ticket.status.value, "assigned_to": ticket.assigned_to},
    )

    if payload.status is not None:
        try:
            _notify_customer_ticket_updated(ticket)
        except Exception:
            logger.exception("Failed to notify customer about ticket update", extra={"ticket_id": ticket.id})

    return ticket


__all__ = [
    "TICKETING_SERVICE_KEY",
    "create_ticket",
    "insert_ticket",
    "list_tickets",
    "rate_ticket",
    "update_ticket",
]
