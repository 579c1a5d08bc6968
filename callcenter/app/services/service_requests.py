from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ...user_directory import ADMIN_ROLES, STAFF_ROLES, fetch_user_contact
from ..entitlements import ServiceFamily
from ..feature_gates import GatedActionRunner
from ..schemas.notifications import NotificationType
from ..schemas.service_requests import (
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestCreateResponse,
    ServiceRequestStatus,
    ServiceRequestUpdate,
)
from ..schemas.tickets import RatingCreate
from ..subscriptions.repository import managed_connection
from . import notifications as notifications_service

logger = logging.getLogger(__name__)

HOME_SERVICE_KEY = ServiceFamily.HOME_SERVICE.value

_REQUEST_COLUMNS = """
    id::text AS id,
    customer_id::text AS customer_id,
    service,
    description,
    scheduled_date,
    scheduled_time,
    status::text AS status,
    assigned_to::text AS assigned_to,
    rated,
    created_at,
    updated_at
"""


def _coerce_request(row: Mapping[str, Any]) -> ServiceRequest:
    return ServiceRequest.model_validate(
        {
            "id": str(row["id"]),
            "customerId": str(row["customer_id"]),
            "service": row["service"],
            "description": row.get("description"),
            "scheduledDate": row.get("scheduled_date"),
            "scheduledTime": row.get("scheduled_time"),
            "status": row["status"],
            "assignedTo": row.get("assigned_to"),
            "rated": bool(row.get("rated")),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
    )


def insert_service_request(
    conn: PgConnection,
    customer_id: str,
    payload: ServiceRequestCreate,
) -> ServiceRequest:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO service_requests (
                customer_id, service, description, scheduled_date, scheduled_time,
                status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, 'pending', NOW(), NOW())
            RETURNING {_REQUEST_COLUMNS}
            """,
            (
                customer_id,
                payload.service,
                payload.description,
                payload.scheduled_date,
                payload.scheduled_time,
            ),
        )
        row = cur.fetchone()
    if row is None:
        raise RuntimeError("Failed to insert service request")
    return _coerce_request(row)


def list_service_requests(
    user_id: str,
    *,
    staff: bool = False,
    conn: Optional[PgConnection] = None,
) -> List[ServiceRequest]:
    clause = "TRUE" if staff else "customer_id = %s"
    params = () if staff else (user_id,)
    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM service_requests WHERE {clause} ORDER BY created_at DESC",
                params,
            )
            rows = cur.fetchall() or []
    return [_coerce_request(row) for row in rows]


def _notify_staff_request_created(customer_id: str, request: ServiceRequest) -> None:
    with managed_connection() as (connection, _managed):
        contact = fetch_user_contact(connection, customer_id)
        customer = f"{contact.display_name} ({contact.email})" if contact else customer_id
        notifications_service.notify_roles(
            STAFF_ROLES,
            title="New service request",
            message=(
                f"Customer {customer} requested {request.service} "
                f"on {request.scheduled_date.isoformat() if request.scheduled_date else 'an open date'}."
            ),
            type=NotificationType.SERVICE,
            related_id=request.id,
            conn=connection,
        )


def _notify_admins_request_rated(customer_id: str, request: ServiceRequest, score: int) -> None:
    with managed_connection() as (connection, _managed):
        contact = fetch_user_contact(connection, customer_id)
        customer = f"{contact.display_name} ({contact.email})" if contact else customer_id
        notifications_service.notify_roles(
            ADMIN_ROLES,
            title="New service rating",
            message=f"Customer {customer} rated the {request.service} request {score}/5.",
            type=NotificationType.RATING,
            related_id=request.id,
            conn=connection,
        )


def create_service_request(
    customer_id: str,
    payload: ServiceRequestCreate,
    *,
    runner: GatedActionRunner,
) -> ServiceRequestCreateResponse:
    result = runner.run(
        customer_id,
        HOME_SERVICE_KEY,
        lambda conn: insert_service_request(conn, customer_id, payload),
        on_committed=lambda request: _notify_staff_request_created(customer_id, request),
    )
    request = result.value
    logger.info(
        "Service request created",
        extra={
            "service_request_id": request.id,
            "customer_id": customer_id,
            "entitlement_source": result.decision.source.value,
        },
    )
    return ServiceRequestCreateResponse(
        service_request=request,
        entitlement_source=result.decision.source.value,
        remaining_credits=result.consumption.remaining_credits if result.consumption else None,
    )


def rate_service_request(
    request_id: str,
    customer_id: str,
    rating: RatingCreate,
    *,
    conn: Optional[PgConnection] = None,
) -> ServiceRequest:
    """Record a customer's rating of their own completed service request."""

    with managed_connection(conn) as (connection, _managed):
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                SELECT {_REQUEST_COLUMNS}
                FROM service_requests
                WHERE id::text = %s AND customer_id = %s
                FOR UPDATE
                """,
                (request_id, customer_id),
            )
            row = cur.fetchone()
            if row is None:
                raise LookupError("Service request not found")
            request = _coerce_request(row)
            if request.status != ServiceRequestStatus.COMPLETED:
                raise ValueError("Service request must be completed before it can be rated")
            if not request.assigned_to:
                raise ValueError("No employee is assigned to this service request")
            if request.rated:
                raise ValueError("Service request has already been rated")

            cur.execute(
                """
                INSERT INTO user_ratings (user_id, service_id, entity_type, rating, feedback, created_at)
                VALUES (%s, %s, 'service_request', %s, %s, NOW())
                """,
                (customer_id, request.id, rating.rating, rating.feedback),
            )
            cur.execute(
                f"""
                UPDATE service_requests
                SET rated = TRUE, updated_at = NOW()
                WHERE id::text = %s
                RETURNING {_REQUEST_COLUMNS}
                """,
                (request.id,),
            )
            updated_row = cur.fetchone()
    updated = _coerce_request(updated_row) if updated_row else request

    try:
        _notify_admins_request_rated(customer_id, updated, rating.rating)
    except Exception:
        logger.exception(
            "Failed to notify admins about service rating",
            extra={"service_request_id": updated.id},
        )

    return updated


def _notify_customer_request_updated(request: ServiceRequest) -> None:
    notifications_service.notify_users(
        [request.customer_id],
        title="Service request updated",
        message=f"Your {request.service} request is now {request.status.value}.",
        type=NotificationType.SERVICE,
        related_id=request.id,
    )


def update_service_request(
    request_id: str,
    payload: ServiceRequestUpdate,
    *,
    conn: Optional[PgConnection] = None,
) -> ServiceRequest:
    with managed_connection(conn) as (connection, _managed):
        if payload.assigned_to is not None:
            assignee = fetch_user_contact(connection, str(payload.assigned_to))
            if assignee is None or assignee.role not in STAFF_ROLES:
                raise ValueError("Service requests can only be assigned to an employee or admin")
        with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(
                f"""
                UPDATE service_requests
                SET status = COALESCE(%s::service_status, status),
                    assigned_to = COALESCE(%s::uuid, assigned_to),
                    updated_at = NOW()
                WHERE id::text = %s
                RETURNING {_REQUEST_COLUMNS}
                """,
                (
                    payload.status.value if payload.status else None,
                    str(payload.assigned_to) if payload.assigned_to else None,
                    request_id,
                ),
            )
            row = cur.fetchone()
    if row is None:
        raise LookupError("Service request not found")
    request = _coerce_request(row)
    logger.info(
        "Service request updated",
        extra={
            "service_request_id": request.id,
            "status": request.status.value,
            "assigned_to": request.assigned_to,
        },
    )

    if payload.status is not None:
        try:
            _notify_customer_request_updated(request)
        except Exception:
            logger.exception(
                "Failed to notify customer about service request update",
                extra={"service_request_id": request.id},
            )

    return request


__all__ = [
    "HOME_SERVICE_KEY",
    "create_service_request",
    "insert_service_request",
    "list_service_requests",
    "rate_service_request",
    "update_service_request",
]
