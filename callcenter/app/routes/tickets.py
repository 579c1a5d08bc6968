"""API routes for support tickets."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ... import app_context
from ...user_directory import STAFF_ROLES
from ..entitlements import EntitlementError
from ..schemas.tickets import (
    RatingCreate,
    RatingResponse,
    Ticket,
    TicketCreate,
    TicketCreateResponse,
    TicketListResponse,
    TicketUpdate,
)
from ..services import tickets as tickets_service
from ..services.subscriptions import get_gated_action_runner

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/tickets", tags=["tickets"])


@router.get("", response_model=TicketListResponse)
def list_tickets(*, current_user=Depends(_get_current_user)) -> TicketListResponse:
    staff = getattr(current_user, "role", None) in STAFF_ROLES
    try:
        tickets = tickets_service.list_tickets(str(current_user.id), staff=staff)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return TicketListResponse(items=tickets)


@router.post("", response_model=TicketCreateResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreate,
    *,
    current_user=Depends(_get_current_user),
) -> TicketCreateResponse:
    if getattr(current_user, "role", "customer") != "customer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only customers can create tickets")
    try:
        return tickets_service.create_ticket(
            str(current_user.id),
            payload,
            runner=get_gated_action_runner(),
        )
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc


@router.post("/{ticket_id}/ratings", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
def rate_ticket(
    ticket_id: str,
    payload: RatingCreate,
    *,
    current_user=Depends(_get_current_user),
) -> RatingResponse:
    try:
        tickets_service.rate_ticket(ticket_id, str(current_user.id), payload)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return RatingResponse(message="Rating submitted")


@router.put("/{ticket_id}", response_model=Ticket)
def update_ticket(
    ticket_id: str,
    payload: TicketUpdate,
    *,
    current_user=Depends(_get_current_user),
) -> Ticket:
    if getattr(current_user, "role", None) not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only staff can update tickets")
    try:
        return tickets_service.update_ticket(ticket_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
