"""API routes for customer complaints."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ... import app_context
from ...user_directory import STAFF_ROLES
from ..entitlements import EntitlementError
from ..schemas.complaints import (
    Complaint,
    ComplaintCreate,
    ComplaintListResponse,
    ComplaintStatusUpdate,
)
from ..services import complaints as complaints_service

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/complaints", tags=["complaints"])


@router.get("", response_model=ComplaintListResponse)
def list_complaints(*, current_user=Depends(_get_current_user)) -> ComplaintListResponse:
    staff = getattr(current_user, "role", None) in STAFF_ROLES
    try:
        complaints = complaints_service.list_complaints(str(current_user.id), staff=staff)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return ComplaintListResponse(items=complaints)


@router.post("", response_model=Complaint, status_code=status.HTTP_201_CREATED)
def create_complaint(
    payload: ComplaintCreate,
    *,
    current_user=Depends(_get_current_user),
) -> Complaint:
    if getattr(current_user, "role", "customer") != "customer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only customers can file complaints")
    try:
        return complaints_service.create_complaint(str(current_user.id), payload)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc


@router.put("/{complaint_id}/status", response_model=Complaint)
def update_complaint_status(
    complaint_id: str,
    payload: ComplaintStatusUpdate,
    *,
    current_user=Depends(_get_current_user),
) -> Complaint:
    if getattr(current_user, "role", None) not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only staff can update complaints")
    try:
        return complaints_service.update_complaint_status(complaint_id, payload.status)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
