"""API routes for home-service requests."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ... import app_context
from ...user_directory import STAFF_ROLES
from ..entitlements import EntitlementError
from ..schemas.service_requests import (
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestCreateResponse,
    ServiceRequestListResponse,
    ServiceRequestUpdate,
)
from ..schemas.tickets import RatingCreate, RatingResponse
from ..services import service_requests as service_requests_service
from ..services.subscriptions import get_gated_action_runner

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/services", tags=["services"])


@router.get("", response_model=ServiceRequestListResponse)
def list_service_requests(*, current_user=Depends(_get_current_user)) -> ServiceRequestListResponse:
    staff = getattr(current_user, "role", None) in STAFF_ROLES
    try:
        requests = service_requests_service.list_service_requests(str(current_user.id), staff=staff)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return ServiceRequestListResponse(items=requests)


@router.post("", response_model=ServiceRequestCreateResponse, status_code=status.HTTP_201_CREATED)
def create_service_request(
    payload: ServiceRequestCreate,
    *,
    current_user=Depends(_get_current_user),
) -> ServiceRequestCreateResponse:
    if getattr(current_user, "role", "customer") != "customer":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only customers can request home services",
        )
    try:
        return service_requests_service.create_service_request(
            str(current_user.id),
            payload,
            runner=get_gated_action_runner(),
        )
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc


@router.post("/{request_id}/ratings", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
def rate_service_request(
    request_id: str,
    payload: RatingCreate,
    *,
    current_user=Depends(_get_current_user),
) -> RatingResponse:
    try:
        service_requests_service.rate_service_request(request_id, str(current_user.id), payload)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return RatingResponse(message="Rating submitted")


@router.put("/{request_id}", response_model=ServiceRequest)
def update_service_request(
    request_id: str,
    payload: ServiceRequestUpdate,
    *,
    current_user=Depends(_get_current_user),
) -> ServiceRequest:
    if getattr(current_user, "role", None) not in STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can update service requests",
        )
    try:
        return service_requests_service.update_service_request(request_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
