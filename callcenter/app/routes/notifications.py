"""API routes for notification interactions."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status

from ... import app_context
from ..schemas.notifications import (
    NotificationListResponse,
    NotificationMarkReadRequest,
    NotificationMarkReadResponse,
    NotificationUnreadCount,
)
from ..services import notifications as notifications_service

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


_DEFAULT_PAGE_SIZE = 20
_MAX_PAGE_SIZE = 100

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    *,
    cursor: Optional[str] = Query(default=None),
    limit: int = Query(
        default=_DEFAULT_PAGE_SIZE,
        ge=1,
        le=_MAX_PAGE_SIZE,
    ),
    current_user=Depends(_get_current_user),
) -> NotificationListResponse:
    """Return paginated notifications for the authenticated user."""

    try:
        return notifications_service.list_notifications(
            str(current_user.id),
            limit=limit,
            cursor=cursor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/unread_count", response_model=NotificationUnreadCount)
def get_unread_count(*, current_user=Depends(_get_current_user)) -> NotificationUnreadCount:
    """Return the unread notification count for the current user."""

    count = notifications_service.unread_count(str(current_user.id))
    return NotificationUnreadCount(count=count)


@router.post("/mark_read", response_model=NotificationMarkReadResponse)
def mark_notifications_read(
    payload: NotificationMarkReadRequest,
    *,
    current_user=Depends(_get_current_user),
) -> NotificationMarkReadResponse:
    """Mark the provided notifications as read for the current user."""

    user_id = str(current_user.id)
    updated_ids = notifications_service.mark_read(payload.ids, user_id=user_id)
    unread_count = notifications_service.unread_count(user_id)
    return NotificationMarkReadResponse(
        updated_ids=updated_ids,
        unread_count=unread_count,
    )


@router.post("/mark_all_read", response_model=NotificationMarkReadResponse)
def mark_all_notifications_read(*, current_user=Depends(_get_current_user)) -> NotificationMarkReadResponse:
    user_id = str(current_user.id)
    updated_ids = notifications_service.mark_all_read(user_id)
    return NotificationMarkReadResponse(
        updated_ids=updated_ids,
        unread_count=notifications_service.unread_count(user_id),
    )


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: str, *, current_user=Depends(_get_current_user)) -> Response:
    if not notifications_service.delete_notification(notification_id, str(current_user.id)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
