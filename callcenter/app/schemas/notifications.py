from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    SUBSCRIPTION = "subscription"
    TICKET = "ticket"
    SERVICE = "service"
    RATING = "rating"
    COMPLAINT = "complaint"
    SYSTEM = "system"


class NotificationCreate(BaseModel):
    user_id: str = Field(alias="userId")
    type: NotificationType
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    related_id: Optional[str] = Field(default=None, alias="relatedId")

    model_config = ConfigDict(populate_by_name=True)


class Notification(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = Field(default=None, alias="relatedId")
    is_read: bool = Field(alias="isRead")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class NotificationListResponse(BaseModel):
    items: List[Notification]
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")

    model_config = ConfigDict(populate_by_name=True)


class NotificationMarkReadRequest(BaseModel):
    ids: List[str] = Field(min_length=1, validation_alias=AliasChoices("ids", "notificationIds"))

    model_config = ConfigDict(populate_by_name=True)


class NotificationMarkReadResponse(BaseModel):
    updated_ids: List[str] = Field(default_factory=list, alias="updatedIds")
    unread_count: int = Field(alias="unreadCount")

    model_config = ConfigDict(populate_by_name=True)


class NotificationUnreadCount(BaseModel):
    count: int
