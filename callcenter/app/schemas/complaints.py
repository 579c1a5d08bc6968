from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ComplaintStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ComplaintCreate(BaseModel):
    subject: str = Field(min_length=3, max_length=255)
    description: str = Field(min_length=10)
    related_ticket: Optional[str] = Field(default=None, alias="relatedTicket", max_length=64)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("subject", "description", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("related_ticket")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class Complaint(BaseModel):
    id: str
    customer_id: str = Field(alias="customerId")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    subject: str
    description: str
    status: ComplaintStatus
    related_ticket: Optional[str] = Field(default=None, alias="relatedTicket")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ComplaintListResponse(BaseModel):
    items: List[Complaint]


class ComplaintStatusUpdate(BaseModel):
    status: ComplaintStatus
