from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: str = Field(default="general", max_length=100)
    priority: TicketPriority = TicketPriority.MEDIUM

    @field_validator("title", "description", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class Ticket(BaseModel):
    id: str
    ticket_number: int = Field(alias="ticketNumber")
    customer_id: str = Field(alias="customerId")
    title: str
    description: str
    category: str
    priority: TicketPriority
    status: TicketStatus
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    rated: bool = False
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def display_id(self) -> str:
        return f"TICKET-{self.ticket_number:03d}"


class TicketCreateResponse(BaseModel):
    ticket: Ticket
    display_id: str = Field(alias="displayId")
    entitlement_source: str = Field(alias="entitlementSource")
    remaining_credits: Optional[int] = Field(default=None, alias="remainingCredits")

    model_config = ConfigDict(populate_by_name=True)


class TicketListResponse(BaseModel):
    items: List[Ticket]


class TicketUpdate(BaseModel):
    """Staff triage changes; omitted fields keep their current value."""

    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    assigned_to: Optional[UUID] = Field(default=None, alias="assignedTo")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_change(self) -> "TicketUpdate":
        if self.status is None and self.priority is None and self.assigned_to is None:
            raise ValueError("at least one of status, priority or assignedTo is required")
        return self


class RatingCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=500)

    @field_validator("feedback")
    @classmethod
    def _strip_feedback(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class RatingResponse(BaseModel):
    message: str
