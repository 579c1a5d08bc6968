from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ServiceRequestStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceRequestCreate(BaseModel):
    service: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    scheduled_date: date = Field(alias="scheduledDate")
    scheduled_time: Optional[time] = Field(default=None, alias="scheduledTime")

    model_config = ConfigDict(populate_by_name=True)


class ServiceRequest(BaseModel):
    id: str
    customer_id: str = Field(alias="customerId")
    service: str
    description: Optional[str] = None
    scheduled_date: Optional[date] = Field(default=None, alias="scheduledDate")
    scheduled_time: Optional[time] = Field(default=None, alias="scheduledTime")
    status: ServiceRequestStatus
    assigned_to: Optional[str] = Field(default=None, alias="assignedTo")
    rated: bool = False
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ServiceRequestCreateResponse(BaseModel):
    service_request: ServiceRequest = Field(alias="serviceRequest")
    entitlement_source: str = Field(alias="entitlementSource")
    remaining_credits: Optional[int] = Field(default=None, alias="remainingCredits")

    model_config = ConfigDict(populate_by_name=True)


class ServiceRequestListResponse(BaseModel):
    items: List[ServiceRequest]


class ServiceRequestUpdate(BaseModel):
    status: Optional[ServiceRequestStatus] = None
    assigned_to: Optional[UUID] = Field(default=None, alias="assignedTo")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_change(self) -> "ServiceRequestUpdate":
        if self.status is None and self.assigned_to is None:
            raise ValueError("status or assignedTo is required")
        return self
