"""Domain models for subscription purchases and credit consumption."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import Subscription


class PurchaseRequest(BaseModel):
    """Raw purchase input; validated by the subscription service."""

    user_id: str
    service_key: Optional[str] = None
    is_global: bool = False
    subscription_type: Optional[str] = None
    amount: Optional[float] = None
    remaining_credits: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class PurchaseResult(BaseModel):
    """The newly activated subscription and the rows it superseded."""

    subscription: Subscription
    superseded: List[Subscription] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class CreditConsumption(BaseModel):
    """Outcome of charging one credit against a per-use subscription."""

    subscription: Subscription
    remaining_credits: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def exhausted(self) -> bool:
        return self.remaining_credits <= 0


class SubscriptionAuditEventType(str, Enum):
    """Audit event categories emitted by the subscription subsystem."""

    PURCHASED = "subscription_purchased"
    SUPERSEDED = "subscription_superseded"
    CREDIT_CONSUMED = "credit_consumed"
    EXHAUSTED = "subscription_exhausted"


class SubscriptionAuditEvent(BaseModel):
    """Structured audit event for logs and payment history."""

    event_type: SubscriptionAuditEventType
    subscription_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
