"""Domain models for subscriptions and entitlement decisions."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceKey(str, Enum):
    """Canonical identifiers for purchasable services."""

    TICKETING_PER_USE = "ticketing-per-use"
    TICKETING_MONTHLY = "ticketing-monthly"
    HOME_SERVICE_PER_USE = "home-service-per-use"
    HOME_SERVICE_MONTHLY = "home-service-monthly"
    PREMIUM_MONITORING = "premium-monitoring"


class ServiceFamily(str, Enum):
    """Groups of service keys sharing one exclusivity scope."""

    TICKETING = "ticketing"
    HOME_SERVICE = "home-service"
    PREMIUM = "premium"


class SubscriptionType(str, Enum):
    """Supported billing modes."""

    MONTHLY = "monthly"
    PER_USE = "per-use"


class EntitlementSource(str, Enum):
    """Explains which rule granted (or refused) an entitlement."""

    PREMIUM_OVERRIDE = "premium_override"
    MONTHLY = "monthly"
    PER_USE = "per_use"
    NONE = "none"


class Subscription(BaseModel):
    """A persisted subscription row."""

    id: str
    user_id: str
    service_key: Optional[str] = None
    is_global: bool = False
    subscription_type: SubscriptionType
    remaining_credits: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    amount: float = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_monthly(self) -> bool:
        return self.subscription_type == SubscriptionType.MONTHLY

    @property
    def is_per_use(self) -> bool:
        return self.subscription_type == SubscriptionType.PER_USE

    def is_expired(self, now: datetime) -> bool:
        """Return ``True`` once ``now`` has passed ``expires_at``.

        Only meaningful for monthly subscriptions; a missing expiry never expires.
        """

        if self.expires_at is None:
            return False
        return now > self.expires_at

    def to_summary(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "service_key": self.service_key,
            "is_global": self.is_global,
            "subscription_type": self.subscription_type.value,
            "remaining_credits": self.remaining_credits,
            "is_active": self.is_active,
        }


class EntitlementDecision(BaseModel):
    """Outcome of evaluating a user's subscriptions against a requested key."""

    user_id: str
    requested_key: str
    unlocked: bool
    source: EntitlementSource = EntitlementSource.NONE
    subscription: Optional[Subscription] = None
    reason: Optional[str] = None
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def requires_credit(self) -> bool:
        """Whether acting on this decision must consume a per-use credit."""

        return self.unlocked and self.source == EntitlementSource.PER_USE
