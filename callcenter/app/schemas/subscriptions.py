"""API schemas for subscription endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..entitlements import Subscription, SubscriptionType
from ..subscriptions import CreditConsumption, PurchaseResult


class SubscriptionPurchaseRequest(BaseModel):
    service_key: Optional[str] = Field(
        default=None,
        alias="serviceKey",
        validation_alias=AliasChoices("serviceKey", "serviceId", "service_key"),
    )
    is_global: bool = Field(default=False, alias="isGlobal")
    subscription_type: Optional[str] = Field(default=None, alias="subscriptionType")
    amount: Optional[float] = None
    remaining_credits: Optional[int] = Field(default=None, alias="remainingCredits")

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionOut(BaseModel):
    id: str
    service_key: Optional[str] = Field(default=None, alias="serviceKey")
    is_global: bool = Field(alias="isGlobal")
    subscription_type: SubscriptionType = Field(alias="subscriptionType")
    remaining_credits: int = Field(alias="remainingCredits")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    is_active: bool = Field(alias="isActive")
    amount: float
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionOut":
        return cls(
            id=subscription.id,
            service_key=subscription.service_key,
            is_global=subscription.is_global,
            subscription_type=subscription.subscription_type,
            remaining_credits=subscription.remaining_credits,
            expires_at=subscription.expires_at,
            is_active=subscription.is_active,
            amount=subscription.amount,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionListResponse(BaseModel):
    items: List[SubscriptionOut]


class SubscriptionPurchaseResponse(BaseModel):
    subscription: SubscriptionOut
    superseded_ids: List[str] = Field(default_factory=list, alias="supersededIds")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: PurchaseResult) -> "SubscriptionPurchaseResponse":
        return cls(
            subscription=SubscriptionOut.from_subscription(result.subscription),
            superseded_ids=[sub.id for sub in result.superseded],
        )


class CreditConsumptionResponse(BaseModel):
    subscription: SubscriptionOut
    remaining_credits: int = Field(alias="remainingCredits")
    exhausted: bool

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_consumption(cls, consumption: CreditConsumption) -> "CreditConsumptionResponse":
        return cls(
            subscription=SubscriptionOut.from_subscription(consumption.subscription),
            remaining_credits=consumption.remaining_credits,
            exhausted=consumption.exhausted,
        )


class EntitlementsResponse(BaseModel):
    unlocked: Dict[str, bool]
    subscriptions: List[SubscriptionOut] = Field(default_factory=list)
