"""API routes exposing subscription purchase and entitlement state."""
from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ... import app_context
from ..entitlements import EntitlementError
from ..feature_gates import EntitlementContext
from ..schemas.subscriptions import (
    CreditConsumptionResponse,
    EntitlementsResponse,
    SubscriptionListResponse,
    SubscriptionOut,
    SubscriptionPurchaseRequest,
    SubscriptionPurchaseResponse,
)
from ..services.subscriptions import get_entitlement_service, get_subscription_service
from ..subscriptions import PurchaseRequest

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("", response_model=SubscriptionListResponse)
def list_subscriptions(*, current_user=Depends(_get_current_user)) -> SubscriptionListResponse:
    service = get_subscription_service()
    try:
        subscriptions = service.list_subscriptions(str(current_user.id))
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionListResponse(
        items=[SubscriptionOut.from_subscription(sub) for sub in subscriptions]
    )


@router.post(
    "",
    response_model=SubscriptionPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def purchase_subscription(
    payload: SubscriptionPurchaseRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionPurchaseResponse:
    if getattr(current_user, "role", "customer") != "customer":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only customers can subscribe")

    service = get_subscription_service()
    request = PurchaseRequest(
        user_id=str(current_user.id),
        service_key=payload.service_key,
        is_global=payload.is_global,
        subscription_type=payload.subscription_type,
        amount=payload.amount,
        remaining_credits=payload.remaining_credits,
    )
    try:
        result = service.purchase(request)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionPurchaseResponse.from_result(result)


@router.post("/{service_key}/consume-credit", response_model=CreditConsumptionResponse)
def consume_credit(
    service_key: str,
    *,
    current_user=Depends(_get_current_user),
) -> CreditConsumptionResponse:
    service = get_subscription_service()
    try:
        consumption = service.consume_credit(str(current_user.id), service_key)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return CreditConsumptionResponse.from_consumption(consumption)


@router.get("/entitlements", response_model=EntitlementsResponse)
def get_entitlements(*, current_user=Depends(_get_current_user)) -> EntitlementsResponse:
    """Return the unlock map clients use to render locked services."""

    user_id = str(current_user.id)
    try:
        active = [
            sub
            for sub in get_subscription_service().list_subscriptions(user_id)
            if sub.is_active
        ]
        context = EntitlementContext.for_user(
            get_entitlement_service(),
            user_id,
            subscriptions=active,
        )
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return EntitlementsResponse(
        unlocked=dict(context.unlocked),
        subscriptions=[SubscriptionOut.from_subscription(sub) for sub in context.subscriptions],
    )
