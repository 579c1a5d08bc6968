"""Core service coordinating subscription purchases and credit consumption."""
from __future__ import annotations

import calendar
import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Protocol, Sequence

from ...entitlements_config import DEFAULT_PER_USE_CREDITS, MONTHLY_PERIOD_MONTHS
from ..entitlements.catalog import (
    expand_requested_key,
    get_service_definition,
    is_known_service_key,
    scope_keys_for,
)
from ..entitlements.exceptions import InsufficientCredit, InvalidPurchaseRequest
from ..entitlements.models import Subscription, SubscriptionType
from ..entitlements.service import EntitlementService
from .models import (
    CreditConsumption,
    PurchaseRequest,
    PurchaseResult,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
)

logger = logging.getLogger(__name__)


class SubscriptionStore(Protocol):
    """Persistence operations required by the subscription service."""

    def transaction(self) -> AbstractContextManager[Any]:
        ...

    def list_active_subscriptions(self, user_id: str, *, conn: Optional[Any] = None) -> Sequence[Subscription]:
        ...

    def list_subscriptions(self, user_id: str, *, conn: Optional[Any] = None) -> Sequence[Subscription]:
        ...

    def lock_user_subscriptions(self, user_id: str, *, conn: Optional[Any] = None) -> None:
        ...

    def deactivate_scope(
        self,
        user_id: str,
        *,
        is_global: bool,
        scope_keys: Sequence[str],
        conn: Optional[Any] = None,
    ) -> List[Subscription]:
        ...

    def insert_subscription(
        self,
        *,
        user_id: str,
        service_key: Optional[str],
        is_global: bool,
        subscription_type: SubscriptionType,
        remaining_credits: int,
        expires_at: Optional[datetime],
        amount: float,
        conn: Optional[Any] = None,
    ) -> Subscription:
        ...

    def consume_credit(
        self,
        user_id: str,
        *,
        service_keys: Sequence[str],
        prefix: Optional[str] = None,
        conn: Optional[Any] = None,
    ) -> Optional[Subscription]:
        ...


class SubscriptionNotifier(Protocol):
    """Tells staff about subscription activity."""

    def notify_subscription_purchased(self, subscription: Subscription) -> None:
        ...


class SubscriptionEventLogger(Protocol):
    """Captures structured subscription audit events."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_calendar_months(moment: datetime, months: int) -> datetime:
    """Add ``months`` to ``moment``, clamping the day to the target month's length."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class SubscriptionService:
    """Coordinates purchases, supersession, credit charges and notifications."""

    repository: SubscriptionStore
    entitlements: EntitlementService
    notifier: SubscriptionNotifier
    event_logger: SubscriptionEventLogger
    clock: Callable[[], datetime] = _utcnow

    def _now(self) -> datetime:
        return self.clock()

    def transaction(self) -> AbstractContextManager[Any]:
        return self.repository.transaction()

    def list_subscriptions(self, user_id: str) -> Sequence[Subscription]:
        return self.repository.list_subscriptions(user_id)

    def purchase(self, request: PurchaseRequest) -> PurchaseResult:
        """Activate a subscription, superseding any active one of the same scope."""

        subscription_type = self._validate_purchase(request)
        now = self._now()
        service_key = None if request.is_global else request.service_key

        if subscription_type == SubscriptionType.MONTHLY:
            expires_at: Optional[datetime] = add_calendar_months(now, MONTHLY_PERIOD_MONTHS)
            credits = 0
        else:
            expires_at = None
            credits = (
                request.remaining_credits
                if request.remaining_credits is not None
                else DEFAULT_PER_USE_CREDITS
            )

        with self.repository.transaction() as conn:
            self.repository.lock_user_subscriptions(request.user_id, conn=conn)
            superseded = self.repository.deactivate_scope(
                request.user_id,
                is_global=request.is_global,
                scope_keys=() if request.is_global else scope_keys_for(service_key),
                conn=conn,
            )
            created = self.repository.insert_subscription(
                user_id=request.user_id,
                service_key=service_key,
                is_global=request.is_global,
                subscription_type=subscription_type,
                remaining_credits=credits,
                expires_at=expires_at,
                amount=float(request.amount),
                conn=conn,
            )

        for previous in superseded:
            self.event_logger.log(
                SubscriptionAuditEvent(
                    event_type=SubscriptionAuditEventType.SUPERSEDED,
                    subscription_id=previous.id,
                    actor_id=request.user_id,
                    metadata={"superseded_by": created.id},
                )
            )
        self.event_logger.log(
            SubscriptionAuditEvent(
                event_type=SubscriptionAuditEventType.PURCHASED,
                subscription_id=created.id,
                actor_id=request.user_id,
                metadata={
                    "service_key": created.service_key or "global",
                    "subscription_type": created.subscription_type.value,
                },
            )
        )

        try:
            self.notifier.notify_subscription_purchased(created)
        except Exception:
            logger.exception(
                "Failed to notify staff about subscription",
                extra={"subscription_id": created.id, "user_id": request.user_id},
            )

        return PurchaseResult(subscription=created, superseded=list(superseded))

    def consume_credit(
        self,
        user_id: str,
        service_key: str,
        *,
        conn: Optional[Any] = None,
    ) -> CreditConsumption:
        """Charge exactly one credit against a matching per-use subscription."""

        prefix = f"{service_key}-" if self.entitlements.prefix_match else None
        updated = self.repository.consume_credit(
            user_id,
            service_keys=expand_requested_key(service_key),
            prefix=prefix,
            conn=conn,
        )
        if updated is None:
            raise InsufficientCredit(service_key)

        self.event_logger.log(
            SubscriptionAuditEvent(
                event_type=SubscriptionAuditEventType.CREDIT_CONSUMED,
                subscription_id=updated.id,
                actor_id=user_id,
                metadata={"service_key": service_key, "remaining": str(updated.remaining_credits)},
            )
        )
        if updated.remaining_credits == 0:
            self.event_logger.log(
                SubscriptionAuditEvent(
                    event_type=SubscriptionAuditEventType.EXHAUSTED,
                    subscription_id=updated.id,
                    actor_id=user_id,
                )
            )
        return CreditConsumption(subscription=updated, remaining_credits=updated.remaining_credits)

    def _validate_purchase(self, request: PurchaseRequest) -> SubscriptionType:
        if not request.subscription_type:
            raise InvalidPurchaseRequest("subscription_type is required", field="subscription_type")
        try:
            subscription_type = SubscriptionType(request.subscription_type)
        except ValueError as exc:
            raise InvalidPurchaseRequest(
                f"Unsupported subscription_type: {request.subscription_type}",
                field="subscription_type",
            ) from exc

        if not request.is_global:
            if not request.service_key:
                raise InvalidPurchaseRequest(
                    "service_key is required unless the subscription is global",
                    field="service_key",
                )
            if not is_known_service_key(request.service_key):
                raise InvalidPurchaseRequest(
                    f"Unknown service key: {request.service_key}",
                    field="service_key",
                )
            expected = get_service_definition(request.service_key).subscription_type
            if subscription_type != expected:
                raise InvalidPurchaseRequest(
                    f"{request.service_key} is sold as {expected.value}, not {subscription_type.value}",
                    field="subscription_type",
                )

        if request.amount is None:
            raise InvalidPurchaseRequest("amount is required", field="amount")
        if request.amount < 0:
            raise InvalidPurchaseRequest("amount must be >= 0", field="amount")
        if request.remaining_credits is not None and request.remaining_credits < 0:
            raise InvalidPurchaseRequest("remaining_credits must be >= 0", field="remaining_credits")
        return subscription_type
