"""Service evaluating whether a user's subscriptions unlock a capability."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ...entitlements_config import ENTITLEMENT_PREFIX_MATCH
from .catalog import SERVICE_CATALOG, is_premium_key, matches_service_key
from .models import EntitlementDecision, EntitlementSource, Subscription

logger = logging.getLogger(__name__)


class SubscriptionRepository(Protocol):
    """Data access layer for subscription records."""

    def list_active_subscriptions(
        self,
        user_id: str,
        *,
        conn: Optional[Any] = None,
    ) -> Sequence[Subscription]:
        ...


class EntitlementService:
    """Evaluates premium overrides, key matching and balances for a user.

    Evaluation never mutates state; callers that act on a per-use decision
    must consume the credit separately, inside their own transaction.
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        prefix_match: bool = ENTITLEMENT_PREFIX_MATCH,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._prefix_match = prefix_match

    @property
    def prefix_match(self) -> bool:
        return self._prefix_match

    def now(self) -> datetime:
        return self._clock()

    def is_unlocked(self, user_id: str, service_key: str, *, conn: Optional[Any] = None) -> bool:
        return self.evaluate(user_id, service_key, conn=conn).unlocked

    def evaluate(
        self,
        user_id: str,
        service_key: str,
        *,
        conn: Optional[Any] = None,
    ) -> EntitlementDecision:
        """Return the entitlement decision for ``service_key``."""

        subscriptions = self._repository.list_active_subscriptions(user_id, conn=conn)
        decision = self.evaluate_subscriptions(user_id, service_key, subscriptions, now=self.now())
        logger.debug(
            "Entitlement evaluated user=%s key=%s unlocked=%s source=%s",
            user_id,
            service_key,
            decision.unlocked,
            decision.source.value,
        )
        return decision

    def unlock_map(self, user_id: str, *, conn: Optional[Any] = None) -> Dict[str, bool]:
        """Evaluate every catalog key with a single fetch."""

        subscriptions = self._repository.list_active_subscriptions(user_id, conn=conn)
        now = self.now()
        return {
            key.value: self.evaluate_subscriptions(user_id, key.value, subscriptions, now=now).unlocked
            for key in SERVICE_CATALOG
        }

    def evaluate_subscriptions(
        self,
        user_id: str,
        service_key: str,
        subscriptions: Sequence[Subscription],
        *,
        now: datetime,
    ) -> EntitlementDecision:
        active = [sub for sub in subscriptions if sub.is_active and sub.user_id == user_id]

        premium = self._find_premium_override(active, now)
        if premium is not None:
            return EntitlementDecision(
                user_id=user_id,
                requested_key=service_key,
                unlocked=True,
                source=EntitlementSource.PREMIUM_OVERRIDE,
                subscription=premium,
                evaluated_at=now,
            )

        candidates = [
            sub
            for sub in active
            if not sub.is_global
            and matches_service_key(sub.service_key, service_key, prefix_match=self._prefix_match)
        ]
        if not candidates:
            return EntitlementDecision(
                user_id=user_id,
                requested_key=service_key,
                unlocked=False,
                reason="no_active_subscription",
                evaluated_at=now,
            )

        usable = self._usable_subscription(candidates, now)
        if usable is None:
            exhausted = all(sub.is_per_use for sub in candidates)
            return EntitlementDecision(
                user_id=user_id,
                requested_key=service_key,
                unlocked=False,
                reason="credits_exhausted" if exhausted else "subscription_expired",
                evaluated_at=now,
            )

        source = EntitlementSource.MONTHLY if usable.is_monthly else EntitlementSource.PER_USE
        return EntitlementDecision(
            user_id=user_id,
            requested_key=service_key,
            unlocked=True,
            source=source,
            subscription=usable,
            evaluated_at=now,
        )

    def _find_premium_override(
        self,
        subscriptions: Sequence[Subscription],
        now: datetime,
    ) -> Optional[Subscription]:
        for subscription in subscriptions:
            if not (subscription.is_global or is_premium_key(subscription.service_key)):
                continue
            if subscription.is_monthly and subscription.is_expired(now):
                continue
            return subscription
        return None

    def _usable_subscription(
        self,
        candidates: Sequence[Subscription],
        now: datetime,
    ) -> Optional[Subscription]:
        monthly: List[Subscription] = []
        per_use: List[Subscription] = []
        for subscription in candidates:
            if subscription.is_monthly and not subscription.is_expired(now):
                monthly.append(subscription)
            elif subscription.is_per_use and subscription.remaining_credits > 0:
                per_use.append(subscription)

        for pool in (monthly, per_use):
            if pool:
                return min(pool, key=lambda sub: sub.created_at)
        return None
