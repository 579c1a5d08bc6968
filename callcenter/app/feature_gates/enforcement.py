"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from ..entitlements.exceptions import SubscriptionRequired
from ..entitlements.models import EntitlementDecision
from ..entitlements.service import EntitlementService
from ..subscriptions.models import CreditConsumption
from ..subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def require_entitlement(
    decision: EntitlementDecision,
    *,
    message: Optional[str] = None,
) -> EntitlementDecision:
    """Ensure an entitlement decision unlocked the requested key before proceeding.

    Parameters
    ----------
    decision:
        The evaluated :class:`EntitlementDecision`.
    message:
        Optional human-friendly message explaining the failure. If omitted, a
        default message mentioning the requested key is used.
    """

    if not decision.unlocked:
        raise SubscriptionRequired(decision.requested_key, message)
    return decision


@dataclass(frozen=True)
class GatedActionResult(Generic[T]):
    """Value produced by a gated action and the entitlement that paid for it."""

    value: T
    decision: EntitlementDecision
    consumption: Optional[CreditConsumption] = None


class GatedActionRunner:
    """Runs a domain action only when the user is entitled to it.

    Evaluation, credit consumption and the action share one transaction, so a
    failing action never leaves a credit charged. ``on_committed`` runs after
    commit and its failures are logged, never raised.
    """

    def __init__(self, entitlements: EntitlementService, subscriptions: SubscriptionService) -> None:
        self._entitlements = entitlements
        self._subscriptions = subscriptions

    def run(
        self,
        user_id: str,
        service_key: str,
        action: Callable[[Any], T],
        *,
        on_committed: Optional[Callable[[T], None]] = None,
    ) -> GatedActionResult[T]:
        with self._subscriptions.transaction() as conn:
            decision = require_entitlement(
                self._entitlements.evaluate(user_id, service_key, conn=conn)
            )
            consumption = None
            if decision.requires_credit:
                consumption = self._subscriptions.consume_credit(user_id, service_key, conn=conn)
            value = action(conn)

        if on_committed is not None:
            try:
                on_committed(value)
            except Exception:
                logger.exception(
                    "Post-commit hook failed for gated action",
                    extra={"user_id": user_id, "service_key": service_key},
                )

        return GatedActionResult(value=value, decision=decision, consumption=consumption)
