"""Convenience wrapper around a user's unlock map for feature gating."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..entitlements.exceptions import SubscriptionRequired
from ..entitlements.models import Subscription
from ..entitlements.service import EntitlementService


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for a user's entitlements.

    The unlock map is a read model for clients; gated actions always
    re-evaluate on the server.
    """

    user_id: str
    unlocked: Mapping[str, bool]
    subscriptions: List[Subscription] = field(default_factory=list)

    @classmethod
    def for_user(
        cls,
        service: EntitlementService,
        user_id: str,
        *,
        subscriptions: Optional[List[Subscription]] = None,
    ) -> "EntitlementContext":
        return cls(
            user_id=user_id,
            unlocked=service.unlock_map(user_id),
            subscriptions=list(subscriptions or []),
        )

    def has(self, service_key: str) -> bool:
        """Return whether the provided key is unlocked."""

        return bool(self.unlocked.get(service_key))

    def require(self, service_key: str) -> None:
        if not self.has(service_key):
            raise SubscriptionRequired(service_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "unlocked": dict(self.unlocked),
            "subscriptions": [sub.to_summary() for sub in self.subscriptions],
        }
