"""Entitlement domain models, catalog and evaluation service."""

from .catalog import (
    PREMIUM_KEYS,
    SERVICE_CATALOG,
    ServiceDefinition,
    expand_requested_key,
    family_of,
    get_service_definition,
    is_known_service_key,
    is_premium_key,
    keys_in_family,
    matches_service_key,
    scope_keys_for,
)
from .exceptions import (
    EntitlementError,
    InsufficientCredit,
    InvalidPurchaseRequest,
    StoreUnavailable,
    SubscriptionRequired,
)
from .models import (
    EntitlementDecision,
    EntitlementSource,
    ServiceFamily,
    ServiceKey,
    Subscription,
    SubscriptionType,
)
from .service import EntitlementService, SubscriptionRepository

__all__ = [
    "PREMIUM_KEYS",
    "SERVICE_CATALOG",
    "ServiceDefinition",
    "expand_requested_key",
    "family_of",
    "get_service_definition",
    "is_known_service_key",
    "is_premium_key",
    "keys_in_family",
    "matches_service_key",
    "scope_keys_for",
    "EntitlementError",
    "InsufficientCredit",
    "InvalidPurchaseRequest",
    "StoreUnavailable",
    "SubscriptionRequired",
    "EntitlementDecision",
    "EntitlementSource",
    "ServiceFamily",
    "ServiceKey",
    "Subscription",
    "SubscriptionType",
    "EntitlementService",
    "SubscriptionRepository",
]
