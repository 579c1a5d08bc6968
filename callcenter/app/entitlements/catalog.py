"""Static catalog definitions for purchasable services."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from .models import ServiceFamily, ServiceKey, SubscriptionType

LEGACY_PREMIUM_KEY = "premium"

# Keys that unlock every service, in addition to global subscriptions.
PREMIUM_KEYS: FrozenSet[str] = frozenset({LEGACY_PREMIUM_KEY, ServiceKey.PREMIUM_MONITORING.value})


@dataclass(frozen=True)
class ServiceDefinition:
    """Describes a purchasable service and how it is sold."""

    key: ServiceKey
    family: ServiceFamily
    display_name: str
    subscription_type: SubscriptionType


SERVICE_CATALOG: Dict[ServiceKey, ServiceDefinition] = {
    ServiceKey.TICKETING_PER_USE: ServiceDefinition(
        key=ServiceKey.TICKETING_PER_USE,
        family=ServiceFamily.TICKETING,
        display_name="Support ticket (per use)",
        subscription_type=SubscriptionType.PER_USE,
    ),
    ServiceKey.TICKETING_MONTHLY: ServiceDefinition(
        key=ServiceKey.TICKETING_MONTHLY,
        family=ServiceFamily.TICKETING,
        display_name="Support tickets (monthly)",
        subscription_type=SubscriptionType.MONTHLY,
    ),
    ServiceKey.HOME_SERVICE_PER_USE: ServiceDefinition(
        key=ServiceKey.HOME_SERVICE_PER_USE,
        family=ServiceFamily.HOME_SERVICE,
        display_name="Home service visit (per use)",
        subscription_type=SubscriptionType.PER_USE,
    ),
    ServiceKey.HOME_SERVICE_MONTHLY: ServiceDefinition(
        key=ServiceKey.HOME_SERVICE_MONTHLY,
        family=ServiceFamily.HOME_SERVICE,
        display_name="Home service visits (monthly)",
        subscription_type=SubscriptionType.MONTHLY,
    ),
    ServiceKey.PREMIUM_MONITORING: ServiceDefinition(
        key=ServiceKey.PREMIUM_MONITORING,
        family=ServiceFamily.PREMIUM,
        display_name="Premium monitoring",
        subscription_type=SubscriptionType.MONTHLY,
    ),
}


def get_service_definition(service_key: str) -> ServiceDefinition:
    """Return a service definition, raising if unsupported."""

    try:
        return SERVICE_CATALOG[ServiceKey(service_key)]
    except ValueError as exc:
        raise KeyError(f"Unknown service key: {service_key}") from exc


def is_known_service_key(service_key: str) -> bool:
    return service_key in {key.value for key in SERVICE_CATALOG}


def is_premium_key(service_key: Optional[str]) -> bool:
    return service_key in PREMIUM_KEYS


def family_of(service_key: str) -> Optional[ServiceFamily]:
    """Return the family a key belongs to, or ``None`` for unknown keys."""

    if service_key == LEGACY_PREMIUM_KEY:
        return ServiceFamily.PREMIUM
    try:
        return SERVICE_CATALOG[ServiceKey(service_key)].family
    except ValueError:
        return None


def keys_in_family(family: ServiceFamily) -> Tuple[str, ...]:
    keys = tuple(
        definition.key.value
        for definition in SERVICE_CATALOG.values()
        if definition.family == family
    )
    if family == ServiceFamily.PREMIUM:
        keys = keys + (LEGACY_PREMIUM_KEY,)
    return keys


def expand_requested_key(requested_key: str) -> Tuple[str, ...]:
    """Expand a family name into its member keys; concrete keys map to themselves."""

    try:
        family = ServiceFamily(requested_key)
    except ValueError:
        return (requested_key,)
    return keys_in_family(family)


def matches_service_key(
    subscription_key: Optional[str],
    requested_key: str,
    *,
    prefix_match: bool,
) -> bool:
    """Single matching rule shared by every entitlement check.

    A subscription key matches when it equals the requested key, when the
    requested key is a family containing it, or, with ``prefix_match``, when it
    starts with ``requested_key + "-"``.
    """

    if not subscription_key:
        return False
    if subscription_key in expand_requested_key(requested_key):
        return True
    return prefix_match and subscription_key.startswith(requested_key + "-")


def scope_keys_for(service_key: str) -> Tuple[str, ...]:
    """Keys superseded by a purchase of ``service_key``."""

    family = family_of(service_key)
    if family is None:
        return (service_key,)
    return keys_in_family(family)
