"""Application wiring for the entitlement and subscription services."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...user_directory import ADMIN_ROLES, fetch_user_contact
from ..entitlements import EntitlementService, Subscription, get_service_definition, is_known_service_key
from ..feature_gates import GatedActionRunner
from ..schemas.notifications import NotificationType
from ..subscriptions import (
    SubscriptionAuditEvent,
    SubscriptionEventLogger,
    SubscriptionNotifier,
    SubscriptionService,
)
from ..subscriptions.repository import PostgresSubscriptionRepository, managed_connection
from . import notifications as notifications_service

logger = logging.getLogger("subscriptions")


def _service_label(subscription: Subscription) -> str:
    if subscription.is_global or not subscription.service_key:
        return "all services"
    if is_known_service_key(subscription.service_key):
        return get_service_definition(subscription.service_key).display_name
    return subscription.service_key


class StaffSubscriptionNotifier(SubscriptionNotifier):
    """Notifies every admin when a customer buys a subscription."""

    def notify_subscription_purchased(self, subscription: Subscription) -> None:
        with managed_connection() as (connection, _managed):
            contact = fetch_user_contact(connection, subscription.user_id)
            customer = (
                f"{contact.display_name} ({contact.email})" if contact else subscription.user_id
            )
            service_label = _service_label(subscription)
            notifications_service.notify_roles(
                ADMIN_ROLES,
                title="New subscription",
                message=(
                    f"Customer {customer} subscribed to {service_label} "
                    f"({subscription.subscription_type.value})."
                ),
                type=NotificationType.SUBSCRIPTION,
                related_id=subscription.id,
                conn=connection,
            )


class LoggingSubscriptionEventLogger(SubscriptionEventLogger):
    """Simple event logger forwarding subscription audit events to logging."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        logger.info(
            "Subscription event %s subscription=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.actor_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_subscription_repository() -> PostgresSubscriptionRepository:
    return PostgresSubscriptionRepository()


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    return EntitlementService(get_subscription_repository())


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(
        repository=get_subscription_repository(),
        entitlements=get_entitlement_service(),
        notifier=StaffSubscriptionNotifier(),
        event_logger=LoggingSubscriptionEventLogger(),
    )


@lru_cache(maxsize=1)
def get_gated_action_runner() -> GatedActionRunner:
    return GatedActionRunner(get_entitlement_service(), get_subscription_service())


__all__ = [
    "LoggingSubscriptionEventLogger",
    "StaffSubscriptionNotifier",
    "get_entitlement_service",
    "get_gated_action_runner",
    "get_subscription_repository",
    "get_subscription_service",
]
