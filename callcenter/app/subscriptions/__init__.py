"""Subscription purchase and credit consumption."""

from .models import (
    CreditConsumption,
    PurchaseRequest,
    PurchaseResult,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
)
from .service import (
    SubscriptionEventLogger,
    SubscriptionNotifier,
    SubscriptionService,
    SubscriptionStore,
    add_calendar_months,
)

__all__ = [
    "CreditConsumption",
    "PurchaseRequest",
    "PurchaseResult",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionEventLogger",
    "SubscriptionNotifier",
    "SubscriptionService",
    "SubscriptionStore",
    "add_calendar_months",
]
