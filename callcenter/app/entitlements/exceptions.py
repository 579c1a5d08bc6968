"""Custom exceptions raised by entitlement checks and subscription changes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class EntitlementError(Exception):
    """Represents an actionable entitlement failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class SubscriptionRequired(EntitlementError):
    """No active entitlement covers the requested service key."""

    def __init__(self, service_key: str, message: Optional[str] = None) -> None:
        super().__init__(
            code="subscription_required",
            message=message or f"An active subscription is required for '{service_key}'.",
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"service_key": service_key},
        )


class InsufficientCredit(EntitlementError):
    """A matching per-use subscription exists but has no credit left."""

    def __init__(self, service_key: str, message: Optional[str] = None) -> None:
        super().__init__(
            code="insufficient_credit",
            message=message or f"No per-use credit left for '{service_key}'.",
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"service_key": service_key},
        )


class InvalidPurchaseRequest(EntitlementError):
    """Malformed purchase input."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(
            code="invalid_purchase_request",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": field} if field else None,
        )


class StoreUnavailable(EntitlementError):
    """The subscription store could not be reached."""

    def __init__(self, message: str = "Subscription store is unavailable.") -> None:
        super().__init__(
            code="store_unavailable",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
