"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import GatedActionResult, GatedActionRunner, require_entitlement

__all__ = [
    "EntitlementContext",
    "GatedActionResult",
    "GatedActionRunner",
    "require_entitlement",
]
