"""Shared configuration for subscription entitlement checks."""

from __future__ import annotations

import os


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


# Legacy handlers also accepted subscription keys shaped like "<requested>-<variant>".
ENTITLEMENT_PREFIX_MATCH = _env_bool(os.getenv("ENTITLEMENT_PREFIX_MATCH", "true"))
DEFAULT_PER_USE_CREDITS = max(0, _env_int("DEFAULT_PER_USE_CREDITS", 0))
MONTHLY_PERIOD_MONTHS = max(1, _env_int("MONTHLY_PERIOD_MONTHS", 1))
