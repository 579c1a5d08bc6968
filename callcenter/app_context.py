"""Late-bound dependencies shared by the routers and services.

``main`` owns the database settings and the session dependency; routers and
services import this module instead so they never import ``main`` itself.
"""
from __future__ import annotations

from typing import Any, Callable, Dict

_registry: Dict[str, Callable[..., Any]] = {}


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_user: Callable[..., Any],
) -> None:
    """Register the connection factory and the session dependency."""

    _registry.update(get_conn=get_conn, get_current_user=get_current_user)


def _lookup(name: str) -> Callable[..., Any]:
    try:
        return _registry[name]
    except KeyError:
        raise RuntimeError(f"Application context has not been configured yet: {name}") from None


def get_conn() -> Any:
    return _lookup("get_conn")()


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    return _lookup("get_current_user")(*args, **kwargs)
