from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from callcenter.app.entitlements import EntitlementService, Subscription, SubscriptionType
from callcenter.app.entitlements.catalog import is_premium_key
from callcenter.app.feature_gates import GatedActionRunner
from callcenter.app.subscriptions import (
    SubscriptionAuditEvent,
    SubscriptionService,
)

FIXED_NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


class InMemorySubscriptionRepository:
    """Subscription store mirroring the Postgres repository's semantics."""

    def __init__(self, *, clock=None) -> None:
        self.rows: Dict[str, Subscription] = {}
        self._lock = threading.RLock()
        self._clock = clock or (lambda: FIXED_NOW)
        self._ids = itertools.count(1)
        self.rollbacks = 0

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = dict(self.rows)
            try:
                yield self
            except Exception:
                self.rows = snapshot
                self.rollbacks += 1
                raise

    def add(self, **fields) -> Subscription:
        sequence = next(self._ids)
        base = {
            "id": f"sub-{sequence}",
            "user_id": "user-1",
            "service_key": None,
            "is_global": False,
            "subscription_type": SubscriptionType.PER_USE,
            "remaining_credits": 0,
            "expires_at": None,
            "is_active": True,
            "amount": 0,
            "created_at": self._clock() - timedelta(days=30) + timedelta(seconds=sequence),
            "updated_at": self._clock(),
        }
        base.update(fields)
        subscription = Subscription(**base)
        self.rows[subscription.id] = subscription
        return subscription

    def get(self, subscription_id: str) -> Subscription:
        return self.rows[subscription_id]

    def list_active_subscriptions(self, user_id: str, *, conn=None) -> List[Subscription]:
        return sorted(
            (sub for sub in self.rows.values() if sub.user_id == user_id and sub.is_active),
            key=lambda sub: sub.created_at,
        )

    def list_subscriptions(self, user_id: str, *, conn=None) -> List[Subscription]:
        return sorted(
            (sub for sub in self.rows.values() if sub.user_id == user_id),
            key=lambda sub: sub.created_at,
            reverse=True,
        )

    def lock_user_subscriptions(self, user_id: str, *, conn=None) -> None:
        return None

    def deactivate_scope(
        self,
        user_id: str,
        *,
        is_global: bool,
        scope_keys: Sequence[str],
        conn=None,
    ) -> List[Subscription]:
        superseded = []
        for sub in list(self.rows.values()):
            if sub.user_id != user_id or not sub.is_active:
                continue
            in_scope = sub.is_global if is_global else (not sub.is_global and sub.service_key in scope_keys)
            if in_scope:
                updated = sub.model_copy(update={"is_active": False, "updated_at": self._clock()})
                self.rows[sub.id] = updated
                superseded.append(updated)
        return superseded

    def insert_subscription(
        self,
        *,
        user_id: str,
        service_key: Optional[str],
        is_global: bool,
        subscription_type: SubscriptionType,
        remaining_credits: int,
        expires_at: Optional[datetime],
        amount: float,
        conn=None,
    ) -> Subscription:
        return self.add(
            user_id=user_id,
            service_key=service_key,
            is_global=is_global,
            subscription_type=subscription_type,
            remaining_credits=remaining_credits,
            expires_at=expires_at,
            amount=amount,
            created_at=self._clock() + timedelta(microseconds=len(self.rows)),
        )

    def consume_credit(
        self,
        user_id: str,
        *,
        service_keys: Sequence[str],
        prefix: Optional[str] = None,
        conn=None,
    ) -> Optional[Subscription]:
        with self._lock:
            candidates = [
                sub
                for sub in self.rows.values()
                if sub.user_id == user_id
                and sub.is_active
                and not sub.is_global
                and sub.subscription_type == SubscriptionType.PER_USE
                and sub.remaining_credits > 0
                and not is_premium_key(sub.service_key)
                and (
                    sub.service_key in service_keys
                    or (prefix is not None and (sub.service_key or "").startswith(prefix))
                )
            ]
            if not candidates:
                return None
            target = min(candidates, key=lambda sub: (sub.created_at, sub.id))
            remaining = target.remaining_credits - 1
            updated = target.model_copy(
                update={
                    "remaining_credits": remaining,
                    "is_active": remaining > 0,
                    "updated_at": self._clock(),
                }
            )
            self.rows[target.id] = updated
            return updated


class FakeCursor:
    def __init__(self, *, fetchone_result=None, fetchall_result=None, error=None, fetchone_results=None):
        self.fetchone_result = fetchone_result
        self.fetchone_results = list(fetchone_results or [])
        self.fetchall_result = list(fetchall_result or [])
        self.error = error
        self.execute_calls = []
        self.closed = False

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))
        if self.error is not None:
            raise self.error

    def fetchone(self):
        if self.fetchone_results:
            return self.fetchone_results.pop(0)
        return self.fetchone_result

    def fetchall(self):
        return list(self.fetchall_result)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False


class FakeConnection:
    def __init__(self, *cursors):
        self._cursors = list(cursors)
        self.cursor_calls = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, *args, **kwargs):
        self.cursor_calls.append((args, kwargs))
        if not self._cursors:
            raise AssertionError("No cursors configured")
        return self._cursors.pop(0)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.purchased: List[Subscription] = []

    def notify_subscription_purchased(self, subscription: Subscription) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.purchased.append(subscription)


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[SubscriptionAuditEvent] = []

    def log(self, event: SubscriptionAuditEvent) -> None:
        self.events.append(event)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def repository() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


@pytest.fixture
def entitlement_service(repository: InMemorySubscriptionRepository) -> EntitlementService:
    return EntitlementService(repository, clock=lambda: FIXED_NOW, prefix_match=True)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def subscription_service(
    repository: InMemorySubscriptionRepository,
    entitlement_service: EntitlementService,
    notifier: RecordingNotifier,
    event_logger: RecordingEventLogger,
) -> SubscriptionService:
    return SubscriptionService(
        repository=repository,
        entitlements=entitlement_service,
        notifier=notifier,
        event_logger=event_logger,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def runner(
    entitlement_service: EntitlementService,
    subscription_service: SubscriptionService,
) -> GatedActionRunner:
    return GatedActionRunner(entitlement_service, subscription_service)
