from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import psycopg2
import pytest

from callcenter.app.entitlements import StoreUnavailable, SubscriptionType
from callcenter.app.subscriptions import repository as repository_module
from callcenter.app.subscriptions.repository import PostgresSubscriptionRepository

from conftest import FakeConnection, FakeCursor

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def _row(**overrides):
    row = {
        "id": "sub-1",
        "user_id": "user-1",
        "service_key": "ticketing-per-use",
        "is_global": False,
        "subscription_type": "per-use",
        "remaining_credits": 0,
        "expires_at": None,
        "is_active": False,
        "amount": Decimal("25000.00"),
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def test_consume_credit_issues_guarded_update():
    cursor = FakeCursor(fetchone_result=_row())
    conn = FakeConnection(cursor)
    repository = PostgresSubscriptionRepository()

    updated = repository.consume_credit(
        "user-1",
        service_keys=("ticketing-per-use", "ticketing-monthly"),
        prefix="ticketing-",
        conn=conn,
    )

    (query, params), = cursor.execute_calls
    assert "FOR UPDATE" in query
    assert "s.remaining_credits > 0" in query
    assert "is_global = FALSE" in query
    assert params["user_id"] == "user-1"
    assert params["service_keys"] == ["ticketing-per-use", "ticketing-monthly"]
    assert params["prefix"] == "ticketing-"
    assert "premium" in params["premium_keys"]
    assert updated.remaining_credits == 0
    assert updated.is_active is False
    assert updated.amount == 25000.0
    assert cursor.closed is True
    assert conn.commits == 0


def _normalized(query):
    return " ".join(query.split())


def test_consume_credit_is_one_guarded_statement():
    cursor = FakeCursor(fetchone_result=_row())
    repository = PostgresSubscriptionRepository()

    repository.consume_credit("user-1", service_keys=("home-service",), prefix="home_service-", conn=FakeConnection(cursor))

    (query, params), = cursor.execute_calls
    sql = _normalized(query)
    assert sql.startswith("UPDATE subscriptions AS s SET remaining_credits = s.remaining_credits - 1,")
    assert "is_active = (s.remaining_credits - 1) > 0" in sql
    assert "LIMIT 1 FOR UPDATE ) AND s.is_active = TRUE AND s.remaining_credits > 0 RETURNING" in sql
    assert "left(service_key, char_length(%(prefix)s::text)) = %(prefix)s::text" in sql
    assert "LIKE" not in sql
    assert params["prefix"] == "home_service-"


def test_consume_credit_returns_none_when_no_row_updated():
    cursor = FakeCursor(fetchone_result=None)
    repository = PostgresSubscriptionRepository()

    assert repository.consume_credit("user-1", service_keys=("ticketing",), conn=FakeConnection(cursor)) is None
    (_, params), = cursor.execute_calls
    assert params["prefix"] is None


def test_deactivate_scope_for_keyed_purchase():
    cursor = FakeCursor(fetchall_result=[_row(remaining_credits=2)])
    repository = PostgresSubscriptionRepository()

    superseded = repository.deactivate_scope(
        "user-1",
        is_global=False,
        scope_keys=("ticketing-per-use", "ticketing-monthly"),
        conn=FakeConnection(cursor),
    )

    (query, params), = cursor.execute_calls
    assert "service_key = ANY(%s)" in query
    assert params == ("user-1", ["ticketing-per-use", "ticketing-monthly"])
    assert [sub.id for sub in superseded] == ["sub-1"]


def test_deactivate_scope_for_global_purchase():
    cursor = FakeCursor(fetchall_result=[])
    repository = PostgresSubscriptionRepository()

    repository.deactivate_scope("user-1", is_global=True, scope_keys=(), conn=FakeConnection(cursor))

    (query, params), = cursor.execute_calls
    assert "is_global = TRUE" in query
    assert params == ("user-1",)


def test_insert_subscription_serializes_enum():
    row = _row(
        service_key=None,
        is_global=True,
        subscription_type="monthly",
        is_active=True,
        amount=150000,
        expires_at=NOW,
    )
    cursor = FakeCursor(fetchone_result=row)
    repository = PostgresSubscriptionRepository()

    created = repository.insert_subscription(
        user_id="user-1",
        service_key=None,
        is_global=True,
        subscription_type=SubscriptionType.MONTHLY,
        remaining_credits=0,
        expires_at=NOW,
        amount=150000.0,
        conn=FakeConnection(cursor),
    )

    (_, params), = cursor.execute_calls
    assert params["subscription_type"] == "monthly"
    assert created.is_global is True
    assert created.subscription_type == SubscriptionType.MONTHLY


def test_lock_uses_transaction_scoped_advisory_lock():
    cursor = FakeCursor()
    repository = PostgresSubscriptionRepository()

    repository.lock_user_subscriptions("user-1", conn=FakeConnection(cursor))

    (query, params), = cursor.execute_calls
    assert "pg_advisory_xact_lock" in query
    assert params == ("subscriptions:user-1",)


def test_owned_connection_commits_and_closes(monkeypatch):
    conn = FakeConnection(FakeCursor(fetchall_result=[_row(is_active=True, remaining_credits=1)]))
    monkeypatch.setattr(repository_module.app_context, "get_conn", lambda: conn)

    subscriptions = PostgresSubscriptionRepository().list_active_subscriptions("user-1")

    assert len(subscriptions) == 1
    assert conn.commits >= 1
    assert conn.closed is True


def test_query_failure_maps_to_store_unavailable(monkeypatch):
    conn = FakeConnection(FakeCursor(error=psycopg2.OperationalError("server closed the connection")))
    monkeypatch.setattr(repository_module.app_context, "get_conn", lambda: conn)

    with pytest.raises(StoreUnavailable) as exc:
        PostgresSubscriptionRepository().list_subscriptions("user-1")

    assert exc.value.status_code == 503
    assert conn.rollbacks >= 1
    assert conn.closed is True


def test_connect_failure_maps_to_store_unavailable(monkeypatch):
    def _refuse():
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(repository_module.app_context, "get_conn", _refuse)

    with pytest.raises(StoreUnavailable):
        PostgresSubscriptionRepository().list_active_subscriptions("user-1")
