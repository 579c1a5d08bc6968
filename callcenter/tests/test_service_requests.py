from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from callcenter.app.entitlements import EntitlementSource, SubscriptionType
from callcenter.app.routes import services as services_routes
from callcenter.app.schemas.service_requests import ServiceRequestCreate, ServiceRequestStatus, ServiceRequestUpdate
from callcenter.app.schemas.tickets import RatingCreate
from callcenter.app.services import service_requests as service_requests_service
from callcenter.user_directory import UserContact

from conftest import FakeConnection, FakeCursor

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)
TECHNICIAN_ID = "0b6d7c42-5e1f-4a8b-b3c9-71e2d4f6a908"


def _request_row(**overrides):
    row = {
        "id": "sr-1",
        "customer_id": "user-1",
        "service": "Boiler check",
        "description": None,
        "scheduled_date": date(2024, 5, 20),
        "scheduled_time": None,
        "status": "pending",
        "assigned_to": None,
        "rated": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.fixture
def recorded(monkeypatch):
    captured = {"inserted": [], "notified": []}

    def fake_insert(conn, customer_id, payload):
        captured["inserted"].append(payload.service)
        return service_requests_service._coerce_request(_request_row(customer_id=customer_id))

    monkeypatch.setattr(service_requests_service, "insert_service_request", fake_insert)
    monkeypatch.setattr(
        service_requests_service,
        "_notify_staff_request_created",
        lambda customer_id, request: captured["notified"].append(request.id),
    )
    return captured


def _payload():
    return ServiceRequestCreate(service="Boiler check", scheduledDate="2024-05-20")


def test_monthly_home_service_creates_request_without_charge(runner, repository, recorded, now):
    repository.add(
        service_key="home-service-monthly",
        subscription_type=SubscriptionType.MONTHLY,
        expires_at=now + timedelta(days=20),
    )

    response = service_requests_service.create_service_request("user-1", _payload(), runner=runner)

    assert response.entitlement_source == EntitlementSource.MONTHLY.value
    assert response.remaining_credits is None
    assert response.service_request.id == "sr-1"
    assert recorded["notified"] == ["sr-1"]


def test_ticketing_subscription_does_not_unlock_home_service(monkeypatch, runner, repository, recorded):
    repository.add(service_key="ticketing-per-use", remaining_credits=3)
    monkeypatch.setattr(services_routes, "get_gated_action_runner", lambda: runner)

    with pytest.raises(HTTPException) as exc:
        services_routes.create_service_request(
            _payload(),
            current_user=SimpleNamespace(id="user-1", role="customer"),
        )

    assert exc.value.status_code == 403
    assert recorded["inserted"] == []


def test_failed_insert_refunds_credit(monkeypatch, runner, repository):
    subscription = repository.add(service_key="home-service-per-use", remaining_credits=1)

    def fake_insert(conn, customer_id, payload):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(service_requests_service, "insert_service_request", fake_insert)

    with pytest.raises(RuntimeError):
        service_requests_service.create_service_request("user-1", _payload(), runner=runner)

    assert repository.get(subscription.id).remaining_credits == 1
    assert repository.get(subscription.id).is_active is True


def test_rate_completed_request(monkeypatch):
    notified = []
    monkeypatch.setattr(
        service_requests_service,
        "_notify_admins_request_rated",
        lambda customer_id, request, score: notified.append(score),
    )
    completed = _request_row(status="completed", assigned_to="emp-1")
    cursor = FakeCursor(fetchone_results=[completed, dict(completed, rated=True)])

    updated = service_requests_service.rate_service_request(
        "sr-1", "user-1", RatingCreate(rating=4), conn=FakeConnection(cursor)
    )

    assert updated.rated is True
    assert notified == [4]
    _, insert, _ = cursor.execute_calls
    assert "'service_request'" in insert[0]


@pytest.mark.parametrize(
    "row, error",
    [
        (None, LookupError),
        (_request_row(status="scheduled", assigned_to="emp-1"), ValueError),
        (_request_row(status="completed"), ValueError),
        (_request_row(status="completed", assigned_to="emp-1", rated=True), ValueError),
    ],
)
def test_rate_request_rejections(row, error):
    cursor = FakeCursor(fetchone_result=row)

    with pytest.raises(error):
        service_requests_service.rate_service_request(
            "sr-1", "user-1", RatingCreate(rating=1), conn=FakeConnection(cursor)
        )


def test_rate_request_route_maps_missing_to_404(monkeypatch):
    def fake_rate(request_id, customer_id, payload, *, conn=None):
        raise LookupError("Service request not found")

    monkeypatch.setattr(service_requests_service, "rate_service_request", fake_rate)

    with pytest.raises(HTTPException) as exc:
        services_routes.rate_service_request(
            "sr-9",
            RatingCreate(rating=5),
            current_user=SimpleNamespace(id="user-1"),
        )

    assert exc.value.status_code == 404


def _staff_contact(conn, user_id):
    return UserContact(id=user_id, name="Lee", email="lee@example.com", role="employee")


def test_staff_completes_and_assigns_request(monkeypatch):
    notified = []
    monkeypatch.setattr(service_requests_service, "fetch_user_contact", _staff_contact)
    monkeypatch.setattr(
        service_requests_service,
        "_notify_customer_request_updated",
        lambda request: notified.append(request.status),
    )
    cursor = FakeCursor(fetchone_result=_request_row(status="completed", assigned_to=TECHNICIAN_ID))

    request = service_requests_service.update_service_request(
        "sr-1",
        ServiceRequestUpdate(status="completed", assignedTo=TECHNICIAN_ID),
        conn=FakeConnection(cursor),
    )

    assert request.status == ServiceRequestStatus.COMPLETED
    assert request.assigned_to == TECHNICIAN_ID
    (query, params), = cursor.execute_calls
    assert "COALESCE(%s::service_status, status)" in query
    assert params == ("completed", TECHNICIAN_ID, "sr-1")
    assert notified == [ServiceRequestStatus.COMPLETED]


def test_completed_request_can_then_be_rated(monkeypatch):
    monkeypatch.setattr(service_requests_service, "fetch_user_contact", _staff_contact)
    monkeypatch.setattr(service_requests_service, "_notify_customer_request_updated", lambda request: None)
    monkeypatch.setattr(
        service_requests_service,
        "_notify_admins_request_rated",
        lambda customer_id, request, score: None,
    )
    done = _request_row(status="completed", assigned_to=TECHNICIAN_ID)

    service_requests_service.update_service_request(
        "sr-1",
        ServiceRequestUpdate(status="completed", assignedTo=TECHNICIAN_ID),
        conn=FakeConnection(FakeCursor(fetchone_result=done)),
    )
    rated = service_requests_service.rate_service_request(
        "sr-1",
        "user-1",
        RatingCreate(rating=4),
        conn=FakeConnection(FakeCursor(fetchone_results=[done, dict(done, rated=True)])),
    )

    assert rated.rated is True


def test_request_assignment_requires_staff(monkeypatch):
    monkeypatch.setattr(service_requests_service, "fetch_user_contact", lambda conn, user_id: None)
    conn = FakeConnection(FakeCursor())

    with pytest.raises(ValueError):
        service_requests_service.update_service_request(
            "sr-1",
            ServiceRequestUpdate(assignedTo=TECHNICIAN_ID),
            conn=conn,
        )

    assert conn.cursor_calls == []


def test_assignment_only_update_does_not_notify(monkeypatch):
    notified = []
    monkeypatch.setattr(service_requests_service, "fetch_user_contact", _staff_contact)
    monkeypatch.setattr(service_requests_service, "_notify_customer_request_updated", notified.append)
    cursor = FakeCursor(fetchone_result=_request_row(assigned_to=TECHNICIAN_ID))

    service_requests_service.update_service_request(
        "sr-1",
        ServiceRequestUpdate(assignedTo=TECHNICIAN_ID),
        conn=FakeConnection(cursor),
    )

    assert notified == []


def test_update_missing_request_raises_lookup_error():
    with pytest.raises(LookupError):
        service_requests_service.update_service_request(
            "sr-404",
            ServiceRequestUpdate(status="cancelled"),
            conn=FakeConnection(FakeCursor(fetchone_result=None)),
        )


def test_update_service_request_route_is_staff_only(monkeypatch):
    def fake_update(request_id, payload, *, conn=None):
        return service_requests_service._coerce_request(_request_row(status="scheduled"))

    monkeypatch.setattr(service_requests_service, "update_service_request", fake_update)
    payload = ServiceRequestUpdate(status="scheduled")

    with pytest.raises(HTTPException) as exc:
        services_routes.update_service_request("sr-1", payload, current_user=SimpleNamespace(id="user-1", role="customer"))
    assert exc.value.status_code == 403

    request = services_routes.update_service_request("sr-1", payload, current_user=SimpleNamespace(id="a-1", role="admin"))
    assert request.status == ServiceRequestStatus.SCHEDULED


def test_update_service_request_route_maps_missing_to_404(monkeypatch):
    def fake_update(request_id, payload, *, conn=None):
        raise LookupError("Service request not found")

    monkeypatch.setattr(service_requests_service, "update_service_request", fake_update)

    with pytest.raises(HTTPException) as exc:
        services_routes.update_service_request(
            "sr-404",
            ServiceRequestUpdate(status="cancelled"),
            current_user=SimpleNamespace(id="emp-1", role="employee"),
        )

    assert exc.value.status_code == 404
