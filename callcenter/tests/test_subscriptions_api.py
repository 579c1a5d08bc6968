from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from callcenter.app.entitlements import EntitlementService, StoreUnavailable
from callcenter.app.routes import subscriptions as subscriptions_routes
from callcenter.app.schemas.subscriptions import SubscriptionPurchaseRequest


@pytest.fixture
def wired(monkeypatch, subscription_service, entitlement_service):
    monkeypatch.setattr(subscriptions_routes, "get_subscription_service", lambda: subscription_service)
    monkeypatch.setattr(subscriptions_routes, "get_entitlement_service", lambda: entitlement_service)
    return subscription_service


def _customer(user_id="user-1"):
    return SimpleNamespace(id=user_id, role="customer")


def test_purchase_request_accepts_service_id_alias():
    payload = SubscriptionPurchaseRequest.model_validate(
        {"serviceId": "ticketing-per-use", "subscriptionType": "per-use", "amount": 25000}
    )

    assert payload.service_key == "ticketing-per-use"
    assert payload.is_global is False


def test_purchase_returns_subscription_and_superseded_ids(wired, repository):
    previous = repository.add(service_key="ticketing-per-use", remaining_credits=1)
    payload = SubscriptionPurchaseRequest(
        serviceKey="ticketing-monthly",
        subscriptionType="monthly",
        amount=150000,
    )

    response = subscriptions_routes.purchase_subscription(payload, current_user=_customer())

    assert response.subscription.service_key == "ticketing-monthly"
    assert response.subscription.is_active is True
    assert response.superseded_ids == [previous.id]
    body = response.model_dump(by_alias=True)
    assert body["supersededIds"] == [previous.id]
    assert body["subscription"]["subscriptionType"] == "monthly"


def test_staff_cannot_purchase(wired):
    payload = SubscriptionPurchaseRequest(serviceKey="ticketing-per-use", subscriptionType="per-use", amount=1)

    with pytest.raises(HTTPException) as exc:
        subscriptions_routes.purchase_subscription(
            payload,
            current_user=SimpleNamespace(id="staff-1", role="employee"),
        )

    assert exc.value.status_code == 403


def test_invalid_purchase_maps_to_bad_request(wired):
    payload = SubscriptionPurchaseRequest(serviceKey="ticketing-per-use", amount=1)

    with pytest.raises(HTTPException) as exc:
        subscriptions_routes.purchase_subscription(payload, current_user=_customer())

    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "invalid_purchase_request"
    assert exc.value.detail["field"] == "subscription_type"


def test_consume_credit_endpoint(wired, repository):
    repository.add(service_key="home-service-per-use", remaining_credits=1)

    response = subscriptions_routes.consume_credit("home-service-per-use", current_user=_customer())

    assert response.remaining_credits == 0
    assert response.exhausted is True

    with pytest.raises(HTTPException) as exc:
        subscriptions_routes.consume_credit("home-service-per-use", current_user=_customer())
    assert exc.value.status_code == 403
    assert exc.value.detail["error"] == "insufficient_credit"


def test_list_subscriptions_is_scoped_to_caller(wired, repository):
    mine = repository.add(service_key="ticketing-per-use", remaining_credits=1)
    repository.add(service_key="ticketing-per-use", remaining_credits=1, user_id="user-2")

    response = subscriptions_routes.list_subscriptions(current_user=_customer())

    assert [item.id for item in response.items] == [mine.id]


def test_entitlements_endpoint_returns_unlock_map(wired, repository):
    repository.add(service_key="home-service-per-use", remaining_credits=2)
    repository.add(service_key="ticketing-per-use", remaining_credits=0, is_active=False)

    response = subscriptions_routes.get_entitlements(current_user=_customer())

    assert response.unlocked["home-service-per-use"] is True
    assert response.unlocked["ticketing-per-use"] is False
    assert [item.service_key for item in response.subscriptions] == ["home-service-per-use"]


def test_store_outage_maps_to_service_unavailable(monkeypatch, subscription_service):
    class _DownRepository:
        def list_active_subscriptions(self, user_id, *, conn=None):
            raise StoreUnavailable()

        def list_subscriptions(self, user_id, *, conn=None):
            raise StoreUnavailable()

    down = EntitlementService(_DownRepository())
    monkeypatch.setattr(subscriptions_routes, "get_entitlement_service", lambda: down)
    monkeypatch.setattr(subscription_service, "repository", _DownRepository())
    monkeypatch.setattr(subscriptions_routes, "get_subscription_service", lambda: subscription_service)

    with pytest.raises(HTTPException) as exc:
        subscriptions_routes.get_entitlements(current_user=_customer())

    assert exc.value.status_code == 503
