"""Tests for the service endpoints and the shared error envelope."""

import pytest
from pymongo.errors import PyMongoError

from conftest import claims
from database import DocumentStore, storage_errors
from errors import Internal


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Café Ordering API running"}
    health = client.get("/health").json()
    assert health["status"] == "OK"
    assert health["uptime"] >= 0


def test_database_status(client, customer):
    body = client.get("/test").json()
    assert body["backend"] == "✅ Running"
    assert body["connection_status"] == "Connected"
    assert "user" in body["collections"]


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Route /api/nowhere not found."}


def test_storage_failure_is_internal(client, customer, monkeypatch):
    store = client.app.state.store

    def broken(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(store, "get_documents", broken)
    response = client.get("/api/orders/101", params=claims(customer))
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Server error fetching user orders."}


def test_unexpected_error_is_masked(client, kitchen_user, monkeypatch):
    register = client.app.state.chef_calls

    def broken():
        raise KeyError("boom")

    monkeypatch.setattr(register, "pending", broken)
    response = client.get("/api/chef-calls", params=claims(kitchen_user))
    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "boom" not in response.json()["message"]


def test_store_without_database():
    with pytest.raises(Internal, match="DATABASE_URL"):
        DocumentStore(None).find_one("user")


def test_storage_errors_maps_driver_failures():
    with pytest.raises(Internal) as exc_info:
        with storage_errors("boom"):
            raise PyMongoError("down")
    assert exc_info.value.message == "boom"
    assert exc_info.value.status_code == 500
