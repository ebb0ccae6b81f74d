from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from attempt_guard.adapters.counter_store import InMemoryCounterStore
from attempt_guard.core.app_factory import create_app


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(store=InMemoryCounterStore(), configure_logs=False))


def test_preserves_incoming_request_id_header(client):
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_error_envelope_carries_request_id(client):
    resp = client.post(
        "/v1/guard/checkout",
        json={"email": "a@example.com"},
        headers={"X-Request-ID": "req-404"},
    )

    assert resp.status_code == 404
    assert resp.json()["error"]["request_id"] == "req-404"
    assert resp.headers.get("X-Request-ID") == "req-404"
