import logging

import pytest
from fastapi.testclient import TestClient

from src.app import create_app


@pytest.fixture
def client(runtime):
    """Create a new test client for each test"""
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """Setup logging to capture logs in tests"""
    caplog.set_level(logging.INFO)
    yield


def records_with(caplog, **attrs):
    return [
        record for record in caplog.records
        if all(getattr(record, key, None) == value for key, value in attrs.items())
    ]


def test_request_logging(client, caplog):
    """Test that API requests are logged with correlation ID and flow state"""
    correlation_id = "test-correlation-id"
    response = client.get(
        "/api/v1/health",
        headers={"X-Request-ID": correlation_id}
    )

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == correlation_id

    request_logs = records_with(caplog, request_id=correlation_id)
    assert len(request_logs) == 1
    request_log = request_logs[0]
    assert request_log.getMessage() == "Request completed"
    assert request_log.http_method == "GET"
    assert request_log.path == "/api/v1/health"
    assert request_log.status_code == 200
    assert request_log.state_before == "wallet_connect"
    assert request_log.state_after == "wallet_connect"
    assert request_log.duration_ms >= 0


def test_flow_transition_is_logged(client, caplog):
    client.post("/api/v1/auth/wallet/connect", json={"wallet_type": "metamask"})

    transitions = records_with(caplog, event="wallet_connected")
    assert transitions[0].from_state == "wallet_connect"
    assert transitions[0].to_state == "authenticated"

    request_log = records_with(caplog, path="/api/v1/auth/wallet/connect", state_after="authenticated")
    assert request_log[0].state_before == "wallet_connect"


def test_error_logging(client, caplog):
    """Test that errors are logged with context"""
    response = client.post(
        "/api/v1/auth/wallet/connect",
        json={"invalid": "data"},
        headers={"X-Request-ID": "validation-test"}
    )
    assert response.status_code == 422

    error_logs = records_with(caplog, request_id="validation-test", method="POST")
    assert len(error_logs) == 1
    assert error_logs[0].levelname == "WARNING"
    assert error_logs[0].validation_errors[0]["field"] == "body.wallet_type"


def test_service_error_logging(client, caplog):
    response = client.post("/api/v1/auth/options/signup")
    assert response.status_code == 409

    error_logs = records_with(caplog, error_code="INVALID_TRANSITION")
    assert len(error_logs) == 1
    assert error_logs[0].status_code == 409
    assert error_logs[0].path == "/api/v1/auth/options/signup"
