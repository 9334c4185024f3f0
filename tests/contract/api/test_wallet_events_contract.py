import pytest
from fastapi.testclient import TestClient

from src.app import create_app
from src.core.dependencies import build_auth_runtime
from src.core.service.wallet.environment import ClientEnvironment
from tests.conftest import DESKTOP_USER_AGENT

EVENTS = "/api/v1/wallet/events"


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        test_client.post("/api/v1/auth/wallet/connect", json={"wallet_type": "metamask"})
        test_client.get("/api/v1/auth/notifications")
        yield test_client


def test_disconnect_event_clears_session(client):
    response = client.post(EVENTS, json={"event": "accountsChanged", "accounts": []})

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "wallet_connect"
    assert data["session"] is None
    assert [n["message"] for n in data["notifications"]] == ["Wallet disconnected"]


def test_chain_changed_event_reloads(client, storage):
    response = client.post(EVENTS, json={"event": "chainChanged", "chainId": "0x38"})

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "wallet_connect"
    assert data["session"] is None
    assert data["notifications"][0]["message"] == "Network changed, reloading..."


def test_chain_changed_requires_chain_id(client):
    response = client.post(EVENTS, json={"event": "chainChanged"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_INPUT"


@pytest.mark.parametrize("chain_id", ["mainnet", "0xzz", 0, -1])
def test_chain_changed_rejects_invalid_chain_id(client, chain_id):
    response = client.post(EVENTS, json={"event": "chainChanged", "chainId": chain_id})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert error["details"]["validation_errors"][0]["field"] == "body.chainId"
    assert client.get("/api/v1/auth/state").json()["state"] == "authenticated"


def test_unknown_event_is_rejected(client):
    response = client.post(EVENTS, json={"event": "message", "accounts": []})

    assert response.status_code == 422


def test_event_without_provider(storage, backend, clock):
    runtime = build_auth_runtime(
        storage,
        environment=ClientEnvironment(user_agent=DESKTOP_USER_AGENT),
        backend=backend,
        clock=clock
    )
    with TestClient(create_app(runtime)) as client:
        response = client.post(EVENTS, json={"event": "accountsChanged", "accounts": []})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_INSTALLED"
