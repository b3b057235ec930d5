from __future__ import annotations

import dataclasses

import pytest
from conftest import ScriptedModel
from fastapi.testclient import TestClient

from salesguard.app import MESSAGE_TOO_LONG_REPLY, MISSING_FIELDS_REPLY, create_app
from salesguard.config import load_settings
from salesguard.turn_parser import TECHNICAL_ISSUE_REPLY


class NoMailer:
    async def send_escalation(self, *args, **kwargs) -> bool:
        return False


async def no_live_prices(sku: str):
    return None


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def app(model):
    settings = dataclasses.replace(load_settings(), cors_origins=("http://localhost:3000",))
    return create_app(settings=settings, model=model, pricing_fetcher=no_live_prices, mailer=NoMailer())


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"message": "hello"},
        {"message": "   ", "sessionId": "abc"},
        {"message": "hello", "sessionId": ""},
        ["not", "an", "object"],
    ],
)
def test_chat_rejects_missing_or_invalid_fields(client, body) -> None:
    resp = client.post("/chat", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"response": MISSING_FIELDS_REPLY}


def test_chat_rejects_overlong_message_with_length_reply(client, model) -> None:
    resp = client.post("/chat", json={"message": "x" * 5000, "sessionId": "abc"})

    assert resp.status_code == 400
    assert resp.json() == {"response": MESSAGE_TOO_LONG_REPLY}
    assert "4000" in MESSAGE_TOO_LONG_REPLY
    assert model.calls == []


def test_chat_returns_response_and_session_id(client, model) -> None:
    model.replies.append({"intent": "greeting", "response_text": "Hello! How can I help?"})

    resp = client.post("/chat", json={"message": "hi", "sessionId": "abc"})

    assert resp.status_code == 200
    assert resp.json() == {"response": "Hello! How can I help?", "sessionId": "abc"}
    assert len(client.app.state.sessions) == 1


def test_chat_search_flow_over_bundled_catalog(client, model) -> None:
    model.replies.extend(
        [
            {"tool": "search_products", "arguments": {"furnitureType": "dining", "seatCount": 6}},
            {"intent": "product_recommendation", "selected_skus": ["HALO-DINING-6", "JAVA-TEAK-DINING-8"]},
        ]
    )

    resp = client.post("/chat", json={"message": "a dining set for 6 please", "sessionId": "abc"})

    body = resp.json()["response"]
    assert resp.status_code == 200
    assert "HALO-DINING-6" in body
    assert "JAVA-TEAK-DINING-8" not in body


def test_unexpected_failure_gives_generic_500(client, monkeypatch) -> None:
    async def explode(session, message):
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr(client.app.state.agent, "handle_turn", explode)

    resp = client.post("/chat", json={"message": "hello", "sessionId": "abc"})

    assert resp.status_code == 500
    assert resp.json() == {"response": TECHNICAL_ISSUE_REPLY}
    assert "hunter2" not in resp.text


def test_health_reports_catalog_and_sessions(client) -> None:
    resp = client.get("/health")

    data = resp.json()
    assert resp.status_code == 200
    assert data["status"] == "healthy"
    assert data["products"] == 9
    assert data["inventory_records"] == 8
    assert data["sessions"] == 0
    assert len(data["catalog_sha256"]) == 12


def test_cors_allows_configured_origin(client) -> None:
    resp = client.options(
        "/chat",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
    )
    assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
