import json

import httpx
import pytest
from fastapi.testclient import TestClient

from ychat.inference import APOLOGY, PRESETS, InferenceClient
from ychat.main import app, get_inference


class Backend:
    """Records calls to the hosted text-generation endpoint."""

    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = payload if payload is not None else [{"generated_text": "  hello there  "}]
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append({"url": str(request.url), "headers": request.headers, "body": json.loads(request.content)})
        return httpx.Response(self.status, json=self.payload)


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def client(backend):
    inference = InferenceClient(api_key="hf_test", model="gpt2", base_url="https://hf.test/models",
                                transport=httpx.MockTransport(backend))
    app.dependency_overrides[get_inference] = lambda: inference
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "message": "Y-Chat inference proxy is running"}


def test_chat_defaults_to_v1(client, backend):
    r = client.post("/api/chat", json={"message": "hi"})
    assert r.status_code == 200
    data = r.json()
    assert data["response"] == "hello there"
    assert data["model"] == "V1"
    assert "timestamp" in data

    call = backend.calls[0]
    assert call["url"] == "https://hf.test/models/gpt2"
    assert call["headers"]["authorization"] == "Bearer hf_test"
    assert call["body"] == {"inputs": "hi", "parameters": PRESETS["V1"]}


def test_missing_model_matches_explicit_v1(client, backend):
    implicit = client.post("/api/chat", json={"message": "hi"}).json()
    explicit = client.post("/api/chat", json={"message": "hi", "model": "V1"}).json()
    assert implicit["response"] == explicit["response"]
    assert implicit["model"] == explicit["model"] == "V1"
    assert backend.calls[0]["body"] == backend.calls[1]["body"]


def test_v1c_uses_lighter_parameters(client, backend):
    r = client.post("/api/chat", json={"message": "hi", "model": "V1c"})
    assert r.json()["model"] == "V1c"
    assert backend.calls[0]["body"]["parameters"] == {"max_new_tokens": 50, "temperature": 0.7, "top_p": 0.85}


def test_unknown_model_falls_back_to_v1(client, backend):
    r = client.post("/api/chat", json={"message": "hi", "model": "V9"})
    assert r.json()["model"] == "V1"
    assert backend.calls[0]["body"]["parameters"] == PRESETS["V1"]


@pytest.mark.parametrize("body", [{}, {"message": ""}, {"model": "V1c"}])
def test_empty_message_is_rejected(client, backend, body):
    r = client.post("/api/chat", json=body)
    assert r.status_code == 400
    assert r.json() == {"error": "Message is required"}
    assert backend.calls == []


def test_backend_failure_returns_apology(backend, client):
    backend.status = 503
    backend.payload = {"error": "loading"}
    r = client.post("/api/chat", json={"message": "hi", "model": "V1c"})
    assert r.status_code == 200
    assert r.json()["response"] == APOLOGY.format(preset="V1c")


def test_unexpected_payload_returns_apology(backend, client):
    backend.payload = {"something": "else"}
    r = client.post("/api/chat", json={"message": "hi"})
    assert r.json()["response"] == APOLOGY.format(preset="V1")


def test_unexpected_error_is_500():
    class Broken:
        async def generate(self, message, preset):
            raise RuntimeError("boom")

    app.dependency_overrides[get_inference] = lambda: Broken()
    try:
        r = TestClient(app).post("/api/chat", json={"message": "hi"})
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error", "details": "boom"}


def test_missing_body_is_rejected(client, backend):
    for r in (
        client.post("/api/chat"),
        client.post("/api/chat", content=b"", headers={"content-type": "application/json"}),
    ):
        assert r.status_code == 400
        assert r.json() == {"error": "Message is required"}
    assert backend.calls == []


@pytest.mark.parametrize("model", [5, None, ["V1c"], {"name": "V1c"}])
def test_odd_model_values_fall_back_to_v1(client, backend, model):
    r = client.post("/api/chat", json={"message": "hi", "model": model})
    assert r.status_code == 200
    assert r.json()["model"] == "V1"
    assert backend.calls[0]["body"]["parameters"] == PRESETS["V1"]
