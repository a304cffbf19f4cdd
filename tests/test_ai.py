import json

import httpx
import pytest

from app.core.exceptions import ServiceUnavailableError
from app.domains.ai.service import AIService, GenerativeClient, extract_json


def _reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _service(handler) -> AIService:
    client = GenerativeClient(
        api_key="test-key",
        model="gemini-test",
        base_url="https://ai.example.test/v1beta/",
        transport=httpx.MockTransport(handler),
    )
    return AIService(client)


def test_extract_json_from_fenced_reply():
    text = 'Sure! ```json\n{"hint": "use a dict", "next_step": "store seen values"}\n``` Good luck'
    assert extract_json(text) == {"hint": "use a dict", "next_step": "store seen values"}
    assert extract_json("no json here") is None
    assert extract_json("{not: valid}") is None


async def test_generate_question_parses_model_output():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        question = {"title": "Two Sum", "description": "Find indices", "starter_code": "def f(): pass"}
        return httpx.Response(200, json=_reply(json.dumps(question)))

    question, fallback = await _service(handler).generate_question("arrays", "Easy", "Python")

    assert fallback is False
    assert question["title"] == "Two Sum"
    assert requests[0].url.path == "/v1beta/models/gemini-test:generateContent"
    assert requests[0].url.params["key"] == "test-key"
    body = json.loads(requests[0].content)
    assert "arrays" in body["contents"][0]["parts"][0]["text"]


async def test_unusable_output_falls_back():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_reply("I cannot help with that."))

    service = _service(handler)

    question, fallback = await service.generate_question("graphs", "Hard", "JavaScript")
    assert fallback is True
    assert question["difficulty"] == "Hard"
    assert question["starter_code"].startswith("function")

    analysis, fallback = await service.analyze_code("print(1)")
    assert fallback is True
    assert "feedback" in analysis

    hint, fallback = await service.get_hint("Two sum", hint_level=2)
    assert fallback is True
    assert hint["hint"]


async def test_transport_failure_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ServiceUnavailableError):
        await _service(handler).analyze_code("print(1)")


async def test_upstream_error_status_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(ServiceUnavailableError):
        await _service(handler).get_hint("Two sum")


def test_ai_endpoints(client, auth, app):
    r = client.post("/api/ai/get-hint", json={"problemDescription": "Two sum"}, headers=auth("alice"))
    assert r.status_code == 503
    assert r.json()["code"] == "service_unavailable"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_reply('{"hint": "think about complements"}'))

    app.state.ai_service = _service(handler)
    r = client.post(
        "/api/ai/get-hint",
        json={"problemDescription": "Two sum", "code": "pass", "hintLevel": 3},
        headers=auth("alice"),
    )
    assert r.status_code == 200
    assert r.json() == {"success": True, "hint": {"hint": "think about complements"}, "fallback": False}

    r = client.post("/api/ai/get-hint", json={"problemDescription": "Two sum", "hintLevel": 7}, headers=auth("alice"))
    assert r.status_code == 400
