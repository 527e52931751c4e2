import asyncio
import json

import httpx
import pytest

from weathershield.config import Settings
from weathershield.errors import LocationResolutionError, MissingCredentialError, SynthesisError
from weathershield.services.llm_client import GeminiClient
from weathershield.services.location_resolver import GEOCODE_RESPONSE_SCHEMA


def _run(client: GeminiClient, prompt: str = "where?"):
    async def run():
        try:
            return await client.generate_json(prompt, GEOCODE_RESPONSE_SCHEMA)
        finally:
            await client.close()

    return asyncio.run(run())


def test_generate_json_sends_schema_and_decodes_answer() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        answer = {"lat": 24.7, "lng": 46.7, "name": "Riyadh"}
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": json.dumps(answer)}]}}]},
        )

    client = GeminiClient(
        settings=Settings(gemini_model="test-model"),
        api_key_provider=lambda: "secret",
        transport=httpx.MockTransport(handler),
    )
    answer = _run(client)

    assert answer == {"lat": 24.7, "lng": 46.7, "name": "Riyadh"}
    request = captured[0]
    assert request.url.path.endswith("/models/test-model:generateContent")
    assert request.headers["x-goog-api-key"] == "secret"
    body = json.loads(request.content)
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert body["generationConfig"]["responseSchema"] == GEOCODE_RESPONSE_SCHEMA


def test_generate_json_without_key_fails_before_network() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = GeminiClient(
        settings=Settings(),
        api_key_provider=lambda: None,
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(MissingCredentialError) as excinfo:
        _run(client)
    assert calls == []
    assert isinstance(excinfo.value, SynthesisError)
    assert isinstance(excinfo.value, LocationResolutionError)


def test_generate_json_rejects_answer_without_text() -> None:
    client = GeminiClient(
        settings=Settings(),
        api_key_provider=lambda: "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})),
    )

    with pytest.raises(ValueError):
        _run(client)


def test_generate_json_raises_http_errors() -> None:
    client = GeminiClient(
        settings=Settings(),
        api_key_provider=lambda: "secret",
        transport=httpx.MockTransport(lambda request: httpx.Response(429, json={"error": "quota"})),
    )

    with pytest.raises(httpx.HTTPStatusError):
        _run(client)
