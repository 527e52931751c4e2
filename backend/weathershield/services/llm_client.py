from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import structlog

from weathershield.config import Settings
from weathershield.errors import MissingCredentialError


logger = structlog.get_logger(__name__)


@dataclass
class GeminiClient:
    """
    Minimal structured-output client for the Gemini generateContent endpoint.

    Every call asks for `application/json` constrained by a response schema and
    returns the decoded JSON. Transport failures surface as `httpx.HTTPError`,
    undecodable answers as `ValueError`; callers translate both into their own
    error type. A missing API key raises `MissingCredentialError` before any
    request is sent.
    """

    settings: Settings
    api_key_provider: Callable[[], str | None]
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            transport=self.transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def generate_json(self, prompt: str, response_schema: dict[str, Any]) -> Any:
        api_key = self.api_key_provider()
        if not api_key:
            raise MissingCredentialError("Missing Gemini API key. Set it in settings or as an environment variable.")

        url = f"{self.settings.gemini_base_url}/models/{self.settings.gemini_model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            },
        }
        response = await self._client.post(url, json=body, headers={"x-goog-api-key": api_key})
        response.raise_for_status()
        text = _extract_text(response.json())
        logger.debug("Structured answer received", model=self.settings.gemini_model, chars=len(text))
        return json.loads(text)


def _extract_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise ValueError("Provider response is not an object.")
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise ValueError("Provider response has no candidates.")

    content = candidates[0].get("content", {}) if isinstance(candidates[0], dict) else {}
    parts = content.get("parts", []) if isinstance(content, dict) else []
    texts = [part.get("text") for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
    if not texts:
        raise ValueError("Provider response has no text part.")
    return "".join(texts)
