"""
Google Gemini generateContent adapter over plain HTTP.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from .base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatRequest,
    ChatResult,
    ProviderClient,
    ProviderHTTPError,
    ProviderTransportError,
)
from wallet_guard.core.token_counter import TokenUsage

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"HTTP {response.status_code}"


class GeminiProvider(ProviderClient):
    """Gemini client returning ChatResult."""

    name = "google"

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.Client] = None,
        base_url: str = GEMINI_BASE_URL,
    ):
        self.api_key = api_key
        self.client = client or httpx.Client()
        self.base_url = base_url.rstrip("/")

    def build_body(self, request: ChatRequest) -> Dict[str, Any]:
        contents = []
        system_parts = []
        for message in request.messages:
            if message["role"] == "system":
                system_parts.append({"text": message["content"]})
                continue
            role = "model" if message["role"] == "assistant" else message["role"]
            contents.append({"role": role, "parts": [{"text": message["content"]}]})

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
                "maxOutputTokens": request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        return body

    def complete(self, request: ChatRequest, timeout: float) -> ChatResult:
        model = request.model
        if model.startswith("models/"):
            model = model[len("models/"):]
        url = f"{self.base_url}/models/{quote(model, safe='')}:generateContent"

        try:
            response = self.client.post(
                url,
                params={"key": self.api_key},
                json=self.build_body(request),
                timeout=timeout,
            )
        except httpx.TransportError as e:
            # Timeouts, connect and read failures
            raise ProviderTransportError(f"google: {e}") from e

        if response.status_code >= 400:
            raise ProviderHTTPError(response.status_code, _error_message(response))

        payload = response.json()
        candidates = payload.get("candidates") or [{}]
        first = candidates[0] or {}
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)

        # Gemini may omit usage metadata
        usage = payload.get("usageMetadata") or {}
        return ChatResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount", 0) or 0,
                completion_tokens=usage.get("candidatesTokenCount", 0) or 0,
                cached_prompt_tokens=usage.get("cachedContentTokenCount", 0) or 0,
            ),
            finish_reason=first.get("finishReason") or "stop",
        )
