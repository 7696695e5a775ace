"""
OpenAI chat completions adapter.

Translates OpenAI SDK failures into provider-neutral errors. SDK-level
retries are disabled; retry policy belongs to the orchestrator.
"""

from typing import Any, Dict, Optional

import openai
from openai import OpenAI

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


def _is_reasoning_model(model: str) -> bool:
    return model.startswith(("o1", "o3", "o4"))


def build_request_body(request: ChatRequest) -> Dict[str, Any]:
    """Build the chat completion body for a model family.

    GPT-5 and reasoning models take max_completion_tokens and no custom
    temperature; GPT-4 family models take max_tokens and temperature.
    """
    model = request.model
    modern = model.startswith("gpt-5") or _is_reasoning_model(model)
    supports_temperature = model.startswith("gpt-4")

    body: Dict[str, Any] = {
        "model": model,
        "messages": request.messages,
    }

    max_tokens = request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS
    if modern:
        body["max_completion_tokens"] = max_tokens
    else:
        body["max_tokens"] = max_tokens

    if supports_temperature:
        body["temperature"] = (
            request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        )

    return body


class OpenAIProvider(ProviderClient):
    """OpenAI client wrapper returning ChatResult."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, client: Optional[OpenAI] = None):
        """Initialize the adapter.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY via the SDK)
            client: Preconfigured SDK client, mainly for tests
        """
        self.client = client or OpenAI(api_key=api_key, max_retries=0)

    def complete(self, request: ChatRequest, timeout: float) -> ChatResult:
        body = build_request_body(request)
        try:
            response = self.client.with_options(timeout=timeout).chat.completions.create(**body)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise ProviderTransportError(f"openai: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, e.message) from e

        choice = response.choices[0] if response.choices else None
        text = ""
        finish_reason = "stop"
        if choice is not None:
            text = choice.message.content or ""
            finish_reason = choice.finish_reason or "stop"

        usage = response.usage
        details = getattr(usage, "prompt_tokens_details", None)
        return ChatResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=(usage.prompt_tokens or 0) if usage else 0,
                completion_tokens=(usage.completion_tokens or 0) if usage else 0,
                cached_prompt_tokens=(getattr(details, "cached_tokens", None) or 0),
            ),
            finish_reason=finish_reason,
        )
