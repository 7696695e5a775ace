"""
Anthropic messages adapter.
"""

from typing import Optional

import anthropic
from anthropic import Anthropic

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


class AnthropicProvider(ProviderClient):
    """Anthropic client wrapper returning ChatResult."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, client: Optional[Anthropic] = None):
        self.client = client or Anthropic(api_key=api_key, max_retries=0)

    def complete(self, request: ChatRequest, timeout: float) -> ChatResult:
        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in request.messages
            if m["role"] in ("user", "assistant")
        ]
        system = "\n".join(m["content"] for m in request.messages if m["role"] == "system")

        kwargs = {
            "model": request.model,
            "max_tokens": request.max_tokens if request.max_tokens is not None else DEFAULT_MAX_TOKENS,
            "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        try:
            response = self.client.with_options(timeout=timeout).messages.create(**kwargs)
        except anthropic.APIConnectionError as e:
            raise ProviderTransportError(f"anthropic: {e}") from e
        except anthropic.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, e.message) from e

        text = "".join(
            getattr(block, "text", "") or "" for block in (response.content or [])
        )
        usage = response.usage
        # input_tokens excludes cache reads; fold them back into the prompt count
        cache_reads = (getattr(usage, "cache_read_input_tokens", None) or 0) if usage else 0
        return ChatResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=((usage.input_tokens or 0) if usage else 0) + cache_reads,
                cached_prompt_tokens=cache_reads,
                completion_tokens=(usage.output_tokens or 0) if usage else 0,
            ),
            finish_reason=response.stop_reason or "stop",
        )
