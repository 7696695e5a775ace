"""
Upstream provider adapters.

Provides one ProviderClient per supported text-generation provider.
"""

from typing import Callable, Dict, Optional

from .anthropic_client import AnthropicProvider
from .base import (
    ChatRequest,
    ChatResult,
    ProviderClient,
    ProviderHTTPError,
    ProviderTransportError,
)
from .gemini_client import GeminiProvider
from .openai_client import OpenAIProvider
from wallet_guard.config.loader import provider_api_key

__all__ = [
    "AnthropicProvider",
    "ChatRequest",
    "ChatResult",
    "GeminiProvider",
    "OpenAIProvider",
    "ProviderClient",
    "ProviderHTTPError",
    "ProviderTransportError",
    "build_provider_clients",
]


def build_provider_clients(
    key_lookup: Callable[[str], Optional[str]] = provider_api_key,
) -> Dict[str, ProviderClient]:
    """Create clients for every provider that has an API key configured."""
    factories = {
        "openai": lambda key: OpenAIProvider(api_key=key),
        "anthropic": lambda key: AnthropicProvider(api_key=key),
        "google": lambda key: GeminiProvider(api_key=key),
    }
    clients: Dict[str, ProviderClient] = {}
    for provider, factory in factories.items():
        key = key_lookup(provider)
        if key:
            clients[provider] = factory(key)
    return clients
