"""
Common types for upstream text-generation providers.

Adapters translate their SDK or HTTP failures into exactly two exception
types, so the orchestrator can tell transport failures (retryable) from
application-level rejections (not retried).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from wallet_guard.core.token_counter import TokenUsage


class ProviderTransportError(Exception):
    """Connection failure or timeout before an HTTP response was received."""


class ProviderHTTPError(Exception):
    """Upstream answered with a non-success HTTP status."""

    def __init__(self, status: int, message: Optional[str] = None):
        super().__init__(message or f"HTTP {status}")
        self.status = status
        self.message = message


@dataclass(frozen=True)
class ChatRequest:
    """Provider-neutral chat completion request."""
    model: str
    messages: List[Dict[str, str]]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class ChatResult:
    """Generated text with reported usage."""
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = "stop"


class ProviderClient(ABC):
    """Adapter for one upstream provider."""

    name: str = "unknown"

    @abstractmethod
    def complete(self, request: ChatRequest, timeout: float) -> ChatResult:
        """Run one chat completion with a bounded timeout.

        Raises:
            ProviderTransportError: On connection failure or timeout
            ProviderHTTPError: On a non-success HTTP status
        """


DEFAULT_MAX_TOKENS = 512
DEFAULT_TEMPERATURE = 0.3
