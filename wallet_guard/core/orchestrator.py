"""
Provider orchestration.

Resolves a model to its upstream, validates it can be served over HTTP,
and calls the upstream through its circuit breaker with a bounded timeout
and a single retry on transport failure. Every upstream failure leaves
this module as a ProviderError or CircuitOpenError.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .breaker import BreakerRegistry
from .errors import BillingError, ErrorKind, ProviderError, map_http_status
from .pricing import DEFAULT_CATALOG, ModelCatalog, ModelInfo
from .token_counter import TokenUsage
from wallet_guard.providers.base import (
    ChatRequest,
    ProviderClient,
    ProviderHTTPError,
    ProviderTransportError,
)

logger = logging.getLogger(__name__)

HEALTH_FAILURE_KINDS = (ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.INTERNAL)


@dataclass(frozen=True)
class GenerationResult:
    """Normalized upstream output."""
    text: str
    usage: TokenUsage
    finish_reason: str
    provider: str
    model: str
    attempts: int = 1


def counts_as_health_failure(exc: BaseException) -> bool:
    """Only outages and unexpected errors trip a breaker; client-side rejections do not."""
    return isinstance(exc, ProviderError) and exc.kind in HEALTH_FAILURE_KINDS


class ProviderOrchestrator:
    """Routes generation requests to upstream providers."""

    def __init__(
        self,
        clients: Dict[str, ProviderClient],
        breakers: BreakerRegistry,
        catalog: ModelCatalog = DEFAULT_CATALOG,
        timeout: float = 15.0,
        max_retries: int = 1,
        retry_delay: float = 0.25,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.clients = clients
        self.breakers = breakers
        self.catalog = catalog
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

    def resolve(self, model: str) -> ModelInfo:
        """Validate a model and return its catalog entry.

        Raises:
            BillingError: BAD_INPUT for unknown models and models that
                require a non-HTTP channel
        """
        info = self.catalog.get(model)
        if info is None:
            raise BillingError(ErrorKind.BAD_INPUT, f'Unsupported model "{model}"')
        if not info.permitted_over_http:
            raise BillingError(ErrorKind.BAD_INPUT, f"{model} requires a realtime channel")
        return info

    def generate(
        self,
        model: str,
        message: str,
        correlation_id: str = "-",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> GenerationResult:
        """Generate a reply for message with the given model.

        Args:
            model: Catalog model identifier
            message: User prompt
            correlation_id: Request correlation id for logs
            temperature: Optional sampling temperature
            max_tokens: Optional completion token cap
            history: Earlier turns to send before message

        Returns:
            GenerationResult with text and usage (zero when not reported)

        Raises:
            BillingError: BAD_INPUT from validation, SERVICE_UNAVAILABLE when the
                breaker is open or no client is configured, otherwise a
                ProviderError carrying the normalized kind
        """
        info = self.resolve(model)
        client = self.clients.get(info.provider)
        if client is None:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                f"{info.provider} API key not configured",
                provider=info.provider,
            )

        request = ChatRequest(
            model=info.id,
            messages=list(history or []) + [{"role": "user", "content": message}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        breaker = self.breakers.get(info.provider)
        return breaker.execute(
            lambda: self._call_with_retry(client, info, request, correlation_id),
            counts_as_failure=counts_as_health_failure,
        )

    def _call_with_retry(
        self,
        client: ProviderClient,
        info: ModelInfo,
        request: ChatRequest,
        correlation_id: str,
    ) -> GenerationResult:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            try:
                result = client.complete(request, timeout=self.timeout)
            except ProviderTransportError as e:
                logger.warning(
                    "[%s] %s transport failure on attempt %d/%d: %s",
                    correlation_id, info.provider, attempt, attempts, e,
                )
                if attempt >= attempts:
                    raise ProviderError(
                        ErrorKind.SERVICE_UNAVAILABLE,
                        f"{info.provider} unreachable: {e}",
                        provider=info.provider,
                    ) from e
                if self.retry_delay > 0:
                    self.sleep(self.retry_delay)
                continue
            except ProviderHTTPError as e:
                logger.warning(
                    "[%s] %s returned HTTP %d: %s",
                    correlation_id, info.provider, e.status, e.message,
                )
                raise map_http_status(info.provider, e.status, e.message) from e
            except Exception as e:
                logger.exception("[%s] %s adapter failed", correlation_id, info.provider)
                raise ProviderError(
                    ErrorKind.INTERNAL,
                    f"{info.provider} returned an unexpected response",
                    provider=info.provider,
                ) from e

            logger.info(
                "[%s] %s/%s answered in %.0fms (tokens in=%d out=%d)",
                correlation_id, info.provider, info.id,
                (time.monotonic() - started) * 1000,
                result.usage.prompt_tokens, result.usage.completion_tokens,
            )
            return GenerationResult(
                text=result.text,
                usage=result.usage,
                finish_reason=result.finish_reason,
                provider=info.provider,
                model=info.id,
                attempts=attempt,
            )

        # Unreachable: the loop either returns or raises
        raise ProviderError(ErrorKind.INTERNAL, "retry loop exhausted", provider=info.provider)
