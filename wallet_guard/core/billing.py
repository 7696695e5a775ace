"""
Paid request orchestration.

Runs one confirm-and-execute request end to end:

1. Rate limit - bounds submissions per identity and action
2. Validation - rejects malformed input and unusable models before any money moves
3. Idempotency - suppresses duplicate submissions inside one time bucket
4. Debit - takes the estimated cost plus fee from the wallet
5. Generation - calls the upstream through its circuit breaker
6. Compensation - refunds the debit if generation failed

Every step is audited under the request's correlation id.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .audit import AuditLogger
from .breaker import OPENED, BreakerRegistry
from .compensation import CompensationManager
from .correlation import new_correlation_id
from .errors import BillingError, ErrorKind
from .idempotency import IdempotencyGuard, idempotency_key
from .ledger import WalletLedger, to_amount
from .orchestrator import ProviderOrchestrator
from .pricing import DEFAULT_CATALOG, ModelCatalog, calculate_cost
from .rate_limit import RateLimiter
from wallet_guard.config.loader import BillingConfig
from wallet_guard.providers.base import ProviderClient
from wallet_guard.storage.base import BillingStore

logger = logging.getLogger(__name__)

CONFIRM_ACTION = "chat_confirm"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConfirmRequest:
    """A paid generation request as submitted by the client."""
    message: Any
    model: Any
    estimated_cost: Any
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class ConfirmOutcome:
    """HTTP-shaped result of a confirm request."""
    status: int
    body: Dict[str, Any]


def error_outcome(error: BillingError, correlation_id: str) -> ConfirmOutcome:
    """Build the error response for a taxonomy error."""
    body: Dict[str, Any] = {
        "ok": False,
        "error": error.kind.value,
        "message": error.message,
        "correlationId": correlation_id,
    }
    if error.retry_after_seconds is not None:
        body["retryAfterSeconds"] = error.retry_after_seconds
    return ConfirmOutcome(status=error.kind.http_status, body=body)


class BillingService:
    """Wires the billing components around one store."""

    def __init__(
        self,
        store: BillingStore,
        orchestrator: ProviderOrchestrator,
        config: Optional[BillingConfig] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or BillingConfig()
        self.store = store
        self.audit = audit or AuditLogger(store)
        self.clock = clock
        self.orchestrator = orchestrator
        self.rate_limiter = RateLimiter(
            store, self.audit,
            retry_after_seconds=self.config.rate_limit.retry_after_seconds,
            clock=clock,
        )
        self.idempotency = IdempotencyGuard(store, self.audit, clock=clock)
        self.ledger = WalletLedger(
            store, self.audit,
            currency=self.config.wallet.currency,
            fee_rate=self.config.wallet.fee_rate,
            clock=clock,
        )
        self.compensation = CompensationManager(self.ledger, self.audit)

    @classmethod
    def from_config(
        cls,
        config: BillingConfig,
        store: BillingStore,
        clients: Dict[str, ProviderClient],
        catalog: ModelCatalog = DEFAULT_CATALOG,
    ) -> "BillingService":
        """Build a service whose breaker transitions are audited."""
        audit = AuditLogger(store)

        def on_transition(name: str, transition: str) -> None:
            level = "error" if transition == OPENED else "info"
            audit.record(
                "breaker", None, level, f"BREAKER_{transition.upper()}",
                f"Circuit breaker for {name} {transition}", dependency=name,
            )

        breakers = BreakerRegistry(
            failure_threshold=config.breaker.failure_threshold,
            reset_timeout=config.breaker.reset_timeout_seconds,
            failure_window=config.breaker.failure_window_seconds,
            listener=on_transition,
        )
        orchestrator = ProviderOrchestrator(
            clients,
            breakers,
            catalog=catalog,
            timeout=config.orchestrator.timeout_seconds,
            max_retries=config.orchestrator.max_retries,
            retry_delay=config.orchestrator.retry_delay_seconds,
        )
        return cls(store, orchestrator, config=config, audit=audit)

    def confirm(
        self,
        identity: Optional[str],
        request: ConfirmRequest,
        correlation_id: Optional[str] = None,
    ) -> ConfirmOutcome:
        """Debit the wallet, run the generation, refund on failure.

        Args:
            identity: Authenticated caller, None if authentication failed
            request: Client request
            correlation_id: Existing correlation id, generated when omitted

        Returns:
            ConfirmOutcome; errors are returned, never raised
        """
        cid = correlation_id or new_correlation_id()
        try:
            return self._confirm(identity, request, cid)
        except BillingError as e:
            self.audit.warning(
                cid, identity, "CHAT_CONFIRM_FAILED", e.message,
                kind=e.kind.value, model=str(request.model),
            )
            return error_outcome(e, cid)
        except Exception as e:
            logger.exception("[%s] Unexpected error in confirm", cid)
            self.audit.error(
                cid, identity, "CHAT_CONFIRM_ERROR", "Unexpected error", error=str(e),
            )
            return error_outcome(BillingError(ErrorKind.INTERNAL, "Internal server error"), cid)

    def _confirm(self, identity: Optional[str], request: ConfirmRequest, cid: str) -> ConfirmOutcome:
        if not identity:
            raise BillingError(ErrorKind.UNAUTHORIZED, "User not authenticated")

        limit = self.config.rate_limit.limit_for(CONFIRM_ACTION)
        decision = self.rate_limiter.allow(identity, CONFIRM_ACTION, limit, cid)
        if not decision.allowed:
            raise BillingError(
                ErrorKind.RATE_LIMITED,
                f"Too many requests. Please wait {decision.retry_after_seconds} seconds.",
                retry_after_seconds=decision.retry_after_seconds,
            )

        message, model, cost = self._validate(request)
        self.orchestrator.resolve(model)

        key = idempotency_key(
            identity, message, model, self.clock(),
            bucket_seconds=self.config.idempotency.bucket_seconds,
        )
        if not self.idempotency.check_and_claim(key, identity, cid).is_new:
            return ConfirmOutcome(status=200, body={
                "ok": True,
                "replayed": True,
                "message": "Request already processed",
                "correlationId": cid,
            })

        debit = self.ledger.debit(identity, cost, cid)

        try:
            result = self.orchestrator.generate(
                model, message, cid,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except BillingError as e:
            self.compensation.reverse(identity, debit.settled_amount, debit.raw_amount, cid, e)
            raise
        except Exception as e:
            error = BillingError(ErrorKind.INTERNAL, "Generation failed unexpectedly")
            logger.exception("[%s] Unexpected generation failure", cid)
            self.compensation.reverse(identity, debit.settled_amount, debit.raw_amount, cid, error)
            raise error from e

        self.audit.info(
            cid, identity, "CHAT_CONFIRM_SUCCESS",
            "Successfully processed chat confirmation with AI response",
            model=model,
            provider=result.provider,
            settled_amount=str(debit.settled_amount),
            new_balance=str(debit.new_balance),
            tokens_in=result.usage.prompt_tokens,
            tokens_out=result.usage.completion_tokens,
            upstream_cost_usd=str(calculate_cost(model, result.usage, self.orchestrator.catalog)),
        )
        return ConfirmOutcome(status=200, body={
            "ok": True,
            "newBalance": float(debit.new_balance),
            "generatedText": result.text,
            "tokensIn": result.usage.prompt_tokens,
            "tokensOut": result.usage.completion_tokens,
            "correlationId": cid,
        })

    def _validate(self, request: ConfirmRequest):
        if not isinstance(request.message, str) or not request.message.strip():
            raise BillingError(ErrorKind.BAD_INPUT, "Missing required field: message")
        if not isinstance(request.model, str) or not request.model.strip():
            raise BillingError(ErrorKind.BAD_INPUT, "Missing required field: model")
        if request.estimated_cost is None:
            raise BillingError(ErrorKind.BAD_INPUT, "Missing required field: estimatedCost")
        cost = to_amount(request.estimated_cost, "estimatedCost")
        if cost < 0:
            raise BillingError(ErrorKind.BAD_INPUT, "estimatedCost must be >= 0")
        return request.message, request.model, cost
