"""
Fixed-window rate limiting per identity and action.

Policy: fails open. When the counter store is unavailable the request is
allowed and the failure is audited.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .audit import AuditLogger
from wallet_guard.storage.base import BillingStore, StorageError

logger = logging.getLogger(__name__)

WINDOW = timedelta(minutes=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def window_start(now: datetime) -> datetime:
    """Floor a timestamp to the start of its one-minute window."""
    return now.replace(second=0, microsecond=0)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    retry_after_seconds: Optional[int] = None


class RateLimiter:
    """Counts requests per (identity, action) in one-minute windows.

    Counters live in the store, so the limit holds across processes.
    """

    def __init__(
        self,
        store: BillingStore,
        audit: AuditLogger,
        retry_after_seconds: int = 15,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.audit = audit
        self.retry_after_seconds = retry_after_seconds
        self.clock = clock

    def allow(
        self, identity: str, action: str, limit: int, correlation_id: str = "-"
    ) -> RateLimitDecision:
        """Count this request and decide whether it may proceed.

        Args:
            identity: Caller identity
            action: Action name the limit applies to
            limit: Maximum requests per window
            correlation_id: Request correlation id for audit records

        Returns:
            RateLimitDecision; rejected decisions carry retry_after_seconds
        """
        start = window_start(self.clock())
        try:
            count = self.store.increment_rate_counter(identity, action, start)
        except StorageError as e:
            self.audit.warning(
                correlation_id, identity, "RATE_LIMIT_STORE_ERROR",
                "Rate limit check failed, allowing request", action=action, error=str(e),
            )
            return RateLimitDecision(allowed=True)

        if count > limit:
            self.audit.warning(
                correlation_id, identity, "RATE_LIMITED",
                f"Rate limit exceeded for {action}: {count}/{limit}",
                action=action, count=count, limit=limit,
            )
            return RateLimitDecision(allowed=False, retry_after_seconds=self.retry_after_seconds)

        return RateLimitDecision(allowed=True)

    def sweep(self, keep_windows: int = 1) -> int:
        """Delete counters older than the most recent keep_windows windows.

        Windows roll over by key, so sweeping only reclaims space.

        Returns:
            Number of counters removed
        """
        if keep_windows < 1:
            raise ValueError("keep_windows must be >= 1")
        cutoff = window_start(self.clock()) - WINDOW * (keep_windows - 1)
        removed = self.store.delete_rate_counters_before(cutoff)
        logger.info("Swept %d stale rate limit counters older than %s", removed, cutoff.isoformat())
        return removed
