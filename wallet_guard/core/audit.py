"""
Audit logging for billing operations.

Every rejection and state transition is written to the ops log keyed by
correlation id, and mirrored to the standard logging tree.
"""

import logging
from typing import Any, Optional

from wallet_guard.storage.base import BillingStore
from wallet_guard.storage.models import OpsLogEvent

logger = logging.getLogger(__name__)

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class AuditLogger:
    """Append-only event sink backed by a BillingStore.

    A failure to persist an event is logged and swallowed: the audit trail
    must never be the reason a billing request fails.
    """

    def __init__(self, store: BillingStore):
        self.store = store

    def record(
        self,
        correlation_id: str,
        identity: Optional[str],
        level: str,
        code: str,
        message: str,
        **metadata: Any,
    ) -> None:
        """Record one ops event.

        Args:
            correlation_id: Id of the request the event belongs to
            identity: Identity the event concerns, if any
            level: One of debug, info, warning, error, critical
            code: Stable machine-readable event code
            message: Human-readable description
            **metadata: Structured key/value context
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown audit level: {level}")

        logger.log(
            LEVELS[level], "[%s] %s - %s %s", correlation_id, code, message, metadata
        )

        event = OpsLogEvent(
            correlation_id=correlation_id,
            identity=identity,
            level=level,
            code=code,
            message=message,
            metadata=dict(metadata),
        )
        try:
            self.store.append_ops_event(event)
        except Exception:
            logger.exception("[%s] Failed to persist ops event %s", correlation_id, code)

    def info(self, correlation_id: str, identity: Optional[str], code: str, message: str, **metadata: Any) -> None:
        self.record(correlation_id, identity, "info", code, message, **metadata)

    def warning(self, correlation_id: str, identity: Optional[str], code: str, message: str, **metadata: Any) -> None:
        self.record(correlation_id, identity, "warning", code, message, **metadata)

    def error(self, correlation_id: str, identity: Optional[str], code: str, message: str, **metadata: Any) -> None:
        self.record(correlation_id, identity, "error", code, message, **metadata)

    def critical(self, correlation_id: str, identity: Optional[str], code: str, message: str, **metadata: Any) -> None:
        self.record(correlation_id, identity, "critical", code, message, **metadata)
