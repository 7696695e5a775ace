"""
Compensation for debits whose upstream call failed.
"""

import logging
from decimal import Decimal

from .audit import AuditLogger
from .errors import BillingError
from .ledger import WalletLedger
from wallet_guard.storage.base import StorageError

logger = logging.getLogger(__name__)


class CompensationManager:
    """Refunds a debit after the paid call failed.

    Best effort: one immediate retry, then a ROLLBACK_FAILED event for
    manual reconciliation. Never raises, so the caller still reports the
    upstream error to the user.
    """

    def __init__(self, ledger: WalletLedger, audit: AuditLogger, attempts: int = 2):
        self.ledger = ledger
        self.audit = audit
        self.attempts = attempts

    def reverse(
        self,
        identity: str,
        settled_amount: Decimal,
        raw_amount: Decimal,
        correlation_id: str,
        cause: BillingError,
    ) -> bool:
        """Credit back a settled debit.

        Args:
            identity: Wallet owner
            settled_amount: Exact amount the debit moved
            raw_amount: Pre-fee amount of the debit
            correlation_id: Request correlation id
            cause: Error that made the reversal necessary

        Returns:
            True if the refund was applied, False if it needs manual reconciliation
        """
        if settled_amount <= 0:
            return True

        reason = f"reversal:{cause.kind.value}"
        last_error = None
        for attempt in range(1, self.attempts + 1):
            try:
                new_balance = self.ledger.credit(
                    identity,
                    settled_amount,
                    reason=reason,
                    correlation_id=correlation_id,
                    raw_amount=raw_amount,
                )
            except (StorageError, BillingError) as e:
                last_error = e
                logger.warning(
                    "[%s] Refund attempt %d/%d failed: %s",
                    correlation_id, attempt, self.attempts, e,
                )
                continue

            self.audit.info(
                correlation_id, identity, "ROLLBACK_SUCCESS", "Wallet rollback completed",
                amount=str(settled_amount), new_balance=str(new_balance), cause=cause.kind.value,
            )
            return True

        self.audit.critical(
            correlation_id, identity, "ROLLBACK_FAILED",
            "Failed to rollback wallet after provider failure",
            user=identity,
            amount=str(settled_amount),
            raw_amount=str(raw_amount),
            cause=cause.kind.value,
            cause_message=cause.message,
            error=str(last_error),
        )
        return False
