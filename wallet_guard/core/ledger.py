"""
Wallet ledger: authoritative balances and their transaction history.

Debits use optimistic concurrency control. The balance update is
conditioned on the balance read just before it, and a lost race is retried
from a fresh read a bounded number of times instead of taking a lock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_UP
from typing import Callable, List, Optional

from .audit import AuditLogger
from .errors import BillingError, ErrorKind, InsufficientFundsError
from wallet_guard.storage.base import BillingStore, StorageError
from wallet_guard.storage.models import Transaction, TransactionType, Wallet

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000000")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_amount(value, field_name: str = "amount") -> Decimal:
    """Convert a user-supplied number to a fixed-point amount.

    Raises:
        BillingError: BAD_INPUT if the value is not a finite number or its
            magnitude exceeds MAX_AMOUNT
    """
    if isinstance(value, bool):
        raise BillingError(ErrorKind.BAD_INPUT, f"Invalid {field_name}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BillingError(ErrorKind.BAD_INPUT, f"Invalid {field_name}")
    if not amount.is_finite():
        raise BillingError(ErrorKind.BAD_INPUT, f"Invalid {field_name}")
    if abs(amount) > MAX_AMOUNT:
        raise BillingError(ErrorKind.BAD_INPUT, f"{field_name} exceeds the maximum of {MAX_AMOUNT}")
    return amount


@dataclass(frozen=True)
class DebitResult:
    """Successful debit outcome."""
    new_balance: Decimal
    raw_amount: Decimal
    settled_amount: Decimal
    transaction: Optional[Transaction]  # None when the history write failed


@dataclass(frozen=True)
class ReconciliationReport:
    """Wallet balance compared with the sum of its transaction history."""
    identity: str
    balance: Decimal
    ledger_total: Decimal
    transaction_count: int

    @property
    def drift(self) -> Decimal:
        return self.balance - self.ledger_total

    @property
    def consistent(self) -> bool:
        return self.drift == 0


class WalletLedger:
    """Debits and credits wallets through a BillingStore."""

    def __init__(
        self,
        store: BillingStore,
        audit: AuditLogger,
        currency: str = "INR",
        fee_rate: Decimal = Decimal("0.02"),
        max_attempts: int = 2,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.audit = audit
        self.currency = currency
        self.fee_rate = Decimal(fee_rate)
        self.max_attempts = max_attempts
        self.clock = clock

    def settle(self, raw_amount: Decimal) -> Decimal:
        """Apply the fee to a raw cost, rounding up to the minor unit."""
        try:
            return (raw_amount * (1 + self.fee_rate)).quantize(CENT, rounding=ROUND_UP)
        except InvalidOperation:
            raise BillingError(ErrorKind.BAD_INPUT, "Amount is too large")

    def get_wallet(self, identity: str) -> Optional[Wallet]:
        return self.store.get_wallet(identity)

    def balance(self, identity: str) -> Decimal:
        """Current balance; identities without a wallet have zero."""
        wallet = self.store.get_wallet(identity)
        if wallet is None:
            return Decimal("0.00")
        return wallet.balance

    def debit(self, identity: str, raw_amount, correlation_id: str = "-") -> DebitResult:
        """Take raw_amount plus fee from the wallet.

        Args:
            identity: Wallet owner
            raw_amount: Pre-fee cost, must be >= 0
            correlation_id: Request correlation id for audit records

        Returns:
            DebitResult with the new balance and settled amount

        Raises:
            InsufficientFundsError: If balance < settled amount; nothing is written
            BillingError: BAD_INPUT for invalid amounts, INTERNAL on storage failure
                or when every attempt lost a concurrent race
        """
        raw = to_amount(raw_amount, "raw_amount")
        if raw < 0:
            raise BillingError(ErrorKind.BAD_INPUT, "raw_amount must be >= 0")
        settled = self.settle(raw)

        new_balance = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                wallet = self.store.create_wallet_if_absent(identity, self.currency)
            except StorageError as e:
                self.audit.error(
                    correlation_id, identity, "WALLET_FETCH_ERROR",
                    "Failed to fetch wallet", error=str(e),
                )
                raise BillingError(ErrorKind.INTERNAL, "Failed to fetch wallet data") from e

            if wallet.balance < settled:
                self.audit.warning(
                    correlation_id, identity, "INSUFFICIENT_FUNDS",
                    "Debit blocked due to insufficient funds",
                    required=str(settled), available=str(wallet.balance),
                )
                raise InsufficientFundsError()

            candidate = wallet.balance - settled
            try:
                applied = self.store.compare_and_set_balance(identity, wallet.balance, candidate)
            except StorageError as e:
                self.audit.error(
                    correlation_id, identity, "WALLET_UPDATE_ERROR",
                    "Failed to deduct from wallet", error=str(e), amount=str(settled),
                )
                raise BillingError(ErrorKind.INTERNAL, "Failed to process payment") from e

            if applied:
                new_balance = candidate
                break

            logger.info(
                "[%s] Concurrent wallet update for %s, attempt %d/%d",
                correlation_id, identity, attempt, self.max_attempts,
            )

        if new_balance is None:
            self.audit.error(
                correlation_id, identity, "WALLET_CONTENTION",
                "Debit lost every optimistic concurrency attempt",
                attempts=self.max_attempts, amount=str(settled),
            )
            raise BillingError(ErrorKind.INTERNAL, "Wallet is busy, please retry")

        transaction = self._append(
            identity, TransactionType.DEBIT, raw, settled, correlation_id, reason="chat_confirm"
        )
        self.audit.info(
            correlation_id, identity, "WALLET_DEBITED", "Wallet debited",
            raw_amount=str(raw), settled_amount=str(settled), new_balance=str(new_balance),
        )
        return DebitResult(
            new_balance=new_balance,
            raw_amount=raw,
            settled_amount=settled,
            transaction=transaction,
        )

    def credit(
        self,
        identity: str,
        amount,
        reason: str,
        correlation_id: str = "-",
        raw_amount=None,
    ) -> Decimal:
        """Add amount to the wallet unconditionally.

        Args:
            identity: Wallet owner
            amount: Settled amount to add, must be > 0
            reason: Why the credit happened (recharge, reversal:<kind>, ...)
            correlation_id: Request correlation id for audit records
            raw_amount: Pre-fee amount recorded on the row, defaults to amount

        Returns:
            New balance

        Raises:
            BillingError: BAD_INPUT for non-positive amounts
            StorageError: If the balance could not be updated; callers decide on retry
        """
        settled = to_amount(amount).quantize(CENT)
        if settled <= 0:
            raise BillingError(ErrorKind.BAD_INPUT, "credit amount must be > 0")
        raw = settled if raw_amount is None else to_amount(raw_amount, "raw_amount")

        self.store.create_wallet_if_absent(identity, self.currency)
        new_balance = self.store.add_to_balance(identity, settled)

        self._append(identity, TransactionType.CREDIT, raw, settled, correlation_id, reason=reason)
        self.audit.info(
            correlation_id, identity, "WALLET_CREDITED", "Wallet credited",
            amount=str(settled), reason=reason, new_balance=str(new_balance),
        )
        return new_balance

    def history(self, identity: str, limit: Optional[int] = None) -> List[Transaction]:
        """Read-only transaction history, oldest first."""
        return self.store.list_transactions(identity=identity, limit=limit)

    def reconcile(self, identity: str) -> ReconciliationReport:
        """Compare the balance with settled credits minus settled debits."""
        transactions = self.store.list_transactions(identity=identity)
        total = Decimal("0.00")
        for t in transactions:
            if t.type == TransactionType.CREDIT:
                total += t.settled_amount
            else:
                total -= t.settled_amount
        return ReconciliationReport(
            identity=identity,
            balance=self.balance(identity),
            ledger_total=total,
            transaction_count=len(transactions),
        )

    def _append(
        self,
        identity: str,
        type: TransactionType,
        raw: Decimal,
        settled: Decimal,
        correlation_id: str,
        reason: Optional[str],
    ) -> Optional[Transaction]:
        # Balance has already moved: history write failures are audited, not raised
        try:
            return self.store.append_transaction(Transaction(
                identity=identity,
                type=type,
                raw_amount=raw,
                settled_amount=settled,
                currency=self.currency,
                created_at=self.clock(),
                reason=reason,
                correlation_id=correlation_id,
            ))
        except StorageError as e:
            self.audit.error(
                correlation_id, identity, "TRANSACTION_WRITE_FAILED",
                f"Failed to record {type.value} transaction; wallet already updated",
                type=type.value, settled_amount=str(settled), error=str(e),
            )
            return None
