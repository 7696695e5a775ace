"""
Abstract storage interface for the billing core.

Any backend offering atomic insert-if-absent and compare-and-swap updates
can implement BillingStore; the core never touches tables directly.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .models import IdempotencyRecord, OpsLogEvent, Transaction, Wallet


class StorageError(Exception):
    """Raised when the backing store cannot complete an operation."""


class DuplicateKeyError(StorageError):
    """Raised when a unique insert collides with an existing key."""


class BillingStore(ABC):
    """Storage primitives required by the billing core.

    Implementations must make each method atomic on its own. Cross-method
    atomicity is never assumed by callers.
    """

    # Wallets

    @abstractmethod
    def get_wallet(self, identity: str) -> Optional[Wallet]:
        """Return the wallet for identity, or None if it was never created."""

    @abstractmethod
    def create_wallet_if_absent(self, identity: str, currency: str) -> Wallet:
        """Create a zero-balance wallet unless one exists; return the stored wallet."""

    @abstractmethod
    def compare_and_set_balance(
        self, identity: str, expected: Decimal, new_balance: Decimal
    ) -> bool:
        """Set balance to new_balance only if it still equals expected.

        Returns:
            True if the write was applied, False if another writer got there first
        """

    @abstractmethod
    def add_to_balance(self, identity: str, amount: Decimal) -> Decimal:
        """Unconditionally add amount to the balance and return the new balance."""

    # Transactions

    @abstractmethod
    def append_transaction(self, transaction: Transaction) -> Transaction:
        """Append a transaction row; returns the row with its assigned id."""

    @abstractmethod
    def list_transactions(
        self, identity: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Transaction]:
        """List transactions, oldest first."""

    # Idempotency

    @abstractmethod
    def insert_idempotency_record(self, record: IdempotencyRecord) -> None:
        """Insert a record; raises DuplicateKeyError if the key already exists."""

    # Rate limiting

    @abstractmethod
    def increment_rate_counter(
        self, identity: str, action: str, window_start: datetime
    ) -> int:
        """Create or increment the counter for the window and return the new count."""

    @abstractmethod
    def delete_rate_counters_before(self, cutoff: datetime) -> int:
        """Delete counters whose window started before cutoff; returns rows removed."""

    # Ops log

    @abstractmethod
    def append_ops_event(self, event: OpsLogEvent) -> None:
        """Append an operational event."""

    @abstractmethod
    def list_ops_events(
        self,
        correlation_id: Optional[str] = None,
        code: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[OpsLogEvent]:
        """List operational events, oldest first."""
