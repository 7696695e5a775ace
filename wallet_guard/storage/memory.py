"""
In-memory BillingStore.

Process-local implementation used by tests and local development.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .base import BillingStore, DuplicateKeyError, StorageError
from .models import IdempotencyRecord, OpsLogEvent, Transaction, Wallet


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore(BillingStore):
    """Thread-safe dictionary-backed store.

    A single lock serializes every primitive, which gives the same atomicity
    guarantees a relational backend provides per statement.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._wallets: Dict[str, Wallet] = {}
        self._transactions: List[Transaction] = []
        self._idempotency: Dict[str, IdempotencyRecord] = {}
        self._rate_counters: Dict[Tuple[str, str, datetime], int] = {}
        self._ops_events: List[OpsLogEvent] = []

    def get_wallet(self, identity: str) -> Optional[Wallet]:
        with self._lock:
            return self._wallets.get(identity)

    def create_wallet_if_absent(self, identity: str, currency: str) -> Wallet:
        with self._lock:
            wallet = self._wallets.get(identity)
            if wallet is None:
                wallet = Wallet(
                    identity=identity,
                    balance=Decimal("0.00"),
                    currency=currency,
                    updated_at=_utcnow(),
                )
                self._wallets[identity] = wallet
            return wallet

    def compare_and_set_balance(
        self, identity: str, expected: Decimal, new_balance: Decimal
    ) -> bool:
        with self._lock:
            wallet = self._wallets.get(identity)
            if wallet is None:
                raise StorageError(f"No wallet for identity {identity}")
            if wallet.balance != expected:
                return False
            self._wallets[identity] = replace(
                wallet, balance=new_balance, updated_at=_utcnow()
            )
            return True

    def add_to_balance(self, identity: str, amount: Decimal) -> Decimal:
        with self._lock:
            wallet = self._wallets.get(identity)
            if wallet is None:
                raise StorageError(f"No wallet for identity {identity}")
            updated = replace(
                wallet, balance=wallet.balance + amount, updated_at=_utcnow()
            )
            self._wallets[identity] = updated
            return updated.balance

    def append_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            stored = replace(transaction, id=len(self._transactions) + 1)
            self._transactions.append(stored)
            return stored

    def list_transactions(
        self, identity: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Transaction]:
        with self._lock:
            rows = [
                t for t in self._transactions
                if identity is None or t.identity == identity
            ]
        if limit is not None:
            rows = rows[-limit:]
        return rows

    def insert_idempotency_record(self, record: IdempotencyRecord) -> None:
        with self._lock:
            if record.key in self._idempotency:
                raise DuplicateKeyError(f"Duplicate idempotency key: {record.key}")
            self._idempotency[record.key] = record

    def increment_rate_counter(
        self, identity: str, action: str, window_start: datetime
    ) -> int:
        key = (identity, action, window_start)
        with self._lock:
            count = self._rate_counters.get(key, 0) + 1
            self._rate_counters[key] = count
            return count

    def delete_rate_counters_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [k for k in self._rate_counters if k[2] < cutoff]
            for key in stale:
                del self._rate_counters[key]
            return len(stale)

    def append_ops_event(self, event: OpsLogEvent) -> None:
        if event.created_at is None:
            event = replace(event, created_at=_utcnow())
        with self._lock:
            self._ops_events.append(event)

    def list_ops_events(
        self,
        correlation_id: Optional[str] = None,
        code: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[OpsLogEvent]:
        with self._lock:
            rows = [
                e for e in self._ops_events
                if (correlation_id is None or e.correlation_id == correlation_id)
                and (code is None or e.code == code)
            ]
        if limit is not None:
            rows = rows[-limit:]
        return rows
