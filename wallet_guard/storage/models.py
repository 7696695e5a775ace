"""
Data models for storage layer.

Defines the billing entities persisted by a BillingStore.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class TransactionType(Enum):
    """Direction of a wallet movement."""
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass(frozen=True)
class Wallet:
    """Authoritative balance for one identity.

    Only the ledger mutates a wallet, and only through the store's
    compare-and-set and add primitives.
    """
    identity: str
    balance: Decimal
    currency: str
    updated_at: datetime


@dataclass(frozen=True)
class Transaction:
    """Immutable record of a debit or credit.

    Append-only rows that make the wallet balance auditable.
    Once written, these records must never be modified.
    """
    identity: str
    type: TransactionType
    raw_amount: Decimal
    settled_amount: Decimal
    currency: str
    created_at: datetime
    reason: Optional[str] = None
    correlation_id: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class IdempotencyRecord:
    """Claim on a request fingerprint for one time bucket."""
    key: str
    identity: str
    created_at: datetime


@dataclass(frozen=True)
class OpsLogEvent:
    """Append-only operational event keyed by correlation id."""
    correlation_id: str
    identity: Optional[str]
    level: str
    code: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
