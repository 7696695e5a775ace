"""
Duplicate request suppression.

A request fingerprint is claimed with a unique insert. Policy: fails open
on storage errors unrelated to uniqueness, since a missed duplicate is less
harmful than blocking all billing.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .audit import AuditLogger
from wallet_guard.storage.base import BillingStore, DuplicateKeyError, StorageError
from wallet_guard.storage.models import IdempotencyRecord

KEY_PREFIX = "CHATCONFIRM"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def idempotency_key(
    identity: str,
    message: str,
    model: str,
    now: datetime,
    bucket_seconds: int = 60,
) -> str:
    """Derive the fingerprint of a confirm request.

    The same (identity, message, model) inside one time bucket yields the
    same key; the next bucket yields a fresh one.

    Args:
        identity: Caller identity
        message: Prompt text
        model: Model identifier
        now: Request time
        bucket_seconds: Width of the time bucket

    Returns:
        Key of the form CHATCONFIRM::<identity>::<sha256 hex>
    """
    bucket = int(now.timestamp()) // bucket_seconds
    payload = "\x1f".join([identity, model, message, str(bucket)])
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}::{identity}::{digest}"


@dataclass(frozen=True)
class ClaimResult:
    """Whether the caller owns the request or is replaying it."""
    is_new: bool


class IdempotencyGuard:
    """Claims request keys through the store's unique insert."""

    def __init__(
        self,
        store: BillingStore,
        audit: AuditLogger,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def check_and_claim(self, key: str, identity: str, correlation_id: str = "-") -> ClaimResult:
        """Attempt to claim a key.

        Args:
            key: Idempotency key from idempotency_key()
            identity: Caller identity
            correlation_id: Request correlation id for audit records

        Returns:
            ClaimResult with is_new False when the key was already claimed
        """
        record = IdempotencyRecord(key=key, identity=identity, created_at=self.clock())
        try:
            self.store.insert_idempotency_record(record)
        except DuplicateKeyError:
            self.audit.info(
                correlation_id, identity, "IDEMPOTENT_REPLAY",
                "Duplicate request detected", key=key,
            )
            return ClaimResult(is_new=False)
        except StorageError as e:
            self.audit.warning(
                correlation_id, identity, "IDEMPOTENCY_STORE_ERROR",
                "Idempotency check failed, treating request as new", key=key, error=str(e),
            )
            return ClaimResult(is_new=True)
        return ClaimResult(is_new=True)
