"""
Unit tests for the wallet ledger.

Tests fee settlement, optimistic concurrency, credits and reconciliation.
"""

from decimal import Decimal

import pytest

from fakes import fund
from wallet_guard.core.audit import AuditLogger
from wallet_guard.core.errors import BillingError, ErrorKind, InsufficientFundsError
from wallet_guard.core.ledger import MAX_AMOUNT, WalletLedger, to_amount
from wallet_guard.storage.base import StorageError
from wallet_guard.storage.memory import InMemoryStore
from wallet_guard.storage.models import TransactionType


class RacingStore(InMemoryStore):
    """Loses the first N compare-and-set calls as if another writer won."""

    def __init__(self, losses):
        super().__init__()
        self.losses = losses
        self.cas_calls = 0

    def compare_and_set_balance(self, identity, expected, new_balance):
        self.cas_calls += 1
        if self.losses > 0:
            self.losses -= 1
            # Another writer takes 1.00 first
            self.add_to_balance(identity, Decimal("-1.00"))
            return False
        return super().compare_and_set_balance(identity, expected, new_balance)


class FailingHistoryStore(InMemoryStore):
    def append_transaction(self, transaction):
        raise StorageError("disk full")


class FailingCasStore(InMemoryStore):
    def compare_and_set_balance(self, identity, expected, new_balance):
        raise StorageError("connection reset")


def _ledger(store, **kwargs):
    return WalletLedger(store, AuditLogger(store), **kwargs)


class TestToAmount:
    """Test parsing of user-supplied amounts."""

    def test_parses_numbers_and_strings(self):
        """Ints, strings and floats parse to Decimal."""
        assert to_amount(10) == Decimal("10")
        assert to_amount("10.50") == Decimal("10.50")
        assert to_amount(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", None, True, "NaN", "Infinity", [1]])
    def test_rejects_invalid(self, value):
        """Non-numeric and non-finite values are BAD_INPUT."""
        with pytest.raises(BillingError) as exc_info:
            to_amount(value, "estimatedCost")
        assert exc_info.value.kind == ErrorKind.BAD_INPUT
        assert "estimatedCost" in exc_info.value.message

    @pytest.mark.parametrize("value", ["1e27", 1e30, "-1000000000.01"])
    def test_rejects_amount_above_maximum(self, value):
        """Amounts too large for fixed-point settlement are bad input."""
        with pytest.raises(BillingError) as exc_info:
            to_amount(value, "estimatedCost")
        assert exc_info.value.kind == ErrorKind.BAD_INPUT
        assert "maximum" in exc_info.value.message

    def test_maximum_is_accepted(self):
        """The cap itself is a valid amount."""
        assert to_amount(MAX_AMOUNT) == MAX_AMOUNT


class TestSettlement:
    """Test fee application and rounding."""

    def test_two_percent_fee(self, store):
        """The default fee is two percent."""
        assert _ledger(store).settle(Decimal("10.00")) == Decimal("10.20")

    def test_rounds_up_to_minor_unit(self, store):
        """Fractions of a cent round up."""
        # 0.01 * 1.02 = 0.0102
        assert _ledger(store).settle(Decimal("0.01")) == Decimal("0.02")
        # 3.33 * 1.02 = 3.3966
        assert _ledger(store).settle(Decimal("3.33")) == Decimal("3.40")

    def test_zero_cost(self, store):
        """Zero settles to zero."""
        assert _ledger(store).settle(Decimal("0")) == Decimal("0.00")

    def test_custom_fee_rate(self, store):
        """A zero fee rate settles at cost."""
        assert _ledger(store, fee_rate=Decimal("0")).settle(Decimal("5.00")) == Decimal("5.00")

    def test_unrepresentable_amount_is_bad_input(self, store):
        """Settling beyond decimal precision raises BAD_INPUT, not InvalidOperation."""
        with pytest.raises(BillingError) as exc_info:
            _ledger(store).settle(Decimal("1e40"))
        assert exc_info.value.kind == ErrorKind.BAD_INPUT


class TestDebit:
    """Test debits."""

    def test_debit_applies_fee(self, store):
        """Debits take cost plus fee and record a row."""
        fund(store, "alice", "100.00")
        ledger = _ledger(store)

        result = ledger.debit("alice", "10.00", correlation_id="c1")

        assert result.settled_amount == Decimal("10.20")
        assert result.raw_amount == Decimal("10.00")
        assert result.new_balance == Decimal("89.80")
        assert ledger.balance("alice") == Decimal("89.80")

        [row] = ledger.history("alice")
        assert row.type == TransactionType.DEBIT
        assert row.settled_amount == Decimal("10.20")
        assert row.correlation_id == "c1"
        assert result.transaction == row

    def test_insufficient_funds_changes_nothing(self, store):
        """An underfunded debit writes nothing but the audit event."""
        fund(store, "alice", "5.00")
        ledger = _ledger(store)

        with pytest.raises(InsufficientFundsError) as exc_info:
            ledger.debit("alice", "10.00", correlation_id="c1")

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_FUNDS
        assert ledger.balance("alice") == Decimal("5.00")
        assert ledger.history("alice") == []
        [event] = store.list_ops_events(code="INSUFFICIENT_FUNDS")
        assert event.metadata["required"] == "10.20"
        assert event.metadata["available"] == "5.00"

    def test_exact_balance_reaches_zero(self, store):
        """A debit may take the balance to exactly zero."""
        fund(store, "alice", "10.20")
        result = _ledger(store).debit("alice", "10.00")
        assert result.new_balance == Decimal("0.00")

    def test_missing_wallet_is_created_empty(self, store):
        """Debiting an unknown identity creates an empty wallet."""
        ledger = _ledger(store)
        with pytest.raises(InsufficientFundsError):
            ledger.debit("newcomer", "1.00")
        assert store.get_wallet("newcomer").balance == Decimal("0.00")

    def test_zero_cost_debit(self, store):
        """Zero-cost debits succeed on an empty wallet."""
        ledger = _ledger(store)
        result = ledger.debit("newcomer", "0")
        assert result.settled_amount == Decimal("0.00")
        assert result.new_balance == Decimal("0.00")

    def test_negative_amount_rejected(self, store):
        """Negative debits are BAD_INPUT."""
        fund(store, "alice", "100.00")
        with pytest.raises(BillingError) as exc_info:
            _ledger(store).debit("alice", "-1")
        assert exc_info.value.kind == ErrorKind.BAD_INPUT

    def test_huge_amount_rejected_before_any_write(self, store):
        """An oversized debit is refused without touching the wallet."""
        fund(store, "alice", "100.00")
        ledger = _ledger(store)

        with pytest.raises(BillingError) as exc_info:
            ledger.debit("alice", "1e27")

        assert exc_info.value.kind == ErrorKind.BAD_INPUT
        assert ledger.balance("alice") == Decimal("100.00")
        assert ledger.history("alice") == []

    def test_retries_after_lost_race(self):
        """A lost compare-and-set is retried from a fresh read."""
        store = RacingStore(losses=1)
        fund(store, "alice", "100.00")
        ledger = _ledger(store)

        result = ledger.debit("alice", "10.00")

        assert store.cas_calls == 2
        assert result.new_balance == Decimal("88.80")
        assert ledger.balance("alice") == Decimal("88.80")

    def test_contention_exhausts_attempts(self):
        """Losing every attempt is INTERNAL."""
        store = RacingStore(losses=5)
        fund(store, "alice", "100.00")
        ledger = _ledger(store)

        with pytest.raises(BillingError) as exc_info:
            ledger.debit("alice", "10.00", correlation_id="c1")

        assert exc_info.value.kind == ErrorKind.INTERNAL
        assert store.cas_calls == 2
        assert ledger.history("alice") == []
        assert len(store.list_ops_events(code="WALLET_CONTENTION")) == 1

    def test_cas_storage_error_is_internal(self):
        """Storage errors during the update are INTERNAL."""
        store = FailingCasStore()
        fund(store, "alice", "100.00")

        with pytest.raises(BillingError) as exc_info:
            _ledger(store).debit("alice", "10.00")

        assert exc_info.value.kind == ErrorKind.INTERNAL
        assert exc_info.value.message == "Failed to process payment"
        assert store.get_wallet("alice").balance == Decimal("100.00")

    def test_history_failure_keeps_debit(self):
        """A failed history write does not undo the debit."""
        store = FailingHistoryStore()
        fund(store, "alice", "100.00")

        result = _ledger(store).debit("alice", "10.00", correlation_id="c1")

        assert result.transaction is None
        assert store.get_wallet("alice").balance == Decimal("89.80")
        assert len(store.list_ops_events(code="TRANSACTION_WRITE_FAILED")) == 1


class TestCredit:
    """Test credits."""

    def test_credit_creates_wallet(self, store):
        """Credits create the wallet and a credit row."""
        ledger = _ledger(store)

        new_balance = ledger.credit("alice", "250.00", reason="recharge", correlation_id="c1")

        assert new_balance == Decimal("250.00")
        [row] = ledger.history("alice")
        assert row.type == TransactionType.CREDIT
        assert row.reason == "recharge"

    def test_credit_records_raw_amount(self, store):
        """Refund credits keep the pre-fee amount on the row."""
        fund(store, "alice", "0.00")
        ledger = _ledger(store)
        ledger.credit("alice", Decimal("10.20"), reason="reversal:SERVICE_UNAVAILABLE",
                      raw_amount=Decimal("10.00"))
        [row] = ledger.history("alice")
        assert row.raw_amount == Decimal("10.00")
        assert row.settled_amount == Decimal("10.20")

    def test_huge_credit_rejected(self, store):
        """An oversized recharge is refused and no wallet is created."""
        with pytest.raises(BillingError) as exc_info:
            _ledger(store).credit("alice", "1e30", reason="recharge")
        assert exc_info.value.kind == ErrorKind.BAD_INPUT
        assert store.get_wallet("alice") is None

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_rejected(self, store, amount):
        """Zero and negative credits are BAD_INPUT."""
        with pytest.raises(BillingError) as exc_info:
            _ledger(store).credit("alice", amount, reason="recharge")
        assert exc_info.value.kind == ErrorKind.BAD_INPUT


class TestReconcile:
    """Test balance versus history comparison."""

    def test_consistent_after_operations(self, store):
        """Balance matches history after debits and credits."""
        ledger = _ledger(store)
        ledger.credit("alice", "100.00", reason="recharge")
        ledger.debit("alice", "10.00")
        ledger.debit("alice", "3.33")

        report = ledger.reconcile("alice")

        assert report.balance == Decimal("86.40")
        assert report.ledger_total == Decimal("86.40")
        assert report.transaction_count == 3
        assert report.consistent

    def test_drift_detected(self, store):
        """An out-of-band balance change shows as drift."""
        ledger = _ledger(store)
        ledger.credit("alice", "100.00", reason="recharge")
        store.add_to_balance("alice", Decimal("5.00"))

        report = ledger.reconcile("alice")

        assert report.drift == Decimal("5.00")
        assert not report.consistent

    def test_unknown_identity(self, store):
        """Unknown identities reconcile at zero."""
        report = _ledger(store).reconcile("ghost")
        assert report.balance == Decimal("0.00")
        assert report.transaction_count == 0
        assert report.consistent
