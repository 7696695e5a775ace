"""
Repository pattern for data access.

SQLite implementation of the BillingStore interface.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, List, Optional

from .base import BillingStore, DuplicateKeyError, StorageError
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    IdempotencyRecord,
    OpsLogEvent,
    Transaction,
    TransactionType,
    Wallet,
)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS wallet (
        identity TEXT PRIMARY KEY,
        balance TEXT NOT NULL,
        currency TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS wallet_transaction (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identity TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('debit', 'credit')),
        raw_amount TEXT NOT NULL,
        settled_amount TEXT NOT NULL,
        currency TEXT NOT NULL,
        created_at TEXT NOT NULL,
        reason TEXT,
        correlation_id TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_wallet_transaction_identity
        ON wallet_transaction (identity)
    """,
    """
    CREATE TABLE IF NOT EXISTS idempotency_key (
        key TEXT PRIMARY KEY,
        identity TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limit_counter (
        identity TEXT NOT NULL,
        action TEXT NOT NULL,
        window_start TEXT NOT NULL,
        count INTEGER NOT NULL,
        PRIMARY KEY (identity, action, window_start)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ops_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        correlation_id TEXT NOT NULL,
        identity TEXT,
        level TEXT NOT NULL,
        code TEXT NOT NULL,
        message TEXT NOT NULL,
        metadata TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the billing tables if they don't exist.

    wallet_transaction and ops_log are append-only ledgers.
    No UPDATE or DELETE operations should ever be performed on them.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_transaction(row) -> Transaction:
    return Transaction(
        id=row[0],
        identity=row[1],
        type=TransactionType(row[2]),
        raw_amount=Decimal(row[3]),
        settled_amount=Decimal(row[4]),
        currency=row[5],
        created_at=datetime.fromisoformat(row[6]),
        reason=row[7],
        correlation_id=row[8],
    )


class SQLiteStore(BillingStore):
    """BillingStore backed by a SQLite database file.

    Opens one connection per operation. Read-modify-write primitives run
    under BEGIN IMMEDIATE so concurrent processes serialize on the write lock.
    Amounts are stored as decimal strings to avoid float drift.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE" in str(e).upper():
                raise DuplicateKeyError(str(e)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def get_wallet(self, identity: str) -> Optional[Wallet]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT identity, balance, currency, updated_at FROM wallet WHERE identity = ?",
                (identity,),
            ).fetchone()
        if row is None:
            return None
        return Wallet(
            identity=row[0],
            balance=Decimal(row[1]),
            currency=row[2],
            updated_at=datetime.fromisoformat(row[3]),
        )

    def create_wallet_if_absent(self, identity: str, currency: str) -> Wallet:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO wallet (identity, balance, currency, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (identity, "0.00", currency, _utcnow().isoformat()),
            )
            conn.commit()
        return self.get_wallet(identity)

    def compare_and_set_balance(
        self, identity: str, expected: Decimal, new_balance: Decimal
    ) -> bool:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT balance FROM wallet WHERE identity = ?", (identity,)
            ).fetchone()
            if row is None:
                conn.rollback()
                raise StorageError(f"No wallet for identity {identity}")
            if Decimal(row[0]) != expected:
                conn.rollback()
                return False
            conn.execute(
                "UPDATE wallet SET balance = ?, updated_at = ? WHERE identity = ?",
                (str(new_balance), _utcnow().isoformat(), identity),
            )
            conn.commit()
            return True

    def add_to_balance(self, identity: str, amount: Decimal) -> Decimal:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT balance FROM wallet WHERE identity = ?", (identity,)
            ).fetchone()
            if row is None:
                conn.rollback()
                raise StorageError(f"No wallet for identity {identity}")
            new_balance = Decimal(row[0]) + amount
            conn.execute(
                "UPDATE wallet SET balance = ?, updated_at = ? WHERE identity = ?",
                (str(new_balance), _utcnow().isoformat(), identity),
            )
            conn.commit()
            return new_balance

    def append_transaction(self, transaction: Transaction) -> Transaction:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO wallet_transaction
                (identity, type, raw_amount, settled_amount, currency,
                 created_at, reason, correlation_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transaction.identity,
                    transaction.type.value,
                    str(transaction.raw_amount),
                    str(transaction.settled_amount),
                    transaction.currency,
                    transaction.created_at.isoformat(),
                    transaction.reason,
                    transaction.correlation_id,
                ),
            )
            conn.commit()
            row_id = cursor.lastrowid
        return Transaction(
            id=row_id,
            identity=transaction.identity,
            type=transaction.type,
            raw_amount=transaction.raw_amount,
            settled_amount=transaction.settled_amount,
            currency=transaction.currency,
            created_at=transaction.created_at,
            reason=transaction.reason,
            correlation_id=transaction.correlation_id,
        )

    def list_transactions(
        self, identity: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Transaction]:
        query = """
            SELECT id, identity, type, raw_amount, settled_amount, currency,
                   created_at, reason, correlation_id
            FROM wallet_transaction
        """
        params = []
        if identity is not None:
            query += " WHERE identity = ?"
            params.append(identity)

        # Newest N, returned oldest first
        if limit is not None:
            query = f"SELECT * FROM ({query} ORDER BY id DESC LIMIT ?) ORDER BY id ASC"
            params.append(limit)
        else:
            query += " ORDER BY id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def insert_idempotency_record(self, record: IdempotencyRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO idempotency_key (key, identity, created_at) VALUES (?, ?, ?)",
                (record.key, record.identity, record.created_at.isoformat()),
            )
            conn.commit()

    def increment_rate_counter(
        self, identity: str, action: str, window_start: datetime
    ) -> int:
        window = window_start.isoformat()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO rate_limit_counter (identity, action, window_start, count)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (identity, action, window_start)
                DO UPDATE SET count = count + 1
                """,
                (identity, action, window),
            )
            row = conn.execute(
                """
                SELECT count FROM rate_limit_counter
                WHERE identity = ? AND action = ? AND window_start = ?
                """,
                (identity, action, window),
            ).fetchone()
            conn.commit()
        return row[0]

    def delete_rate_counters_before(self, cutoff: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM rate_limit_counter WHERE window_start < ?",
                (cutoff.isoformat(),),
            )
            conn.commit()
            return cursor.rowcount

    def append_ops_event(self, event: OpsLogEvent) -> None:
        created_at = event.created_at or _utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ops_log
                (correlation_id, identity, level, code, message, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.correlation_id,
                    event.identity,
                    event.level,
                    event.code,
                    event.message,
                    json.dumps(event.metadata, default=str, sort_keys=True),
                    created_at.isoformat(),
                ),
            )
            conn.commit()

    def list_ops_events(
        self,
        correlation_id: Optional[str] = None,
        code: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[OpsLogEvent]:
        query = """
            SELECT id, correlation_id, identity, level, code, message, metadata, created_at
            FROM ops_log
        """
        params = []
        conditions = []

        if correlation_id:
            conditions.append("correlation_id = ?")
            params.append(correlation_id)
        if code:
            conditions.append("code = ?")
            params.append(code)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        if limit is not None:
            query = f"SELECT * FROM ({query} ORDER BY id DESC LIMIT ?) ORDER BY id ASC"
            params.append(limit)
        else:
            query += " ORDER BY id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            OpsLogEvent(
                correlation_id=row[1],
                identity=row[2],
                level=row[3],
                code=row[4],
                message=row[5],
                metadata=json.loads(row[6]),
                created_at=datetime.fromisoformat(row[7]),
            )
            for row in rows
        ]
