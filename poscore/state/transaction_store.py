"""
SQLite-backed transaction store with ACID guarantees.

CRITICAL PROPERTIES:
1. SQLite backend with WAL mode (concurrent reads)
2. One SQLite transaction per logical write (state + context together)
3. Money as Decimal serialized to TEXT, never float
4. No in-memory cache (the state machine owns the index)
5. Thread-safe via SQLite connection per thread
6. Schema versioning support

Tables:
- transaction_states: lifecycle record + context snapshot per transaction
- finalized_sales: append-only queue of completed sales
- pricing_rules: durable rule definitions (a rule source for the engine)
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from poscore.logging import get_logger, LogStream
from poscore.pricing.models import PricingRule
from poscore.state.models import (
    FinalizedSale,
    TransactionContext,
    TransactionState,
    TransactionStatus,
)
from poscore.time import Clock, RealTimeClock, ensure_utc


class TransactionStore:
    """
    SQLite-backed persistence for transaction states, finalized sales and
    pricing rules.

    USAGE:
        store = TransactionStore(Path("data/pos/terminal.db"))

        store.create_state(state, context)
        store.update_state(state.transaction_id, {"current_step": step}, context)

        stale = store.query_active_states_older_than(cutoff)
        store.append_finalized_sale(sale)
    """

    SCHEMA_VERSION = 1

    CREATE_STATES_SQL = """
        CREATE TABLE IF NOT EXISTS transaction_states (
            transaction_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            current_step TEXT NOT NULL,
            user_id TEXT NOT NULL,
            branch_id TEXT NOT NULL,
            device_id TEXT NOT NULL,
            started_at TEXT NOT NULL,
            last_updated TEXT NOT NULL,
            state TEXT NOT NULL,
            context TEXT NOT NULL
        )
    """

    CREATE_STATES_INDEX_SQL = """
        CREATE INDEX IF NOT EXISTS idx_transaction_states_status
        ON transaction_states (status, last_updated)
    """

    CREATE_SALES_SQL = """
        CREATE TABLE IF NOT EXISTS finalized_sales (
            receipt_number TEXT PRIMARY KEY,
            transaction_id TEXT NOT NULL UNIQUE,
            branch_id TEXT NOT NULL,
            total_amount TEXT NOT NULL,
            completed_at TEXT NOT NULL,
            sale TEXT NOT NULL
        )
    """

    CREATE_RULES_SQL = """
        CREATE TABLE IF NOT EXISTS pricing_rules (
            rule_id TEXT PRIMARY KEY,
            is_active INTEGER NOT NULL,
            priority INTEGER NOT NULL,
            rule TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """

    CREATE_VERSION_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        )
    """

    def __init__(self, db_path: Path, clock: Optional[Clock] = None):
        """
        Initialize transaction store.

        Args:
            db_path: Path to SQLite database file
            clock: Optional clock for row timestamps
        """
        self.db_path = Path(db_path)
        self.clock = clock or RealTimeClock()

        self.logger = get_logger(LogStream.STORAGE)

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()

        self._initialize_db()

        self.logger.info("TransactionStore initialized", extra={
            "db_path": str(self.db_path),
            "schema_version": self.SCHEMA_VERSION
        })

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection; autocommit off, WAL on."""
        if not hasattr(self._local, 'connection'):
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.isolation_level = None
            conn.row_factory = sqlite3.Row
            self._local.connection = conn

        return self._local.connection

    def _initialize_db(self):
        conn = self._get_connection()

        conn.execute(self.CREATE_STATES_SQL)
        conn.execute(self.CREATE_STATES_INDEX_SQL)
        conn.execute(self.CREATE_SALES_SQL)
        conn.execute(self.CREATE_RULES_SQL)
        conn.execute(self.CREATE_VERSION_TABLE_SQL)

        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,)
            )

    @contextmanager
    def _transaction(self, operation: str, **log_fields) -> Iterator[sqlite3.Connection]:
        """BEGIN ... COMMIT, rolling back and raising StorageError on failure."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            self.logger.error(
                f"Store operation failed: {operation}",
                extra={"operation": operation, "error": str(e), **log_fields},
                exc_info=True
            )
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"{operation} failed: {e}") from e

    # ========================================================================
    # TRANSACTION STATES
    # ========================================================================

    def create_state(self, state: TransactionState, context: TransactionContext) -> None:
        """
        Insert a new transaction record.

        Raises:
            StorageError: If the id already exists or the write fails
        """
        with self._transaction("create_state", transaction_id=state.transaction_id) as conn:
            conn.execute("""
                INSERT INTO transaction_states (
                    transaction_id, status, current_step, user_id, branch_id,
                    device_id, started_at, last_updated, state, context
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                state.transaction_id,
                state.status.value,
                state.current_step.value,
                context.metadata.user_id,
                context.metadata.branch_id,
                context.metadata.device_id,
                state.started_at.isoformat(),
                state.last_updated.isoformat(),
                _dumps(state.to_dict()),
                _dumps(context.to_dict()),
            ))

        self.logger.debug("State created", extra={"transaction_id": state.transaction_id})

    def update_state(
        self,
        transaction_id: str,
        fields: Dict[str, Any],
        context: Optional[TransactionContext] = None
    ) -> TransactionState:
        """
        Apply field updates to a stored state (and replace its context).

        Args:
            transaction_id: Transaction to update
            fields: TransactionState attribute -> new value
            context: New context snapshot, or None to keep the stored one

        Returns:
            The updated state as persisted

        Raises:
            StorageError: If the record is missing or the write fails
        """
        with self._transaction("update_state", transaction_id=transaction_id) as conn:
            return self._update_state(conn, transaction_id, fields, context)

    def _update_state(
        self,
        conn: sqlite3.Connection,
        transaction_id: str,
        fields: Dict[str, Any],
        context: Optional[TransactionContext]
    ) -> TransactionState:
        row = conn.execute(
            "SELECT state FROM transaction_states WHERE transaction_id = ?",
            (transaction_id,)
        ).fetchone()
        if row is None:
            raise StorageError(f"No stored state for transaction {transaction_id}")

        state = replace(TransactionState.from_dict(json.loads(row['state'])), **fields)

        params = [
            state.status.value,
            state.current_step.value,
            state.last_updated.isoformat(),
            _dumps(state.to_dict()),
        ]
        sql = "UPDATE transaction_states SET status = ?, current_step = ?, last_updated = ?, state = ?"
        if context is not None:
            sql += ", context = ?"
            params.append(_dumps(context.to_dict()))
        sql += " WHERE transaction_id = ?"
        params.append(transaction_id)

        conn.execute(sql, params)
        return state

    def get_state(self, transaction_id: str) -> Optional[TransactionState]:
        row = self._get_connection().execute(
            "SELECT state FROM transaction_states WHERE transaction_id = ?",
            (transaction_id,)
        ).fetchone()
        if row is None:
            return None
        return TransactionState.from_dict(json.loads(row['state']))

    def get_context(self, transaction_id: str) -> Optional[TransactionContext]:
        row = self._get_connection().execute(
            "SELECT context FROM transaction_states WHERE transaction_id = ?",
            (transaction_id,)
        ).fetchone()
        if row is None:
            return None
        return TransactionContext.from_dict(json.loads(row['context']))

    def query_active_states_older_than(self, cutoff: datetime) -> List[TransactionState]:
        """Active states whose last_updated is before cutoff, oldest first."""
        cutoff = ensure_utc(cutoff)
        stale = [
            state for state in self.list_states(TransactionStatus.ACTIVE)
            if ensure_utc(state.last_updated) < cutoff
        ]
        return sorted(stale, key=lambda s: s.last_updated)

    def list_states(
        self,
        status: Optional[TransactionStatus] = None,
        user_id: Optional[str] = None
    ) -> List[TransactionState]:
        sql = "SELECT state FROM transaction_states"
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY started_at"

        rows = self._get_connection().execute(sql, params).fetchall()
        return [TransactionState.from_dict(json.loads(row['state'])) for row in rows]

    # ========================================================================
    # FINALIZED SALES
    # ========================================================================

    def append_finalized_sale(
        self,
        sale: FinalizedSale,
        state_fields: Optional[Dict[str, Any]] = None,
        context: Optional[TransactionContext] = None
    ) -> None:
        """
        Append a completed sale to the sync queue.

        When state_fields is given the transaction record is updated in the
        same SQLite transaction, so a sale is never queued without its state
        being marked completed (or vice versa).
        """
        with self._transaction(
            "append_finalized_sale",
            transaction_id=sale.transaction_id,
            receipt_number=sale.receipt_number
        ) as conn:
            conn.execute("""
                INSERT INTO finalized_sales (
                    receipt_number, transaction_id, branch_id, total_amount,
                    completed_at, sale
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                sale.receipt_number,
                sale.transaction_id,
                sale.branch_id,
                str(sale.total_amount),
                sale.completed_at.isoformat(),
                _dumps(sale.to_dict()),
            ))
            if state_fields is not None:
                self._update_state(conn, sale.transaction_id, state_fields, context)

        self.logger.info(f"Sale queued: {sale.receipt_number}", extra={
            "transaction_id": sale.transaction_id,
            "receipt_number": sale.receipt_number,
            "total_amount": str(sale.total_amount)
        })

    def get_finalized_sale(self, receipt_number: str) -> Optional[FinalizedSale]:
        row = self._get_connection().execute(
            "SELECT sale FROM finalized_sales WHERE receipt_number = ?",
            (receipt_number,)
        ).fetchone()
        if row is None:
            return None
        return FinalizedSale.from_dict(json.loads(row['sale']))

    def list_finalized_sales(self) -> List[FinalizedSale]:
        rows = self._get_connection().execute(
            "SELECT sale FROM finalized_sales ORDER BY completed_at, receipt_number"
        ).fetchall()
        return [FinalizedSale.from_dict(json.loads(row['sale'])) for row in rows]

    # ========================================================================
    # PRICING RULES
    # ========================================================================

    def save_pricing_rule(self, rule: PricingRule) -> None:
        """Insert or replace a rule definition."""
        with self._transaction("save_pricing_rule", rule_id=rule.rule_id) as conn:
            conn.execute("""
                REPLACE INTO pricing_rules (rule_id, is_active, priority, rule, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                rule.rule_id,
                1 if rule.is_active else 0,
                rule.priority,
                _dumps(rule.to_dict()),
                self.clock.now().isoformat(),
            ))

        self.logger.info(f"Pricing rule saved: {rule.rule_id}", extra={
            "rule_id": rule.rule_id,
            "is_active": rule.is_active
        })

    def load_active_pricing_rules(self) -> List[PricingRule]:
        """
        Raises:
            StorageError: If the rules table cannot be read or a row is malformed
        """
        try:
            rows = self._get_connection().execute(
                "SELECT rule FROM pricing_rules WHERE is_active = 1 ORDER BY priority DESC, rule_id"
            ).fetchall()
            return [PricingRule.from_dict(json.loads(row['rule'])) for row in rows]
        except (sqlite3.Error, ValueError, KeyError) as e:
            raise StorageError(f"Failed to load pricing rules: {e}") from e

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def close(self):
        """Close this thread's connection. Call on shutdown."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection

        self.logger.info("TransactionStore closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _dumps(payload: Dict) -> str:
    return json.dumps(payload, default=str, sort_keys=True)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class StorageError(Exception):
    """Raised on transaction store errors."""
    pass
