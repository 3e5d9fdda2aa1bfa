"""Ledger storage: accounts, bank imports, categorization and reconciliation."""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Iterable, Sequence, TypeVar

from aequi.migrate import Migration, run_migrations

_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
    "PRAGMA cache_size = -32000",
)

_Record = TypeVar("_Record")


class AccountType(enum.Enum):
    """The five kinds of ledger account."""

    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    INCOME = "Income"
    EXPENSE = "Expense"

    @classmethod
    def parse(cls, value: str) -> AccountType:
        """Map a stored type name to a member; unknown names are assets."""
        try:
            return cls(value)
        except ValueError:
            return cls.ASSET


@dataclass(frozen=True, kw_only=True)
class Account:
    """A ledger account as stored in the chart of accounts."""

    id: int | None
    code: str
    name: str
    account_type: AccountType
    is_archetype: bool = False
    is_archived: bool = False
    schedule_c_line: str | None = None


@dataclass(frozen=True, kw_only=True)
class ImportProfile:
    """Column layout of a bank CSV export."""

    id: int = 0
    name: str
    has_header: bool = True
    delimiter: str = ","
    date_column: int | None = None
    description_column: int | None = None
    amount_column: int | None = None
    debit_column: int | None = None
    credit_column: int | None = None
    memo_column: int | None = None
    date_format: str
    created_at: str = ""


@dataclass(frozen=True, kw_only=True)
class CategorizationRule:
    """A pattern that assigns imported transactions to an account."""

    id: int = 0
    name: str
    priority: int
    match_pattern: str
    match_type: str
    account_id: int
    created_at: str = ""


@dataclass(frozen=True, kw_only=True)
class ImportedTransaction:
    """A transaction read from a bank statement, awaiting review."""

    id: int = 0
    source_type: str
    source_id: str | None = None
    import_batch_id: str
    date: str
    description: str
    amount_cents: int
    debit_cents: int | None = None
    credit_cents: int | None = None
    memo: str | None = None
    matched_transaction_id: int | None = None
    category_rule_id: int | None = None
    status: str = "pending"
    created_at: str = ""


@dataclass(frozen=True, kw_only=True)
class ReconciliationSession:
    """A reconciliation of one account against a statement period."""

    id: int
    account_id: int
    start_date: str
    end_date: str
    statement_balance_cents: int
    is_completed: bool
    created_at: str


@dataclass(frozen=True, kw_only=True)
class ReconciliationItem:
    """One matched or unmatched entry within a reconciliation session."""

    id: int
    session_id: int
    imported_transaction_id: int | None
    transaction_id: int | None
    match_type: str
    difference_cents: int
    is_resolved: bool
    resolution_notes: str | None
    created_at: str


def _record_from_row(cls: type[_Record], row: Sequence[Any]) -> _Record:
    values = {}
    for field, value in zip(fields(cls), row):
        if field.type in ("bool", bool):
            value = bool(value)
        values[field.name] = value
    return cls(**values)


def _select(
    conn: sqlite3.Connection,
    cls: type[_Record],
    table: str,
    tail: str = "",
    params: Iterable[Any] = (),
) -> list[_Record]:
    columns = ", ".join(f.name for f in fields(cls))
    rows = conn.execute(f"SELECT {columns} FROM {table} {tail}", tuple(params)).fetchall()
    return [_record_from_row(cls, row) for row in rows]


def _write(conn: sqlite3.Connection, sql: str, params: Iterable[Any]) -> int:
    with conn:
        cursor = conn.execute(sql, tuple(params))
    return cursor.lastrowid


def create_db(path: str | Path, migrations: Iterable[Migration]) -> sqlite3.Connection:
    """Open (creating if needed) the database at ``path`` and migrate it."""
    conn = sqlite3.connect(str(path), check_same_thread=False)
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    run_migrations(conn, migrations)
    return conn


# ── Accounts ─────────────────────────────────────────────────────────────────

_ACCOUNT_COLUMNS = "id, code, name, account_type, is_archetype, is_archived, schedule_c_line"


def _account_from_row(row: Sequence[Any]) -> Account:
    account_id, code, name, account_type, archetype, archived, line = row
    return Account(
        id=account_id,
        code=code,
        name=name,
        account_type=AccountType.parse(account_type),
        is_archetype=archetype != 0,
        is_archived=archived != 0,
        schedule_c_line=line,
    )


def get_all_accounts(conn: sqlite3.Connection) -> list[Account]:
    """Return every account that is not archived, ordered by code."""
    rows = conn.execute(
        f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE is_archived = 0 ORDER BY code"
    ).fetchall()
    return [_account_from_row(row) for row in rows]


def get_account_by_code(conn: sqlite3.Connection, code: str) -> Account | None:
    """Return the account with ``code``, archived or not, or None."""
    row = conn.execute(
        f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE code = ?", (code,)
    ).fetchone()
    return None if row is None else _account_from_row(row)


# ── Import profiles ──────────────────────────────────────────────────────────


def save_import_profile(conn: sqlite3.Connection, profile: ImportProfile) -> int:
    """Store a new import profile and return its id."""
    return _write(
        conn,
        """INSERT INTO import_profiles
           (name, has_header, delimiter, date_column, description_column,
            amount_column, debit_column, credit_column, memo_column, date_format)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            profile.name,
            profile.has_header,
            profile.delimiter,
            profile.date_column,
            profile.description_column,
            profile.amount_column,
            profile.debit_column,
            profile.credit_column,
            profile.memo_column,
            profile.date_format,
        ),
    )


def get_import_profiles(conn: sqlite3.Connection) -> list[ImportProfile]:
    """Return all import profiles ordered by name."""
    return _select(conn, ImportProfile, "import_profiles", "ORDER BY name")


def delete_import_profile(conn: sqlite3.Connection, profile_id: int) -> None:
    """Delete the import profile with ``profile_id``, if any."""
    _write(conn, "DELETE FROM import_profiles WHERE id = ?", (profile_id,))


# ── Categorization rules ─────────────────────────────────────────────────────


def save_categorization_rule(conn: sqlite3.Connection, rule: CategorizationRule) -> int:
    """Store a new categorization rule and return its id."""
    return _write(
        conn,
        """INSERT INTO categorization_rules (name, priority, match_pattern, match_type, account_id)
           VALUES (?, ?, ?, ?, ?)""",
        (rule.name, rule.priority, rule.match_pattern, rule.match_type, rule.account_id),
    )


def get_categorization_rules(conn: sqlite3.Connection) -> list[CategorizationRule]:
    """Return all rules, highest priority first."""
    return _select(conn, CategorizationRule, "categorization_rules", "ORDER BY priority DESC")


def delete_categorization_rule(conn: sqlite3.Connection, rule_id: int) -> None:
    """Delete the rule with ``rule_id``, if any."""
    _write(conn, "DELETE FROM categorization_rules WHERE id = ?", (rule_id,))


# ── Imported transactions ────────────────────────────────────────────────────


def insert_imported_transaction(conn: sqlite3.Connection, tx: ImportedTransaction) -> int:
    """Store an imported transaction and return its id."""
    return _write(
        conn,
        """INSERT INTO imported_transactions
           (source_type, source_id, import_batch_id, date, description,
            amount_cents, debit_cents, credit_cents, memo, status)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            tx.source_type,
            tx.source_id,
            tx.import_batch_id,
            tx.date,
            tx.description,
            tx.amount_cents,
            tx.debit_cents,
            tx.credit_cents,
            tx.memo,
            tx.status,
        ),
    )


def get_pending_imported_transactions(
    conn: sqlite3.Connection, batch_id: str
) -> list[ImportedTransaction]:
    """Return the batch's pending transactions ordered by date."""
    return _select(
        conn,
        ImportedTransaction,
        "imported_transactions",
        "WHERE import_batch_id = ? AND status = 'pending' ORDER BY date",
        (batch_id,),
    )


def mark_imported_transaction_matched(
    conn: sqlite3.Connection, imported_id: int, transaction_id: int
) -> None:
    """Link an imported transaction to a ledger transaction."""
    _write(
        conn,
        "UPDATE imported_transactions SET matched_transaction_id = ?, status = 'matched' "
        "WHERE id = ?",
        (transaction_id, imported_id),
    )


def mark_imported_transaction_categorized(
    conn: sqlite3.Connection, imported_id: int, rule_id: int
) -> None:
    """Record the rule that categorized an imported transaction."""
    _write(
        conn,
        "UPDATE imported_transactions SET category_rule_id = ?, status = 'categorized' "
        "WHERE id = ?",
        (rule_id, imported_id),
    )


def get_imported_transactions_for_review(
    conn: sqlite3.Connection, batch_id: str
) -> list[ImportedTransaction]:
    """Return the batch's pending and categorized transactions ordered by date."""
    return _select(
        conn,
        ImportedTransaction,
        "imported_transactions",
        "WHERE import_batch_id = ? AND status IN ('pending', 'categorized') ORDER BY date",
        (batch_id,),
    )


# ── Reconciliation ───────────────────────────────────────────────────────────


def create_reconciliation_session(
    conn: sqlite3.Connection,
    account_id: int,
    start_date: str,
    end_date: str,
    statement_balance_cents: int,
) -> int:
    """Open a reconciliation session and return its id."""
    return _write(
        conn,
        """INSERT INTO reconciliation_sessions
           (account_id, start_date, end_date, statement_balance_cents)
           VALUES (?, ?, ?, ?)""",
        (account_id, start_date, end_date, statement_balance_cents),
    )


def get_reconciliation_sessions(
    conn: sqlite3.Connection, account_id: int
) -> list[ReconciliationSession]:
    """Return the account's sessions, newest first."""
    return _select(
        conn,
        ReconciliationSession,
        "reconciliation_sessions",
        "WHERE account_id = ? ORDER BY created_at DESC",
        (account_id,),
    )


def complete_reconciliation_session(conn: sqlite3.Connection, session_id: int) -> None:
    """Mark a reconciliation session as completed."""
    _write(
        conn,
        "UPDATE reconciliation_sessions SET is_completed = 1 WHERE id = ?",
        (session_id,),
    )


def add_reconciliation_item(
    conn: sqlite3.Connection,
    session_id: int,
    imported_transaction_id: int | None,
    transaction_id: int | None,
    match_type: str,
    difference_cents: int,
) -> int:
    """Add an item to a session and return its id."""
    return _write(
        conn,
        """INSERT INTO reconciliation_items
           (session_id, imported_transaction_id, transaction_id, match_type, difference_cents)
           VALUES (?, ?, ?, ?, ?)""",
        (session_id, imported_transaction_id, transaction_id, match_type, difference_cents),
    )


def resolve_reconciliation_item(
    conn: sqlite3.Connection, item_id: int, resolution_notes: str
) -> None:
    """Mark an item resolved with the given notes."""
    _write(
        conn,
        "UPDATE reconciliation_items SET is_resolved = 1, resolution_notes = ? WHERE id = ?",
        (resolution_notes, item_id),
    )


def get_reconciliation_items(
    conn: sqlite3.Connection, session_id: int
) -> list[ReconciliationItem]:
    """Return every item of a session in creation order."""
    return _select(
        conn,
        ReconciliationItem,
        "reconciliation_items",
        "WHERE session_id = ? ORDER BY created_at",
        (session_id,),
    )


def get_unresolved_reconciliation_items(
    conn: sqlite3.Connection, session_id: int
) -> list[ReconciliationItem]:
    """Return the session's items that are not yet resolved."""
    return _select(
        conn,
        ReconciliationItem,
        "reconciliation_items",
        "WHERE session_id = ? AND is_resolved = 0 ORDER BY created_at",
        (session_id,),
    )