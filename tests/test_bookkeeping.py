import sqlite3

import pytest

from aequi import bookkeeping as bk
from aequi.migrate import Migration, current_version

_UP = """
-- Minimal schema for the bookkeeping tables
CREATE TABLE accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    is_archetype INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    schedule_c_line TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE import_profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    has_header INTEGER NOT NULL DEFAULT 1,
    delimiter TEXT NOT NULL DEFAULT ',',
    date_column INTEGER,
    description_column INTEGER,
    amount_column INTEGER,
    debit_column INTEGER,
    credit_column INTEGER,
    memo_column INTEGER,
    date_format TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE categorization_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 0,
    match_pattern TEXT NOT NULL,
    match_type TEXT NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE imported_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_type TEXT NOT NULL,
    source_id TEXT,
    import_batch_id TEXT NOT NULL,
    date TEXT NOT NULL,
    description TEXT NOT NULL,
    amount_cents INTEGER NOT NULL,
    debit_cents INTEGER,
    credit_cents INTEGER,
    memo TEXT,
    matched_transaction_id INTEGER,
    category_rule_id INTEGER,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE reconciliation_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    statement_balance_cents INTEGER NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE reconciliation_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES reconciliation_sessions(id),
    imported_transaction_id INTEGER,
    transaction_id INTEGER,
    match_type TEXT NOT NULL,
    difference_cents INTEGER NOT NULL DEFAULT 0,
    is_resolved INTEGER NOT NULL DEFAULT 0,
    resolution_notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_DOWN = """
DROP TABLE reconciliation_items;
DROP TABLE reconciliation_sessions;
DROP TABLE imported_transactions;
DROP TABLE categorization_rules;
DROP TABLE import_profiles;
DROP TABLE accounts;
"""

MIGRATIONS = [Migration(1, "initial_schema", _UP, _DOWN)]


@pytest.fixture
def conn():
    connection = bk.create_db(":memory:", MIGRATIONS)
    yield connection
    connection.close()


def _add_account(conn, code, name, account_type, archived=0):
    with conn:
        cursor = conn.execute(
            "INSERT INTO accounts (code, name, account_type, is_archived) VALUES (?, ?, ?, ?)",
            (code, name, account_type, archived),
        )
    return cursor.lastrowid


def _imported(batch, date, description, amount, **extra):
    return bk.ImportedTransaction(
        source_type="csv",
        import_batch_id=batch,
        date=date,
        description=description,
        amount_cents=amount,
        **extra,
    )


def test_create_db_applies_migrations_and_foreign_keys(conn):
    assert current_version(conn) == 1
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


def test_create_db_reopens_file(tmp_path):
    path = tmp_path / "ledger.db"
    first = bk.create_db(path, MIGRATIONS)
    _add_account(first, "1000", "Cash", "Asset")
    first.close()

    second = bk.create_db(path, MIGRATIONS)
    try:
        assert [a.code for a in bk.get_all_accounts(second)] == ["1000"]
        assert current_version(second) == 1
    finally:
        second.close()


def test_accounts_ordered_and_archived_excluded(conn):
    _add_account(conn, "4000", "Sales", "Income")
    _add_account(conn, "1000", "Cash", "Asset")
    _add_account(conn, "5000", "Old", "Expense", archived=1)

    accounts = bk.get_all_accounts(conn)
    assert [a.code for a in accounts] == ["1000", "4000"]
    assert accounts[1].account_type is bk.AccountType.INCOME
    assert all(not a.is_archived for a in accounts)


def test_get_account_by_code_includes_archived(conn):
    account_id = _add_account(conn, "5000", "Old", "Expense", archived=1)
    account = bk.get_account_by_code(conn, "5000")
    assert account.id == account_id
    assert account.is_archived is True
    assert account.account_type is bk.AccountType.EXPENSE
    assert bk.get_account_by_code(conn, "9999") is None


def test_unknown_account_type_becomes_asset(conn):
    _add_account(conn, "1500", "Odd", "Mystery")
    assert bk.get_account_by_code(conn, "1500").account_type is bk.AccountType.ASSET


def test_import_profile_round_trip_and_delete(conn):
    profile = bk.ImportProfile(
        name="Checking",
        has_header=False,
        delimiter=";",
        date_column=0,
        description_column=1,
        amount_column=2,
        date_format="%Y-%m-%d",
    )
    other = bk.ImportProfile(name="Amex", date_format="%m/%d/%Y")
    first_id = bk.save_import_profile(conn, profile)
    bk.save_import_profile(conn, other)

    stored = bk.get_import_profiles(conn)
    assert [p.name for p in stored] == ["Amex", "Checking"]
    checking = stored[1]
    assert checking.id == first_id
    assert checking.has_header is False
    assert checking.delimiter == ";"
    assert checking.amount_column == 2
    assert checking.debit_column is None

    bk.delete_import_profile(conn, first_id)
    assert [p.name for p in bk.get_import_profiles(conn)] == ["Amex"]


def test_rules_ordered_by_priority_descending(conn):
    account_id = _add_account(conn, "6000", "Software", "Expense")
    low = bk.save_categorization_rule(
        conn,
        bk.CategorizationRule(
            name="low", priority=1, match_pattern="AWS", match_type="contains",
            account_id=account_id,
        ),
    )
    bk.save_categorization_rule(
        conn,
        bk.CategorizationRule(
            name="high", priority=10, match_pattern="GITHUB", match_type="contains",
            account_id=account_id,
        ),
    )
    assert [r.name for r in bk.get_categorization_rules(conn)] == ["high", "low"]

    bk.delete_categorization_rule(conn, low)
    assert [r.name for r in bk.get_categorization_rules(conn)] == ["high"]


def test_rule_requires_existing_account(conn):
    with pytest.raises(sqlite3.IntegrityError):
        bk.save_categorization_rule(
            conn,
            bk.CategorizationRule(
                name="bad", priority=1, match_pattern="X", match_type="contains",
                account_id=424242,
            ),
        )


def test_pending_transactions_by_batch_and_date(conn):
    later = bk.insert_imported_transaction(conn, _imported("b1", "2026-02-01", "B", -500))
    earlier = bk.insert_imported_transaction(
        conn, _imported("b1", "2026-01-15", "A", 1200, memo="note")
    )
    bk.insert_imported_transaction(conn, _imported("b2", "2026-01-01", "C", 100))

    pending = bk.get_pending_imported_transactions(conn, "b1")
    assert [t.id for t in pending] == [earlier, later]
    assert pending[0].memo == "note"
    assert pending[0].status == "pending"


def test_matched_and_categorized_transitions(conn):
    matched = bk.insert_imported_transaction(conn, _imported("b1", "2026-01-01", "M", 100))
    categorized = bk.insert_imported_transaction(conn, _imported("b1", "2026-01-02", "C", 200))
    untouched = bk.insert_imported_transaction(conn, _imported("b1", "2026-01-03", "U", 300))

    bk.mark_imported_transaction_matched(conn, matched, 77)
    bk.mark_imported_transaction_categorized(conn, categorized, 5)

    assert [t.id for t in bk.get_pending_imported_transactions(conn, "b1")] == [untouched]

    review = bk.get_imported_transactions_for_review(conn, "b1")
    assert [t.id for t in review] == [categorized, untouched]
    assert review[0].status == "categorized"
    assert review[0].category_rule_id == 5


def test_reconciliation_session_lifecycle(conn):
    account_id = _add_account(conn, "1000", "Cash", "Asset")
    session_id = bk.create_reconciliation_session(
        conn, account_id, "2026-01-01", "2026-01-31", 150000
    )

    sessions = bk.get_reconciliation_sessions(conn, account_id)
    assert len(sessions) == 1
    assert sessions[0].id == session_id
    assert sessions[0].statement_balance_cents == 150000
    assert sessions[0].is_completed is False

    bk.complete_reconciliation_session(conn, session_id)
    assert bk.get_reconciliation_sessions(conn, account_id)[0].is_completed is True
    assert bk.get_reconciliation_sessions(conn, account_id + 1) == []


def test_reconciliation_items_resolve(conn):
    account_id = _add_account(conn, "1000", "Cash", "Asset")
    session_id = bk.create_reconciliation_session(
        conn, account_id, "2026-01-01", "2026-01-31", 0
    )
    first = bk.add_reconciliation_item(conn, session_id, 3, 9, "exact", 0)
    second = bk.add_reconciliation_item(conn, session_id, None, None, "unmatched", 250)

    items = bk.get_reconciliation_items(conn, session_id)
    assert {i.id for i in items} == {first, second}
    assert all(not i.is_resolved for i in items)

    bk.resolve_reconciliation_item(conn, second, "bank fee")
    unresolved = bk.get_unresolved_reconciliation_items(conn, session_id)
    assert [i.id for i in unresolved] == [first]

    resolved = next(i for i in bk.get_reconciliation_items(conn, session_id) if i.id == second)
    assert resolved.is_resolved is True
    assert resolved.resolution_notes == "bank fee"
    assert resolved.difference_cents == 250
    assert resolved.imported_transaction_id is None