"""Versioned schema migrations for the ledger database.

Each migration is applied once, in version order, and recorded in the
``schema_versions`` table together with a checksum of its SQL.
"""

from __future__ import annotations

import hashlib
import re
import sqlite3
from dataclasses import dataclass
from typing import Iterable

# A database that already holds this table but has no migration history
# predates the migration system: its first migration is marked as applied.
BOOTSTRAP_TABLE = "accounts"

_SQL_PATTERN = re.compile(r"'(?:''|[^'])*'?|--[^\n]*|;")


@dataclass(frozen=True)
class Migration:
    """A schema change with the SQL to apply and to undo it."""

    version: int
    name: str
    up_sql: str
    down_sql: str


@dataclass(frozen=True)
class SchemaVersion:
    """A record of an applied migration."""

    version: int
    name: str
    applied_at: str
    checksum: str


class MigrationError(Exception):
    """Raised when migrations cannot be applied or rolled back."""


def checksum(sql: str) -> str:
    """Return a short, stable checksum of migration SQL."""
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()[:16]


def split_statements(sql: str) -> list[str]:
    """Split SQL text on semicolons, ignoring those in literals and comments."""
    statements: list[str] = []
    start = 0
    for match in _SQL_PATTERN.finditer(sql):
        if match.group() != ";":
            continue
        statement = sql[start:match.start()]
        if statement.strip():
            statements.append(statement)
        start = match.end()
    trailing = sql[start:]
    if trailing.strip():
        statements.append(trailing)
    return statements


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_versions (
            version INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at TEXT NOT NULL DEFAULT (datetime('now')),
            checksum TEXT NOT NULL
        )
        """
    )
    conn.commit()


def _record(conn: sqlite3.Connection, migration: Migration) -> None:
    conn.execute(
        "INSERT INTO schema_versions (version, name, checksum) VALUES (?, ?, ?)",
        (migration.version, migration.name, checksum(migration.up_sql)),
    )


def _execute_script(conn: sqlite3.Connection, sql: str) -> None:
    for statement in split_statements(sql):
        trimmed = statement.strip()
        if trimmed:
            conn.execute(trimmed)


def _bootstrap_existing_db(conn: sqlite3.Connection, ordered: list[Migration]) -> None:
    (recorded,) = conn.execute("SELECT COUNT(*) FROM schema_versions").fetchone()
    if recorded > 0 or not ordered:
        return
    (present,) = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
        (BOOTSTRAP_TABLE,),
    ).fetchone()
    if present == 1:
        with conn:
            _record(conn, ordered[0])


def run_migrations(conn: sqlite3.Connection, migrations: Iterable[Migration]) -> int:
    """Apply every pending migration and return how many were applied."""
    ordered = sorted(migrations, key=lambda m: m.version)
    _ensure_version_table(conn)
    _bootstrap_existing_db(conn, ordered)

    applied = {v.version: v for v in get_schema_versions(conn)}
    count = 0
    for migration in ordered:
        expected = checksum(migration.up_sql)
        existing = applied.get(migration.version)
        if existing is not None:
            if existing.checksum != expected:
                raise MigrationError(
                    f"Migration V{migration.version:03} ({migration.name}) checksum "
                    f"mismatch: expected {expected}, found {existing.checksum}. "
                    "The migration file has been modified after it was applied."
                )
            continue
        with conn:
            _execute_script(conn, migration.up_sql)
            _record(conn, migration)
        count += 1
    return count


def rollback_last(conn: sqlite3.Connection, migrations: Iterable[Migration]) -> int | None:
    """Undo the most recently applied migration and return its version.

    Returns None when no migration has been applied.
    """
    _ensure_version_table(conn)
    row = conn.execute(
        "SELECT version FROM schema_versions ORDER BY version DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return None
    (latest,) = row

    migration = next((m for m in migrations if m.version == latest), None)
    if migration is None:
        raise MigrationError(f"No down migration found for V{latest:03}")

    with conn:
        _execute_script(conn, migration.down_sql)
        conn.execute("DELETE FROM schema_versions WHERE version = ?", (latest,))
    return latest


def get_schema_versions(conn: sqlite3.Connection) -> list[SchemaVersion]:
    """Return all applied migrations in version order."""
    _ensure_version_table(conn)
    rows = conn.execute(
        "SELECT version, name, applied_at, checksum FROM schema_versions ORDER BY version"
    ).fetchall()
    return [SchemaVersion(*row) for row in rows]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied version, or 0 when none is applied."""
    _ensure_version_table(conn)
    row = conn.execute("SELECT MAX(version) FROM schema_versions").fetchone()
    if row is None or row[0] is None:
        return 0
    return row[0]