"""Storage for receipts, tax periods, contacts, invoices, payments,
the audit log and application settings."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from aequi.bookkeeping import _select, _write

# Invoices still awaiting payment, as listed by the aging report.
_OPEN_INVOICE_STATUSES = ("Sent", "Viewed", "PartiallyPaid")


@dataclass(frozen=True, kw_only=True)
class ReceiptRecord:
    """A scanned receipt with the fields read from it."""

    id: int
    file_hash: str
    file_ext: str
    ocr_text: str | None
    vendor: str | None
    receipt_date: str | None
    total_cents: int | None
    subtotal_cents: int | None
    tax_cents: int | None
    payment_method: str | None
    confidence: float
    status: str
    transaction_id: int | None
    attachment_path: str
    created_at: str
    reviewed_at: str | None


@dataclass(frozen=True, kw_only=True)
class TaxPeriodRecord:
    """The estimated tax and payment for one quarter of a year."""

    id: int
    year: int
    quarter: int
    estimated_tax_cents: int
    se_tax_cents: int
    income_tax_cents: int
    net_profit_cents: int
    payment_recorded_cents: int
    payment_date: str | None
    due_date: str
    rules_year: int
    created_at: str
    updated_at: str


@dataclass(frozen=True, kw_only=True)
class ContactRecord:
    """A client, vendor or contractor."""

    id: int
    name: str
    email: str | None
    phone: str | None
    address: str | None
    contact_type: str
    is_contractor: bool
    tax_id: str | None
    notes: str | None
    created_at: str


@dataclass(frozen=True, kw_only=True)
class InvoiceRecord:
    """An invoice header as stored."""

    id: int
    invoice_number: str
    contact_id: int
    status_type: str
    status_data: str | None
    issue_date: str
    due_date: str
    discount_type: str | None
    discount_value: int | None
    notes: str | None
    terms: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True, kw_only=True)
class InvoiceLineRecord:
    """One billed line of an invoice."""

    id: int
    invoice_id: int
    description: str
    quantity_hundredths: int
    unit_rate_cents: int
    taxable: bool
    sort_order: int


@dataclass(frozen=True, kw_only=True)
class InvoiceTaxLineRecord:
    """A tax applied to an invoice, with its rate in basis points."""

    id: int
    invoice_id: int
    label: str
    rate_bps: int


@dataclass(frozen=True, kw_only=True)
class PaymentRecord:
    """A payment received against an invoice."""

    id: int
    invoice_id: int
    amount_cents: int
    date: str
    method: str | None
    transaction_id: int | None
    created_at: str


@dataclass(frozen=True, kw_only=True)
class AuditLogRecord:
    """An entry recording a tool invocation and its outcome."""

    id: int
    timestamp: str
    tool_name: str
    input_hash: str | None
    outcome: str
    details: str | None


# ── Receipts ─────────────────────────────────────────────────────────────────


def insert_receipt(
    conn: sqlite3.Connection,
    file_hash: str,
    file_ext: str,
    attachment_path: str,
    ocr_text: str | None,
    vendor: str | None,
    receipt_date: str | None,
    total_cents: int | None,
    subtotal_cents: int | None,
    tax_cents: int | None,
    payment_method: str | None,
    confidence: float,
) -> int:
    """Store a receipt and return its id.

    A receipt whose file hash is already stored is not inserted again;
    the id of the existing receipt is returned instead.
    """
    with conn:
        cursor = conn.execute(
            """INSERT OR IGNORE INTO receipts
               (file_hash, file_ext, attachment_path, ocr_text, vendor, receipt_date,
                total_cents, subtotal_cents, tax_cents, payment_method, confidence)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                file_hash,
                file_ext,
                attachment_path,
                ocr_text,
                vendor,
                receipt_date,
                total_cents,
                subtotal_cents,
                tax_cents,
                payment_method,
                confidence,
            ),
        )
    if cursor.rowcount == 0:
        (existing,) = conn.execute(
            "SELECT id FROM receipts WHERE file_hash = ?", (file_hash,)
        ).fetchone()
        return existing
    return cursor.lastrowid


def get_receipt_by_id(conn: sqlite3.Connection, receipt_id: int) -> ReceiptRecord | None:
    """Return the receipt with ``receipt_id``, or None."""
    found = _select(conn, ReceiptRecord, "receipts", "WHERE id = ?", (receipt_id,))
    return found[0] if found else None


def get_receipts_pending_review(conn: sqlite3.Connection) -> list[ReceiptRecord]:
    """Return receipts awaiting review, newest first."""
    return _select(
        conn,
        ReceiptRecord,
        "receipts",
        "WHERE status = 'pending_review' ORDER BY created_at DESC",
    )


def update_receipt_status(conn: sqlite3.Connection, receipt_id: int, status: str) -> None:
    """Set a receipt's status and stamp when it was reviewed."""
    _write(
        conn,
        "UPDATE receipts SET status = ?, reviewed_at = datetime('now') WHERE id = ?",
        (status, receipt_id),
    )


def link_receipt_to_transaction(
    conn: sqlite3.Connection, receipt_id: int, transaction_id: int
) -> None:
    """Attach a receipt to a ledger transaction and approve it."""
    _write(
        conn,
        "UPDATE receipts SET transaction_id = ?, status = 'approved', "
        "reviewed_at = datetime('now') WHERE id = ?",
        (transaction_id, receipt_id),
    )


def check_receipt_duplicate(conn: sqlite3.Connection, file_hash: str) -> int | None:
    """Return the id of a receipt with this file hash, or None."""
    row = conn.execute("SELECT id FROM receipts WHERE file_hash = ?", (file_hash,)).fetchone()
    return None if row is None else row[0]


# ── Tax periods ──────────────────────────────────────────────────────────────


def upsert_tax_period(
    conn: sqlite3.Connection,
    year: int,
    quarter: int,
    estimated_tax_cents: int,
    se_tax_cents: int,
    income_tax_cents: int,
    net_profit_cents: int,
    due_date: str,
    rules_year: int,
) -> int:
    """Insert or replace the estimate for a year and quarter."""
    return _write(
        conn,
        """INSERT INTO tax_periods
           (year, quarter, estimated_tax_cents, se_tax_cents, income_tax_cents,
            net_profit_cents, due_date, rules_year)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(year, quarter) DO UPDATE SET
             estimated_tax_cents = excluded.estimated_tax_cents,
             se_tax_cents = excluded.se_tax_cents,
             income_tax_cents = excluded.income_tax_cents,
             net_profit_cents = excluded.net_profit_cents,
             due_date = excluded.due_date,
             rules_year = excluded.rules_year,
             updated_at = datetime('now')""",
        (
            year,
            quarter,
            estimated_tax_cents,
            se_tax_cents,
            income_tax_cents,
            net_profit_cents,
            due_date,
            rules_year,
        ),
    )


def record_tax_payment(
    conn: sqlite3.Connection,
    year: int,
    quarter: int,
    payment_cents: int,
    payment_date: str,
) -> None:
    """Record the payment made for a year and quarter."""
    _write(
        conn,
        """UPDATE tax_periods
           SET payment_recorded_cents = ?,
               payment_date = ?,
               updated_at = datetime('now')
           WHERE year = ? AND quarter = ?""",
        (payment_cents, payment_date, year, quarter),
    )


def get_tax_periods(conn: sqlite3.Connection, year: int) -> list[TaxPeriodRecord]:
    """Return the year's tax periods in quarter order."""
    return _select(conn, TaxPeriodRecord, "tax_periods", "WHERE year = ? ORDER BY quarter", (year,))


def get_prior_year_total_tax(conn: sqlite3.Connection, year: int) -> int | None:
    """Return the total estimated tax of the year before ``year``.

    Returns None when that total is not positive.
    """
    (total,) = conn.execute(
        "SELECT COALESCE(SUM(estimated_tax_cents), 0) FROM tax_periods WHERE year = ?",
        (year - 1,),
    ).fetchone()
    return total if total > 0 else None


# ── Contacts ─────────────────────────────────────────────────────────────────


def insert_contact(
    conn: sqlite3.Connection,
    name: str,
    email: str | None,
    phone: str | None,
    address: str | None,
    contact_type: str,
    is_contractor: bool,
    tax_id: str | None,
    notes: str | None,
) -> int:
    """Store a contact and return its id."""
    return _write(
        conn,
        """INSERT INTO contacts
           (name, email, phone, address, contact_type, is_contractor, tax_id, notes)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (name, email, phone, address, contact_type, is_contractor, tax_id, notes),
    )


def update_contact(
    conn: sqlite3.Connection,
    contact_id: int,
    name: str,
    email: str | None,
    phone: str | None,
    address: str | None,
    contact_type: str,
    is_contractor: bool,
    tax_id: str | None,
    notes: str | None,
) -> None:
    """Replace every editable field of a contact."""
    _write(
        conn,
        """UPDATE contacts SET name=?, email=?, phone=?, address=?, contact_type=?,
           is_contractor=?, tax_id=?, notes=? WHERE id=?""",
        (name, email, phone, address, contact_type, is_contractor, tax_id, notes, contact_id),
    )


def get_all_contacts(conn: sqlite3.Connection) -> list[ContactRecord]:
    """Return every contact ordered by name."""
    return _select(conn, ContactRecord, "contacts", "ORDER BY name")


def get_contact_by_id(conn: sqlite3.Connection, contact_id: int) -> ContactRecord | None:
    """Return the contact with ``contact_id``, or None."""
    found = _select(conn, ContactRecord, "contacts", "WHERE id = ?", (contact_id,))
    return found[0] if found else None


def get_contractors(conn: sqlite3.Connection) -> list[ContactRecord]:
    """Return contacts flagged as contractors, ordered by name."""
    return _select(conn, ContactRecord, "contacts", "WHERE is_contractor = 1 ORDER BY name")


# ── Invoices ─────────────────────────────────────────────────────────────────


def insert_invoice(
    conn: sqlite3.Connection,
    invoice_number: str,
    contact_id: int,
    status_type: str,
    status_data: str | None,
    issue_date: str,
    due_date: str,
    discount_type: str | None,
    discount_value: int | None,
    notes: str | None,
    terms: str | None,
) -> int:
    """Store an invoice header and return its id."""
    return _write(
        conn,
        """INSERT INTO invoices (invoice_number, contact_id, status_type, status_data,
           issue_date, due_date, discount_type, discount_value, notes, terms)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            invoice_number,
            contact_id,
            status_type,
            status_data,
            issue_date,
            due_date,
            discount_type,
            discount_value,
            notes,
            terms,
        ),
    )


def update_invoice_status(
    conn: sqlite3.Connection,
    invoice_id: int,
    status_type: str,
    status_data: str | None,
) -> None:
    """Change an invoice's status and stamp the update time."""
    _write(
        conn,
        "UPDATE invoices SET status_type=?, status_data=?, updated_at=datetime('now') WHERE id=?",
        (status_type, status_data, invoice_id),
    )


def get_all_invoices(conn: sqlite3.Connection) -> list[InvoiceRecord]:
    """Return every invoice, newest first."""
    return _select(conn, InvoiceRecord, "invoices", "ORDER BY created_at DESC")


def get_invoice_by_id(conn: sqlite3.Connection, invoice_id: int) -> InvoiceRecord | None:
    """Return the invoice with ``invoice_id``, or None."""
    found = _select(conn, InvoiceRecord, "invoices", "WHERE id = ?", (invoice_id,))
    return found[0] if found else None


def get_invoices_by_status(conn: sqlite3.Connection, status_type: str) -> list[InvoiceRecord]:
    """Return invoices with the given status, earliest due first."""
    return _select(
        conn, InvoiceRecord, "invoices", "WHERE status_type = ? ORDER BY due_date", (status_type,)
    )


def insert_invoice_line(
    conn: sqlite3.Connection,
    invoice_id: int,
    description: str,
    quantity_hundredths: int,
    unit_rate_cents: int,
    taxable: bool,
    sort_order: int,
) -> int:
    """Add a billed line to an invoice and return its id."""
    return _write(
        conn,
        """INSERT INTO invoice_lines (invoice_id, description, quantity_hundredths,
           unit_rate_cents, taxable, sort_order) VALUES (?, ?, ?, ?, ?, ?)""",
        (invoice_id, description, quantity_hundredths, unit_rate_cents, taxable, sort_order),
    )


def get_invoice_lines(conn: sqlite3.Connection, invoice_id: int) -> list[InvoiceLineRecord]:
    """Return an invoice's lines in display order."""
    return _select(
        conn,
        InvoiceLineRecord,
        "invoice_lines",
        "WHERE invoice_id = ? ORDER BY sort_order",
        (invoice_id,),
    )


def insert_invoice_tax_line(
    conn: sqlite3.Connection, invoice_id: int, label: str, rate_bps: int
) -> int:
    """Add a tax to an invoice and return its id."""
    return _write(
        conn,
        "INSERT INTO invoice_tax_lines (invoice_id, label, rate_bps) VALUES (?, ?, ?)",
        (invoice_id, label, rate_bps),
    )


def get_invoice_tax_lines(
    conn: sqlite3.Connection, invoice_id: int
) -> list[InvoiceTaxLineRecord]:
    """Return the taxes applied to an invoice."""
    return _select(
        conn, InvoiceTaxLineRecord, "invoice_tax_lines", "WHERE invoice_id = ?", (invoice_id,)
    )


# ── Payments ─────────────────────────────────────────────────────────────────


def insert_payment(
    conn: sqlite3.Connection,
    invoice_id: int,
    amount_cents: int,
    date: str,
    method: str | None,
    transaction_id: int | None,
) -> int:
    """Record a payment against an invoice and return its id."""
    return _write(
        conn,
        """INSERT INTO payments (invoice_id, amount_cents, date, method, transaction_id)
           VALUES (?, ?, ?, ?, ?)""",
        (invoice_id, amount_cents, date, method, transaction_id),
    )


def get_payments_for_invoice(conn: sqlite3.Connection, invoice_id: int) -> list[PaymentRecord]:
    """Return an invoice's payments ordered by date."""
    return _select(conn, PaymentRecord, "payments", "WHERE invoice_id = ? ORDER BY date", (invoice_id,))


def get_ytd_payments_to_contact(conn: sqlite3.Connection, contact_id: int, year: int) -> int:
    """Return the total paid on a contact's invoices during ``year``."""
    (total,) = conn.execute(
        """SELECT COALESCE(SUM(p.amount_cents), 0)
           FROM payments p
           JOIN invoices i ON p.invoice_id = i.id
           WHERE i.contact_id = ? AND p.date >= ? AND p.date <= ?""",
        (contact_id, f"{year}-01-01", f"{year}-12-31"),
    ).fetchone()
    return total


def get_invoice_aging(conn: sqlite3.Connection) -> list[InvoiceRecord]:
    """Return unpaid outstanding invoices, earliest due first."""
    placeholders = ", ".join("?" for _ in _OPEN_INVOICE_STATUSES)
    return _select(
        conn,
        InvoiceRecord,
        "invoices",
        f"WHERE status_type IN ({placeholders}) ORDER BY due_date",
        _OPEN_INVOICE_STATUSES,
    )


# ── Audit log ────────────────────────────────────────────────────────────────


def insert_audit_log(
    conn: sqlite3.Connection,
    tool_name: str,
    input_hash: str | None,
    outcome: str,
    details: str | None,
) -> int:
    """Append an audit entry and return its id."""
    return _write(
        conn,
        "INSERT INTO audit_log (tool_name, input_hash, outcome, details) VALUES (?, ?, ?, ?)",
        (tool_name, input_hash, outcome, details),
    )


def get_audit_log(conn: sqlite3.Connection, limit: int) -> list[AuditLogRecord]:
    """Return at most ``limit`` audit entries, newest first."""
    return _select(conn, AuditLogRecord, "audit_log", "ORDER BY timestamp DESC LIMIT ?", (limit,))


# ── Settings ─────────────────────────────────────────────────────────────────


def get_setting(conn: sqlite3.Connection, key: str) -> str | None:
    """Return the value stored under ``key``, or None."""
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    return None if row is None else row[0]


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Store ``value`` under ``key``, replacing any earlier value."""
    _write(
        conn,
        "INSERT INTO settings (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )