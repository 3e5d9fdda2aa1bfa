"""HTTP API server for the ledger.

Serves accounts, invoices, contacts, payments, receipts, reconciliation,
categorization rules and a profit-and-loss report as JSON under
``/api/v1``, plus an unauthenticated ``/health`` check.
"""

from __future__ import annotations

import argparse
import enum
import json
import logging
import os
import re
import socket
import sqlite3
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from flask import Flask, Response, jsonify, request

from aequi import billing, bookkeeping
from aequi.auth import is_authorized
from aequi.bookkeeping import CategorizationRule, create_db
from aequi.daimon import AGENT_VERSION, spawn_daimon_task
from aequi.errors import ApiError, BadRequestError, InternalError, NotFoundError, UnauthorizedError
from aequi.migrate import Migration

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
DEFAULT_PORT = 8060
DEFAULT_DB_PATH = "aequi.db"
DEFAULT_CORS_ORIGINS = (
    "http://localhost:1420",
    "http://localhost:8060",
    "tauri://localhost",
)

_MIGRATION_FILE = re.compile(r"^V(\d+)__(.+)\.sql$")
_BUNYAN_LEVELS = {
    logging.DEBUG: 20,
    logging.INFO: 30,
    logging.WARNING: 40,
    logging.ERROR: 50,
    logging.CRITICAL: 60,
}


@dataclass
class ServerState:
    """Shared state handed to every request handler."""

    db: sqlite3.Connection
    api_key: str | None = None
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)


def parse_cors_origins(value: str | None) -> tuple[str, ...]:
    """Return the allowed CORS origins from a comma-separated setting.

    With no setting the local development origins are allowed.
    """
    if value is None:
        return DEFAULT_CORS_ORIGINS
    return tuple(origin.strip() for origin in value.split(",") if origin.strip())


def _to_json(record: Any) -> Any:
    return asdict(
        record,
        dict_factory=lambda items: {
            key: (value.value if isinstance(value, enum.Enum) else value)
            for key, value in items
        },
    )


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequestError("Expected a JSON object body")
    return data


def _field(body: dict[str, Any], name: str, kind: type, optional: bool = False) -> Any:
    value = body.get(name)
    if value is None:
        if optional:
            return None
        raise BadRequestError(f"missing field `{name}`")
    wrong_bool = kind is int and isinstance(value, bool)
    if wrong_bool or not isinstance(value, kind):
        raise BadRequestError(f"invalid type for field `{name}`")
    return value


def create_app(state: ServerState) -> Flask:
    """Build the Flask application serving the API for ``state``."""
    app = Flask("aequi-server")
    allowed_origins = frozenset(state.cors_origins)

    @app.errorhandler(ApiError)
    def _handle_api_error(error: ApiError) -> tuple[Response, int]:
        body, status = error.to_response()
        return jsonify(body), status

    @app.errorhandler(sqlite3.Error)
    def _handle_db_error(error: sqlite3.Error) -> tuple[Response, int]:
        return _handle_api_error(InternalError(str(error)))

    @app.before_request
    def _authenticate() -> None:
        if request.url_rule is None or not request.path.startswith(API_PREFIX + "/"):
            return
        if not is_authorized(request.headers.get("Authorization"), state.api_key):
            raise UnauthorizedError()

    @app.after_request
    def _apply_cors(response: Response) -> Response:
        origin = request.headers.get("Origin")
        if origin is not None and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.vary.add("Origin")
        return response

    # ── Health ───────────────────────────────────────────────────────────────

    @app.get("/health")
    def health_check() -> Response:
        try:
            with state.lock:
                account_count = len(bookkeeping.get_all_accounts(state.db))
        except sqlite3.Error:
            account_count = 0
        return jsonify({"status": "ok", "version": AGENT_VERSION, "accounts": account_count})

    # ── Accounts ─────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/accounts")
    def list_accounts() -> Response:
        with state.lock:
            accounts = bookkeeping.get_all_accounts(state.db)
        return jsonify([_to_json(account) for account in accounts])

    @app.get(f"{API_PREFIX}/accounts/<code>")
    def get_account(code: str) -> Response:
        with state.lock:
            account = bookkeeping.get_account_by_code(state.db, code)
        if account is None:
            raise NotFoundError(f"Account {code} not found")
        return jsonify(_to_json(account))

    # ── Invoices ─────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/invoices")
    def list_invoices() -> Response:
        with state.lock:
            invoices = billing.get_all_invoices(state.db)
        return jsonify([_to_json(invoice) for invoice in invoices])

    @app.get(f"{API_PREFIX}/invoices/<int(signed=True):invoice_id>")
    def get_invoice(invoice_id: int) -> Response:
        with state.lock:
            invoice = billing.get_invoice_by_id(state.db, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return jsonify(_to_json(invoice))

    @app.post(f"{API_PREFIX}/invoices")
    def create_invoice() -> Response:
        body = _json_body()
        invoice_number = _field(body, "invoice_number", str)
        contact_id = _field(body, "contact_id", int)
        issue_date = _field(body, "issue_date", str)
        due_date = _field(body, "due_date", str)
        notes = _field(body, "notes", str, optional=True)
        terms = _field(body, "terms", str, optional=True)
        with state.lock:
            invoice_id = billing.insert_invoice(
                state.db,
                invoice_number,
                contact_id,
                "Draft",
                None,
                issue_date,
                due_date,
                None,
                None,
                notes,
                terms,
            )
            record = billing.get_invoice_by_id(state.db, invoice_id)
        if record is None:
            raise InternalError("Invoice not found after insert")
        return jsonify(_to_json(record))

    @app.post(f"{API_PREFIX}/invoices/<int(signed=True):invoice_id>/payments")
    def record_payment(invoice_id: int) -> Response:
        body = _json_body()
        amount_cents = _field(body, "amount_cents", int)
        date = _field(body, "date", str)
        method = _field(body, "method", str, optional=True)
        with state.lock:
            payment_id = billing.insert_payment(
                state.db, invoice_id, amount_cents, date, method, None
            )
            payments = billing.get_payments_for_invoice(state.db, invoice_id)
        record = next((p for p in payments if p.id == payment_id), None)
        if record is None:
            raise InternalError("Payment not found after insert")
        return jsonify(_to_json(record))

    # ── Contacts ─────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/contacts")
    def list_contacts() -> Response:
        with state.lock:
            contacts = billing.get_all_contacts(state.db)
        return jsonify([_to_json(contact) for contact in contacts])

    @app.post(f"{API_PREFIX}/contacts")
    def create_contact() -> Response:
        body = _json_body()
        name = _field(body, "name", str)
        email = _field(body, "email", str, optional=True)
        phone = _field(body, "phone", str, optional=True)
        address = _field(body, "address", str, optional=True)
        contact_type = _field(body, "contact_type", str)
        is_contractor = _field(body, "is_contractor", bool)
        tax_id = _field(body, "tax_id", str, optional=True)
        notes = _field(body, "notes", str, optional=True)
        with state.lock:
            contact_id = billing.insert_contact(
                state.db, name, email, phone, address, contact_type, is_contractor, tax_id, notes
            )
            record = billing.get_contact_by_id(state.db, contact_id)
        if record is None:
            raise InternalError("Contact not found after insert")
        return jsonify(_to_json(record))

    # ── Receipts ─────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/receipts")
    def list_receipts() -> Response:
        with state.lock:
            receipts = billing.get_receipts_pending_review(state.db)
        return jsonify([_to_json(receipt) for receipt in receipts])

    @app.post(f"{API_PREFIX}/receipts/<int(signed=True):receipt_id>/approve")
    def approve_receipt(receipt_id: int) -> Response:
        with state.lock:
            billing.update_receipt_status(state.db, receipt_id, "approved")
        return jsonify(None)

    @app.post(f"{API_PREFIX}/receipts/<int(signed=True):receipt_id>/reject")
    def reject_receipt(receipt_id: int) -> Response:
        with state.lock:
            billing.update_receipt_status(state.db, receipt_id, "rejected")
        return jsonify(None)

    # ── Reconciliation ───────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/reconciliation/sessions")
    def create_session() -> Response:
        body = _json_body()
        account_id = _field(body, "account_id", int)
        start_date = _field(body, "start_date", str)
        end_date = _field(body, "end_date", str)
        balance = _field(body, "statement_balance_cents", int)
        with state.lock:
            session_id = bookkeeping.create_reconciliation_session(
                state.db, account_id, start_date, end_date, balance
            )
        return jsonify(session_id)

    @app.get(f"{API_PREFIX}/reconciliation/sessions/<int(signed=True):session_id>/items")
    def get_items(session_id: int) -> Response:
        with state.lock:
            items = bookkeeping.get_reconciliation_items(state.db, session_id)
        return jsonify([_to_json(item) for item in items])

    @app.post(f"{API_PREFIX}/reconciliation/items/<int(signed=True):item_id>/resolve")
    def resolve_item(item_id: int) -> Response:
        notes = _field(_json_body(), "notes", str)
        with state.lock:
            bookkeeping.resolve_reconciliation_item(state.db, item_id, notes)
        return jsonify(None)

    # ── Reports ──────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/reports/profit-loss")
    def profit_loss() -> Response:
        today = datetime.now(timezone.utc).date()
        start = request.args.get("start_date") or f"{today.year:04}-01-01"
        end = request.args.get("end_date") or today.isoformat()
        with state.lock:
            rows = state.db.execute(
                """
                SELECT a.code, a.name,
                    COALESCE(SUM(tl.credit_cents - tl.debit_cents), 0) as total_cents
                FROM accounts a
                LEFT JOIN transaction_lines tl ON a.id = tl.account_id
                LEFT JOIN transactions t ON tl.transaction_id = t.id
                    AND t.date >= ? AND t.date <= ?
                WHERE a.account_type IN ('Income', 'Expense')
                GROUP BY a.id, a.code, a.name
                ORDER BY a.account_type, a.code
                """,
                (start, end),
            ).fetchall()
        return jsonify(
            [
                {"account_code": code, "account_name": name, "total_cents": total}
                for code, name, total in rows
            ]
        )

    # ── Categorization rules ─────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/rules")
    def list_rules() -> Response:
        with state.lock:
            rules = bookkeeping.get_categorization_rules(state.db)
        return jsonify([_to_json(rule) for rule in rules])

    @app.post(f"{API_PREFIX}/rules")
    def create_rule() -> Response:
        body = _json_body()
        rule = CategorizationRule(
            name=_field(body, "name", str),
            priority=_field(body, "priority", int),
            match_pattern=_field(body, "match_pattern", str),
            match_type=_field(body, "match_type", str),
            account_id=_field(body, "account_id", int),
        )
        with state.lock:
            rule_id = bookkeeping.save_categorization_rule(state.db, rule)
        return jsonify(rule_id)

    return app


def _load_migrations(directory: Path) -> list[Migration]:
    if not directory.is_dir():
        logger.warning("migrations directory %s not found; no migrations loaded", directory)
        return []
    migrations = []
    for path in sorted(directory.iterdir()):
        match = _MIGRATION_FILE.match(path.name)
        if match is None or path.name.endswith(".down.sql"):
            continue
        down_path = path.with_name(path.name[: -len(".sql")] + ".down.sql")
        migrations.append(
            Migration(
                version=int(match.group(1)),
                name=match.group(2),
                up_sql=path.read_text(encoding="utf-8"),
                down_sql=down_path.read_text(encoding="utf-8") if down_path.exists() else "",
            )
        )
    return migrations


class _BunyanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "v": 0,
                "name": "aequi-server",
                "msg": record.getMessage(),
                "level": _BUNYAN_LEVELS.get(record.levelno, 30),
                "hostname": socket.gethostname(),
                "pid": os.getpid(),
                "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "target": record.name,
            }
        )


def _configure_logging(json_format: bool) -> None:
    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(_BunyanFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)


def _parse_port(value: str | None) -> int:
    if value is not None and value.isdigit() and int(value) <= 65535:
        return int(value)
    return DEFAULT_PORT


def main(argv: list[str] | None = None) -> int:
    """Run the API server, configured from the environment."""
    parser = argparse.ArgumentParser(prog="aequi-server", description="Serve the ledger API.")
    parser.add_argument(
        "--migrations",
        type=Path,
        default=Path(os.environ.get("AEQUI_MIGRATIONS_DIR", "migrations")),
        help="directory holding the V###__name.sql migration files",
    )
    args = parser.parse_args(argv)

    _configure_logging(os.environ.get("AEQUI_LOG_FORMAT") == "json")

    db_path = Path(os.environ.get("AEQUI_DB_PATH", DEFAULT_DB_PATH))
    port = _parse_port(os.environ.get("AEQUI_PORT"))
    api_key = os.environ.get("AEQUI_API_KEY")

    conn = create_db(db_path, _load_migrations(args.migrations))
    state = ServerState(
        db=conn,
        api_key=api_key,
        cors_origins=parse_cors_origins(os.environ.get("AEQUI_CORS_ORIGINS")),
    )

    shutdown = threading.Event()
    daimon_thread = spawn_daimon_task(shutdown)

    app = create_app(state)
    logger.info("aequi-server listening on port %d", port)
    try:
        app.run(host="0.0.0.0", port=port, threaded=True)
    finally:
        shutdown.set()
        daimon_thread.join(timeout=5)
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())