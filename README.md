# aequi

Bookkeeping for freelancers and small businesses, kept in a single SQLite
file. The package provides:

- `aequi.migrate` – versioned schema migrations. Each `Migration` carries a
  version, a name and the SQL to apply and undo it. `run_migrations` applies
  the pending ones in version order and records each, with a checksum of its
  SQL, in a `schema_versions` table; a changed migration raises
  `MigrationError`. `rollback_last`, `get_schema_versions` and
  `current_version` inspect and undo that history. A database that already
  has an `accounts` table but no history gets its first migration marked as
  applied.
- `aequi.bookkeeping` – `create_db` (open, set pragmas, migrate), and storage
  for accounts, CSV import profiles, categorization rules, imported bank
  transactions and reconciliation sessions and items.
- `aequi.billing` – storage for receipts (duplicates detected by file hash),
  quarterly tax periods, contacts, invoices with their lines and tax lines,
  payments, an invoice aging list, the audit log and key/value settings.
- `aequi.backup` – `create_backup` writes a gzip tarball holding
  `manifest.json`, a `VACUUM INTO` snapshot of the database as `ledger.db`,
  and the `attachments/` directory when it has files. `restore_backup`
  extracts it, refusing absolute paths and `..` components, and returns a
  `RestoreResult`. Failures raise subclasses of `BackupError`.
- `aequi.auth` – bearer-token helpers (`extract_bearer_token`,
  `is_authorized`, `constant_time_eq`).
- `aequi.errors` – `ApiError` and its subclasses, each with an HTTP status
  and a `to_response()` giving `({"error": message}, status)`.
- `aequi.server` – a Flask JSON API (`create_app`, `ServerState`) and the
  `aequi-server` command.
- `aequi.daimon` – a client for an agent orchestrator (`DaimonClient`) and
  `spawn_daimon_task`, a background thread that registers this service and
  sends a heartbeat every 30 seconds until told to stop.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Database schema

No schema is shipped with the package. Every function that opens or
migrates a database takes the migrations to apply; the tables the storage
functions use (`accounts`, `invoices`, `receipts` and so on) must be created
by migrations you provide.

```python
from aequi.migrate import Migration
from aequi.bookkeeping import create_db, get_all_accounts

migrations = [
    Migration(
        version=1,
        name="initial_schema",
        up_sql=open("migrations/V001__initial_schema.sql").read(),
        down_sql=open("migrations/V001__initial_schema.down.sql").read(),
    ),
]
conn = create_db("ledger.db", migrations)
print(get_all_accounts(conn))
```

## Backups

```python
from aequi.backup import create_backup, restore_backup

manifest = create_backup(conn, "ledger.db", "attachments", "backup.tar.gz", "2026.3.13")
restored = restore_backup("backup.tar.gz", "restored")
print(restored.db_path, restored.manifest.attachment_count)
```

## Running the server

```
aequi-server --migrations migrations
```

`--migrations` names a directory of `V<number>__<name>.sql` files, each with
an optional `V<number>__<name>.down.sql` holding its rollback. It defaults
to `AEQUI_MIGRATIONS_DIR`, or `migrations`. When the directory is missing a
warning is logged and no migrations are applied.

Other settings come from the environment:

| Variable             | Meaning                                                 | Default                 |
|----------------------|---------------------------------------------------------|-------------------------|
| `AEQUI_DB_PATH`      | SQLite database file                                    | `aequi.db`              |
| `AEQUI_PORT`         | Port to listen on (all interfaces)                      | `8060`                  |
| `AEQUI_API_KEY`      | Bearer token required on `/api/v1` routes               | unset: no check         |
| `AEQUI_CORS_ORIGINS` | Comma-separated origins allowed by CORS                 | `http://localhost:1420`, `http://localhost:8060`, `tauri://localhost` |
| `AEQUI_LOG_FORMAT`   | `json` for Bunyan-style JSON log lines                  | plain text              |
| `AEQUI_DAIMON_URL`   | Orchestrator base URL for registration and heartbeats   | `http://127.0.0.1:8090` |

When `AEQUI_API_KEY` is set, requests to `/api/v1` must carry
`Authorization: Bearer token`, where the value after `Bearer ` equals the
key; otherwise they get `401`. The orchestrator task runs alongside the
server; if the orchestrator cannot be reached it gives up after five
registration attempts and the server carries on.

### Endpoints

- `GET /health` – `{"status": "ok", "version": ..., "accounts": <count>}`
- `GET /api/v1/accounts`, `GET /api/v1/accounts/<code>`
- `GET|POST /api/v1/invoices` (new invoices start as `Draft`),
  `GET /api/v1/invoices/<id>`, `POST /api/v1/invoices/<id>/payments`
- `GET|POST /api/v1/contacts`
- `GET /api/v1/receipts` (those pending review),
  `POST /api/v1/receipts/<id>/approve`, `POST /api/v1/receipts/<id>/reject`
- `POST /api/v1/reconciliation/sessions`,
  `GET /api/v1/reconciliation/sessions/<id>/items`,
  `POST /api/v1/reconciliation/items/<id>/resolve`
- `GET /api/v1/reports/profit-loss?start_date=...&end_date=...` – totals per
  income and expense account; the range defaults to 1 January of the current
  year through today (UTC)
- `GET|POST /api/v1/rules`

Errors come back as `{"error": "<message>"}` with the matching status:
`400` for a malformed body, `404` for a missing record, `500` for a database
failure.

## What the package does not do

- It ships no schema migrations and does not seed a default chart of
  accounts.
- The API has no endpoints for entering ledger transactions, estimating
  taxes, e-mailing invoices, payment-processor webhooks or bank sync; the tax
  period and receipt storage functions exist, but nothing computes tax
  estimates or reads receipts.
- Authentication is by a single API key only.