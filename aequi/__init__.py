"""SQLite bookkeeping storage, schema migrations, backups and a JSON API server."""

__version__ = "2026.3.13"