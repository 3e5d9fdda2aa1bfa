"""Backup and restore of ledger data.

A backup is a gzip-compressed tarball holding ``manifest.json``, a
consistent snapshot of the SQLite database as ``ledger.db`` and, when
present, the ``attachments/`` directory.
"""

from __future__ import annotations

import dataclasses
import json
import shutil
import sqlite3
import tarfile
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Any

from aequi.migrate import current_version

MANIFEST_NAME = "manifest.json"
DATABASE_NAME = "ledger.db"
ATTACHMENTS_NAME = "attachments"
_SNAPSHOT_NAME = ".aequi-backup-snapshot.db"


class BackupError(Exception):
    """Base error for backup and restore failures."""

    prefix = "Backup error"

    def __init__(self, detail: str) -> None:
        super().__init__(f"{self.prefix}: {detail}")
        self.detail = detail


class BackupDatabaseError(BackupError):
    """The database snapshot could not be taken."""

    prefix = "Database error"


class BackupIOError(BackupError):
    """Reading or writing files failed."""

    prefix = "IO error"


class InvalidArchiveError(BackupError):
    """The archive is malformed or unsafe to extract."""

    prefix = "Invalid archive"


@dataclass(frozen=True)
class BackupManifest:
    """Metadata stored in the archive as ``manifest.json``."""

    version: str
    created_at: str
    schema_version: int
    db_size_bytes: int
    attachment_count: int


@dataclass(frozen=True)
class RestoreResult:
    """Where a restore placed its data, and the manifest it read."""

    db_path: Path
    attachments_dir: Path
    manifest: BackupManifest


def count_files(directory: str | Path) -> int:
    """Count regular files below ``directory``; 0 if it is not a directory."""
    root = Path(directory)
    if not root.is_dir():
        return 0
    return sum(1 for path in root.rglob("*") if path.is_file())


def _manifest_from_json(text: str) -> BackupManifest:
    try:
        data: Any = json.loads(text)
        fields = {f.name for f in dataclasses.fields(BackupManifest)}
        if not isinstance(data, dict) or not fields <= data.keys():
            raise ValueError("missing manifest fields")
        return BackupManifest(**{name: data[name] for name in fields})
    except ValueError as exc:
        raise InvalidArchiveError(f"Invalid manifest: {exc}") from exc


def _take_snapshot(conn: sqlite3.Connection, snapshot_path: Path) -> None:
    snapshot_path.unlink(missing_ok=True)
    quoted = str(snapshot_path).replace("'", "''")
    try:
        conn.execute(f"VACUUM INTO '{quoted}'")
    except sqlite3.Error as exc:
        raise BackupDatabaseError(str(exc)) from exc


def create_backup(
    conn: sqlite3.Connection,
    db_path: str | Path,
    attachments_dir: str | Path,
    output_path: str | Path,
    app_version: str,
) -> BackupManifest:
    """Write a compressed backup archive to ``output_path``.

    The database is copied with ``VACUUM INTO`` for a consistent
    point-in-time snapshot; ``db_path`` is accepted for the caller's
    convenience but the snapshot always comes from ``conn``.
    """
    attachments = Path(attachments_dir)
    output = Path(output_path)
    snapshot_path = output.parent / _SNAPSHOT_NAME

    _take_snapshot(conn, snapshot_path)
    try:
        db_size = snapshot_path.stat().st_size if snapshot_path.exists() else 0
        attachment_count = count_files(attachments)
        try:
            schema_version = current_version(conn)
        except sqlite3.Error:
            schema_version = 0

        manifest = BackupManifest(
            version=app_version,
            created_at=datetime.now(timezone.utc).isoformat(),
            schema_version=schema_version,
            db_size_bytes=db_size,
            attachment_count=attachment_count,
        )
        manifest_bytes = json.dumps(dataclasses.asdict(manifest), indent=2).encode("utf-8")

        try:
            with tarfile.open(output, "w:gz") as archive:
                info = tarfile.TarInfo(MANIFEST_NAME)
                info.size = len(manifest_bytes)
                info.mode = 0o644
                info.mtime = int(datetime.now(timezone.utc).timestamp())
                archive.addfile(info, BytesIO(manifest_bytes))
                archive.add(snapshot_path, arcname=DATABASE_NAME)
                if attachments.is_dir() and attachment_count > 0:
                    archive.add(attachments, arcname=ATTACHMENTS_NAME)
        except (OSError, tarfile.TarError) as exc:
            raise BackupIOError(f"Failed to write backup archive: {exc}") from exc
    finally:
        snapshot_path.unlink(missing_ok=True)

    return manifest


def _check_member_path(name: str) -> PurePosixPath:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise InvalidArchiveError("Archive contains path traversal")
    return path


def restore_backup(archive_path: str | Path, target_dir: str | Path) -> RestoreResult:
    """Extract a backup archive into ``target_dir``, overwriting what is there."""
    target = Path(target_dir)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BackupIOError(f"Failed to create target directory: {exc}") from exc

    manifest: BackupManifest | None = None
    try:
        with tarfile.open(archive_path, "r:gz") as archive:
            for member in archive:
                path = _check_member_path(member.name)
                if path == PurePosixPath(MANIFEST_NAME):
                    source = archive.extractfile(member)
                    if source is None:
                        raise InvalidArchiveError("Invalid manifest: not a file")
                    with source:
                        manifest = _manifest_from_json(source.read().decode("utf-8"))
                    continue

                destination = target.joinpath(*path.parts)
                if member.isdir():
                    destination.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    source = archive.extractfile(member)
                    if source is None:
                        raise BackupIOError(f"Failed to extract {path}")
                    with source, destination.open("wb") as sink:
                        shutil.copyfileobj(source, sink)
    except (OSError, EOFError, zlib.error, tarfile.TarError, UnicodeDecodeError) as exc:
        raise BackupIOError(f"Failed to read backup: {exc}") from exc

    if manifest is None:
        raise InvalidArchiveError("Archive missing manifest.json")

    return RestoreResult(
        db_path=target / DATABASE_NAME,
        attachments_dir=target / ATTACHMENTS_NAME,
        manifest=manifest,
    )