from __future__ import annotations

import getpass
import sqlite3
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from prdeck.config import get_config
from prdeck.models import Annotation

SCHEMA_VERSION = 1

SCHEMA = """\
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS annotations (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    owner TEXT NOT NULL,
    expires_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_annotations_entity ON annotations(entity_id);
CREATE INDEX IF NOT EXISTS idx_annotations_kind ON annotations(kind);
"""

# version -> statements upgrading the previous version
MIGRATIONS: dict[int, list[str]] = {}

ANNOTATION_KINDS = ("pin", "snooze")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_annotation(row: sqlite3.Row) -> Annotation:
    return Annotation(
        id=row["id"],
        entity_id=row["entity_id"],
        kind=row["kind"],
        owner=row["owner"],
        expires_at=_parse_timestamp(row["expires_at"]),
        created_at=_parse_timestamp(row["created_at"]),
    )


@contextmanager
def connection(
    db_path: Path | None = None,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager that opens and closes a DB connection."""
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    if db_path is None:
        config = get_config()
        config.base_dir.mkdir(parents=True, exist_ok=True)
        db_path = config.base_dir / "prdeck.db"

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    _ensure_schema(conn)
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA)
    cursor = conn.execute("SELECT version FROM schema_version")
    row = cursor.fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        conn.commit()
    else:
        current = row["version"]
        for version in sorted(MIGRATIONS):
            if current < version:
                for sql in MIGRATIONS[version]:
                    conn.execute(sql)
                conn.execute("UPDATE schema_version SET version = ?", (version,))
                conn.commit()


# -- Annotation CRUD --


def create_annotation(
    conn: sqlite3.Connection,
    entity_id: str,
    kind: str,
    owner: str,
    expires_at: datetime | None = None,
) -> Annotation:
    if kind not in ANNOTATION_KINDS:
        raise ValueError(f"Unknown annotation kind '{kind}'")

    annotation_id = uuid.uuid4().hex
    conn.execute(
        """INSERT INTO annotations (id, entity_id, kind, owner, expires_at, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (
            annotation_id,
            entity_id,
            kind,
            owner,
            expires_at.isoformat() if expires_at is not None else None,
            _now(),
        ),
    )
    conn.commit()
    annotation = get_annotation(conn, annotation_id)
    assert annotation is not None
    return annotation


def get_annotation(conn: sqlite3.Connection, annotation_id: str) -> Annotation | None:
    cursor = conn.execute("SELECT * FROM annotations WHERE id = ?", (annotation_id,))
    row = cursor.fetchone()
    if row is None:
        return None
    return _row_to_annotation(row)


def list_annotations(
    conn: sqlite3.Connection,
    kind: str | None = None,
    owner: str | None = None,
) -> list[Annotation]:
    query = "SELECT * FROM annotations WHERE 1=1"
    params: list[str] = []

    if kind is not None:
        query += " AND kind = ?"
        params.append(kind)

    if owner is not None:
        query += " AND owner = ?"
        params.append(owner)

    query += " ORDER BY created_at, rowid"
    cursor = conn.execute(query, params)
    return [_row_to_annotation(row) for row in cursor.fetchall()]


def delete_annotation(conn: sqlite3.Connection, annotation_id: str) -> bool:
    cursor = conn.execute("DELETE FROM annotations WHERE id = ?", (annotation_id,))
    conn.commit()
    return cursor.rowcount > 0


class SqliteAnnotationSource:
    """Pins and snoozes of the current user, stored in the local database.

    Each call opens its own connection, so the source can be used from
    worker threads.
    """

    def __init__(self, db_path: Path | None = None, owner: str | None = None) -> None:
        self.db_path = db_path
        self.owner = owner or getpass.getuser()

    def list(self, kind: str | None = None) -> list[Annotation]:
        with connection(self.db_path) as conn:
            return list_annotations(conn, kind=kind, owner=self.owner)

    def create(
        self, entity_id: str, kind: str, expires_at: datetime | None = None
    ) -> Annotation:
        with connection(self.db_path) as conn:
            return create_annotation(conn, entity_id, kind, self.owner, expires_at)

    def delete(self, annotation_id: str) -> bool:
        with connection(self.db_path) as conn:
            return delete_annotation(conn, annotation_id)
