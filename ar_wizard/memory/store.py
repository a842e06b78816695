"""SQLite-based knowledge store: connection management, schema init, and namespaced CRUD.

Every record lives in a single ``records`` table keyed by (namespace, id) with a
JSON body. Bodies are serialized on write and decoded on read, so callers always
receive copies and must write back explicitly to persist a mutation.

All database operations use parameterized queries. Connections are created
per-operation with check_same_thread=False so they can be used from worker
threads. Any failure of the medium surfaces as StorageFault.
"""

import json
import logging
import re
import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from ar_wizard.config import get_settings

logger = logging.getLogger(__name__)

EXPERTISE_NS = "ar-wizard:viewpoint-expertise"
KNOWLEDGE_NS = "ar-wizard:knowledge"
ANALYSIS_NS = "ar-wizard:database-analysis"
MODELS_NS = "ar-wizard:predictive-models"
CONTEXT_NS = "ar-wizard:shared-context"

PRIMARY_NAMESPACES = (EXPERTISE_NS, KNOWLEDGE_NS, ANALYSIS_NS, MODELS_NS)
ALL_NAMESPACES = (*PRIMARY_NAMESPACES, CONTEXT_NS)

# Payload layout version per namespace, written alongside each row.
SCHEMA_VERSIONS: dict[str, int] = {
    EXPERTISE_NS: 1,
    KNOWLEDGE_NS: 1,
    ANALYSIS_NS: 1,
    MODELS_NS: 1,
    CONTEXT_NS: 1,
}

_FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS records (
    seq            INTEGER PRIMARY KEY AUTOINCREMENT,
    namespace      TEXT NOT NULL,
    id             TEXT NOT NULL,
    body           TEXT NOT NULL,
    schema_version INTEGER NOT NULL DEFAULT 1,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    UNIQUE (namespace, id)
);
CREATE INDEX IF NOT EXISTS idx_records_namespace ON records(namespace, seq);
"""


class StorageFault(Exception):
    """The underlying storage medium could not complete an operation."""


@contextmanager
def _medium(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise StorageFault(f"Knowledge store {operation} failed: {e}") from e


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.

    Raises:
        ValueError: If the store is not configured (empty db path).
        StorageFault: If the database file cannot be opened.
    """
    if db_path is None:
        settings = get_settings()
        db_path = settings.memory_db_path
    if not db_path:
        msg = "Knowledge store not configured (MEMORY_DB_PATH is empty)"
        raise ValueError(msg)

    with _medium("connect"):
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    with _medium("schema init"):
        conn.executescript(_SCHEMA_SQL)


def is_memory_configured() -> bool:
    """Check whether the knowledge store is configured (non-empty db path)."""
    try:
        settings = get_settings()
        return bool(settings.memory_db_path)
    except Exception:
        return False


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


# ---------------------------------------------------------------------------
# Namespaced CRUD
# ---------------------------------------------------------------------------


def put_record(conn: sqlite3.Connection, namespace: str, record_id: str, record: Mapping[str, Any]) -> None:
    """Store or overwrite a record under ``record_id`` within ``namespace``.

    An overwrite replaces the whole body but keeps the row's original insertion
    position, which is what query ordering is based on.

    Raises:
        ValueError: If the record holds NaN or infinite floats, which SQLite's
                    JSON functions reject and would break every later query
                    of the namespace.
    """
    try:
        body = json.dumps(record, allow_nan=False)
    except ValueError as e:
        msg = f"Record {record_id!r} in {namespace} is not storable: {e}"
        raise ValueError(msg) from e
    now = datetime.now(UTC).isoformat()
    with _medium("put"):
        conn.execute(
            """INSERT INTO records (namespace, id, body, schema_version, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT (namespace, id) DO UPDATE SET
                   body = excluded.body,
                   schema_version = excluded.schema_version,
                   updated_at = excluded.updated_at""",
            (namespace, record_id, body, SCHEMA_VERSIONS.get(namespace, 1), now, now),
        )
        conn.commit()


def get_record(conn: sqlite3.Connection, namespace: str, record_id: str) -> dict[str, Any] | None:
    """Fetch a single record, or None if the id is absent."""
    with _medium("get"):
        row = conn.execute(
            "SELECT body FROM records WHERE namespace = ? AND id = ?",
            (namespace, record_id),
        ).fetchone()
    if row is None:
        return None
    return json.loads(row["body"])


def query_records(
    conn: sqlite3.Connection,
    namespace: str,
    predicate: Mapping[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Return every record in ``namespace`` matching all fields of ``predicate``.

    Args:
        predicate: Field name to expected value. Matching is equality on
                   top-level scalar fields, combined with AND. None or an
                   empty mapping matches every record.

    Returns:
        Matching records in insertion order.

    Raises:
        ValueError: If a field name is not a plain identifier or a value is not a scalar.
    """
    conditions: list[str] = ["namespace = ?"]
    params: list[object] = [namespace]

    for field, value in (predicate or {}).items():
        if not _FIELD_NAME_RE.match(field):
            msg = f"Invalid predicate field: {field!r}"
            raise ValueError(msg)
        if value is not None and not isinstance(value, str | int | float | bool):
            msg = f"Predicate value for {field!r} must be a scalar, got {type(value).__name__}"
            raise ValueError(msg)
        if value is None:
            conditions.append(f"json_extract(body, '$.{field}') IS NULL")
        else:
            conditions.append(f"json_extract(body, '$.{field}') = ?")
            params.append(value)

    with _medium("query"):
        rows = conn.execute(
            f"SELECT body FROM records WHERE {' AND '.join(conditions)} ORDER BY seq",
            params,
        ).fetchall()
    return [json.loads(r["body"]) for r in rows]


def delete_record(conn: sqlite3.Connection, namespace: str, record_id: str) -> bool:
    """Remove a record. Returns True if it existed; absent ids are a no-op."""
    with _medium("delete"):
        cursor = conn.execute(
            "DELETE FROM records WHERE namespace = ? AND id = ?",
            (namespace, record_id),
        )
        conn.commit()
    return cursor.rowcount > 0


def count_records(conn: sqlite3.Connection, namespace: str) -> int:
    """Number of records currently held in ``namespace``."""
    with _medium("count"):
        row = conn.execute("SELECT COUNT(*) AS n FROM records WHERE namespace = ?", (namespace,)).fetchone()
    return int(row["n"])
