"""SQLite-backed fact store holding the latest fact per (retriever, entity).

A newer retrieval supersedes the stored row; older or equal timestamps are
ignored. No history is kept. Connections are created per operation with
check_same_thread=False so reads can run in worker threads via
``asyncio.to_thread``. The schema is created on first access (idempotent).
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime

from traffic_light.config import get_settings
from traffic_light.models import EntityRef, Fact, parse_entity_ref

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS facts (
    retriever_id  TEXT NOT NULL,
    entity_ref    TEXT NOT NULL,
    version       TEXT NOT NULL,
    fact_values   TEXT NOT NULL,
    retrieved_at  TEXT NOT NULL,
    PRIMARY KEY (retriever_id, entity_ref)
);
CREATE INDEX IF NOT EXISTS idx_facts_entity ON facts(entity_ref);
"""


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and ensure the schema exists.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Raises:
        ValueError: If the fact store is not configured (empty db path).
    """
    if db_path is None:
        db_path = get_settings().fact_store_db_path
    if not db_path:
        msg = "Fact store not configured (FACT_STORE_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    init_schema(conn)
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(_SCHEMA_SQL)


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def save_fact(conn: sqlite3.Connection, fact: Fact) -> bool:
    """Insert or supersede the stored fact. Returns False if the stored row is newer."""
    cursor = conn.execute(
        """INSERT INTO facts (retriever_id, entity_ref, version, fact_values, retrieved_at)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT (retriever_id, entity_ref) DO UPDATE SET
               version = excluded.version,
               fact_values = excluded.fact_values,
               retrieved_at = excluded.retrieved_at
           WHERE excluded.retrieved_at > facts.retrieved_at""",
        (
            fact.retriever_id,
            str(fact.entity),
            fact.version,
            json.dumps(fact.values),
            _timestamp(fact.retrieved_at),
        ),
    )
    conn.commit()
    stored = cursor.rowcount > 0
    if not stored:
        logger.debug("Ignored stale fact %s for %s", fact.retriever_id, fact.entity)
    return stored


def save_facts(conn: sqlite3.Connection, facts: Iterable[Fact]) -> int:
    """Save several facts. Returns how many were stored."""
    return sum(1 for fact in facts if save_fact(conn, fact))


def get_latest_facts(
    conn: sqlite3.Connection, entity: EntityRef, retriever_ids: Iterable[str]
) -> dict[str, Fact]:
    """Latest fact per retriever id for ``entity``. Retrievers without a row are omitted."""
    ids = list(dict.fromkeys(retriever_ids))
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"SELECT * FROM facts WHERE entity_ref = ? AND retriever_id IN ({placeholders})",  # noqa: S608
        [str(entity), *ids],
    ).fetchall()
    return {row["retriever_id"]: _row_to_fact(row) for row in rows}


def get_latest_fact(conn: sqlite3.Connection, entity: EntityRef, retriever_id: str) -> Fact | None:
    return get_latest_facts(conn, entity, [retriever_id]).get(retriever_id)


def list_entities(conn: sqlite3.Connection, retriever_id: str | None = None) -> list[EntityRef]:
    """Entities with at least one stored fact, optionally for one retriever."""
    if retriever_id is None:
        rows = conn.execute("SELECT DISTINCT entity_ref FROM facts ORDER BY entity_ref").fetchall()
    else:
        rows = conn.execute(
            "SELECT DISTINCT entity_ref FROM facts WHERE retriever_id = ? ORDER BY entity_ref",
            (retriever_id,),
        ).fetchall()
    return [parse_entity_ref(row["entity_ref"]) for row in rows]


def _row_to_fact(row: sqlite3.Row) -> Fact:
    return Fact(
        retriever_id=row["retriever_id"],
        version=row["version"],
        entity=parse_entity_ref(row["entity_ref"]),
        values=json.loads(row["fact_values"]),
        retrieved_at=datetime.fromisoformat(row["retrieved_at"]),
    )
