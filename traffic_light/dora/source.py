"""SQLite windowed data source for DORA metrics.

Each supported (metric kind, granularity) pair has one query; bucketing into
weeks or months happens in SQL. Deployments and incidents are recorded per
project:

- ``deployments(project, deployed_at, lead_time_seconds, failed)``
- ``incidents(project, started_at, restored_at)``
"""

import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime

from traffic_light.config import get_settings
from traffic_light.models import Granularity, MetricKind, MetricPoint

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS deployments (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    project            TEXT NOT NULL,
    deployed_at        TEXT NOT NULL,
    lead_time_seconds  REAL,
    failed             INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_deployments_project ON deployments(project, deployed_at);

CREATE TABLE IF NOT EXISTS incidents (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    project      TEXT NOT NULL,
    started_at   TEXT NOT NULL,
    restored_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_incidents_project ON incidents(project, started_at);
"""

BUCKET_FORMATS: dict[Granularity, str] = {
    Granularity.WEEKLY: "%Y-W%W",
    Granularity.MONTHLY: "%Y/%m",
}

# {bucket} is the strftime format, {projects} the optional project filter
_DEPLOYMENTS_PER_WEEK_SQL = """\
SELECT strftime('{bucket}', deployed_at) AS key,
       COUNT(*) * 7.0 / (
           julianday(MIN(date(deployed_at, 'start of month', '+1 month')))
           - julianday(MIN(date(deployed_at, 'start of month')))
       ) AS value
FROM deployments
WHERE datetime(deployed_at) BETWEEN datetime(?) AND datetime(?){projects}
GROUP BY key
"""

_CHANGE_FAILURE_RATE_SQL = """\
SELECT strftime('{bucket}', deployed_at) AS key,
       CAST(SUM(failed) AS REAL) / COUNT(*) AS value
FROM deployments
WHERE datetime(deployed_at) BETWEEN datetime(?) AND datetime(?){projects}
GROUP BY key
"""

_LEAD_TIME_HOURS_SQL = """\
SELECT strftime('{bucket}', deployed_at) AS key,
       AVG(lead_time_seconds) / 3600.0 AS value
FROM deployments
WHERE lead_time_seconds IS NOT NULL
  AND datetime(deployed_at) BETWEEN datetime(?) AND datetime(?){projects}
GROUP BY key
"""

_TIME_TO_RESTORE_HOURS_SQL = """\
SELECT strftime('{bucket}', started_at) AS key,
       AVG((julianday(restored_at) - julianday(started_at)) * 24.0) AS value
FROM incidents
WHERE restored_at IS NOT NULL
  AND datetime(started_at) BETWEEN datetime(?) AND datetime(?){projects}
GROUP BY key
"""

QUERIES: dict[tuple[MetricKind, Granularity], str] = {
    (MetricKind.DEPLOYMENT_FREQUENCY, Granularity.MONTHLY): _DEPLOYMENTS_PER_WEEK_SQL,
    (MetricKind.CHANGE_FAILURE_RATE, Granularity.WEEKLY): _CHANGE_FAILURE_RATE_SQL,
    (MetricKind.CHANGE_FAILURE_RATE, Granularity.MONTHLY): _CHANGE_FAILURE_RATE_SQL,
    (MetricKind.MEAN_LEAD_TIME_TO_CHANGE, Granularity.WEEKLY): _LEAD_TIME_HOURS_SQL,
    (MetricKind.MEAN_LEAD_TIME_TO_CHANGE, Granularity.MONTHLY): _LEAD_TIME_HOURS_SQL,
    (MetricKind.MEAN_TIME_TO_RESTORE, Granularity.WEEKLY): _TIME_TO_RESTORE_HOURS_SQL,
    (MetricKind.MEAN_TIME_TO_RESTORE, Granularity.MONTHLY): _TIME_TO_RESTORE_HOURS_SQL,
}


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open the DORA database.

    Raises:
        ValueError: If the DORA database is not configured (empty db path).
    """
    if db_path is None:
        db_path = get_settings().dora_db_path
    if not db_path:
        msg = "DORA metrics not configured (DORA_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA_SQL)
    return conn


def record_deployment(
    conn: sqlite3.Connection,
    *,
    project: str,
    deployed_at: datetime,
    lead_time_seconds: float | None = None,
    failed: bool = False,
) -> int:
    cursor = conn.execute(
        "INSERT INTO deployments (project, deployed_at, lead_time_seconds, failed) VALUES (?, ?, ?, ?)",
        (project, deployed_at.isoformat(), lead_time_seconds, int(failed)),
    )
    conn.commit()
    return cursor.lastrowid or 0


def record_incident(
    conn: sqlite3.Connection,
    *,
    project: str,
    started_at: datetime,
    restored_at: datetime | None = None,
) -> int:
    cursor = conn.execute(
        "INSERT INTO incidents (project, started_at, restored_at) VALUES (?, ?, ?)",
        (project, started_at.isoformat(), restored_at.isoformat() if restored_at else None),
    )
    conn.commit()
    return cursor.lastrowid or 0


class SqliteDoraSource:
    """Windowed DORA data source over a SQLite database.

    Opens a connection per query so it can be called from worker threads.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = db_path

    def supports(self, kind: MetricKind, granularity: Granularity) -> bool:
        return (kind, granularity) in QUERIES

    def query(
        self,
        kind: MetricKind,
        granularity: Granularity,
        groups: Sequence[str],
        from_time: datetime,
        to_time: datetime,
    ) -> list[MetricPoint]:
        """Run the query for (kind, granularity). Raises KeyError if there is none."""
        template = QUERIES[(kind, granularity)]
        projects = ""
        params: list[object] = [from_time.isoformat(), to_time.isoformat()]
        if groups:
            projects = f" AND project IN ({', '.join('?' for _ in groups)})"
            params.extend(groups)
        sql = template.format(bucket=BUCKET_FORMATS[granularity], projects=projects)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        logger.debug("%s/%s returned %d rows for %s", kind, granularity, len(rows), list(groups) or "all projects")
        return [MetricPoint(period_key=row["key"], value=row["value"]) for row in rows if row["value"] is not None]

    def list_projects(self) -> list[str]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT project FROM deployments UNION SELECT project FROM incidents ORDER BY project"
            ).fetchall()
        finally:
            conn.close()
        return [row["project"] for row in rows]
