"""SQLite persistence: migrations, availability_runs and operator_results tables."""

import json
import logging
import sqlite3
import uuid
from pathlib import Path

from dping.models import AvailabilityRun, ProbeOutcome, outcome_to_record

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_V1 = """\
CREATE TABLE IF NOT EXISTS availability_runs (
    id                TEXT PRIMARY KEY,
    source            TEXT NOT NULL,
    timestamp         TEXT NOT NULL,
    operator_count    INTEGER NOT NULL,
    duration_seconds  REAL NOT NULL,
    meta              TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS operator_results (
    run_id                  TEXT NOT NULL REFERENCES availability_runs (id),
    operator_id             TEXT NOT NULL,
    worker_id               INTEGER NOT NULL,
    distribution_bucket_id  TEXT NOT NULL,
    node_endpoint           TEXT NOT NULL,
    distributing_status     TEXT NOT NULL,
    ping_status             TEXT NOT NULL,
    time                    TEXT NOT NULL,
    record                  TEXT NOT NULL,
    UNIQUE (run_id, operator_id)
);

CREATE INDEX IF NOT EXISTS idx_operator_results_operator
    ON operator_results (operator_id, time);
"""


def init_db(db_path: str) -> sqlite3.Connection:
    """Open (or create) the SQLite database and apply pending migrations.

    Args:
        db_path: Filesystem path for the database, or ``":memory:"`` for
            an in-memory database (useful in tests).

    Returns:
        An open ``sqlite3.Connection`` with WAL journal mode and foreign
        keys enabled.
    """
    if db_path != ":memory:":
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        db_path = str(Path(db_path).expanduser())
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    _migrate(conn)
    return conn


def save_availability_run(conn: sqlite3.Connection, run: AvailabilityRun) -> str:
    """Persist a cycle's audit record and assign it a UUID.

    The generated UUID is written back to ``run.id``.  The insert is not
    committed; ``save_cycle`` wraps it in the cycle's transaction.

    Returns:
        The generated UUID string.
    """
    run_id = uuid.uuid4().hex
    run.id = run_id
    conn.execute(
        "INSERT INTO availability_runs (id, source, timestamp, operator_count, "
        "duration_seconds, meta) VALUES (?, ?, ?, ?, ?, ?)",
        (
            run_id,
            run.source,
            run.timestamp.isoformat(),
            run.operator_count,
            run.duration_seconds,
            json.dumps(run.meta),
        ),
    )
    return run_id


def save_results(
    conn: sqlite3.Connection,
    outcomes: list[ProbeOutcome],
    run_id: str,
    *,
    source: str,
    version: str,
) -> None:
    """Write one ``operator_results`` row per outcome as a single batch.

    The flattened report record is stored as JSON next to the columns
    used for lookups.  Like ``save_availability_run`` this does not commit.

    Args:
        conn: Open database connection (from ``init_db``).
        outcomes: Classified outcomes of the run.
        run_id: The run UUID returned by ``save_availability_run``.
        source: Source identifier stamped on each record.
        version: Tool version stamped on each record.
    """
    rows = []
    for outcome in outcomes:
        record = outcome_to_record(outcome, source=source, version=version)
        rows.append(
            (
                run_id,
                record["operatorId"],
                record["workerId"],
                record["distributionBucketId"],
                record["nodeEndpoint"],
                record["distributingStatus"],
                record["pingStatus"],
                record["time"],
                json.dumps(record),
            )
        )
    conn.executemany(
        """\
        INSERT INTO operator_results (
            run_id, operator_id, worker_id, distribution_bucket_id,
            node_endpoint, distributing_status, ping_status, time, record
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    logger.info("Saved %d operator result(s) for run %s", len(rows), run_id)


def save_cycle(
    conn: sqlite3.Connection,
    run: AvailabilityRun,
    outcomes: list[ProbeOutcome],
    *,
    version: str,
) -> str:
    """Persist a cycle's run record and all its results atomically.

    Either both the ``availability_runs`` row and every
    ``operator_results`` row are committed, or nothing is.

    Returns:
        The run UUID.

    Raises:
        sqlite3.Error: If any insert fails; the transaction is rolled back.
    """
    with conn:
        run_id = save_availability_run(conn, run)
        save_results(conn, outcomes, run_id, source=run.source, version=version)
    return run_id


def _migrate(conn: sqlite3.Connection) -> None:
    """Apply database migrations up to ``_SCHEMA_VERSION``.

    Uses the SQLite ``user_version`` pragma to track the current schema
    version.
    """
    (current,) = conn.execute("PRAGMA user_version").fetchone()

    if current >= _SCHEMA_VERSION:
        return

    if current < 1:
        logger.debug("Applying schema migration v0 → v1")
        conn.executescript(_SCHEMA_V1)

    conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
    conn.commit()
    logger.debug("Database schema at version %d", _SCHEMA_VERSION)
