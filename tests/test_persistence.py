"""Tests for dping.persistence — SQLite result sink."""

import json
import sqlite3

import pytest

from dping.models import (
    AssetProbeResult,
    AvailabilityRun,
    Dead,
    NodeStatus,
    NotDistributing,
    Ok,
    Operator,
)
from dping.persistence import (
    init_db,
    save_availability_run,
    save_cycle,
    save_results,
)


def _make_operator(n: int, **overrides: object) -> Operator:
    defaults: dict = {
        "operator_id": f"0-{n}",
        "worker_id": n,
        "distribution_bucket_id": f"0:{n}",
        "node_endpoint": f"https://node-{n}.example.com/",
    }
    defaults.update(overrides)
    return Operator(**defaults)


def _make_run(**overrides: object) -> AvailabilityRun:
    """Create an AvailabilityRun with sensible defaults, overridable per-field."""
    defaults: dict = {
        "source": "probe-eu",
        "operator_count": 3,
        "duration_seconds": 1.23,
    }
    defaults.update(overrides)
    return AvailabilityRun(**defaults)


def _outcomes() -> list:
    return [
        Ok(
            operator=_make_operator(1),
            node_status=NodeStatus(
                chain_head=10,
                blocks_processed=9,
                raw={"queryNodeStatus": {"chainHead": 10, "blocksProcessed": 9}},
            ),
            asset_probe=AssetProbeResult(
                succeeded=True, http_status_code=200, response_time_ms=20.0
            ),
            blocks_processed_diff=0,
            chain_head_diff=0,
        ),
        Dead(operator=_make_operator(2, node_endpoint=None), reason="no endpoint"),
        NotDistributing(operator=_make_operator(3, is_distributing=False)),
    ]


# ------------------------------------------------------------------
# init_db
# ------------------------------------------------------------------


class TestInitDb:
    """Tests for init_db and schema migration."""

    def test_creates_tables(self) -> None:
        conn = init_db(":memory:")
        tables = {
            row["name"]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }
        assert "availability_runs" in tables
        assert "operator_results" in tables
        conn.close()

    def test_sets_schema_version(self) -> None:
        conn = init_db(":memory:")
        (version,) = conn.execute("PRAGMA user_version").fetchone()
        assert version == 1
        conn.close()

    def test_creates_parent_directory(self, tmp_path) -> None:
        db_path = tmp_path / "nested" / "dir" / "dping.db"
        conn = init_db(str(db_path))
        conn.close()
        assert db_path.is_file()

    def test_reopen_is_idempotent(self, tmp_path) -> None:
        db_path = str(tmp_path / "dping.db")
        init_db(db_path).close()
        conn = init_db(db_path)
        (version,) = conn.execute("PRAGMA user_version").fetchone()
        assert version == 1
        conn.close()


# ------------------------------------------------------------------
# save_availability_run / save_results
# ------------------------------------------------------------------


class TestSaveAvailabilityRun:
    """save_availability_run() inserts a row and assigns a UUID."""

    def test_assigns_id(self) -> None:
        conn = init_db(":memory:")
        run = _make_run(meta={"status_counts": {"ok": 1}})

        run_id = save_availability_run(conn, run)

        assert run.id == run_id
        row = conn.execute(
            "SELECT * FROM availability_runs WHERE id = ?", (run_id,)
        ).fetchone()
        assert row["source"] == "probe-eu"
        assert row["operator_count"] == 3
        assert json.loads(row["meta"]) == {"status_counts": {"ok": 1}}
        conn.close()


class TestSaveResults:
    """save_results() writes one row per outcome."""

    def test_one_row_per_outcome(self) -> None:
        conn = init_db(":memory:")
        run_id = save_availability_run(conn, _make_run())

        save_results(conn, _outcomes(), run_id, source="probe-eu", version="0.1.0")

        rows = conn.execute(
            "SELECT * FROM operator_results ORDER BY operator_id"
        ).fetchall()
        assert [r["ping_status"] for r in rows] == ["ok", "dead", "not-distributing"]
        assert all(r["run_id"] == run_id for r in rows)
        assert rows[1]["node_endpoint"] == ""
        assert rows[2]["distributing_status"] == "not-distributing"
        conn.close()

    def test_record_column_holds_flattened_json(self) -> None:
        conn = init_db(":memory:")
        run_id = save_availability_run(conn, _make_run())
        save_results(conn, _outcomes(), run_id, source="probe-eu", version="0.1.0")

        (raw,) = conn.execute(
            "SELECT record FROM operator_results WHERE operator_id = '0-1'"
        ).fetchone()
        record = json.loads(raw)
        assert record["pingStatus"] == "ok"
        assert record["source"] == "probe-eu"
        assert record["assetDownloadStatusCode"] == 200
        assert record["nodeStatus"]["queryNodeStatus"]["chainHead"] == 10
        conn.close()

    def test_empty_batch(self) -> None:
        conn = init_db(":memory:")
        run_id = save_availability_run(conn, _make_run(operator_count=0))
        save_results(conn, [], run_id, source="probe-eu", version="0.1.0")
        (count,) = conn.execute("SELECT COUNT(*) FROM operator_results").fetchone()
        assert count == 0
        conn.close()


class TestSaveCycle:
    """save_cycle() commits the run row and its results together."""

    def test_commits_run_and_results(self, tmp_path) -> None:
        db_path = str(tmp_path / "dping.db")
        conn = init_db(db_path)
        run = _make_run()
        run_id = save_cycle(conn, run, _outcomes(), version="0.1.0")
        conn.close()

        # A fresh connection only sees committed data.
        reader = sqlite3.connect(db_path)
        (runs,) = reader.execute("SELECT COUNT(*) FROM availability_runs").fetchone()
        (rows,) = reader.execute(
            "SELECT COUNT(*) FROM operator_results WHERE run_id = ?", (run_id,)
        ).fetchone()
        reader.close()
        assert run.id == run_id
        assert runs == 1
        assert rows == 3

    def test_failed_results_leave_no_run_row(self) -> None:
        conn = init_db(":memory:")
        duplicated = _outcomes()[:1] * 2

        with pytest.raises(sqlite3.IntegrityError):
            save_cycle(conn, _make_run(), duplicated, version="0.1.0")

        (runs,) = conn.execute("SELECT COUNT(*) FROM availability_runs").fetchone()
        (rows,) = conn.execute("SELECT COUNT(*) FROM operator_results").fetchone()
        assert runs == 0
        assert rows == 0
        conn.close()
