"""Output renderer: rich table formatter, JSON formatter, format dispatch."""

import json
import logging
import sys
from io import StringIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dping.config import VERSION
from dping.models import Dead, Degraded, Ok, ProbeOutcome, outcome_to_record
from dping.pipeline import CycleReport

logger = logging.getLogger(__name__)

_COLUMNS = (
    "Operator",
    "Bucket",
    "Worker",
    "Endpoint",
    "Status",
    "Blocks",
    "Chain head",
    "Asset",
    "Asset ms",
    "Detail",
)

_STATUS_STYLES = {
    "ok": "green",
    "degraded": "yellow",
    "dead": "red",
    "not-distributing": "dim",
}


def render(
    report: CycleReport,
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Dispatch output to the appropriate formatter.

    Args:
        report: Cycle report to render.
        fmt: Output format — ``"table"`` or ``"json"``.
        file: Writable file object for output (default: ``sys.stdout``).
        width: Explicit console width (default: auto-detect).

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    if fmt == "table":
        render_table(report, file=file, width=width)
    elif fmt == "json":
        render_json(report, file=file)
    else:
        raise ValueError(f"Unknown output format: {fmt!r}")


# ---------------------------------------------------------------------------
# Table (rich) formatter
# ---------------------------------------------------------------------------


def render_table(
    report: CycleReport,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render *report* as a ``rich`` table plus a summary line."""
    out = file or sys.stdout
    console = Console(file=out, highlight=False, width=width)

    table = Table(title=f"Distribution operators — {len(report.outcomes)} probed")
    for header in _COLUMNS:
        table.add_column(header)

    for outcome in report.outcomes:
        table.add_row(*_row(outcome))

    console.print(table)
    _print_summary(console, report)


def _row(outcome: ProbeOutcome) -> list[str]:
    op = outcome.operator
    style = _STATUS_STYLES.get(outcome.status, "")
    blocks = chain_head = asset = asset_ms = None
    detail = ""

    if isinstance(outcome, (Ok, Degraded)):
        blocks = outcome.node_status.blocks_processed
        chain_head = outcome.node_status.chain_head
        asset = outcome.asset_probe.http_status_code
        if outcome.asset_probe.response_time_ms is not None:
            asset_ms = f"{outcome.asset_probe.response_time_ms:.0f}"
        if not outcome.asset_probe.succeeded:
            detail = "asset download failed"
    if isinstance(outcome, Degraded):
        detail = (
            f"ref blocks {outcome.reference_blocks_processed}, "
            f"ref head {outcome.reference_chain_head}"
        )
    elif isinstance(outcome, Dead):
        detail = outcome.reason

    return [
        escape(op.operator_id),
        escape(op.distribution_bucket_id),
        str(op.worker_id),
        escape(_fmt(op.node_endpoint)),
        f"[{style}]{outcome.status}[/{style}]" if style else outcome.status,
        _fmt(blocks),
        _fmt(chain_head),
        _fmt(asset),
        _fmt(asset_ms),
        escape(detail) if detail else "—",
    ]


def _print_summary(console: Console, report: CycleReport) -> None:
    """Print per-status counts and the reference values beneath the table."""
    counts = report.run.meta.get("status_counts", {})
    parts = [f"{count} {status}" for status, count in counts.items()]
    line = f"  {report.run.operator_count} operators: " + ", ".join(parts)

    ref = report.run.meta.get("reference")
    if ref:
        line += (
            f"; reference blocks processed {ref['blocks_processed']}, "
            f"chain head {ref['chain_head']}"
        )
    console.print(line)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


def render_json(report: CycleReport, *, file: object | None = None) -> None:
    """Render *report* as JSON to *file*.

    The output is an object with ``run`` (the audit record) and
    ``results`` (one flattened record per operator).
    """
    out = file or sys.stdout
    payload = _report_to_dict(report)
    json.dump(payload, out, indent=2, default=str)
    out.write("\n")  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _report_to_dict(report: CycleReport) -> dict:
    """Convert a ``CycleReport`` to a plain dict."""
    run = report.run
    return {
        "run": {
            "id": run.id,
            "source": run.source,
            "timestamp": run.timestamp.isoformat(),
            "operator_count": run.operator_count,
            "duration_seconds": run.duration_seconds,
            "meta": run.meta,
        },
        "results": [
            outcome_to_record(o, source=run.source, version=VERSION)
            for o in report.outcomes
        ],
    }


def _fmt(value: object) -> str:
    """Format a field value for table display.

    ``None`` becomes ``"—"``, everything else is stringified.
    """
    if value is None:
        return "—"
    return str(value)


def render_to_string(report: CycleReport, fmt: str, *, width: int = 200) -> str:
    """Render to a string instead of stdout — useful for testing."""
    buf = StringIO()
    render(report, fmt, file=buf, width=width)
    return buf.getvalue()
