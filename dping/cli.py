"""CLI entry point for the dping tool."""

import asyncio
import logging
import sqlite3
import sys
import time

import click

from dping.config import VERSION, ConfigError, DpingConfig, load_config
from dping.discovery import DiscoveryError
from dping.output import render
from dping.persistence import init_db, save_cycle
from dping.pipeline import CycleReport, run_cycle

logger = logging.getLogger(__name__)

FORMATS = ("table", "json")


@click.command()
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Run a single cycle and exit instead of repeating on an interval.",
)
@click.option(
    "--interval",
    "-i",
    "interval_minutes",
    default=None,
    type=click.FloatRange(min=0, min_open=True),
    help="Minutes between cycles (default: interval_minutes from config).",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    default="table",
    type=click.Choice(FORMATS, case_sensitive=False),
    show_default=True,
    help="Output format.",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to YAML config file (default: ~/.dping/config.yaml).",
)
@click.option(
    "--save/--no-save",
    default=True,
    show_default=True,
    help="Write results to the SQLite database.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(
    once: bool,
    interval_minutes: float | None,
    output_format: str,
    config_path: str | None,
    save: bool,
    verbose: bool,
) -> None:
    """Probe distribution operators and flag dead or degraded nodes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        cfg = load_config(config_path)
    except (ConfigError, FileNotFoundError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    logger.debug("Config loaded: %s", cfg)

    if once:
        if not _run_once(cfg, output_format.lower(), save):
            sys.exit(1)
        return

    interval = interval_minutes or cfg.interval_minutes
    logger.info("Running a cycle every %g minute(s)", interval)
    try:
        _run_forever(cfg, output_format.lower(), save, interval * 60)
    except KeyboardInterrupt:
        logger.info("Stopped")


def _run_forever(
    cfg: DpingConfig, output_format: str, save: bool, interval_seconds: float
) -> None:
    """Run cycles back to back, each starting one interval after the last.

    A cycle that overruns the interval delays the next one; cycles never
    overlap.  A cycle that raises is logged and the loop carries on.
    """
    while True:
        started = time.monotonic()
        try:
            _run_once(cfg, output_format, save)
        except Exception:
            logger.exception("Cycle failed; retrying at the next interval")
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, interval_seconds - elapsed))


def _run_once(cfg: DpingConfig, output_format: str, save: bool) -> bool:
    """Run one cycle: probe → classify → persist → render.

    A discovery failure ends the cycle.  A database failure is logged and
    the report is still rendered.  Both are reported through the return
    value.

    Returns:
        True if the cycle completed, False on a run-level failure.
    """
    try:
        report = asyncio.run(run_cycle(cfg))
    except DiscoveryError as exc:
        logger.error("Cycle aborted: %s", exc)
        return False

    saved = True
    if save:
        try:
            _persist(cfg, report)
        except sqlite3.Error as exc:
            logger.error("Failed to save results to %s: %s", cfg.db_path, exc)
            saved = False

    render(report, output_format)
    return saved


def _persist(cfg: DpingConfig, report: CycleReport) -> None:
    conn = init_db(cfg.db_path)
    try:
        save_cycle(conn, report.run, report.outcomes, version=VERSION)
    finally:
        conn.close()
