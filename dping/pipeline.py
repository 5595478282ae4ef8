"""One probe cycle: discover → probe all → classify."""

import logging
import time
from dataclasses import dataclass, field

import httpx

from dping.config import USER_AGENT, DpingConfig
from dping.coordinator import run_all
from dping.detector import classify, reference_values, status_counts
from dping.discovery import fetch_operators
from dping.models import AvailabilityRun, ProbeOutcome
from dping.prober import NodeProber

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Classified outcomes of one cycle plus its audit record."""

    run: AvailabilityRun
    outcomes: list[ProbeOutcome] = field(default_factory=list)


async def run_cycle(
    config: DpingConfig,
    *,
    client: httpx.AsyncClient | None = None,
) -> CycleReport:
    """Run one full discovery, probe and classification cycle.

    Args:
        config: Loaded application configuration.
        client: HTTP client to use.  When omitted, one is created for the
            cycle with ``config.request_timeout_seconds`` as its timeout and
            closed afterwards.

    Returns:
        The ``CycleReport`` for this cycle.

    Raises:
        DiscoveryError: If the operator list could not be retrieved.
    """
    if client is None:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            headers={"User-Agent": USER_AGENT},
        ) as owned:
            return await _run_cycle(config, owned)
    return await _run_cycle(config, client)


async def _run_cycle(config: DpingConfig, client: httpx.AsyncClient) -> CycleReport:
    t0 = time.monotonic()
    run = AvailabilityRun(source=config.source, operator_count=0, duration_seconds=0.0)

    operators = await fetch_operators(client, config.graphql_url)

    prober = NodeProber(
        client,
        asset_id=config.test_asset_id,
        probe_timeout=config.probe_timeout_seconds,
    )
    outcomes = await run_all(
        operators, prober, max_concurrency=config.max_concurrency
    )
    ref = reference_values(outcomes)
    outcomes = classify(
        outcomes, threshold=config.degradation_threshold, reference=ref
    )

    run.operator_count = len(outcomes)
    run.duration_seconds = time.monotonic() - t0
    run.meta["status_counts"] = status_counts(outcomes)
    if ref is not None:
        run.meta["reference"] = {
            "blocks_processed": ref.blocks_processed,
            "chain_head": ref.chain_head,
        }

    logger.info(
        "Cycle finished in %.1fs: %s",
        run.duration_seconds,
        ", ".join(f"{k}={v}" for k, v in run.meta["status_counts"].items()),
    )
    return CycleReport(run=run, outcomes=outcomes)
