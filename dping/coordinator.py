"""Fan-out coordinator: probe every operator concurrently, then join."""

import asyncio
import logging
from typing import Protocol

from dping.models import Dead, Operator, ProbeOutcome

logger = logging.getLogger(__name__)


class Prober(Protocol):
    async def probe(self, operator: Operator) -> ProbeOutcome: ...


async def run_all(
    operators: list[Operator],
    prober: Prober,
    *,
    max_concurrency: int | None = None,
) -> list[ProbeOutcome]:
    """Probe all *operators* concurrently and wait for every result.

    Args:
        operators: Operators to probe.
        prober: Object whose ``probe()`` coroutine yields one outcome.
        max_concurrency: Maximum number of probes in flight.  ``None``
            starts one task per operator at once.

    Returns:
        One outcome per operator, in the order of *operators*.  A probe
        that raises is recorded as ``Dead`` for its own operator only.
    """
    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def _guarded(operator: Operator) -> ProbeOutcome:
        try:
            if semaphore is None:
                return await prober.probe(operator)
            async with semaphore:
                return await prober.probe(operator)
        except Exception as exc:
            logger.exception("Probe of operator %s crashed", operator.operator_id)
            return Dead(operator=operator, reason=f"unexpected error: {exc!r}")

    logger.info(
        "Probing %d operator(s) (max concurrency: %s)",
        len(operators),
        max_concurrency or "unbounded",
    )
    outcomes = await asyncio.gather(*(_guarded(op) for op in operators))
    return list(outcomes)
