"""Degradation detector: reference medians and Ok → Degraded reclassification."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from dping.models import STATUSES, Degraded, Ok, ProbeOutcome

logger = logging.getLogger(__name__)

DEGRADATION_THRESHOLD = 10


@dataclass(frozen=True)
class ReferenceValues:
    """Cross-operator reference computed over the healthy (``Ok``) set.

    Attributes:
        blocks_processed: Median ``blocks_processed`` of healthy nodes.
        chain_head: Median ``chain_head`` of healthy nodes.
        sample_size: Number of healthy nodes the medians came from.
    """

    blocks_processed: int
    chain_head: int
    sample_size: int


def upper_median(values: Sequence[int]) -> int | None:
    """Return the element at index ``len // 2`` of the sorted *values*.

    On even-sized input this is the upper of the two middle elements, not
    their average, so the result is always one of the observed heights.
    Returns None for empty input.
    """
    if not values:
        return None
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def reference_values(outcomes: Sequence[ProbeOutcome]) -> ReferenceValues | None:
    """Compute reference values from the ``Ok`` outcomes in *outcomes*.

    Returns:
        The reference values, or None if no outcome is ``Ok``.
    """
    healthy = [o for o in outcomes if isinstance(o, Ok)]
    if not healthy:
        return None
    return ReferenceValues(
        blocks_processed=upper_median([o.node_status.blocks_processed for o in healthy]),
        chain_head=upper_median([o.node_status.chain_head for o in healthy]),
        sample_size=len(healthy),
    )


def classify(
    outcomes: Sequence[ProbeOutcome],
    threshold: int = DEGRADATION_THRESHOLD,
    reference: ReferenceValues | None = None,
) -> list[ProbeOutcome]:
    """Reclassify ``Ok`` outcomes that lag behind the healthy majority.

    An ``Ok`` outcome whose ``blocks_processed`` or ``chain_head`` is more
    than *threshold* blocks away from the reference median becomes
    ``Degraded``; the others stay ``Ok`` with both diffs filled in.  Every
    other variant, including ``Degraded``, is passed through untouched.

    Args:
        outcomes: Complete outcome set of one run.
        threshold: Largest tolerated distance from the reference.
        reference: Reference values already computed for *outcomes*; when
            omitted they are computed here.

    Returns:
        A new list, same length and order as *outcomes*.
    """
    ref = reference if reference is not None else reference_values(outcomes)
    if ref is None:
        logger.info("No healthy operators; skipping degradation check")
        return list(outcomes)

    logger.info(
        "Reference from %d healthy operator(s): blocksProcessed=%d chainHead=%d",
        ref.sample_size,
        ref.blocks_processed,
        ref.chain_head,
    )

    classified: list[ProbeOutcome] = []
    for outcome in outcomes:
        if not isinstance(outcome, Ok):
            classified.append(outcome)
            continue

        blocks_processed_diff = abs(
            outcome.node_status.blocks_processed - ref.blocks_processed
        )
        chain_head_diff = abs(outcome.node_status.chain_head - ref.chain_head)

        if blocks_processed_diff > threshold or chain_head_diff > threshold:
            logger.warning(
                "Operator %s degraded: blocksProcessed diff %d, chainHead diff %d",
                outcome.operator.operator_id,
                blocks_processed_diff,
                chain_head_diff,
            )
            classified.append(
                Degraded(
                    operator=outcome.operator,
                    probed_at=outcome.probed_at,
                    node_status=outcome.node_status,
                    asset_probe=outcome.asset_probe,
                    reference_blocks_processed=ref.blocks_processed,
                    reference_chain_head=ref.chain_head,
                )
            )
        else:
            classified.append(
                replace(
                    outcome,
                    blocks_processed_diff=blocks_processed_diff,
                    chain_head_diff=chain_head_diff,
                )
            )

    return classified


def status_counts(outcomes: Sequence[ProbeOutcome]) -> dict[str, int]:
    """Count outcomes per status; every known status is present."""
    counts = dict.fromkeys(STATUSES, 0)
    for outcome in outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    return counts
