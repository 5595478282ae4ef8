"""Node prober: status check and sample-asset download against one operator."""

import asyncio
import logging
import time

import httpx

from dping.config import USER_AGENT
from dping.models import (
    AssetProbeResult,
    Dead,
    NodeStatus,
    NotDistributing,
    Ok,
    Operator,
    ProbeOutcome,
)

logger = logging.getLogger(__name__)

NO_ENDPOINT = "no endpoint"


class NodeProber:
    """Probes a single distribution operator.

    A probe makes at most two sequential requests against the operator's
    advertised endpoint: ``api/v1/status``, then (only if the status was
    usable) the sample asset.  Every failure mode is folded into the
    returned ``ProbeOutcome``; ``probe()`` never raises for a bad node.

    Args:
        client: Shared HTTP client.  Its timeout bounds each request.
        asset_id: Id of the sample asset to download.
        probe_timeout: Upper bound in seconds for the whole probe, or None
            to rely on the per-request timeout alone.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        asset_id: str,
        probe_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._asset_id = asset_id
        self._probe_timeout = probe_timeout

    async def probe(self, operator: Operator) -> ProbeOutcome:
        """Probe *operator* and classify the result.

        Args:
            operator: The operator to probe.

        Returns:
            ``NotDistributing`` if the bucket isn't distributing,
            ``Dead`` if the node has no endpoint or its status can't be
            fetched, otherwise ``Ok`` with the status and asset results.
        """
        if not operator.is_distributing:
            logger.debug("Operator %s: bucket not distributing", operator.operator_id)
            return NotDistributing(operator=operator)

        if not operator.node_endpoint:
            logger.warning("Operator %s: %s", operator.operator_id, NO_ENDPOINT)
            return Dead(operator=operator, reason=NO_ENDPOINT)

        try:
            outcome = await asyncio.wait_for(
                self._probe_endpoint(operator), self._probe_timeout
            )
        except TimeoutError:
            outcome = Dead(
                operator=operator,
                reason=f"probe timed out after {self._probe_timeout}s",
            )

        if isinstance(outcome, Dead):
            logger.warning("Operator %s: %s", operator.operator_id, outcome.reason)
        return outcome

    async def _probe_endpoint(self, operator: Operator) -> ProbeOutcome:
        status_url = operator.status_url
        logger.debug("GET %s", status_url)
        try:
            response = await self._client.get(
                status_url, headers={"User-Agent": USER_AGENT}
            )
        except httpx.HTTPError as exc:
            return Dead(
                operator=operator,
                reason=f"failed to fetch status: {exc!r}",
            )

        if response.status_code != 200:
            return Dead(
                operator=operator,
                reason=f"status endpoint returned HTTP {response.status_code}",
            )

        try:
            node_status = NodeStatus.from_dict(response.json())
        except ValueError as exc:
            return Dead(operator=operator, reason=f"invalid status response: {exc}")

        asset_probe = await self._download_asset(operator)
        return Ok(operator=operator, node_status=node_status, asset_probe=asset_probe)

    async def _download_asset(self, operator: Operator) -> AssetProbeResult:
        """Download the sample asset, draining the body, and time it.

        A failed download is reported in the result rather than raised.
        """
        url = operator.asset_url(self._asset_id)
        logger.debug("GET %s", url)
        t0 = time.perf_counter()
        try:
            async with self._client.stream(
                "GET", url, headers={"User-Agent": USER_AGENT}
            ) as response:
                async for _chunk in response.aiter_bytes():
                    pass
        except httpx.HTTPError as exc:
            logger.info(
                "Operator %s: asset download failed: %r", operator.operator_id, exc
            )
            return AssetProbeResult(succeeded=False)
        response_time_ms = (time.perf_counter() - t0) * 1000

        return AssetProbeResult(
            succeeded=response.status_code == 200,
            http_status_code=response.status_code,
            response_time_ms=response_time_ms,
        )
