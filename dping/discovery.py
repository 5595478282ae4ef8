"""Operator discovery: GraphQL query against the indexing service."""

import logging

import httpx

from dping.config import USER_AGENT
from dping.models import Operator

logger = logging.getLogger(__name__)

OPERATORS_QUERY = """\
query GetDistributorOperators {
  distributionBucketOperators(where: { status_eq: ACTIVE }) {
    id
    workerId
    distributionBucket {
      id
      distributing
      acceptingNewBags
    }
    metadata {
      nodeEndpoint
    }
  }
}
"""


class DiscoveryError(Exception):
    """Raised when the operator list cannot be retrieved or parsed."""


async def fetch_operators(client: httpx.AsyncClient, url: str) -> list[Operator]:
    """Query the indexing service for all active distribution operators.

    Args:
        client: HTTP client used for the request.
        url: GraphQL endpoint of the indexing service.

    Returns:
        Operators in the order the service returned them.

    Raises:
        DiscoveryError: On transport failure, a non-2xx response, a body
            that isn't JSON, GraphQL errors, or an unexpected payload shape.
    """
    logger.info("Fetching distribution operators from %s", url)
    try:
        response = await client.post(
            url,
            json={"query": OPERATORS_QUERY},
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise DiscoveryError(f"Operator query to {url} failed: {exc}") from exc
    except ValueError as exc:
        raise DiscoveryError(f"Operator query to {url} returned invalid JSON") from exc

    if not isinstance(payload, dict):
        raise DiscoveryError("Operator query returned an unexpected payload")
    if payload.get("errors"):
        messages = "; ".join(
            str(err.get("message", err)) if isinstance(err, dict) else str(err)
            for err in payload["errors"]
        )
        raise DiscoveryError(f"Operator query returned errors: {messages}")

    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise DiscoveryError("Operator query returned an unexpected data object")
    operators = parse_operators(data.get("distributionBucketOperators"))
    logger.info("Discovered %d operator(s)", len(operators))
    return operators


def parse_operators(rows: object) -> list[Operator]:
    """Convert ``distributionBucketOperators`` rows into ``Operator`` objects.

    Raises:
        DiscoveryError: If *rows* is not a list or a row lacks the operator
            id, worker id or bucket.
    """
    if not isinstance(rows, list):
        raise DiscoveryError("Operator query returned no distributionBucketOperators list")

    operators: list[Operator] = []
    for row in rows:
        try:
            bucket = row["distributionBucket"]
            metadata = row.get("metadata") or {}
            operators.append(
                Operator(
                    operator_id=str(row["id"]),
                    worker_id=int(row["workerId"]),
                    distribution_bucket_id=str(bucket["id"]),
                    node_endpoint=metadata.get("nodeEndpoint") or None,
                    is_distributing=bool(bucket.get("distributing")),
                    accepting_new_bags=bucket.get("acceptingNewBags"),
                    metadata=metadata,
                )
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise DiscoveryError(f"Malformed operator row {row!r}: {exc}") from exc
    return operators
