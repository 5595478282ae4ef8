"""Data models: Operator, NodeStatus, probe outcomes and the AvailabilityRun record."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar


@dataclass(frozen=True)
class Operator:
    """One distribution node registered against a distribution bucket.

    Attributes:
        operator_id: Operator identifier from the indexing service.
        worker_id: Worker id of the operator.
        distribution_bucket_id: Id of the bucket the operator serves.
        node_endpoint: Advertised base URL of the node, or None if the
            operator never published one.
        is_distributing: Whether the owning bucket is marked as
            actively distributing.
        accepting_new_bags: Bucket flag, passed through for reporting.
        metadata: Raw operator metadata as returned by discovery.
    """

    operator_id: str
    worker_id: int
    distribution_bucket_id: str
    node_endpoint: str | None = None
    is_distributing: bool = True
    accepting_new_bags: bool | None = None
    metadata: dict = field(default_factory=dict, compare=False)

    @property
    def distributing_status(self) -> str:
        return "distributing" if self.is_distributing else "not-distributing"

    @property
    def status_url(self) -> str | None:
        return self._api_url("api/v1/status")

    def asset_url(self, asset_id: str) -> str | None:
        return self._api_url(f"api/v1/assets/{asset_id}")

    def _api_url(self, path: str) -> str | None:
        if not self.node_endpoint:
            return None
        return f"{self.node_endpoint.rstrip('/')}/{path}"


def _require_int(raw: dict, key: str) -> int:
    value = raw.get(key)
    # bool is an int subclass; a JSON true is not a block height.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"queryNodeStatus.{key} must be an integer, got {value!r}")
    return value


@dataclass(frozen=True)
class NodeStatus:
    """Self-reported health snapshot from a node's ``api/v1/status``.

    Only ``chain_head`` and ``blocks_processed`` drive classification;
    the remaining fields are passed through to the report unmodified.

    Attributes:
        chain_head: Block height the node's indexer considers canonical.
        blocks_processed: Block height the node has synced to.
        node_id: Node-reported identifier.
        version: Node software version.
        objects_in_cache: Number of cached data objects.
        storage_limit: Configured cache size in bytes.
        storage_used: Bytes currently used by the cache.
        uptime: Node uptime in seconds.
        downloads_in_progress: Number of in-flight downloads.
        query_node_url: URL of the indexer the node follows.
        raw: The complete decoded status body.
    """

    chain_head: int
    blocks_processed: int
    node_id: str | None = None
    version: str | None = None
    objects_in_cache: int | None = None
    storage_limit: int | None = None
    storage_used: int | None = None
    uptime: float | None = None
    downloads_in_progress: int | None = None
    query_node_url: str | None = None
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, body: Any) -> "NodeStatus":
        """Build a ``NodeStatus`` from a decoded status response.

        Raises:
            ValueError: If *body* is not a mapping, has no
                ``queryNodeStatus`` object, or its ``chainHead`` /
                ``blocksProcessed`` are not integers.
        """
        if not isinstance(body, dict):
            raise ValueError(f"expected a JSON object, got {type(body).__name__}")
        qn_status = body.get("queryNodeStatus")
        if not isinstance(qn_status, dict):
            raise ValueError("missing queryNodeStatus object")

        return cls(
            chain_head=_require_int(qn_status, "chainHead"),
            blocks_processed=_require_int(qn_status, "blocksProcessed"),
            node_id=body.get("id"),
            version=body.get("version"),
            objects_in_cache=body.get("objectsInCache"),
            storage_limit=body.get("storageLimit"),
            storage_used=body.get("storageUsed"),
            uptime=body.get("uptime"),
            downloads_in_progress=body.get("downloadsInProgress"),
            query_node_url=qn_status.get("url"),
            raw=body,
        )


@dataclass(frozen=True)
class AssetProbeResult:
    """Outcome of downloading the well-known sample asset from a node."""

    succeeded: bool
    http_status_code: int | None = None
    response_time_ms: float | None = None


# ------------------------------------------------------------------
# Probe outcomes
# ------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class ProbeOutcome:
    """Base of the per-operator outcome variants.

    Exactly one outcome is produced per operator and run.  Concrete
    variants are ``Dead``, ``NotDistributing``, ``Ok`` and ``Degraded``.
    """

    status: ClassVar[str] = ""

    operator: Operator
    probed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, kw_only=True)
class Dead(ProbeOutcome):
    """Missing endpoint, network failure, non-200 or malformed status."""

    status: ClassVar[str] = "dead"

    reason: str


@dataclass(frozen=True, kw_only=True)
class NotDistributing(ProbeOutcome):
    """The bucket is administratively not distributing; nothing was probed."""

    status: ClassVar[str] = "not-distributing"


@dataclass(frozen=True, kw_only=True)
class Ok(ProbeOutcome):
    """Status fetched successfully, whatever the asset download did.

    ``blocks_processed_diff`` and ``chain_head_diff`` stay None until the
    degradation detector has compared the node against the reference values.
    """

    status: ClassVar[str] = "ok"

    node_status: NodeStatus
    asset_probe: AssetProbeResult
    blocks_processed_diff: int | None = None
    chain_head_diff: int | None = None


@dataclass(frozen=True, kw_only=True)
class Degraded(ProbeOutcome):
    """Reachable, but sync progress deviates from the cross-operator median."""

    status: ClassVar[str] = "degraded"

    node_status: NodeStatus
    asset_probe: AssetProbeResult
    reference_blocks_processed: int
    reference_chain_head: int


STATUSES = (Ok.status, Degraded.status, Dead.status, NotDistributing.status)


@dataclass
class AvailabilityRun:
    """Audit record for a single probe cycle.

    Attributes:
        source: Identifier of the probing host (``source_id`` config).
        operator_count: Number of operators discovered.
        duration_seconds: Wall-clock duration of the cycle.
        id: UUID assigned at persist time; None until persisted.
        timestamp: When the cycle started (UTC).
        meta: Status counts and reference values of the cycle.
    """

    source: str
    operator_count: int
    duration_seconds: float
    id: str | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(UTC),
    )
    meta: dict = field(default_factory=dict)


def outcome_to_record(
    outcome: ProbeOutcome, *, source: str, version: str
) -> dict[str, Any]:
    """Flatten *outcome* into the per-operator report record.

    The record holds the common operator fields plus the fields of the
    outcome's variant, keyed the way downstream consumers expect
    (camelCase, ``pingStatus`` as the discriminator).
    """
    op = outcome.operator
    record: dict[str, Any] = {
        "time": outcome.probed_at.isoformat(),
        "source": source,
        "version": version,
        "operatorId": op.operator_id,
        "distributionBucketId": op.distribution_bucket_id,
        "workerId": op.worker_id,
        "nodeEndpoint": op.node_endpoint or "",
        "statusEndpoint": op.status_url,
        "distributingStatus": op.distributing_status,
        "pingStatus": outcome.status,
    }

    if isinstance(outcome, Dead):
        record["error"] = outcome.reason
    elif isinstance(outcome, (Ok, Degraded)):
        asset = outcome.asset_probe
        record.update(
            {
                "assetDownloadSucceeded": asset.succeeded,
                "assetDownloadStatusCode": asset.http_status_code,
                "assetDownloadResponseTimeMs": asset.response_time_ms,
                "nodeStatus": outcome.node_status.raw,
                "operatorMetadata": op.metadata,
            }
        )
        if isinstance(outcome, Ok):
            record["blocksProcessedDiff"] = outcome.blocks_processed_diff
            record["chainHeadDiff"] = outcome.chain_head_diff
        else:
            record["refBlocksProcessed"] = outcome.reference_blocks_processed
            record["refChainHead"] = outcome.reference_chain_head

    return record
