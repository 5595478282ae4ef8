"""Tests for dping.coordinator — concurrent fan-out and barrier."""

import asyncio

import httpx
import pytest
import respx

from dping.coordinator import run_all
from dping.models import Dead, NotDistributing, Ok, Operator, ProbeOutcome
from dping.prober import NodeProber

STATUS_BODY = {
    "version": "1.4.0",
    "queryNodeStatus": {"chainHead": 1000, "blocksProcessed": 1000},
}


def _make_operator(n: int, **overrides: object) -> Operator:
    defaults: dict = {
        "operator_id": f"0-{n}",
        "worker_id": n,
        "distribution_bucket_id": f"0:{n}",
        "node_endpoint": f"https://node-{n}.example.com/",
    }
    defaults.update(overrides)
    return Operator(**defaults)


class _DelayedProber:
    """Fake prober: operator n finishes after delays[n] seconds."""

    def __init__(self, delays: dict[str, float]) -> None:
        self.delays = delays
        self.in_flight = 0
        self.max_in_flight = 0

    async def probe(self, operator: Operator) -> ProbeOutcome:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(operator.operator_id, 0))
        finally:
            self.in_flight -= 1
        return NotDistributing(operator=operator)


class _ExplodingProber:
    """Fake prober that raises for one operator id."""

    def __init__(self, bad_id: str) -> None:
        self.bad_id = bad_id

    async def probe(self, operator: Operator) -> ProbeOutcome:
        if operator.operator_id == self.bad_id:
            raise RuntimeError("boom")
        return NotDistributing(operator=operator)


class TestRunAll:
    """run_all() returns one outcome per operator, in input order."""

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        assert await run_all([], _DelayedProber({})) == []

    @pytest.mark.asyncio
    async def test_order_preserved_despite_completion_order(self) -> None:
        operators = [_make_operator(n) for n in range(1, 5)]
        # Operator 1 finishes last, operator 4 first.
        prober = _DelayedProber({"0-1": 0.04, "0-2": 0.03, "0-3": 0.02, "0-4": 0.0})

        outcomes = await run_all(operators, prober)

        assert [o.operator for o in outcomes] == operators

    @pytest.mark.asyncio
    async def test_unbounded_runs_all_at_once(self) -> None:
        operators = [_make_operator(n) for n in range(10)]
        prober = _DelayedProber({op.operator_id: 0.01 for op in operators})

        await run_all(operators, prober)

        assert prober.max_in_flight == 10

    @pytest.mark.asyncio
    async def test_max_concurrency_caps_in_flight(self) -> None:
        operators = [_make_operator(n) for n in range(10)]
        prober = _DelayedProber({op.operator_id: 0.01 for op in operators})

        outcomes = await run_all(operators, prober, max_concurrency=3)

        assert prober.max_in_flight == 3
        assert len(outcomes) == 10

    @pytest.mark.asyncio
    async def test_crashing_probe_is_contained(self) -> None:
        operators = [_make_operator(n) for n in range(1, 4)]

        outcomes = await run_all(operators, _ExplodingProber("0-2"))

        assert isinstance(outcomes[0], NotDistributing)
        assert isinstance(outcomes[1], Dead)
        assert "boom" in outcomes[1].reason
        assert isinstance(outcomes[2], NotDistributing)


class TestRunAllWithNodeProber:
    """End-to-end fan-out over mocked nodes."""

    @pytest.mark.asyncio
    async def test_transport_failure_does_not_affect_siblings(self) -> None:
        operators = [
            _make_operator(1),
            _make_operator(2),
            _make_operator(3, node_endpoint=None),
            _make_operator(4, is_distributing=False),
        ]
        with respx.mock:
            respx.get("https://node-1.example.com/api/v1/status").mock(
                side_effect=httpx.ConnectError("refused")
            )
            respx.get("https://node-2.example.com/api/v1/status").mock(
                return_value=httpx.Response(200, json=STATUS_BODY)
            )
            respx.get("https://node-2.example.com/api/v1/assets/1343").mock(
                return_value=httpx.Response(200, content=b"data")
            )
            async with httpx.AsyncClient() as client:
                prober = NodeProber(client, asset_id="1343")
                outcomes = await run_all(operators, prober)

        assert [o.status for o in outcomes] == [
            "dead",
            "ok",
            "dead",
            "not-distributing",
        ]
        assert isinstance(outcomes[1], Ok)
        assert outcomes[1].node_status.blocks_processed == 1000
        assert outcomes[2].reason == "no endpoint"
