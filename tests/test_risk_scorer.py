import pytest

from riskgraph.core.risk_scorer import compute_node_score
from riskgraph.errors import NodeNotFoundError, WriteConflictError
from riskgraph.models.risk_node import (
    FLAG_SHARED_DEVICE_3PLUS,
    Connection,
    ConnectionType,
    NodeMetadata,
    RiskLevel,
    RiskNode,
)


def _conn(target, conn_type=ConnectionType.DEVICE_MATCH, weight=0.9, strength=0.9):
    return Connection(target_user_id=target, type=conn_type, weight=weight, strength=strength,
                      interaction_count=5, observed_types={conn_type})


def test_isolated_node_with_neutral_trust_is_zero():
    result = compute_node_score(RiskNode(user_id="u"), {}, trust_score=500)
    assert result.risk_score == 0
    assert result.risk_level == RiskLevel.SAFE
    assert result.flags == set()


def test_trust_adjusts_in_both_directions():
    node = RiskNode(user_id="u")
    assert compute_node_score(node, {}, trust_score=0).risk_score == 10
    assert compute_node_score(node, {}, trust_score=1000).risk_score == 0


def test_score_is_clamped_to_100():
    node = RiskNode(
        user_id="u",
        metadata=NodeMetadata(account_age_days=1, report_count=50, block_count=50),
        connections={f"n{i}": _conn(f"n{i}") for i in range(10)},
    )
    neighbors = {
        f"n{i}": RiskNode(user_id=f"n{i}", risk_score=100, risk_level=RiskLevel.CRITICAL)
        for i in range(10)
    }
    result = compute_node_score(node, neighbors, trust_score=0)
    assert result.risk_score == 100
    assert result.risk_level == RiskLevel.CRITICAL
    assert {"new_account", "multiple_reports", "multiple_blocks",
            "high_risk_neighbor", "high_risk_score", FLAG_SHARED_DEVICE_3PLUS} <= result.flags


def test_propagation_is_single_hop_and_strong_edges_only():
    node = RiskNode(
        user_id="u",
        connections={
            "hot": _conn("hot", strength=0.0),
            "chatty": _conn("chatty", ConnectionType.CHAT, weight=0.3, strength=0.0),
        },
    )
    neighbors = {
        "hot": RiskNode(user_id="hot", risk_score=80, risk_level=RiskLevel.CRITICAL),
        "chatty": RiskNode(user_id="chatty", risk_score=90, risk_level=RiskLevel.CRITICAL),
    }
    result = compute_node_score(node, neighbors, trust_score=500)
    assert result.breakdown["propagation"] == pytest.approx(14.4)
    assert result.high_risk_neighbors == ["hot"]


@pytest.mark.anyio
async def test_scenario_b_pair_is_suspicious(link, scorer):
    await link("u-a", "u-b", value="fp-1")
    result = await scorer.analyze("u-a")
    assert [s.user_id for s in result.suspicious_connections] == ["u-b"]
    assert result.risk_node.cluster_id is None
    assert result.degraded is False


@pytest.mark.anyio
async def test_scenario_c_shared_device_requires_review(link, scorer):
    for other in ("y1", "y2", "y3"):
        await link("x", other, value="fp-1")

    result = await scorer.analyze("x")
    assert FLAG_SHARED_DEVICE_3PLUS in result.risk_node.flags
    assert result.requires_review is True
    assert not result.risk_node.risk_level.at_least(RiskLevel.HIGH)


@pytest.mark.anyio
async def test_trust_outage_degrades_instead_of_failing(link, scorer, trust_provider):
    await link("u1", "u2", ConnectionType.CHAT)
    trust_provider.down = True

    result = await scorer.analyze("u1")
    assert result.degraded is True
    assert 0 <= result.risk_node.risk_score <= 100
    assert any("neutral" in r for r in result.recommendations)


@pytest.mark.anyio
async def test_trust_score_is_cached_on_node(link, scorer, trust_provider, node_store):
    await link("u1", "u2", ConnectionType.CHAT)
    trust_provider.scores["u1"] = 900
    await scorer.analyze("u1")
    assert (await node_store.require("u1")).trust_score == 900


@pytest.mark.anyio
async def test_unknown_user_not_found(scorer):
    with pytest.raises(NodeNotFoundError):
        await scorer.analyze("nobody")


@pytest.mark.anyio
async def test_rescore_dirty_drains_queue(link, scorer, node_store):
    await link("u1", "u2", ConnectionType.REPORT)
    await link("u2", "u3", ConnectionType.REPORT)

    assert await scorer.rescore_dirty() == 3
    assert await node_store.dirty_count() == 0
    assert (await node_store.require("u2")).last_analyzed is not None


@pytest.mark.anyio
async def test_failed_rescore_stays_dirty(link, scorer, node_store, monkeypatch):
    await link("u1", "u2", ConnectionType.CHAT)
    real_score_node = scorer.score_node
    failures = {"u1"}

    async def flaky_score_node(user_id):
        if user_id in failures:
            failures.discard(user_id)
            raise WriteConflictError(f"Gave up writing nodes ['{user_id}']")
        return await real_score_node(user_id)

    monkeypatch.setattr(scorer, "score_node", flaky_score_node)

    assert await scorer.rescore_dirty() == 1
    assert await node_store.pop_dirty(10) == ["u1"]
    assert (await node_store.require("u1")).last_analyzed is None

    await node_store.mark_dirty("u1")
    assert await scorer.rescore_dirty() == 1
    assert await node_store.dirty_count() == 0
    assert (await node_store.require("u1")).last_analyzed is not None
