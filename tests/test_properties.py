"""
Property-based tests for the scoring, confidence and union-find invariants.

- a node's risk score stays inside [0, 100] and agrees with its level for
  any metadata, connection set, neighbour state and trust value
- cluster confidence stays inside [0, 1] for any evidence and size
- the union-find partition depends only on the edge set, never its order

Uses Hypothesis for property-based testing with random inputs.
"""

from hypothesis import given, settings, strategies as st

from riskgraph.core.risk_scorer import compute_node_score
from riskgraph.core.union_find import connected_components
from riskgraph.detection.evidence import compute_confidence
from riskgraph.models.cluster import ClusterEvidence
from riskgraph.models.risk_node import (
    Connection,
    ConnectionType,
    NodeMetadata,
    RiskLevel,
    RiskNode,
    level_for_score,
    weight_for,
)

USER_IDS = [f"n{i:02d}" for i in range(12)]

metadata_strategy = st.builds(
    NodeMetadata,
    account_age_days=st.none() | st.integers(min_value=0, max_value=3650),
    report_count=st.integers(min_value=0, max_value=1000),
    block_count=st.integers(min_value=0, max_value=1000),
)

# neighbour id → (connection type, observed types, strength, neighbour score, neighbour level)
connection_specs = st.dictionaries(
    keys=st.sampled_from(USER_IDS),
    values=st.tuples(
        st.sampled_from(list(ConnectionType)),
        st.sets(st.sampled_from(list(ConnectionType))),
        st.floats(min_value=0.0, max_value=1.0),
        st.integers(min_value=0, max_value=100),
        st.sampled_from(list(RiskLevel)),
    ),
    max_size=len(USER_IDS),
)

trust_values = st.integers(min_value=-500, max_value=2000)

evidence_strategy = st.builds(
    ClusterEvidence,
    shared_device_count=st.integers(min_value=0, max_value=10_000),
    shared_ip_count=st.integers(min_value=0, max_value=10_000),
    behavioral_similarity=st.floats(min_value=0.0, max_value=1.0),
    temporal_correlation=st.floats(min_value=0.0, max_value=1.0),
    transaction_pattern_tags=st.lists(
        st.sampled_from(["chargeback", "circular_flow", "refund_abuse", "wash", "mule"]),
        unique=True,
    ),
)

edge_lists = st.lists(
    st.tuples(st.sampled_from(USER_IDS), st.sampled_from(USER_IDS)).filter(lambda e: e[0] != e[1]),
    max_size=40,
)


def _graph(metadata, specs):
    node = RiskNode(user_id="subject", metadata=metadata)
    neighbors = {}
    for uid, (conn_type, observed, strength, score, level) in specs.items():
        node.connections[uid] = Connection(
            target_user_id=uid,
            type=conn_type,
            weight=weight_for(conn_type),
            strength=strength,
            observed_types=observed | {conn_type},
        )
        neighbors[uid] = RiskNode(user_id=uid, risk_score=score, risk_level=level)
    return node, neighbors


class TestNodeScoreInvariants:
    """Property tests for the local risk score."""

    @given(metadata=metadata_strategy, specs=connection_specs, trust=trust_values)
    @settings(max_examples=200)
    def test_score_stays_in_range(self, metadata, specs, trust):
        node, neighbors = _graph(metadata, specs)

        result = compute_node_score(node, neighbors, trust)

        assert 0 <= result.risk_score <= 100
        assert result.risk_level == level_for_score(result.risk_score)
        assert set(result.high_risk_neighbors) <= set(specs)

    @given(metadata=metadata_strategy, specs=connection_specs, trust=trust_values)
    @settings(max_examples=100)
    def test_lower_trust_never_lowers_risk(self, metadata, specs, trust):
        node, neighbors = _graph(metadata, specs)

        higher = compute_node_score(node, neighbors, trust)
        lower = compute_node_score(node, neighbors, trust - 100)

        assert lower.risk_score >= higher.risk_score

    @given(specs=connection_specs, trust=trust_values, extra_reports=st.integers(min_value=1, max_value=50))
    @settings(max_examples=100)
    def test_more_reports_never_lower_risk(self, specs, trust, extra_reports):
        node, neighbors = _graph(NodeMetadata(report_count=1), specs)
        before = compute_node_score(node, neighbors, trust).risk_score

        node.metadata.report_count += extra_reports

        assert compute_node_score(node, neighbors, trust).risk_score >= before


class TestConfidenceInvariants:
    """Property tests for cluster confidence."""

    @given(evidence=evidence_strategy, member_count=st.integers(min_value=3, max_value=100_000))
    @settings(max_examples=200)
    def test_confidence_stays_in_unit_interval(self, evidence, member_count):
        confidence = compute_confidence(evidence, member_count)
        assert 0.0 <= confidence <= 1.0

    @given(evidence=evidence_strategy, member_count=st.integers(min_value=3, max_value=1000))
    @settings(max_examples=100)
    def test_larger_cluster_is_never_less_confident(self, evidence, member_count):
        assert compute_confidence(evidence, member_count + 1) >= compute_confidence(evidence, member_count)


class TestUnionFindInvariants:
    """Property tests for the deterministic partition."""

    @given(edges=edge_lists, data=st.data())
    @settings(max_examples=200)
    def test_partition_ignores_edge_order(self, edges, data):
        shuffled = data.draw(st.permutations(edges))
        flipped = [(b, a) if data.draw(st.booleans()) else (a, b) for a, b in shuffled]

        assert connected_components(flipped) == connected_components(edges)

    @given(edges=edge_lists)
    @settings(max_examples=100)
    def test_partition_is_rooted_at_lowest_member(self, edges):
        components = connected_components(edges)

        seen = set()
        for root, members in components.items():
            assert root == min(members)
            assert members == sorted(members)
            assert not seen & set(members)
            seen.update(members)
        assert seen == {u for edge in edges for u in edge}
