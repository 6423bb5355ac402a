from collections import Counter

import pytest

from riskgraph.detection.evidence import (
    ClusterProfile,
    behavioral_similarity,
    classify_pattern,
    compute_confidence,
    count_shared,
    temporal_correlation,
)
from riskgraph.models.cluster import ClusterEvidence, FraudPattern
from riskgraph.models.risk_node import ConnectionType as CT


def test_count_shared_needs_two_holders():
    assert count_shared([{"fp1", "fp2"}, {"fp1"}, {"fp3"}]) == 1
    assert count_shared([{"fp1"}, {"fp2"}]) == 0


def test_behavioral_similarity():
    assert behavioral_similarity(["night swipe burst", "night swipe burst"]) == 1.0
    assert behavioral_similarity(["a b", "c d"]) == 0.0
    assert behavioral_similarity(["only-one", ""]) == 0.0


def test_temporal_correlation():
    assert temporal_correlation([3, 3, 3]) == 1.0
    assert temporal_correlation([0, 30]) == 0.0
    assert temporal_correlation([10, 25]) == pytest.approx(0.5)
    assert temporal_correlation([5]) == 0.0


def test_confidence_bounds():
    empty = compute_confidence(ClusterEvidence(), 3)
    full = compute_confidence(ClusterEvidence(
        shared_device_count=20,
        shared_ip_count=20,
        behavioral_similarity=1.0,
        temporal_correlation=1.0,
        transaction_pattern_tags=["chargeback", "circular_flow", "rapid_relay"],
    ), 500)
    assert empty == pytest.approx(0.0125)
    assert full == 1.0


def _profile(counts, members=3, signatures=3, trust=None, reports=0.0):
    return ClusterProfile(
        member_count=members,
        distinct_signatures=signatures,
        observation_counts=Counter(counts),
        mean_trust=trust,
        mean_reports_blocks=reports,
    )


@pytest.mark.parametrize("profile,tags,temporal,expected", [
    (_profile({CT.DEVICE_MATCH: 6}, signatures=1), [], 0.0, FraudPattern.MULTI_ACCOUNT),
    (_profile({CT.DEVICE_MATCH: 6}, signatures=1), ["circular_flow"], 0.0, FraudPattern.MULTI_ACCOUNT),
    (_profile({CT.CHAT: 10, CT.DEVICE_MATCH: 2}, members=6, signatures=2, trust=100), [], 0.9,
     FraudPattern.BOT_NETWORK),
    (_profile({CT.IP_MATCH: 2, CT.CHAT: 8}), ["circular_flow"], 0.0, FraudPattern.WASH_TRADING),
    (_profile({CT.IP_MATCH: 2, CT.CHAT: 8}), ["chargeback"], 0.0, FraudPattern.PAYMENT_FRAUD),
    (_profile({CT.REPORT: 5, CT.TRANSACTION: 2, CT.DEVICE_MATCH: 3}), [], 0.0, FraudPattern.SCAM_RING),
    (_profile({CT.REPORT: 6, CT.IP_MATCH: 4}), [], 0.0, FraudPattern.FAKE_REVIEWS),
    (_profile({CT.IP_MATCH: 4}, signatures=3, reports=5.0), [], 0.0, FraudPattern.FAKE_REVIEWS),
    (_profile({CT.CHAT: 5, CT.DEVICE_MATCH: 2}), [], 0.0, FraudPattern.COORDINATED_SPAM),
])
def test_decision_table(profile, tags, temporal, expected):
    evidence = ClusterEvidence(transaction_pattern_tags=tags, temporal_correlation=temporal)
    assert classify_pattern(profile, evidence) == expected
