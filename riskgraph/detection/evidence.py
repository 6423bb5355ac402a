"""
Cluster evidence, confidence scoring and fraud-pattern classification.

Confidence formula (each component clamped to [0, 1], weights sum to 1):
    C = 0.30 × min(1, shared_devices / 2)
      + 0.15 × min(1, shared_ips / 3)
      + 0.20 × behavioral_similarity
      + 0.15 × temporal_correlation
      + 0.10 × min(1, transaction_tags / 2)
      + 0.10 × min(1, (members − 2) / 8)

Pattern classification is a deterministic decision table; the first
matching row wins (see classify_pattern).
"""

from __future__ import annotations

import itertools
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Mapping, Sequence

import numpy as np

from riskgraph.config import settings
from riskgraph.models.cluster import ClusterEvidence, FraudPattern
from riskgraph.models.risk_node import ConnectionType, RiskNode, STRUCTURAL_TYPES
from riskgraph.signals.providers import CIRCULAR_FLOW_TAGS, PAYMENT_FRAUD_TAGS

_TOKEN_RE = re.compile(r"[^0-9A-Za-z]+")


def _clamp01(value: float) -> float:
    return float(max(0.0, min(1.0, value)))


# ── evidence components ──────────────────────────────────────

def count_shared(values_per_member: Sequence[set]) -> int:
    """Distinct values held by at least two members."""
    counts: Counter = Counter()
    for values in values_per_member:
        counts.update(set(values))
    return sum(1 for n in counts.values() if n >= 2)


def signature_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    ta = {t for t in _TOKEN_RE.split(a.lower()) if t}
    tb = {t for t in _TOKEN_RE.split(b.lower()) if t}
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def behavioral_similarity(signatures: Sequence[str]) -> float:
    """Mean pairwise similarity of the non-empty signatures."""
    sigs = [s for s in signatures if s]
    if len(sigs) < 2:
        return 0.0
    scores = [signature_similarity(a, b) for a, b in itertools.combinations(sigs, 2)]
    return _clamp01(float(np.mean(scores)))


def temporal_correlation(account_ages: Sequence[int]) -> float:
    """1 when all accounts were created together, 0 past the window."""
    if len(account_ages) < 2:
        return 0.0
    spread = float(np.ptp(np.asarray(account_ages, dtype=float)))
    return _clamp01(1.0 - spread / settings.TEMPORAL_WINDOW_DAYS)


def gather_evidence(
    members: Sequence[str],
    nodes: Mapping[str, RiskNode],
    tags: Mapping[str, List[str]],
) -> ClusterEvidence:
    present = [nodes[m] for m in members if m in nodes]
    ages = [n.metadata.account_age_days for n in present if n.metadata.account_age_days is not None]
    member_tags = sorted({t for m in members for t in tags.get(m, [])})
    return ClusterEvidence(
        shared_device_count=count_shared([n.metadata.device_fingerprints for n in present]),
        shared_ip_count=count_shared([n.metadata.ip_addresses for n in present]),
        behavioral_similarity=round(behavioral_similarity([n.metadata.behavioral_signature for n in present]), 4),
        temporal_correlation=round(temporal_correlation(ages), 4),
        transaction_pattern_tags=member_tags,
    )


def compute_confidence(evidence: ClusterEvidence, member_count: int) -> float:
    components = (
        (settings.CONF_WEIGHT_DEVICES, evidence.shared_device_count / settings.CONF_DEVICE_SATURATION),
        (settings.CONF_WEIGHT_IPS, evidence.shared_ip_count / settings.CONF_IP_SATURATION),
        (settings.CONF_WEIGHT_BEHAVIOR, evidence.behavioral_similarity),
        (settings.CONF_WEIGHT_TEMPORAL, evidence.temporal_correlation),
        (settings.CONF_WEIGHT_TRANSACTIONS, len(evidence.transaction_pattern_tags) / settings.CONF_TAG_SATURATION),
        (settings.CONF_WEIGHT_SIZE, (member_count - 2) / settings.CONF_SIZE_SATURATION),
    )
    total_weight = sum(w for w, _ in components)
    confidence = sum(w * _clamp01(v) for w, v in components) / total_weight
    return round(_clamp01(confidence), 4)


# ── classification ───────────────────────────────────────────

@dataclass
class ClusterProfile:
    """Shape of a component, as consumed by the decision table."""
    member_count: int
    distinct_signatures: int
    observation_counts: Counter = field(default_factory=Counter)
    mean_trust: float | None = None
    mean_reports_blocks: float = 0.0

    @property
    def total_observations(self) -> int:
        return sum(self.observation_counts.values())

    def share(self, *types: ConnectionType) -> float:
        total = self.total_observations
        if total == 0:
            return 0.0
        return sum(self.observation_counts[t] for t in types) / total


def build_profile(members: Sequence[str], nodes: Mapping[str, RiskNode]) -> ClusterProfile:
    member_set = set(members)
    present = [nodes[m] for m in members if m in nodes]
    observations: Counter = Counter()
    for node in present:
        for neighbor_id, conn in node.connections.items():
            if neighbor_id in member_set:
                observations.update(conn.observed_types or {conn.type})

    trusts = [n.trust_score for n in present if n.trust_score is not None]
    return ClusterProfile(
        member_count=len(members),
        distinct_signatures=len({n.metadata.behavioral_signature for n in present if n.metadata.behavioral_signature}),
        observation_counts=observations,
        mean_trust=float(np.mean(trusts)) if trusts else None,
        mean_reports_blocks=float(np.mean(
            [n.metadata.report_count + n.metadata.block_count for n in present]
        )) if present else 0.0,
    )


def classify_pattern(profile: ClusterProfile, evidence: ClusterEvidence) -> FraudPattern:
    tags = set(evidence.transaction_pattern_tags)
    structural_share = profile.share(*STRUCTURAL_TYPES)

    # 1. one person, many accounts
    if structural_share >= settings.DEVICE_DOMINANCE_RATIO and profile.distinct_signatures <= 1:
        return FraudPattern.MULTI_ACCOUNT

    # 2. automated accounts
    if (
        profile.member_count >= settings.BOT_MIN_MEMBERS
        and profile.mean_trust is not None
        and profile.mean_trust < settings.BOT_TRUST_CEILING
        and evidence.temporal_correlation >= settings.BOT_TEMPORAL_MIN
        and profile.distinct_signatures / profile.member_count <= settings.BOT_SIGNATURE_DIVERSITY_MAX
    ):
        return FraudPattern.BOT_NETWORK

    # 3/4. value-flow tags
    if tags & CIRCULAR_FLOW_TAGS:
        return FraudPattern.WASH_TRADING
    if tags & PAYMENT_FRAUD_TAGS:
        return FraudPattern.PAYMENT_FRAUD

    # 5. report / block dominated
    report_dominated = (
        profile.mean_reports_blocks >= settings.REPORT_COUNT_HIGH
        or profile.share(ConnectionType.REPORT, ConnectionType.BLOCK) >= settings.REPORT_DOMINANCE_RATIO
    )
    if report_dominated:
        if profile.observation_counts[ConnectionType.TRANSACTION] or profile.observation_counts[ConnectionType.CHAT]:
            return FraudPattern.SCAM_RING
        return FraudPattern.FAKE_REVIEWS

    return FraudPattern.COORDINATED_SPAM


def centroid_of(members: Sequence[str], nodes: Mapping[str, RiskNode]) -> str:
    """Highest individual risk score; ties go to the lowest user id."""
    return min(members, key=lambda m: (-(nodes[m].risk_score if m in nodes else 0), m))


def mean_risk(members: Sequence[str], nodes: Mapping[str, RiskNode]) -> float:
    scores = [nodes[m].risk_score for m in members if m in nodes]
    return float(np.mean(scores)) if scores else 0.0

