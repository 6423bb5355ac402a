"""
Local (1-hop) risk scorer.

Score formula (each component capped, total clamped to [0, 100]):
    R = metadata   (new account, reports, blocks)
      + direct     (Σ connection strength)
      + multi      (device/IP shared with ≥3 accounts)
      + propagate  (strong edges to HIGH/CRITICAL neighbours, one hop only)
      + trust      (inverse of trust score, ±TRUST_ADJUSTMENT_MAX)

The trust-score provider may be down: the scorer then uses the neutral
midpoint and marks the analysis degraded instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from riskgraph.config import settings
from riskgraph.errors import DependencyDegradedError, NotFoundError
from riskgraph.models.analysis import GraphAnalysisResult, SuspiciousConnection
from riskgraph.models.risk_node import (
    FLAG_SHARED_DEVICE_3PLUS,
    FLAG_SHARED_IP_3PLUS,
    RiskLevel,
    RiskNode,
    level_for_score,
    utcnow,
)
from riskgraph.signals.providers import TrustScoreProvider
from riskgraph.storage.node_store import RiskNodeStore

logger = logging.getLogger(__name__)

MULTI_ACCOUNT_FLAGS = frozenset({FLAG_SHARED_DEVICE_3PLUS, FLAG_SHARED_IP_3PLUS})


@dataclass
class NodeScore:
    risk_score: int
    risk_level: RiskLevel
    flags: Set[str]
    breakdown: Dict[str, float] = field(default_factory=dict)
    high_risk_neighbors: List[str] = field(default_factory=list)


def _is_high(node: Optional[RiskNode]) -> bool:
    return node is not None and node.risk_level.at_least(RiskLevel.HIGH)


def compute_node_score(node: RiskNode, neighbors: Dict[str, RiskNode], trust_score: int) -> NodeScore:
    """Pure scoring of one node from its own connections and 1-hop neighbours."""
    meta = node.metadata

    # 1. Metadata
    metadata_pts = 0.0
    if meta.account_age_days is not None and meta.account_age_days < settings.NEW_ACCOUNT_DAYS:
        metadata_pts += settings.NEW_ACCOUNT_PENALTY
    metadata_pts += min(settings.REPORT_PENALTY_CAP, meta.report_count * settings.REPORT_PENALTY_PER)
    metadata_pts += min(settings.BLOCK_PENALTY_CAP, meta.block_count * settings.BLOCK_PENALTY_PER)

    # 2. Direct connections
    total_strength = sum(c.strength for c in node.connections.values())
    direct_pts = min(settings.CONNECTION_CAP, total_strength * settings.CONNECTION_POINTS)

    # 3. Immediate multi-account signal
    shared_flags = node.shared_signal_flags(settings.MULTI_ACCOUNT_SHARE_COUNT)
    multi_pts = settings.MULTI_ACCOUNT_PENALTY if shared_flags else 0.0

    # 4. Single-hop propagation
    propagation_pts = 0.0
    high_neighbors: List[str] = []
    for neighbor_id, conn in sorted(node.connections.items()):
        if conn.weight < settings.PROPAGATION_THRESHOLD:
            continue
        neighbor = neighbors.get(neighbor_id)
        if not _is_high(neighbor):
            continue
        high_neighbors.append(neighbor_id)
        propagation_pts += settings.PROPAGATION_POINTS * conn.weight * (neighbor.risk_score / 100.0)
    propagation_pts = min(settings.PROPAGATION_CAP, propagation_pts)

    # 5. Trust adjustment – lower trust raises risk
    trust = max(0, min(trust_score, settings.TRUST_MAX))
    trust_pts = settings.TRUST_ADJUSTMENT_MAX * (settings.TRUST_NEUTRAL - trust) / settings.TRUST_NEUTRAL
    trust_pts = max(-settings.TRUST_ADJUSTMENT_MAX, min(settings.TRUST_ADJUSTMENT_MAX, trust_pts))

    raw = metadata_pts + direct_pts + multi_pts + propagation_pts + trust_pts
    score = int(round(max(0.0, min(100.0, raw))))
    level = level_for_score(score)

    flags: Set[str] = set(shared_flags)
    if meta.account_age_days is not None and meta.account_age_days < settings.NEW_ACCOUNT_DAYS:
        flags.add("new_account")
    if meta.report_count > settings.MULTIPLE_REPORTS_THRESHOLD:
        flags.add("multiple_reports")
    if meta.block_count > settings.MULTIPLE_BLOCKS_THRESHOLD:
        flags.add("multiple_blocks")
    if high_neighbors:
        flags.add("high_risk_neighbor")
    if level.at_least(RiskLevel.HIGH):
        flags.add("high_risk_score")

    return NodeScore(
        risk_score=score,
        risk_level=level,
        flags=flags,
        breakdown={
            "metadata": round(metadata_pts, 2),
            "connections": round(direct_pts, 2),
            "multi_account": round(multi_pts, 2),
            "propagation": round(propagation_pts, 2),
            "trust": round(trust_pts, 2),
        },
        high_risk_neighbors=high_neighbors,
    )


def suspicious_connections(node: RiskNode, neighbors: Dict[str, RiskNode]) -> List[SuspiciousConnection]:
    out: List[SuspiciousConnection] = []
    for neighbor_id, conn in node.connections.items():
        neighbor_high = _is_high(neighbors.get(neighbor_id))
        if conn.weight < settings.PROPAGATION_THRESHOLD and not neighbor_high:
            continue
        reasons = sorted(conn.flags) or [conn.type.value.lower()]
        if neighbor_high:
            reasons.append("high-risk neighbour")
        out.append(SuspiciousConnection(
            user_id=neighbor_id,
            type=conn.type,
            reason=", ".join(reasons),
            risk_score=conn.risk_score,
        ))
    return sorted(out, key=lambda s: (-s.risk_score, s.user_id))


def _recommendations(node: RiskNode, suspicious: List[SuspiciousConnection], degraded: bool) -> List[str]:
    recs: List[str] = []
    if node.risk_level.at_least(RiskLevel.HIGH):
        recs.append("Account requires immediate review")
    if node.flags & MULTI_ACCOUNT_FLAGS:
        recs.append("Investigate for multi-account fraud")
    if "multiple_reports" in node.flags:
        recs.append("Review user reports and complaints")
    if len(suspicious) > 3:
        recs.append("Review all high-risk connections")
    if node.cluster_id:
        recs.append(f"Member of risk cluster {node.cluster_id}")
    if degraded:
        recs.append("Trust score unavailable – scored with neutral default")
    return recs


class LocalRiskScorer:
    """Real-time single-user scoring; safe to run concurrently per user."""

    def __init__(self, store: RiskNodeStore, trust_provider: TrustScoreProvider) -> None:
        self.store = store
        self.trust_provider = trust_provider

    async def _fetch_trust(self, user_id: str) -> Tuple[int, Optional[int], bool]:
        """Return (effective trust, fetched value or None, degraded)."""
        try:
            trust = await self.trust_provider.get_trust_score(user_id)
        except DependencyDegradedError as exc:
            logger.warning("Trust score degraded for %s: %s", user_id, exc)
            return settings.TRUST_NEUTRAL, None, True
        if trust is None:
            return settings.TRUST_NEUTRAL, None, False
        return trust.score, trust.score, False

    async def score_node(self, user_id: str) -> Tuple[RiskNode, Dict[str, RiskNode], bool]:
        """Recompute and persist one node; returns (node, neighbours, degraded)."""
        current = await self.store.require(user_id)
        neighbors = await self.store.get_many(current.connections.keys())
        effective, fetched, degraded = await self._fetch_trust(user_id)

        def _apply(nodes: Dict[str, RiskNode]) -> None:
            node = nodes[user_id]
            result = compute_node_score(node, neighbors, effective)
            node.risk_score = result.risk_score
            node.risk_level = result.risk_level
            node.flags = result.flags
            if fetched is not None:
                node.trust_score = fetched
            node.last_analyzed = utcnow()

        nodes = await self.store.mutate([user_id], _apply)
        return nodes[user_id], neighbors, degraded

    async def analyze(self, user_id: str) -> GraphAnalysisResult:
        node, neighbors, degraded = await self.score_node(user_id)
        suspicious = suspicious_connections(node, neighbors)
        requires_review = (
            node.risk_level.at_least(RiskLevel.HIGH)
            or bool(node.flags & MULTI_ACCOUNT_FLAGS)
        )
        return GraphAnalysisResult(
            user_id=user_id,
            risk_node=node,
            suspicious_connections=suspicious,
            recommendations=_recommendations(node, suspicious, degraded),
            requires_review=requires_review,
            degraded=degraded,
        )

    # ── batch helpers ────────────────────────────────────────

    async def _score_many(
        self, user_ids: List[str], concurrency: int = 16
    ) -> Tuple[int, List[str]]:
        """Score concurrently; returns (scored, ids worth retrying)."""
        sem = asyncio.Semaphore(concurrency)
        scored = 0
        failed: List[str] = []

        async def _one(uid: str) -> None:
            nonlocal scored
            async with sem:
                try:
                    await self.score_node(uid)
                    scored += 1
                except NotFoundError:
                    logger.warning("Re-score of %s skipped: node no longer exists", uid)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Re-score of %s failed: %s", uid, exc)
                    failed.append(uid)

        await asyncio.gather(*(_one(uid) for uid in user_ids))
        return scored, sorted(failed)

    async def rescore_dirty(self, batch_size: int = 200) -> int:
        """Drain the dirty set, re-scoring every pending node."""
        total = 0
        retry: List[str] = []
        while True:
            pending = await self.store.pop_dirty(batch_size)
            if not pending:
                break
            scored, failed = await self._score_many(pending)
            total += scored
            retry.extend(failed)
        # re-queue after the drain: a failing id is not popped twice per pass
        if retry:
            await self.store.mark_dirty(*retry)
            logger.warning("%d nodes left dirty for the next re-score pass", len(retry))
        return total

    async def rescore_all(self) -> int:
        """Wholesale recompute of every node (nightly batch)."""
        ids = await self.store.all_user_ids()
        scored, failed = await self._score_many(ids)
        if failed:
            await self.store.mark_dirty(*failed)
        logger.info("Re-scored %d/%d risk nodes", scored, len(ids))
        return scored
