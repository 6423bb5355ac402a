"""
Admin action gateway – the moderation portal's entry point.

Every cluster status change made by a human goes through here and leaves an
entry in the cluster's append-only action log.  Blocking a cluster also puts
a sanction signal on the Redis stream, in the same transaction as the status
change.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from riskgraph.core.risk_scorer import LocalRiskScorer
from riskgraph.detection.cluster_detector import ClusterDetector
from riskgraph.errors import InvalidTransitionError
from riskgraph.models.analysis import BlockResult, ClusterMembers, DetectionRun, GraphAnalysisResult
from riskgraph.models.cluster import (
    ActionType,
    ClusterAction,
    ClusterStatus,
    RiskCluster,
    can_transition,
)
from riskgraph.models.risk_node import utcnow
from riskgraph.storage.cluster_store import ClusterStore
from riskgraph.storage.node_store import RiskNodeStore
from riskgraph.storage.redis_client import sanction_payload

logger = logging.getLogger(__name__)


class AdminActionGateway:
    def __init__(
        self,
        node_store: RiskNodeStore,
        cluster_store: ClusterStore,
        scorer: LocalRiskScorer,
        detector: ClusterDetector,
    ) -> None:
        self.nodes = node_store
        self.clusters = cluster_store
        self.scorer = scorer
        self.detector = detector

    # ── reads ────────────────────────────────────────────────

    async def get_cluster_members(self, cluster_id: str) -> ClusterMembers:
        cluster = await self.clusters.require(cluster_id)
        found = await self.nodes.get_many(cluster.members)
        missing = [m for m in cluster.members if m not in found]
        if missing:
            logger.warning("Cluster %s references %d missing nodes", cluster_id, len(missing))
        return ClusterMembers(
            cluster=cluster,
            members=[found[m] for m in cluster.members if m in found],
            missing_members=missing,
        )

    async def list_clusters(self, status: Optional[ClusterStatus] = None) -> List[RiskCluster]:
        return await self.clusters.list(status)

    async def analyze_user(self, user_id: str) -> GraphAnalysisResult:
        return await self.scorer.analyze(user_id)

    # ── decisions ────────────────────────────────────────────

    async def block_cluster(self, cluster_id: str, reason: str, admin_id: str) -> BlockResult:
        """
        Append a ``blocked`` action, resolve the cluster and signal that every
        member should be sanctioned.  Repeat calls append another action and
        re-emit the signal; the terminal status is left as is.
        """
        def _block(cluster: RiskCluster) -> None:
            now = utcnow()
            cluster.actions.append(ClusterAction(
                action=ActionType.BLOCKED, timestamp=now, reason=reason, admin_id=admin_id,
            ))
            if cluster.status != ClusterStatus.RESOLVED:
                cluster.status = ClusterStatus.RESOLVED
            cluster.updated_at = now

        def _signal(pipe, cluster: RiskCluster) -> None:
            pipe.xadd(self.clusters.keys.sanctions, sanction_payload({
                "cluster_id": cluster.cluster_id,
                "user_ids": cluster.members,
                "reason": reason,
                "admin_id": admin_id,
                "action": ActionType.BLOCKED.value,
            }))

        cluster = await self.clusters.mutate(cluster_id, _block, on_commit=_signal)
        logger.warning(
            "🚫 Cluster %s blocked by %s – %d accounts sanctioned (%s)",
            cluster_id, admin_id, cluster.member_count, reason,
        )
        return BlockResult(
            cluster_id=cluster_id,
            status=cluster.status,
            sanctioned=cluster.member_count,
            actions_recorded=len(cluster.actions),
        )

    async def _transition(
        self,
        cluster_id: str,
        target: ClusterStatus,
        action: ActionType,
        reason: str,
        admin_id: str,
    ) -> RiskCluster:
        def _apply(cluster: RiskCluster) -> None:
            if not can_transition(cluster.status, target):
                raise InvalidTransitionError(cluster_id, cluster.status.value, target.value)
            now = utcnow()
            cluster.status = target
            cluster.actions.append(ClusterAction(
                action=action, timestamp=now, reason=reason, admin_id=admin_id,
            ))
            cluster.updated_at = now

        cluster = await self.clusters.mutate(cluster_id, _apply)
        logger.info("Cluster %s → %s by %s", cluster_id, target.value, admin_id)
        return cluster

    async def confirm_cluster(self, cluster_id: str, reason: str, admin_id: str) -> RiskCluster:
        return await self._transition(
            cluster_id, ClusterStatus.CONFIRMED, ActionType.CONFIRMED, reason, admin_id
        )

    async def dismiss_cluster(self, cluster_id: str, reason: str, admin_id: str) -> RiskCluster:
        """False positive: straight to RESOLVED without a sanction."""
        return await self._transition(
            cluster_id, ClusterStatus.RESOLVED, ActionType.DISMISSED, reason, admin_id
        )

    # ── batch control ────────────────────────────────────────

    async def trigger_detection(self) -> DetectionRun:
        return await self.detector.detect()

    async def abort_detection(self) -> bool:
        return await self.detector.request_abort()
