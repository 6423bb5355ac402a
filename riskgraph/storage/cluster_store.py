"""
Cluster store – registry of discovered RiskCluster records.

A detection run is committed in one MULTI/EXEC: every cluster record plus the
cluster_id back-reference of every affected node.  No run is ever partially
visible.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from riskgraph.config import settings
from riskgraph.errors import ClusterNotFoundError, WriteConflictError
from riskgraph.models.cluster import ActionType, ClusterAction, ClusterStatus, RiskCluster
from riskgraph.models.risk_node import RiskNode, utcnow
from riskgraph.storage.redis_client import KeySpace, backoff

logger = logging.getLogger(__name__)

ClusterMutator = Callable[[RiskCluster], None]
ClusterMerge = Callable[[Optional[RiskCluster], RiskCluster], RiskCluster]
# queue extra commands into the same transaction (pipe, cluster)
CommitHook = Callable[[object, RiskCluster], None]


class ClusterStore:
    """Arena of RiskCluster records keyed by cluster_id."""

    def __init__(self, redis_client: aioredis.Redis, keys: KeySpace | None = None) -> None:
        self.redis = redis_client
        self.keys = keys or KeySpace()

    # ── reads ────────────────────────────────────────────────

    async def get(self, cluster_id: str) -> Optional[RiskCluster]:
        raw = await self.redis.get(self.keys.cluster(cluster_id))
        return RiskCluster.model_validate_json(raw) if raw else None

    async def require(self, cluster_id: str) -> RiskCluster:
        cluster = await self.get(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(cluster_id)
        return cluster

    async def get_many(self, cluster_ids: List[str]) -> Dict[str, RiskCluster]:
        if not cluster_ids:
            return {}
        raws = await self.redis.mget([self.keys.cluster(cid) for cid in cluster_ids])
        return {
            cid: RiskCluster.model_validate_json(raw)
            for cid, raw in zip(cluster_ids, raws)
            if raw
        }

    async def list(self, status: Optional[ClusterStatus] = None) -> List[RiskCluster]:
        ids = sorted(await self.redis.smembers(self.keys.clusters))
        clusters = list((await self.get_many(ids)).values())
        if status is not None:
            clusters = [c for c in clusters if c.status == status]
        return sorted(clusters, key=lambda c: (-c.confidence, c.cluster_id))

    # ── single-cluster mutation (admin actions) ──────────────

    async def mutate(
        self,
        cluster_id: str,
        mutator: ClusterMutator,
        on_commit: Optional[CommitHook] = None,
    ) -> RiskCluster:
        key = self.keys.cluster(cluster_id)
        for attempt in range(settings.WRITE_MAX_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        raise ClusterNotFoundError(cluster_id)
                    cluster = RiskCluster.model_validate_json(raw)
                    mutator(cluster)

                    pipe.multi()
                    pipe.set(key, cluster.model_dump_json())
                    if on_commit is not None:
                        on_commit(pipe, cluster)
                    await pipe.execute()
                    return cluster
                except WatchError:
                    logger.debug("Cluster write conflict on %s (attempt %d)", cluster_id, attempt + 1)
                    await backoff(attempt)

        raise WriteConflictError(f"Gave up writing cluster {cluster_id}")

    # ── batch commit (detector only) ─────────────────────────

    async def commit_run(
        self,
        drafts: List[RiskCluster],
        assignments: Dict[str, Optional[str]],
        merge: ClusterMerge,
        retired: Optional[Mapping[str, str]] = None,
    ) -> List[RiskCluster]:
        """
        Atomically upsert ``drafts`` and rewrite node cluster_id back-references.

        ``assignments`` maps user_id → new cluster_id (None clears membership).
        ``merge(existing, draft)`` decides the stored record for each draft.
        ``retired`` maps cluster_id → reason for live clusters the run no
        longer supports; they are resolved with a system ``dismissed`` action.
        """
        retired = dict(retired or {})
        if not drafts and not assignments and not retired:
            return []

        cluster_keys = [self.keys.cluster(c.cluster_id) for c in drafts]
        retired_ids = sorted(retired)
        retired_keys = [self.keys.cluster(cid) for cid in retired_ids]
        user_ids = sorted(assignments)
        node_keys = [self.keys.node(uid) for uid in user_ids]

        for attempt in range(settings.WRITE_MAX_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(*cluster_keys, *retired_keys, *node_keys)

                    existing_raw = await pipe.mget(cluster_keys) if cluster_keys else []
                    stored: List[RiskCluster] = []
                    for draft, raw in zip(drafts, existing_raw):
                        existing = RiskCluster.model_validate_json(raw) if raw else None
                        stored.append(merge(existing, draft))

                    retiring: List[RiskCluster] = []
                    retired_raw = await pipe.mget(retired_keys) if retired_keys else []
                    for cid, raw in zip(retired_ids, retired_raw):
                        if not raw:
                            continue
                        cluster = RiskCluster.model_validate_json(raw)
                        if cluster.status == ClusterStatus.RESOLVED:
                            continue
                        now = utcnow()
                        cluster.status = ClusterStatus.RESOLVED
                        cluster.actions.append(ClusterAction(
                            action=ActionType.DISMISSED, timestamp=now, reason=retired[cid],
                        ))
                        cluster.updated_at = now
                        retiring.append(cluster)

                    node_raw = await pipe.mget(node_keys) if node_keys else []
                    nodes: List[RiskNode] = []
                    for uid, raw in zip(user_ids, node_raw):
                        if not raw:
                            logger.warning("Node %s vanished before commit – skipping membership", uid)
                            continue
                        node = RiskNode.model_validate_json(raw)
                        if node.cluster_id != assignments[uid]:
                            node.cluster_id = assignments[uid]
                            nodes.append(node)

                    pipe.multi()
                    for cluster in stored + retiring:
                        pipe.set(self.keys.cluster(cluster.cluster_id), cluster.model_dump_json())
                    if stored:
                        pipe.sadd(self.keys.clusters, *[c.cluster_id for c in stored])
                    for node in nodes:
                        pipe.set(self.keys.node(node.user_id), node.model_dump_json())
                    await pipe.execute()

                    logger.info(
                        "Committed %d clusters, %d retired, %d membership changes",
                        len(stored), len(retiring), len(nodes),
                    )
                    return stored
                except WatchError:
                    logger.debug("Detection commit conflict (attempt %d)", attempt + 1)
                    await backoff(attempt)

        raise WriteConflictError("Gave up committing detection run")

    # ── retention ────────────────────────────────────────────

    async def purge_resolved(self, older_than: datetime) -> List[str]:
        """Delete RESOLVED clusters last updated before ``older_than``."""
        purged: List[str] = []
        for cluster in await self.list(ClusterStatus.RESOLVED):
            if cluster.updated_at >= older_than:
                continue
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self.keys.cluster(cluster.cluster_id))
                pipe.srem(self.keys.clusters, cluster.cluster_id)
                await pipe.execute()
            purged.append(cluster.cluster_id)
        if purged:
            logger.info("Purged %d resolved clusters older than %s", len(purged), older_than)
        return purged
