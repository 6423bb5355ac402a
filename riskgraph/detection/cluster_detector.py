"""
Fraud cluster detection – graph-wide batch job.

Steps:
  1. Load every risk node and keep only strong structural edges
     (DEVICE_MATCH / IP_MATCH with weight ≥ CLUSTER_EDGE_MIN_WEIGHT)
  2. Union-find over those edges (lowest user id is the representative)
  3. Drop components smaller than MIN_CLUSTER_SIZE
  4. Evidence + confidence + pattern per component; a component keeps the
     id of the live cluster most of whose members it holds
  5. Commit all clusters, retirements and membership changes in one
     transaction

Only one run at a time (exclusive lease).  An operator abort discards the
run before anything is committed.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import Counter
from typing import Dict, List, Mapping, Optional, Set, Tuple

from riskgraph.config import settings
from riskgraph.core.union_find import connected_components
from riskgraph.detection import evidence as ev
from riskgraph.errors import BatchAbortedError, DataIntegrityError, DependencyDegradedError
from riskgraph.models.analysis import DetectionRun
from riskgraph.models.cluster import ClusterStatus, RiskCluster
from riskgraph.models.risk_node import STRUCTURAL_TYPES, RiskNode, level_for_score, utcnow
from riskgraph.signals.providers import FraudSignalProvider
from riskgraph.storage.cluster_store import ClusterStore
from riskgraph.storage.lease import BatchLease
from riskgraph.storage.node_store import RiskNodeStore

logger = logging.getLogger(__name__)

Edge = Tuple[str, str]


# ── pure helpers ─────────────────────────────────────────────

def build_edge_set(nodes: Mapping[str, RiskNode]) -> Tuple[Set[Edge], int, int]:
    """
    Undirected high-confidence edge set.

    Returns (edges, considered, excluded); edges whose neighbour has no node
    are excluded and logged instead of failing the run.
    """
    edges: Set[Edge] = set()
    considered = excluded = 0
    for user_id in sorted(nodes):
        for neighbor_id, conn in sorted(nodes[user_id].connections.items()):
            if conn.type not in STRUCTURAL_TYPES or conn.weight < settings.CLUSTER_EDGE_MIN_WEIGHT:
                continue
            considered += 1
            if neighbor_id not in nodes:
                excluded += 1
                logger.warning("%s – edge excluded from clustering", DataIntegrityError(user_id, neighbor_id))
                continue
            edges.add((user_id, neighbor_id) if user_id < neighbor_id else (neighbor_id, user_id))
    return edges, considered, excluded


def base_cluster_id(representative: str) -> str:
    return "rc_" + hashlib.sha1(representative.encode("utf-8")).hexdigest()[:16]


def choose_cluster_id(representative: str, existing: Mapping[str, RiskCluster]) -> str:
    """Fresh id for a component that continues no live cluster."""
    base = base_cluster_id(representative)
    candidate, generation = base, 1
    while candidate in existing:
        generation += 1
        candidate = f"{base}-{generation}"
    return candidate


def carry_over_ids(
    components: Mapping[str, List[str]],
    existing: Mapping[str, RiskCluster],
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Decide which live cluster each component continues.

    A live (non-RESOLVED) cluster follows the component holding most of its
    members; ties go to the larger component, then the lowest root.  When
    several live clusters follow one component the largest overlap keeps its
    id.  Returns (root → carried cluster_id, retired cluster_id → reason).
    """
    root_of = {m: root for root, members in components.items() for m in members}
    claims: Dict[str, List[Tuple[int, str]]] = {}
    retired: Dict[str, str] = {}

    for cluster_id, cluster in sorted(existing.items()):
        if cluster.status == ClusterStatus.RESOLVED:
            continue
        overlap = Counter(root_of[m] for m in cluster.members if m in root_of)
        if not overlap:
            retired[cluster_id] = "Superseded: no longer supported by the connection graph"
            continue
        root = min(overlap, key=lambda r: (-overlap[r], -len(components[r]), r))
        claims.setdefault(root, []).append((overlap[root], cluster_id))

    carried: Dict[str, str] = {}
    for root, candidates in claims.items():
        candidates.sort(key=lambda c: (-c[0], c[1]))
        carried[root] = candidates[0][1]
        for _, cluster_id in candidates[1:]:
            retired[cluster_id] = f"Superseded: merged into {carried[root]}"
    return carried, retired


def merge_cluster(existing: Optional[RiskCluster], draft: RiskCluster) -> RiskCluster:
    """Upsert rule: keep lifecycle + audit trail, refresh detection output."""
    if existing is None:
        merged = draft
    elif existing.status == ClusterStatus.RESOLVED:
        logger.warning("Cluster %s was resolved during the run – left untouched", existing.cluster_id)
        return existing
    else:
        merged = existing.model_copy(update={
            "pattern": draft.pattern,
            "risk_level": draft.risk_level,
            "members": draft.members,
            "centroid": draft.centroid,
            "confidence": draft.confidence,
            "evidence": draft.evidence,
            "updated_at": draft.updated_at,
        })
    if merged.status == ClusterStatus.ACTIVE and merged.confidence > settings.AUTO_INVESTIGATE_CONFIDENCE:
        merged.status = ClusterStatus.INVESTIGATING
        logger.info("Cluster %s auto-advanced to INVESTIGATING (confidence=%.2f)",
                    merged.cluster_id, merged.confidence)
    return merged


def build_cluster(
    cluster_id: str,
    members: List[str],
    nodes: Mapping[str, RiskNode],
    tags: Mapping[str, List[str]],
) -> RiskCluster:
    evidence = ev.gather_evidence(members, nodes, tags)
    profile = ev.build_profile(members, nodes)
    now = utcnow()
    return RiskCluster(
        cluster_id=cluster_id,
        pattern=ev.classify_pattern(profile, evidence),
        risk_level=level_for_score(ev.mean_risk(members, nodes)),
        members=members,
        centroid=ev.centroid_of(members, nodes),
        confidence=ev.compute_confidence(evidence, len(members)),
        evidence=evidence,
        detected_at=now,
        updated_at=now,
    )


# ── detector ─────────────────────────────────────────────────

class ClusterDetector:
    """Scheduled / admin-triggered cluster detection."""

    def __init__(
        self,
        node_store: RiskNodeStore,
        cluster_store: ClusterStore,
        lease: BatchLease,
        signal_provider: FraudSignalProvider,
    ) -> None:
        self.node_store = node_store
        self.cluster_store = cluster_store
        self.lease = lease
        self.signals = signal_provider
        self.last_run: Optional[DetectionRun] = None

    async def detect(self) -> DetectionRun:
        """Run once; raises ConcurrentBatchConflictError if already running."""
        token = await self.lease.acquire()
        logger.info("🔎 Cluster detection run %s started", token)
        try:
            run = await self._run(token)
        except BatchAbortedError:
            logger.warning("Detection run %s aborted – no clusters committed", token)
            raise
        finally:
            await self.lease.release(token)
        self.last_run = run
        return run

    async def request_abort(self) -> bool:
        return await self.lease.request_abort()

    async def _check_abort(self, token: str) -> None:
        """Honour an operator abort and keep the lease alive."""
        if await self.lease.abort_requested(token):
            raise BatchAbortedError(f"Detection run {token} aborted by operator")
        if not await self.lease.renew(token):
            raise BatchAbortedError(f"Detection run {token} lost its lease")

    async def _fetch_tags(self, user_ids: List[str]) -> Dict[str, List[str]]:
        if not user_ids:
            return {}
        try:
            return await self.signals.transaction_pattern_tags(user_ids)
        except DependencyDegradedError as exc:
            logger.warning("Transaction tags unavailable, evidence degraded: %s", exc)
            return {}

    async def _run(self, token: str) -> DetectionRun:
        t0 = time.perf_counter()
        run = DetectionRun(run_id=token, started_at=utcnow())

        # ── Phase 1: filtered edge set ──
        nodes = await self.node_store.load_all()
        run.nodes_scanned = len(nodes)
        edges, run.edges_considered, run.edges_excluded = build_edge_set(nodes)
        await self._check_abort(token)

        # ── Phase 2 + 3: components ≥ MIN_CLUSTER_SIZE ──
        components = {
            root: members
            for root, members in connected_components(sorted(edges)).items()
            if len(members) >= settings.MIN_CLUSTER_SIZE
        }
        logger.info("  %d edges → %d candidate clusters", len(edges), len(components))

        # ── Phase 4: evidence & classification ──
        all_members = sorted(m for members in components.values() for m in members)
        tags = await self._fetch_tags(all_members)
        existing = {c.cluster_id: c for c in await self.cluster_store.list()}
        carried, retired = carry_over_ids(components, existing)

        drafts: List[RiskCluster] = []
        assignments: Dict[str, Optional[str]] = {}
        for i, (root, members) in enumerate(sorted(components.items())):
            if i % settings.ABORT_CHECK_EVERY == 0:
                await self._check_abort(token)
            cluster_id = carried.get(root) or choose_cluster_id(root, existing)
            draft = build_cluster(cluster_id, members, nodes, tags)
            drafts.append(draft)
            for member in members:
                assignments[member] = draft.cluster_id

        # members of clusters that lost union-find support
        for user_id, node in nodes.items():
            if user_id in assignments or node.cluster_id is None:
                continue
            previous = existing.get(node.cluster_id)
            if previous is None or previous.status != ClusterStatus.RESOLVED:
                assignments[user_id] = None

        # ── Phase 5: all-or-nothing commit ──
        await self._check_abort(token)
        run.clusters = await self.cluster_store.commit_run(drafts, assignments, merge_cluster, retired)
        run.retired = sorted(retired)
        run.finished_at = utcnow()

        elapsed = time.perf_counter() - t0
        if elapsed > settings.BATCH_TIME_BUDGET_SEC:
            logger.warning("Detection run took %.1fs (budget %.0fs)", elapsed, settings.BATCH_TIME_BUDGET_SEC)
        logger.info(
            "🔎 Detection complete in %.2fs – nodes=%d edges=%d excluded=%d clusters=%d retired=%d",
            elapsed, run.nodes_scanned, len(edges), run.edges_excluded, len(run.clusters), len(run.retired),
        )
        return run
