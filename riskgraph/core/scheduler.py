"""
Background scheduler.

Every RESCORE_INTERVAL_SEC:
  1. Re-score nodes marked dirty by the connection weigher

Every DETECTION_INTERVAL_SEC (daily by default):
  2. Wholesale re-score of every node
  3. Cluster detection (skipped if another run holds the lease)
  4. Purge of RESOLVED clusters past the retention window
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Dict, Optional

from riskgraph.config import settings
from riskgraph.core.risk_scorer import LocalRiskScorer
from riskgraph.detection.cluster_detector import ClusterDetector
from riskgraph.errors import BatchAbortedError, ConcurrentBatchConflictError
from riskgraph.models.risk_node import RiskLevel, utcnow
from riskgraph.storage.cluster_store import ClusterStore

logger = logging.getLogger(__name__)


class ClusterScheduler:
    """Background task that re-scores and detects clusters on a timer."""

    def __init__(
        self,
        scorer: LocalRiskScorer,
        detector: ClusterDetector,
        cluster_store: ClusterStore,
    ) -> None:
        self.scorer = scorer
        self.detector = detector
        self.clusters = cluster_store
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._next_detection = 0.0
        self.last_run_stats: Dict = {}
        self.rescored_total = 0

    async def start(self) -> None:
        """Launch the periodic loop."""
        self._running = True
        self._next_detection = time.monotonic() + settings.DETECTION_INTERVAL_SEC
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "📊 Cluster scheduler started (rescore=%ds, detection=%ds)",
            settings.RESCORE_INTERVAL_SEC,
            settings.DETECTION_INTERVAL_SEC,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Cluster scheduler stopped")

    # ── internal loop ────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(settings.RESCORE_INTERVAL_SEC)
            try:
                self.rescored_total += await self.scorer.rescore_dirty()
            except Exception as exc:  # noqa: BLE001
                logger.error("Dirty re-score failed: %s", exc)

            if time.monotonic() < self._next_detection:
                continue
            self._next_detection = time.monotonic() + settings.DETECTION_INTERVAL_SEC
            try:
                self.last_run_stats = await self.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.error("Detection cycle failed: %s", exc)

    async def run_once(self) -> Dict:
        """Execute a single full cycle.  Returns a stats dict."""
        t0 = time.perf_counter()
        stats: Dict = {"started_at": utcnow().isoformat()}

        # ── Phase 1: wholesale re-score ──
        stats["rescored"] = await self.scorer.rescore_all()

        # ── Phase 2: cluster detection ──
        try:
            run = await self.detector.detect()
            stats["detection"] = {
                "run_id": run.run_id,
                "nodes_scanned": run.nodes_scanned,
                "edges_considered": run.edges_considered,
                "edges_excluded": run.edges_excluded,
                "clusters": len(run.clusters),
                "retired": len(run.retired),
            }
            critical = [c.cluster_id for c in run.clusters if c.risk_level == RiskLevel.CRITICAL]
            stats["detection"]["critical"] = len(critical)
            if critical:
                logger.warning("🚨 %d CRITICAL risk clusters detected: %s", len(critical), ", ".join(critical))
        except ConcurrentBatchConflictError as exc:
            logger.warning("Scheduled detection skipped: %s", exc)
            stats["detection"] = {"skipped": str(exc)}
        except BatchAbortedError as exc:
            stats["detection"] = {"aborted": str(exc)}

        # ── Phase 3: retention ──
        if settings.RESOLVED_CLUSTER_RETENTION_DAYS > 0:
            cutoff = utcnow() - timedelta(days=settings.RESOLVED_CLUSTER_RETENTION_DAYS)
            stats["purged"] = len(await self.clusters.purge_resolved(cutoff))

        elapsed = time.perf_counter() - t0
        stats["elapsed_sec"] = round(elapsed, 3)
        logger.info("📊 Detection cycle complete in %.1f s", elapsed)
        return stats
