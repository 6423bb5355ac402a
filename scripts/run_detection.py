#!/usr/bin/env python3
"""
run_detection.py – One-shot re-score + cluster detection cycle against the
configured Redis / Neo4j, with a printed summary.

Usage:
    python scripts/run_detection.py                 # full cycle
    python scripts/run_detection.py --dirty-only    # only drain pending re-scores
    python scripts/run_detection.py --abort         # stop the running detection
"""

import argparse
import asyncio
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from riskgraph.config import settings
from riskgraph.core.risk_scorer import LocalRiskScorer
from riskgraph.core.scheduler import ClusterScheduler
from riskgraph.detection.cluster_detector import ClusterDetector
from riskgraph.neo4j_manager import Neo4jManager
from riskgraph.signals.providers import Neo4jFraudSignalProvider, Neo4jTrustScoreProvider
from riskgraph.storage.cluster_store import ClusterStore
from riskgraph.storage.lease import BatchLease
from riskgraph.storage.node_store import RiskNodeStore
from riskgraph.storage.redis_client import KeySpace, get_redis_client


# ───────────────── Logging Setup ─────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("run_detection")


# ───────────────── Runner ─────────────────

async def run(dirty_only: bool, abort: bool) -> int:
    logger.info("Connecting to Redis at %s:%d", settings.REDIS_HOST, settings.REDIS_PORT)
    redis_client = await get_redis_client()
    neo4j = Neo4jManager.get_instance()
    await neo4j.connect()

    keys = KeySpace()
    node_store = RiskNodeStore(redis_client, keys)
    cluster_store = ClusterStore(redis_client, keys)
    lease = BatchLease(redis_client, keys)
    scorer = LocalRiskScorer(node_store, Neo4jTrustScoreProvider(neo4j))
    detector = ClusterDetector(node_store, cluster_store, lease, Neo4jFraudSignalProvider(neo4j))

    try:
        if abort:
            stopped = await detector.request_abort()
            print("🛑 Abort requested" if stopped else "No detection run in progress")
            return 0

        if dirty_only:
            rescored = await scorer.rescore_dirty()
            print(f"♻️  Re-scored {rescored} pending nodes")
            return 0

        stats = await ClusterScheduler(scorer, detector, cluster_store).run_once()
        print("\n" + "═" * 60)
        print("  DETECTION SUMMARY")
        print("═" * 60)
        print(f"  Nodes re-scored : {stats.get('rescored', 0)}")
        for key, value in stats.get("detection", {}).items():
            print(f"  {key:<16}: {value}")
        if "purged" in stats:
            print(f"  Purged clusters : {stats['purged']}")
        print(f"  Elapsed         : {stats['elapsed_sec']}s")

        if detector.last_run:
            for cluster in detector.last_run.clusters:
                print(
                    f"   • {cluster.cluster_id}  {cluster.pattern.value:<16} "
                    f"members={cluster.member_count:<3} conf={cluster.confidence:.2f} "
                    f"status={cluster.status.value}"
                )
        print("═" * 60)
        return 0 if "run_id" in stats.get("detection", {}) else 1
    finally:
        await neo4j.close()
        await redis_client.aclose()


def main():
    parser = argparse.ArgumentParser(description="Run one risk-graph detection cycle")
    parser.add_argument("--dirty-only", action="store_true", help="only re-score nodes marked dirty")
    parser.add_argument("--abort", action="store_true", help="abort the detection run in progress")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.dirty_only, args.abort)))


if __name__ == "__main__":
    main()
