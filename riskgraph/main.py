"""
FastAPI application entry-point.

Lifespan:
  startup  → connect Neo4j, Redis; wire stores, scorer, detector; start scheduler
  shutdown → stop scheduler; close connections
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from riskgraph.api.routes import init_routes, router as api_router
from riskgraph.config import settings
from riskgraph.core.admin_gateway import AdminActionGateway
from riskgraph.core.connection_weigher import ConnectionWeigher
from riskgraph.core.risk_scorer import LocalRiskScorer
from riskgraph.core.scheduler import ClusterScheduler
from riskgraph.core.signal_ingestor import SignalIngestor
from riskgraph.detection.cluster_detector import ClusterDetector
from riskgraph.neo4j_manager import Neo4jManager
from riskgraph.signals.providers import Neo4jFraudSignalProvider, Neo4jTrustScoreProvider
from riskgraph.storage.cluster_store import ClusterStore
from riskgraph.storage.lease import BatchLease
from riskgraph.storage.node_store import RiskNodeStore
from riskgraph.storage.redis_client import KeySpace, get_redis_client

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("🚀 Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    # ── Neo4j (signal providers) ─────────────────────────────
    neo4j = Neo4jManager.get_instance()
    await neo4j.connect()
    trust_provider = Neo4jTrustScoreProvider(neo4j)
    signal_provider = Neo4jFraudSignalProvider(neo4j)

    # ── Redis (risk state) ───────────────────────────────────
    redis_client = await get_redis_client()
    keys = KeySpace()
    node_store = RiskNodeStore(redis_client, keys)
    cluster_store = ClusterStore(redis_client, keys)
    lease = BatchLease(redis_client, keys)

    # ── Engine ───────────────────────────────────────────────
    weigher = ConnectionWeigher(node_store)
    ingestor = SignalIngestor(node_store, weigher, signal_provider)
    scorer = LocalRiskScorer(node_store, trust_provider)
    detector = ClusterDetector(node_store, cluster_store, lease, signal_provider)
    gateway = AdminActionGateway(node_store, cluster_store, scorer, detector)

    # ── Scheduler (batch loop) ───────────────────────────────
    scheduler = ClusterScheduler(scorer, detector, cluster_store)
    await scheduler.start()

    # ── Inject deps into routes ──────────────────────────────
    init_routes(neo4j, node_store, weigher, ingestor, gateway, scheduler)

    # store on app.state for ad-hoc access
    app.state.neo4j = neo4j
    app.state.redis = redis_client
    app.state.gateway = gateway
    app.state.scheduler = scheduler

    logger.info("✅ All systems online")
    yield

    # ── shutdown ─────────────────────────────────────────────
    logger.info("Shutting down …")
    await scheduler.stop()
    await neo4j.close()
    await redis_client.aclose()
    logger.info("👋 Shutdown complete")


# ── App ──────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
