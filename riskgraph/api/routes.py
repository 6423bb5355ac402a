"""
REST API routes.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from riskgraph.errors import (
    BatchAbortedError,
    ConcurrentBatchConflictError,
    DependencyDegradedError,
    InvalidConnectionError,
    InvalidTransitionError,
    NotFoundError,
    RiskGraphError,
    WriteConflictError,
)
from riskgraph.models.analysis import (
    AdminDecision,
    BlockResult,
    ClusterMembers,
    ConnectionEvent,
    DetectionRun,
    GraphAnalysisResult,
)
from riskgraph.models.cluster import ClusterStatus, RiskCluster
from riskgraph.models.risk_node import RiskNode

logger = logging.getLogger(__name__)

router = APIRouter()

RETRY_AFTER_SEC = 60

# These will be injected by main.py at startup
_neo4j = None
_node_store = None
_weigher = None
_ingestor = None
_gateway = None
_scheduler = None


def init_routes(neo4j, node_store, weigher, ingestor, gateway, scheduler):
    """Called once at startup to inject shared dependencies."""
    global _neo4j, _node_store, _weigher, _ingestor, _gateway, _scheduler
    _neo4j = neo4j
    _node_store = node_store
    _weigher = weigher
    _ingestor = ingestor
    _gateway = gateway
    _scheduler = scheduler


def _http_error(exc: RiskGraphError) -> HTTPException:
    """Translate an engine error into the matching HTTP response."""
    if isinstance(exc, NotFoundError):
        return HTTPException(404, str(exc))
    if isinstance(exc, ConcurrentBatchConflictError):
        return HTTPException(409, str(exc), headers={"Retry-After": str(RETRY_AFTER_SEC)})
    if isinstance(exc, (InvalidTransitionError, BatchAbortedError)):
        return HTTPException(409, str(exc))
    if isinstance(exc, InvalidConnectionError):
        return HTTPException(422, str(exc))
    if isinstance(exc, (WriteConflictError, DependencyDegradedError)):
        return HTTPException(503, str(exc))
    logger.error("Unhandled engine error: %s", exc)
    return HTTPException(500, str(exc))


def _require_gateway():
    if not _gateway:
        raise HTTPException(503, "Engine not ready")
    return _gateway


# ── health ───────────────────────────────────────────────────

@router.get("/health")
async def health():
    neo4j_health = await _neo4j.health_check() if _neo4j else {"status": "not_initialized"}
    return {
        "status": "ok",
        "neo4j": neo4j_health,
        "nodes": await _node_store.count() if _node_store else 0,
        "pending_rescore": await _node_store.dirty_count() if _node_store else 0,
        "connections_recorded": _weigher.recorded_count if _weigher else 0,
        "write_retries": _node_store.write_retries if _node_store else 0,
        "detection_running": bool(await _gateway.detector.lease.holder()) if _gateway else False,
    }


# ── connections / users ─────────────────────────────────────

@router.post("/connections", response_model=List[RiskNode])
async def record_connection(event: ConnectionEvent):
    """Record one observed relationship; returns both updated nodes."""
    if not _weigher:
        raise HTTPException(503, "Engine not ready")
    try:
        nodes = await _weigher.record(event)
    except RiskGraphError as exc:
        raise _http_error(exc)
    return [nodes[event.source_user_id], nodes[event.target_user_id]]


@router.post("/users/{user_id}/sync")
async def sync_user(user_id: str):
    """Pull fresh signals for a user from the fraud signal graph."""
    if not _ingestor:
        raise HTTPException(503, "Engine not ready")
    try:
        recorded = await _ingestor.sync_user(user_id)
    except RiskGraphError as exc:
        raise _http_error(exc)
    return {"user_id": user_id, "connections_recorded": recorded}


@router.get("/users/{user_id}/analysis", response_model=GraphAnalysisResult)
async def analyze_user(user_id: str):
    gateway = _require_gateway()
    try:
        return await gateway.analyze_user(user_id)
    except RiskGraphError as exc:
        raise _http_error(exc)


# ── cluster detection ───────────────────────────────────────

@router.post("/clusters/detect", response_model=DetectionRun)
async def detect_clusters():
    gateway = _require_gateway()
    try:
        return await gateway.trigger_detection()
    except RiskGraphError as exc:
        raise _http_error(exc)


@router.post("/clusters/detect/abort")
async def abort_detection():
    gateway = _require_gateway()
    return {"aborted": await gateway.abort_detection()}


# ── clusters ─────────────────────────────────────────────────

@router.get("/clusters", response_model=List[RiskCluster])
async def list_clusters(status: Optional[ClusterStatus] = Query(None)):
    gateway = _require_gateway()
    return await gateway.list_clusters(status)


@router.get("/clusters/{cluster_id}", response_model=ClusterMembers)
async def get_cluster(cluster_id: str):
    gateway = _require_gateway()
    try:
        return await gateway.get_cluster_members(cluster_id)
    except RiskGraphError as exc:
        raise _http_error(exc)


@router.post("/clusters/{cluster_id}/block", response_model=BlockResult)
async def block_cluster(cluster_id: str, decision: AdminDecision):
    gateway = _require_gateway()
    try:
        return await gateway.block_cluster(cluster_id, decision.reason, decision.admin_id)
    except RiskGraphError as exc:
        raise _http_error(exc)


@router.post("/clusters/{cluster_id}/confirm", response_model=RiskCluster)
async def confirm_cluster(cluster_id: str, decision: AdminDecision):
    gateway = _require_gateway()
    try:
        return await gateway.confirm_cluster(cluster_id, decision.reason, decision.admin_id)
    except RiskGraphError as exc:
        raise _http_error(exc)


@router.post("/clusters/{cluster_id}/dismiss", response_model=RiskCluster)
async def dismiss_cluster(cluster_id: str, decision: AdminDecision):
    gateway = _require_gateway()
    try:
        return await gateway.dismiss_cluster(cluster_id, decision.reason, decision.admin_id)
    except RiskGraphError as exc:
        raise _http_error(exc)


# ── scheduler status ─────────────────────────────────────────

@router.get("/analytics/status")
async def analytics_status():
    if not _scheduler:
        raise HTTPException(503, "Scheduler not ready")
    last_run = _scheduler.detector.last_run
    return {
        "last_cycle": _scheduler.last_run_stats,
        "rescored_total": _scheduler.rescored_total,
        "last_detection_run": last_run.model_dump(mode="json", exclude={"clusters"}) if last_run else None,
    }
