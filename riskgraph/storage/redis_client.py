"""
Redis connection and key layout helpers.

Key layout
==========
  {prefix}:node:{user_id}        ←  RiskNode JSON
  {prefix}:nodes                 ←  set of every user_id with a node
  {prefix}:cluster:{cluster_id}  ←  RiskCluster JSON
  {prefix}:clusters              ←  set of every cluster_id
  {prefix}:dirty                 ←  user_ids awaiting re-scoring
  {prefix}:batch:lease           ←  detection-run lease token
  {prefix}:batch:abort           ←  abort signal for the current lease
  {prefix}:sanctions             ←  stream of "sanction these accounts" signals
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict

import redis.asyncio as aioredis

from riskgraph.config import settings

logger = logging.getLogger(__name__)


# ── Connection ───────────────────────────────────────────────

async def get_redis_client() -> aioredis.Redis:
    """Create and return an async Redis client."""
    client = aioredis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        decode_responses=True,
    )
    await client.ping()
    logger.info("✅ Redis connected at %s:%d", settings.REDIS_HOST, settings.REDIS_PORT)
    return client


# ── Keys ─────────────────────────────────────────────────────

class KeySpace:
    """Builds every Redis key used by the engine from one prefix."""

    def __init__(self, prefix: str | None = None) -> None:
        self.prefix = prefix or settings.REDIS_KEY_PREFIX

    def node(self, user_id: str) -> str:
        return f"{self.prefix}:node:{user_id}"

    @property
    def nodes(self) -> str:
        return f"{self.prefix}:nodes"

    def cluster(self, cluster_id: str) -> str:
        return f"{self.prefix}:cluster:{cluster_id}"

    @property
    def clusters(self) -> str:
        return f"{self.prefix}:clusters"

    @property
    def dirty(self) -> str:
        return f"{self.prefix}:dirty"

    @property
    def lease(self) -> str:
        return f"{self.prefix}:batch:lease"

    @property
    def abort(self) -> str:
        return f"{self.prefix}:batch:abort"

    @property
    def sanctions(self) -> str:
        return f"{self.prefix}:{settings.REDIS_SANCTIONS_STREAM}"


# ── Optimistic retry ─────────────────────────────────────────

async def backoff(attempt: int) -> None:
    """Exponential backoff with jitter between optimistic retries."""
    delay = settings.WRITE_BASE_BACKOFF_SEC * (2 ** attempt) + random.uniform(0, 0.005)
    await asyncio.sleep(delay)


# ── Sanction signal ──────────────────────────────────────────

def sanction_payload(data: Dict[str, Any]) -> Dict[str, str]:
    """Stream entry body for a sanction signal (JSON in a "payload" field)."""
    return {"payload": json.dumps(data, default=str)}
