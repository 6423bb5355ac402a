"""
Risk node store – durable per-user records in Redis.

Writes are localized read-modify-writes on at most a handful of node keys,
guarded by WATCH/MULTI optimistic concurrency:
  - WatchError → exponential backoff and retry
  - retries exhausted → WriteConflictError (transient, caller may retry)
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from riskgraph.config import settings
from riskgraph.errors import NodeNotFoundError, WriteConflictError
from riskgraph.models.risk_node import RiskNode
from riskgraph.storage.redis_client import KeySpace, backoff

logger = logging.getLogger(__name__)

NodeMutator = Callable[[Dict[str, RiskNode]], None]


class RiskNodeStore:
    """Arena of RiskNode records keyed by user_id."""

    def __init__(self, redis_client: aioredis.Redis, keys: KeySpace | None = None) -> None:
        self.redis = redis_client
        self.keys = keys or KeySpace()
        self.write_retries = 0

    # ── reads ────────────────────────────────────────────────

    async def get(self, user_id: str) -> Optional[RiskNode]:
        raw = await self.redis.get(self.keys.node(user_id))
        return RiskNode.model_validate_json(raw) if raw else None

    async def require(self, user_id: str) -> RiskNode:
        node = await self.get(user_id)
        if node is None:
            raise NodeNotFoundError(user_id)
        return node

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, RiskNode]:
        """Fetch several nodes; unknown ids are simply absent from the result."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        raws = await self.redis.mget([self.keys.node(uid) for uid in ids])
        return {
            uid: RiskNode.model_validate_json(raw)
            for uid, raw in zip(ids, raws)
            if raw
        }

    async def all_user_ids(self) -> List[str]:
        return sorted(await self.redis.smembers(self.keys.nodes))

    async def load_all(self, chunk_size: int = 500) -> Dict[str, RiskNode]:
        ids = await self.all_user_ids()
        nodes: Dict[str, RiskNode] = {}
        for i in range(0, len(ids), chunk_size):
            nodes.update(await self.get_many(ids[i:i + chunk_size]))
        return nodes

    async def count(self) -> int:
        return await self.redis.scard(self.keys.nodes)

    # ── writes ───────────────────────────────────────────────

    async def mutate(
        self,
        user_ids: List[str],
        mutator: NodeMutator,
        *,
        create_missing: bool = False,
        mark_dirty: bool = False,
    ) -> Dict[str, RiskNode]:
        """
        Optimistic read-modify-write over ``user_ids``.

        ``mutator`` receives the freshly read nodes and edits them in place;
        it may be invoked more than once when a concurrent write wins.
        """
        ids = sorted(set(user_ids))
        node_keys = [self.keys.node(uid) for uid in ids]

        for attempt in range(settings.WRITE_MAX_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(*node_keys)
                    raws = await pipe.mget(node_keys)

                    nodes: Dict[str, RiskNode] = {}
                    for uid, raw in zip(ids, raws):
                        if raw:
                            nodes[uid] = RiskNode.model_validate_json(raw)
                        elif create_missing:
                            nodes[uid] = RiskNode(user_id=uid)
                        else:
                            raise NodeNotFoundError(uid)

                    mutator(nodes)

                    pipe.multi()
                    for uid, node in nodes.items():
                        pipe.set(self.keys.node(uid), node.model_dump_json())
                    pipe.sadd(self.keys.nodes, *ids)
                    if mark_dirty:
                        pipe.sadd(self.keys.dirty, *ids)
                    await pipe.execute()
                    return nodes
                except WatchError:
                    self.write_retries += 1
                    logger.debug("Node write conflict on %s (attempt %d)", ids, attempt + 1)
                    await backoff(attempt)

        raise WriteConflictError(f"Gave up writing nodes {ids} after {settings.WRITE_MAX_RETRIES} attempts")

    # ── dirty set (pending re-score) ─────────────────────────

    async def pop_dirty(self, count: int = 100) -> List[str]:
        popped = await self.redis.spop(self.keys.dirty, count)
        return sorted(popped or [])

    async def mark_dirty(self, *user_ids: str) -> None:
        if user_ids:
            await self.redis.sadd(self.keys.dirty, *user_ids)

    async def dirty_count(self) -> int:
        return await self.redis.scard(self.keys.dirty)
