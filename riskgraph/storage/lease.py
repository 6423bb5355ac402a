"""
Exclusive batch lease for cluster-detection runs.

Only one run may hold the lease; a second trigger is rejected, not queued.
An operator abort is recorded against the current lease token so a stale
abort never leaks into the next run.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from riskgraph.config import settings
from riskgraph.errors import ConcurrentBatchConflictError
from riskgraph.storage.redis_client import KeySpace

logger = logging.getLogger(__name__)


class BatchLease:
    def __init__(
        self,
        redis_client: aioredis.Redis,
        keys: KeySpace | None = None,
        ttl_sec: int | None = None,
    ) -> None:
        self.redis = redis_client
        self.keys = keys or KeySpace()
        self.ttl_sec = ttl_sec or settings.BATCH_LEASE_TTL_SEC

    async def acquire(self) -> str:
        token = uuid.uuid4().hex
        ok = await self.redis.set(self.keys.lease, token, nx=True, ex=self.ttl_sec)
        if not ok:
            holder = await self.redis.get(self.keys.lease)
            logger.warning("Detection run rejected – lease held by %s", holder)
            raise ConcurrentBatchConflictError(f"Cluster detection already running ({holder})")
        return token

    async def release(self, token: str) -> bool:
        """Compare-and-delete: only the holder can release."""
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.keys.lease, self.keys.abort)
                current = await pipe.get(self.keys.lease)
                abort_for = await pipe.get(self.keys.abort)
                pipe.multi()
                if current == token:
                    pipe.delete(self.keys.lease)
                if abort_for == token:
                    pipe.delete(self.keys.abort)
                await pipe.execute()
                return current == token
            except WatchError:
                logger.warning("Lease changed while releasing %s", token)
                return False

    async def renew(self, token: str) -> bool:
        """Push the expiry out by ttl_sec; False once the lease is no longer ours."""
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.keys.lease)
                if await pipe.get(self.keys.lease) != token:
                    return False
                pipe.multi()
                pipe.expire(self.keys.lease, self.ttl_sec)
                await pipe.execute()
                return True
            except WatchError:
                logger.warning("Lease changed while renewing %s", token)
                return False

    async def holder(self) -> Optional[str]:
        return await self.redis.get(self.keys.lease)

    # ── operator abort ───────────────────────────────────────

    async def request_abort(self) -> bool:
        """Signal the running batch to stop; False when nothing is running."""
        token = await self.holder()
        if token is None:
            return False
        await self.redis.set(self.keys.abort, token, ex=self.ttl_sec)
        logger.warning("Abort requested for detection run %s", token)
        return True

    async def abort_requested(self, token: str) -> bool:
        return await self.redis.get(self.keys.abort) == token
