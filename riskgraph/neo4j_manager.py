"""
Neo4j database manager.

Read access to the fraud signal graph (devices, IPs, transfers, trust
profiles) plus sync helpers for the setup script.
"""

import logging
from typing import Any, Dict, List, Optional

from neo4j import GraphDatabase, AsyncGraphDatabase
from neo4j.exceptions import ServiceUnavailable, AuthError

from riskgraph.config import settings

logger = logging.getLogger(__name__)


class Neo4jManager:
    """Singleton wrapper around the Neo4j Python driver."""

    _instance: Optional["Neo4jManager"] = None

    def __init__(self) -> None:
        self._driver = None
        self._async_driver = None

    # ── singleton ────────────────────────────────────────────

    @classmethod
    def get_instance(cls) -> "Neo4jManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ── lifecycle ────────────────────────────────────────────

    def connect_sync(self) -> None:
        """Open only the synchronous pool (scripts, no event loop)."""
        self._driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
            max_connection_pool_size=settings.NEO4J_MAX_POOL_SIZE,
        )
        self._driver.verify_connectivity()

    async def connect(self) -> None:
        """Open the asynchronous driver pool."""
        try:
            self._async_driver = AsyncGraphDatabase.driver(
                settings.NEO4J_URI,
                auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
                max_connection_pool_size=settings.NEO4J_MAX_POOL_SIZE,
            )
            await self._async_driver.verify_connectivity()
            logger.info("✅ Neo4j connected at %s", settings.NEO4J_URI)
        except (ServiceUnavailable, AuthError) as exc:
            # the engine degrades without the signal graph, it does not refuse to start
            logger.error("❌ Neo4j connection failed: %s", exc)

    async def close(self) -> None:
        if self._driver:
            self._driver.close()
        if self._async_driver:
            await self._async_driver.close()
        logger.info("Neo4j drivers closed")

    # ── synchronous helpers (setup) ──────────────────────────

    def run_sync(self, query: str, params: Dict[str, Any] | None = None) -> List[Dict]:
        with self._driver.session(database=settings.NEO4J_DATABASE) as session:
            result = session.run(query, params or {})
            return [record.data() for record in result]

    def setup_schema(self, constraints: List[str], indexes: List[str]) -> None:
        with self._driver.session(database=settings.NEO4J_DATABASE) as session:
            for stmt in constraints + indexes:
                try:
                    session.run(stmt)
                    logger.info("  ✔ %s", stmt[:70])
                except Exception as exc:          # noqa: BLE001
                    logger.warning("  ⚠ %s – %s", stmt[:50], exc)
        logger.info("✅ Schema setup complete")

    # ── asynchronous reads (runtime) ─────────────────────────

    async def read_async(self, query: str, params: Dict[str, Any] | None = None) -> List[Dict]:
        if self._async_driver is None:
            raise ServiceUnavailable("Neo4j driver not connected")
        async with self._async_driver.session(database=settings.NEO4J_DATABASE) as session:
            async def _work(tx):
                res = await tx.run(query, params or {})
                return [record.data() async for record in res]
            return await session.execute_read(_work)

    # ── health check ─────────────────────────────────────────

    async def health_check(self) -> Dict:
        try:
            await self.read_async("RETURN 1 AS ok")
            return {"status": "healthy"}
        except Exception as exc:  # noqa: BLE001
            return {"status": "unhealthy", "error": str(exc)}
