from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from riskgraph.core.admin_gateway import AdminActionGateway
from riskgraph.core.connection_weigher import ConnectionWeigher
from riskgraph.core.risk_scorer import LocalRiskScorer
from riskgraph.core.signal_ingestor import SignalIngestor
from riskgraph.detection.cluster_detector import ClusterDetector
from riskgraph.errors import DependencyDegradedError
from riskgraph.models.analysis import ConnectionEvent
from riskgraph.models.risk_node import ConnectionType
from riskgraph.signals.providers import TrustScore, UserSignals
from riskgraph.storage.cluster_store import ClusterStore
from riskgraph.storage.lease import BatchLease
from riskgraph.storage.node_store import RiskNodeStore
from riskgraph.storage.redis_client import KeySpace


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ── provider doubles ─────────────────────────────────────────

class FakeTrustProvider:
    def __init__(self) -> None:
        self.scores: Dict[str, int] = {}
        self.down = False

    async def get_trust_score(self, user_id: str) -> Optional[TrustScore]:
        if self.down:
            raise DependencyDegradedError("trust-score", ConnectionError("connection refused"))
        score = self.scores.get(user_id)
        return TrustScore(score=score) if score is not None else None


class FakeSignalProvider:
    def __init__(self) -> None:
        self.signals: Dict[str, UserSignals] = {}
        self.similar: Dict[str, List[Tuple[str, float]]] = {}
        self.tags: Dict[str, List[str]] = {}
        self.down = False

    async def get_user_signals(self, user_id: str) -> UserSignals:
        if self.down:
            raise DependencyDegradedError("fraud-signals", ConnectionError("connection refused"))
        return self.signals.get(user_id, UserSignals())

    async def users_sharing_device(self, fingerprint: str) -> List[str]:
        return sorted(u for u, s in self.signals.items() if fingerprint in s.device_fingerprints)

    async def users_sharing_ip(self, ip_address: str) -> List[str]:
        return sorted(u for u, s in self.signals.items() if ip_address in s.ip_addresses)

    async def behaviorally_similar_users(self, user_id: str) -> List[Tuple[str, float]]:
        return self.similar.get(user_id, [])

    async def transaction_pattern_tags(self, user_ids: Sequence[str]) -> Dict[str, List[str]]:
        if self.down:
            raise DependencyDegradedError("fraud-signals", ConnectionError("connection refused"))
        return {u: self.tags[u] for u in user_ids if u in self.tags}


class FakeNeo4j:
    async def health_check(self) -> Dict:
        return {"status": "healthy"}


# ── wiring ───────────────────────────────────────────────────

@pytest.fixture
def redis_client():
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def keys():
    return KeySpace("test")


@pytest.fixture
def node_store(redis_client, keys):
    return RiskNodeStore(redis_client, keys)


@pytest.fixture
def cluster_store(redis_client, keys):
    return ClusterStore(redis_client, keys)


@pytest.fixture
def lease(redis_client, keys):
    return BatchLease(redis_client, keys)


@pytest.fixture
def neo4j():
    return FakeNeo4j()


@pytest.fixture
def trust_provider():
    return FakeTrustProvider()


@pytest.fixture
def signal_provider():
    return FakeSignalProvider()


@pytest.fixture
def weigher(node_store):
    return ConnectionWeigher(node_store)


@pytest.fixture
def scorer(node_store, trust_provider):
    return LocalRiskScorer(node_store, trust_provider)


@pytest.fixture
def detector(node_store, cluster_store, lease, signal_provider):
    return ClusterDetector(node_store, cluster_store, lease, signal_provider)


@pytest.fixture
def gateway(node_store, cluster_store, scorer, detector):
    return AdminActionGateway(node_store, cluster_store, scorer, detector)


@pytest.fixture
def ingestor(node_store, weigher, signal_provider):
    return SignalIngestor(node_store, weigher, signal_provider)


@pytest.fixture
def link(weigher):
    """Record ``times`` observations of one connection type between two users."""
    async def _link(a, b, conn_type=ConnectionType.DEVICE_MATCH, value=None, times=1):
        nodes = None
        for _ in range(times):
            nodes = await weigher.record(ConnectionEvent(
                source_user_id=a, target_user_id=b, type=conn_type, signal_value=value,
            ))
        return nodes
    return _link


@pytest.fixture
def device_ring(link):
    """Three accounts pairwise sharing one device fingerprint."""
    async def _ring(a="u-a", b="u-b", c="u-c", fingerprint="fp-1"):
        await link(a, b, value=fingerprint)
        await link(a, c, value=fingerprint)
        await link(b, c, value=fingerprint)
        return [a, b, c]
    return _ring
