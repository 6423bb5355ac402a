"""
Signal adapter – read-only access to the external trust score and fraud
signal providers.

No business logic lives here.  Every driver failure is wrapped as
DependencyDegradedError so callers can degrade instead of failing.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from riskgraph.config import settings
from riskgraph.errors import DependencyDegradedError
from riskgraph.neo4j_manager import Neo4jManager
from riskgraph.utils import cypher_queries as CQ

logger = logging.getLogger(__name__)


# ── provider payloads ────────────────────────────────────────

class TrustScore(BaseModel):
    score: int = Field(ge=0, le=1000)
    tier: Optional[str] = None


class UserSignals(BaseModel):
    device_fingerprints: Set[str] = Field(default_factory=set)
    ip_addresses: Set[str] = Field(default_factory=set)
    behavioral_signature: str = ""
    report_count: int = 0
    block_count: int = 0
    account_age_days: Optional[int] = None


CIRCULAR_FLOW_TAGS = frozenset({"circular_flow", "round_trip", "self_dealing"})
PAYMENT_FRAUD_TAGS = frozenset({"chargeback", "card_testing", "refund_abuse", "rapid_relay"})


# ── interfaces ───────────────────────────────────────────────

class TrustScoreProvider(Protocol):
    async def get_trust_score(self, user_id: str) -> Optional[TrustScore]:
        ...


class FraudSignalProvider(Protocol):
    async def get_user_signals(self, user_id: str) -> UserSignals:
        ...

    async def users_sharing_device(self, fingerprint: str) -> List[str]:
        ...

    async def users_sharing_ip(self, ip_address: str) -> List[str]:
        ...

    async def behaviorally_similar_users(self, user_id: str) -> List[Tuple[str, float]]:
        ...

    async def transaction_pattern_tags(self, user_ids: Sequence[str]) -> Dict[str, List[str]]:
        ...


# ── Neo4j implementations ────────────────────────────────────

class Neo4jTrustScoreProvider:
    """Reads the trust profile cached on :User by the trust engine."""

    def __init__(self, neo4j: Neo4jManager) -> None:
        self.neo4j = neo4j

    async def get_trust_score(self, user_id: str) -> Optional[TrustScore]:
        try:
            rows = await self.neo4j.read_async(CQ.QUERY_TRUST_SCORE, {"user_id": user_id})
        except Exception as exc:  # noqa: BLE001
            raise DependencyDegradedError("trust-score", exc) from exc
        if not rows or rows[0].get("score") is None:
            return None
        row = rows[0]
        score = max(0, min(int(row["score"]), settings.TRUST_MAX))
        return TrustScore(score=score, tier=row.get("tier"))


class Neo4jFraudSignalProvider:
    """Device / IP / behaviour / transaction signals from the fraud graph."""

    def __init__(self, neo4j: Neo4jManager) -> None:
        self.neo4j = neo4j
        self.limit = settings.MAX_SHARED_ACCOUNTS_PER_SIGNAL

    async def _read(self, query: str, params: Dict) -> List[Dict]:
        try:
            return await self.neo4j.read_async(query, params)
        except Exception as exc:  # noqa: BLE001
            raise DependencyDegradedError("fraud-signals", exc) from exc

    async def get_user_signals(self, user_id: str) -> UserSignals:
        rows = await self._read(CQ.QUERY_USER_SIGNALS, {"user_id": user_id})
        if not rows:
            return UserSignals()
        r = rows[0]
        return UserSignals(
            device_fingerprints=set(r.get("devices") or []),
            ip_addresses=set(r.get("ips") or []),
            behavioral_signature=r.get("behavioral_signature") or "",
            report_count=r.get("report_count", 0) or 0,
            block_count=r.get("block_count", 0) or 0,
            account_age_days=r.get("account_age_days"),
        )

    async def users_sharing_device(self, fingerprint: str) -> List[str]:
        rows = await self._read(
            CQ.QUERY_USERS_BY_DEVICE, {"device_id": fingerprint, "limit": self.limit}
        )
        return [r["user_id"] for r in rows if r.get("user_id")]

    async def users_sharing_ip(self, ip_address: str) -> List[str]:
        rows = await self._read(
            CQ.QUERY_USERS_BY_IP, {"ip_address": ip_address, "limit": self.limit}
        )
        return [r["user_id"] for r in rows if r.get("user_id")]

    async def behaviorally_similar_users(self, user_id: str) -> List[Tuple[str, float]]:
        rows = await self._read(
            CQ.QUERY_SIMILAR_USERS,
            {"user_id": user_id, "min_score": settings.SIMILARITY_THRESHOLD, "limit": self.limit},
        )
        return [(r["user_id"], float(r.get("score") or 0.0)) for r in rows if r.get("user_id")]

    async def transaction_pattern_tags(self, user_ids: Sequence[str]) -> Dict[str, List[str]]:
        ids = list(user_ids)
        tags: Dict[str, Set[str]] = {}
        for query, params, tag in (
            (CQ.DETECT_CIRCULAR_MEMBERS, {"user_ids": ids}, "circular_flow"),
            (CQ.DETECT_RELAY_MEMBERS, {"user_ids": ids, "min_flow_ratio": 0.75}, "rapid_relay"),
            (CQ.DETECT_CHARGEBACK_MEMBERS, {"user_ids": ids}, "chargeback"),
        ):
            for row in await self._read(query, params):
                uid = row.get("user_id")
                if uid:
                    tags.setdefault(uid, set()).add(tag)
        return {uid: sorted(t) for uid, t in tags.items()}
