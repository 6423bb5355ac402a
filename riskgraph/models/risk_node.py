"""
Risk node models: one record per user who has at least one connection.

Schema
──────
RiskNode      – per-user graph neighbourhood (score, level, connections)
Connection    – typed, weighted edge towards one neighbour
NodeMetadata  – aggregated fraud signals cached on the node
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Enums & constant tables
# ══════════════════════════════════════════════════════════════

class RiskLevel(str, Enum):
    SAFE = "SAFE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: "RiskLevel") -> bool:
        return self.rank >= other.rank


_LEVEL_ORDER = [RiskLevel.SAFE, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

# Lower bound (inclusive) of each level, highest first
RISK_THRESHOLDS = [
    (80, RiskLevel.CRITICAL),
    (60, RiskLevel.HIGH),
    (40, RiskLevel.MEDIUM),
    (20, RiskLevel.LOW),
    (0, RiskLevel.SAFE),
]


def level_for_score(score: float) -> RiskLevel:
    """Map a 0–100 risk score to its level via the fixed boundary table."""
    for lower, level in RISK_THRESHOLDS:
        if score >= lower:
            return level
    return RiskLevel.SAFE


class ConnectionType(str, Enum):
    DEVICE_MATCH = "DEVICE_MATCH"
    IP_MATCH = "IP_MATCH"
    BEHAVIOR_MATCH = "BEHAVIOR_MATCH"
    REPORT = "REPORT"
    TRANSACTION = "TRANSACTION"
    REFERRAL = "REFERRAL"
    BLOCK = "BLOCK"
    CHAT = "CHAT"


CONNECTION_WEIGHTS: Dict[ConnectionType, float] = {
    ConnectionType.DEVICE_MATCH: 0.9,
    ConnectionType.IP_MATCH: 0.8,
    ConnectionType.BEHAVIOR_MATCH: 0.7,
    ConnectionType.REPORT: 0.6,
    ConnectionType.TRANSACTION: 0.5,
    ConnectionType.REFERRAL: 0.4,
    ConnectionType.BLOCK: 0.4,
    ConnectionType.CHAT: 0.3,
}

# Marker flag written on a connection for every observed type
CONNECTION_MARKERS: Dict[ConnectionType, str] = {
    ConnectionType.DEVICE_MATCH: "shared_device",
    ConnectionType.IP_MATCH: "shared_ip",
    ConnectionType.BEHAVIOR_MATCH: "behavior_match",
    ConnectionType.REPORT: "reported",
    ConnectionType.TRANSACTION: "transaction",
    ConnectionType.REFERRAL: "referral",
    ConnectionType.BLOCK: "blocked",
    ConnectionType.CHAT: "chat",
}

STRUCTURAL_TYPES = frozenset({ConnectionType.DEVICE_MATCH, ConnectionType.IP_MATCH})

FLAG_SHARED_DEVICE_3PLUS = "shared_device_3plus"
FLAG_SHARED_IP_3PLUS = "shared_ip_3plus"


def weight_for(conn_type: ConnectionType) -> float:
    return CONNECTION_WEIGHTS[conn_type]


# ══════════════════════════════════════════════════════════════
# Records
# ══════════════════════════════════════════════════════════════

class Connection(BaseModel):
    """Edge from the owning node towards ``target_user_id``."""
    target_user_id: str
    type: ConnectionType
    weight: float = Field(ge=0, le=1)
    strength: float = Field(0.0, ge=0, le=1)
    interaction_count: int = Field(0, ge=0)
    risk_score: int = Field(0, ge=0, le=100)
    flags: Set[str] = Field(default_factory=set)
    observed_types: Set[ConnectionType] = Field(default_factory=set)
    first_seen: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)


class NodeMetadata(BaseModel):
    account_age_days: Optional[int] = Field(None, ge=0)
    device_fingerprints: Set[str] = Field(default_factory=set)
    ip_addresses: Set[str] = Field(default_factory=set)
    behavioral_signature: str = ""
    report_count: int = Field(0, ge=0)
    block_count: int = Field(0, ge=0)


class RiskNode(BaseModel):
    user_id: str
    trust_score: Optional[int] = Field(None, ge=0, le=1000)
    risk_score: int = Field(0, ge=0, le=100)
    risk_level: RiskLevel = RiskLevel.SAFE
    connections: Dict[str, Connection] = Field(default_factory=dict)
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    flags: Set[str] = Field(default_factory=set)
    cluster_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_analyzed: Optional[datetime] = None

    def neighbors_of_type(self, *types: ConnectionType) -> List[str]:
        """Neighbours whose connection observed any of ``types``."""
        wanted = set(types)
        return sorted(
            uid for uid, conn in self.connections.items()
            if conn.type in wanted or wanted & conn.observed_types
        )

    def shared_signal_flags(self, min_accounts: int) -> Set[str]:
        """Multi-account flags: a device/IP signal shared with ≥ min_accounts others."""
        flags: Set[str] = set()
        if len(self.neighbors_of_type(ConnectionType.DEVICE_MATCH)) >= min_accounts:
            flags.add(FLAG_SHARED_DEVICE_3PLUS)
        if len(self.neighbors_of_type(ConnectionType.IP_MATCH)) >= min_accounts:
            flags.add(FLAG_SHARED_IP_3PLUS)
        return flags
