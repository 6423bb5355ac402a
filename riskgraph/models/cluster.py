"""
Risk cluster models and the cluster lifecycle state machine.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from riskgraph.models.risk_node import RiskLevel, utcnow


class FraudPattern(str, Enum):
    MULTI_ACCOUNT = "MULTI_ACCOUNT"
    BOT_NETWORK = "BOT_NETWORK"
    SCAM_RING = "SCAM_RING"
    FAKE_REVIEWS = "FAKE_REVIEWS"
    PAYMENT_FRAUD = "PAYMENT_FRAUD"
    IDENTITY_THEFT = "IDENTITY_THEFT"
    COORDINATED_SPAM = "COORDINATED_SPAM"
    WASH_TRADING = "WASH_TRADING"


class ClusterStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INVESTIGATING = "INVESTIGATING"
    CONFIRMED = "CONFIRMED"
    RESOLVED = "RESOLVED"


# ACTIVE → INVESTIGATING → CONFIRMED → RESOLVED, plus direct dismissal.
ALLOWED_TRANSITIONS: Dict[ClusterStatus, FrozenSet[ClusterStatus]] = {
    ClusterStatus.ACTIVE: frozenset({ClusterStatus.INVESTIGATING, ClusterStatus.RESOLVED}),
    ClusterStatus.INVESTIGATING: frozenset({ClusterStatus.CONFIRMED, ClusterStatus.RESOLVED}),
    ClusterStatus.CONFIRMED: frozenset({ClusterStatus.RESOLVED}),
    ClusterStatus.RESOLVED: frozenset(),
}


def can_transition(current: ClusterStatus, target: ClusterStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class ActionType(str, Enum):
    FLAGGED = "flagged"
    RESTRICTED = "restricted"
    BLOCKED = "blocked"
    BANNED = "banned"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class ClusterAction(BaseModel):
    """One admin decision in the append-only audit log."""
    action: ActionType
    timestamp: datetime = Field(default_factory=utcnow)
    reason: str
    admin_id: Optional[str] = None


class ClusterEvidence(BaseModel):
    shared_device_count: int = Field(0, ge=0)
    shared_ip_count: int = Field(0, ge=0)
    behavioral_similarity: float = Field(0.0, ge=0, le=1)
    temporal_correlation: float = Field(0.0, ge=0, le=1)
    transaction_pattern_tags: List[str] = []


class RiskCluster(BaseModel):
    cluster_id: str
    pattern: FraudPattern
    risk_level: RiskLevel
    members: List[str]
    centroid: str
    confidence: float = Field(ge=0, le=1)
    evidence: ClusterEvidence = Field(default_factory=ClusterEvidence)
    status: ClusterStatus = ClusterStatus.ACTIVE
    actions: List[ClusterAction] = []
    detected_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("members")
    @classmethod
    def _sorted_members(cls, value: List[str]) -> List[str]:
        members = sorted(set(value))
        if len(members) < 3:
            raise ValueError("a risk cluster needs at least 3 members")
        return members

    @property
    def member_count(self) -> int:
        return len(self.members)
