"""
Request / response models for the analysis and admin API.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from riskgraph.models.cluster import ClusterStatus, RiskCluster
from riskgraph.models.risk_node import STRUCTURAL_TYPES, ConnectionType, RiskNode, utcnow


class ConnectionEvent(BaseModel):
    """A raw observed relationship between two users."""
    source_user_id: str = Field(..., min_length=1)
    target_user_id: str = Field(..., min_length=1)
    type: ConnectionType
    signal_value: Optional[str] = Field(
        None, description="Shared device fingerprint / IP for *_MATCH events"
    )
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("occurred_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _shared_signal_named(self) -> "ConnectionEvent":
        if self.type in STRUCTURAL_TYPES and not self.signal_value:
            raise ValueError(f"{self.type.value} requires the shared signal_value")
        return self


class SuspiciousConnection(BaseModel):
    user_id: str
    type: ConnectionType
    reason: str
    risk_score: int = Field(ge=0, le=100)


class GraphAnalysisResult(BaseModel):
    """1-hop analysis of a single user."""
    user_id: str
    risk_node: RiskNode
    suspicious_connections: List[SuspiciousConnection] = []
    recommendations: List[str] = []
    requires_review: bool = False
    degraded: bool = False
    analyzed_at: datetime = Field(default_factory=utcnow)


class ClusterMembers(BaseModel):
    cluster: RiskCluster
    members: List[RiskNode]
    missing_members: List[str] = []


class DetectionRun(BaseModel):
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    nodes_scanned: int = 0
    edges_considered: int = 0
    edges_excluded: int = 0
    clusters: List[RiskCluster] = []
    retired: List[str] = []


class AdminDecision(BaseModel):
    reason: str = Field(..., min_length=1)
    admin_id: str = Field(..., min_length=1)


class BlockResult(BaseModel):
    cluster_id: str
    status: ClusterStatus
    sanctioned: int
    actions_recorded: int
