"""
Connection weigher – turns raw observed relationships into weighted edges.

Each event is a symmetric upsert on both users' connection maps:
  • weight looked up from the closed CONNECTION_WEIGHTS table
  • repeated observations bump interaction_count and strength
    (diminishing returns, capped at weight × 1.0)
  • a heavier type observed for an existing pair upgrades the edge
  • both nodes are marked dirty for re-scoring
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict

from riskgraph.config import settings
from riskgraph.errors import InvalidConnectionError
from riskgraph.models.analysis import ConnectionEvent
from riskgraph.models.risk_node import (
    CONNECTION_MARKERS,
    Connection,
    ConnectionType,
    RiskNode,
    weight_for,
)
from riskgraph.storage.node_store import RiskNodeStore

logger = logging.getLogger(__name__)


def compute_strength(weight: float, interaction_count: int) -> float:
    """weight × normalised count; ln-shaped so it saturates at the weight."""
    if interaction_count <= 0:
        return 0.0
    saturation = max(settings.STRENGTH_SATURATION_COUNT, 1)
    normalised = min(1.0, math.log1p(interaction_count) / math.log1p(saturation))
    return round(weight * normalised, 4)


def apply_observation(
    node: RiskNode,
    neighbor_id: str,
    conn_type: ConnectionType,
    observed_at: datetime,
) -> Connection:
    """Upsert the edge node → neighbor_id for one observation (in place)."""
    conn = node.connections.get(neighbor_id)
    weight = weight_for(conn_type)

    if conn is None:
        conn = Connection(
            target_user_id=neighbor_id,
            type=conn_type,
            weight=weight,
            first_seen=observed_at,
            last_seen=observed_at,
        )
        node.connections[neighbor_id] = conn
    elif weight > conn.weight:
        conn.type = conn_type
        conn.weight = weight

    conn.interaction_count += 1
    conn.observed_types.add(conn_type)
    conn.flags.add(CONNECTION_MARKERS[conn_type])
    conn.strength = compute_strength(conn.weight, conn.interaction_count)
    conn.risk_score = min(100, int(round(conn.strength * 100)))
    if observed_at > conn.last_seen:
        conn.last_seen = observed_at
    if observed_at < conn.first_seen:
        conn.first_seen = observed_at
    return conn


def merge_signal_value(node: RiskNode, conn_type: ConnectionType, value: str | None) -> None:
    if not value:
        return
    if conn_type == ConnectionType.DEVICE_MATCH:
        node.metadata.device_fingerprints.add(value)
    elif conn_type == ConnectionType.IP_MATCH:
        node.metadata.ip_addresses.add(value)


class ConnectionWeigher:
    """Records connection events into the risk node store."""

    def __init__(self, store: RiskNodeStore) -> None:
        self.store = store
        self.recorded_count = 0

    async def record(self, event: ConnectionEvent) -> Dict[str, RiskNode]:
        """Symmetric upsert of one event; returns both updated nodes."""
        a, b = event.source_user_id, event.target_user_id
        if a == b:
            raise InvalidConnectionError(f"User {a} cannot be connected to itself")

        def _mutate(nodes: Dict[str, RiskNode]) -> None:
            for owner, other in ((a, b), (b, a)):
                node = nodes[owner]
                apply_observation(node, other, event.type, event.occurred_at)
                merge_signal_value(node, event.type, event.signal_value)
                # accumulate only; clearing is the scorer's job
                node.flags |= node.shared_signal_flags(settings.MULTI_ACCOUNT_SHARE_COUNT)

        nodes = await self.store.mutate([a, b], _mutate, create_missing=True, mark_dirty=True)
        self.recorded_count += 1
        logger.debug("Recorded %s between %s and %s", event.type.value, a, b)
        return nodes
