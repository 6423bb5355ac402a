"""
Signal ingestor – pulls a user's fraud signals and turns shared devices,
shared IPs and behavioural look-alikes into weighted connections.

Re-syncing an unchanged user records nothing new: an observation is only
replayed when the pair has not been seen with that signal before.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from riskgraph.config import settings
from riskgraph.core.connection_weigher import ConnectionWeigher
from riskgraph.models.analysis import ConnectionEvent
from riskgraph.models.risk_node import ConnectionType, RiskNode
from riskgraph.signals.providers import FraudSignalProvider, UserSignals
from riskgraph.storage.node_store import RiskNodeStore

logger = logging.getLogger(__name__)


def _already_observed(
    node: Optional[RiskNode],
    other: str,
    conn_type: ConnectionType,
    signal_value: Optional[str] = None,
) -> bool:
    if node is None:
        return False
    conn = node.connections.get(other)
    if conn is None or conn_type not in conn.observed_types:
        return False
    if signal_value is None:
        return True
    if conn_type == ConnectionType.DEVICE_MATCH:
        return signal_value in node.metadata.device_fingerprints
    return signal_value in node.metadata.ip_addresses


class SignalIngestor:
    def __init__(
        self,
        store: RiskNodeStore,
        weigher: ConnectionWeigher,
        signal_provider: FraudSignalProvider,
    ) -> None:
        self.store = store
        self.weigher = weigher
        self.signals = signal_provider
        self.limit = settings.MAX_SHARED_ACCOUNTS_PER_SIGNAL

    async def _shared_signal_events(
        self, user_id: str, node: Optional[RiskNode], signals: UserSignals
    ) -> List[ConnectionEvent]:
        events: List[ConnectionEvent] = []
        lookups = (
            (ConnectionType.DEVICE_MATCH, signals.device_fingerprints, self.signals.users_sharing_device),
            (ConnectionType.IP_MATCH, signals.ip_addresses, self.signals.users_sharing_ip),
        )
        for conn_type, values, lookup in lookups:
            for value in sorted(values):
                others = [u for u in await lookup(value) if u != user_id][: self.limit]
                for other in others:
                    if _already_observed(node, other, conn_type, value):
                        continue
                    events.append(ConnectionEvent(
                        source_user_id=user_id,
                        target_user_id=other,
                        type=conn_type,
                        signal_value=value,
                    ))
        return events

    async def _behavior_events(self, user_id: str, node: Optional[RiskNode]) -> List[ConnectionEvent]:
        events: List[ConnectionEvent] = []
        similar = await self.signals.behaviorally_similar_users(user_id)
        for other, score in similar[: self.limit]:
            if other == user_id or score < settings.SIMILARITY_THRESHOLD:
                continue
            if _already_observed(node, other, ConnectionType.BEHAVIOR_MATCH):
                continue
            events.append(ConnectionEvent(
                source_user_id=user_id,
                target_user_id=other,
                type=ConnectionType.BEHAVIOR_MATCH,
            ))
        return events

    async def sync_user(self, user_id: str) -> int:
        """
        Refresh one user from the fraud signal provider.

        Returns the number of connections recorded.  Provider failures
        propagate as DependencyDegradedError; nothing is written then.
        """
        signals = await self.signals.get_user_signals(user_id)
        node = await self.store.get(user_id)

        events = await self._shared_signal_events(user_id, node, signals)
        events += await self._behavior_events(user_id, node)

        for event in events:
            await self.weigher.record(event)

        if node is not None or events:
            def _refresh(nodes):
                meta = nodes[user_id].metadata
                meta.device_fingerprints |= signals.device_fingerprints
                meta.ip_addresses |= signals.ip_addresses
                meta.behavioral_signature = signals.behavioral_signature or meta.behavioral_signature
                meta.report_count = signals.report_count
                meta.block_count = signals.block_count
                if signals.account_age_days is not None:
                    meta.account_age_days = signals.account_age_days

            await self.store.mutate([user_id], _refresh, mark_dirty=True)

        logger.info("Synced signals for %s – %d connections recorded", user_id, len(events))
        return len(events)
