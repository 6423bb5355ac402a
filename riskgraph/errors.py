"""
Error taxonomy for the risk graph engine.

Routes translate these into HTTP responses; background jobs log them.
"""

from __future__ import annotations


class RiskGraphError(Exception):
    """Base class for every engine error."""


# ── not found ────────────────────────────────────────────────

class NotFoundError(RiskGraphError):
    pass


class NodeNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"Risk node not found: {user_id}")
        self.user_id = user_id


class ClusterNotFoundError(NotFoundError):
    def __init__(self, cluster_id: str) -> None:
        super().__init__(f"Risk cluster not found: {cluster_id}")
        self.cluster_id = cluster_id


# ── dependencies / integrity ─────────────────────────────────

class DependencyDegradedError(RiskGraphError):
    """An external provider (trust score, fraud signals) is unreachable."""

    def __init__(self, provider: str, cause: Exception | None = None) -> None:
        super().__init__(f"{provider} unavailable: {cause}")
        self.provider = provider
        self.cause = cause


class DataIntegrityError(RiskGraphError):
    """A connection points at a neighbor with no stored node."""

    def __init__(self, user_id: str, neighbor_id: str) -> None:
        super().__init__(f"Dangling connection {user_id} → {neighbor_id}")
        self.user_id = user_id
        self.neighbor_id = neighbor_id


# ── concurrency ──────────────────────────────────────────────

class WriteConflictError(RiskGraphError):
    """Optimistic-concurrency retries exhausted; safe to retry later."""

    retryable = True


class ConcurrentBatchConflictError(RiskGraphError):
    """A cluster-detection run is already holding the batch lease."""

    retryable = True


class BatchAbortedError(RiskGraphError):
    """An operator aborted the in-flight detection run; nothing was committed."""


# ── caller errors ────────────────────────────────────────────

class InvalidTransitionError(RiskGraphError):
    def __init__(self, cluster_id: str, current: str, target: str) -> None:
        super().__init__(f"Cluster {cluster_id} cannot move from {current} to {target}")
        self.cluster_id = cluster_id
        self.current = current
        self.target = target


class InvalidConnectionError(RiskGraphError, ValueError):
    pass
