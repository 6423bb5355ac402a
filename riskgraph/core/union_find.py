"""
Deterministic union-find over user ids.

The lexicographically lowest user id always becomes the representative, so
the partition and its representatives depend only on the edge set, never on
edge order.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple


class UnionFind:
    def __init__(self, items: Iterable[str] = ()) -> None:
        self._parent: Dict[str, str] = {}
        for item in items:
            self.add(item)

    def add(self, item: str) -> None:
        self._parent.setdefault(item, item)

    def find(self, item: str) -> str:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        # path compression
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: str, b: str) -> str:
        """Merge the sets of a and b; idempotent and symmetric."""
        self.add(a)
        self.add(b)
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return ra
        low, high = (ra, rb) if ra < rb else (rb, ra)
        self._parent[high] = low
        return low

    def components(self) -> Dict[str, List[str]]:
        """Representative → sorted members."""
        groups: Dict[str, List[str]] = {}
        for item in sorted(self._parent):
            groups.setdefault(self.find(item), []).append(item)
        return groups


def connected_components(edges: Iterable[Tuple[str, str]]) -> Dict[str, List[str]]:
    uf = UnionFind()
    for a, b in edges:
        uf.union(a, b)
    return uf.components()
