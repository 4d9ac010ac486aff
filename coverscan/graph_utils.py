"""
Graph algorithms for clustering covers.

Provides:
- UnionFind: disjoint sets over 0..n-1 (path halving, union by size)
"""

from collections import defaultdict


class UnionFind:
    """
    Disjoint-set forest over the indices 0..n-1.

    Lives for a single scan; nothing is shared between scans.
    """

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.size = [1] * n

    def __len__(self) -> int:
        return len(self.parent)

    def find(self, x: int) -> int:
        parent = self.parent
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(self, a: int, b: int) -> bool:
        """Merge the sets holding a and b. Returns False if already merged."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if self.size[ra] < self.size[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        self.size[ra] += self.size[rb]
        return True

    def components(self) -> list[list[int]]:
        """All sets, each as an ascending index list, in order of first member."""
        by_root = defaultdict(list)
        for i in range(len(self.parent)):
            by_root[self.find(i)].append(i)
        return list(by_root.values())
