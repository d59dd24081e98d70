"""Weighted similarity graph over chunk ids.

Every builder here is a pure function: no I/O, no logging, no randomness.
Nodes are chunk ids; an undirected edge is stored once as ``(u, v, weight)``
with ``u < v`` and edges are kept sorted by ``(u, v)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Sequence, Tuple

import numpy as np
from sklearn.preprocessing import normalize

from .chunking import Chunk


class Edge(NamedTuple):
    u: int
    v: int
    weight: float


@dataclass(frozen=True)
class Graph:
    nodes: Tuple[int, ...]
    edges: Tuple[Edge, ...]

    @classmethod
    def canonical(cls, nodes: Iterable[int], edges: Iterable[Edge]) -> "Graph":
        node_set = set(int(x) for x in nodes)
        by_pair: Dict[Tuple[int, int], Edge] = {}
        for e in edges:
            u, v = (int(e[0]), int(e[1]))
            if u == v:
                raise ValueError(f"self-edge on node {u}")
            if u > v:
                u, v = v, u
            if u not in node_set or v not in node_set:
                raise ValueError(f"edge ({u}, {v}) references an unknown node")
            by_pair[(u, v)] = Edge(u, v, float(e[2]))
        return cls(
            nodes=tuple(sorted(node_set)),
            edges=tuple(by_pair[k] for k in sorted(by_pair)),
        )

    def with_additions(self, nodes: Iterable[int], edges: Iterable[Edge]) -> "Graph":
        return Graph.canonical(list(self.nodes) + list(nodes), list(self.edges) + list(edges))

    def adjacency(self) -> Dict[int, Dict[int, float]]:
        adj: Dict[int, Dict[int, float]] = {n: {} for n in self.nodes}
        for u, v, w in self.edges:
            adj[u][v] = w
            adj[v][u] = w
        return adj

    def connected_components(self) -> List[Tuple[int, ...]]:
        """Components as sorted tuples, ordered by their smallest node id."""
        adj = self.adjacency()
        seen: set = set()
        comps: List[Tuple[int, ...]] = []
        for start in self.nodes:
            if start in seen:
                continue
            stack = [start]
            seen.add(start)
            members: List[int] = []
            while stack:
                cur = stack.pop()
                members.append(cur)
                for nb in adj[cur]:
                    if nb not in seen:
                        seen.add(nb)
                        stack.append(nb)
            comps.append(tuple(sorted(members)))
        return comps

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "edges": [[e.u, e.v, e.weight] for e in self.edges],
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Graph":
        return cls.canonical(d.get("nodes", []), [Edge(int(u), int(v), float(w)) for u, v, w in d.get("edges", [])])


def _check_weight(min_edge_weight: float) -> None:
    if not 0.0 < min_edge_weight <= 1.0:
        raise ValueError(f"min_edge_weight must be in (0, 1], got {min_edge_weight}")


def _unit_rows(chunks: Sequence[Chunk], embeddings: Mapping[int, Any]) -> np.ndarray:
    rows: List[np.ndarray] = []
    for c in chunks:
        if c.id not in embeddings:
            raise ValueError(f"missing embedding for chunk {c.id}")
        rows.append(np.asarray(embeddings[c.id], dtype=np.float64).ravel())
    dims = {r.size for r in rows}
    if len(dims) > 1:
        raise ValueError(f"embedding dimensions differ: {sorted(dims)}")
    if not rows:
        return np.zeros((0, 0), dtype=np.float64)
    # Zero rows stay zero, so they produce no edges.
    return normalize(np.vstack(rows))


def build_graph(
    chunks: Sequence[Chunk],
    embeddings: Mapping[int, Any],
    min_edge_weight: float = 0.3,
) -> Graph:
    """Connect every pair of chunks whose cosine similarity is >= ``min_edge_weight``."""
    _check_weight(min_edge_weight)
    ordered = sorted(chunks, key=lambda c: c.id)
    ids = [c.id for c in ordered]
    if len(set(ids)) != len(ids):
        raise ValueError("duplicate chunk ids")
    Xn = _unit_rows(ordered, embeddings)
    edges: List[Edge] = []
    if len(ordered) > 1:
        sims = Xn @ Xn.T
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                s = float(sims[i, j])
                if s >= min_edge_weight:
                    edges.append(Edge(ids[i], ids[j], s))
    return Graph(nodes=tuple(ids), edges=tuple(edges))


def bridge_edges(
    existing: Sequence[Chunk],
    new: Sequence[Chunk],
    embeddings: Mapping[int, Any],
    min_edge_weight: float = 0.3,
) -> List[Edge]:
    """Edges that appear when ``new`` chunks join a graph built over ``existing``.

    Covers new-new and existing-new pairs; existing-existing pairs are
    already in the graph and are not recomputed.
    """
    _check_weight(min_edge_weight)
    if not new:
        return []
    old_sorted = sorted(existing, key=lambda c: c.id)
    new_sorted = sorted(new, key=lambda c: c.id)
    old_ids = {c.id for c in old_sorted}
    clash = [c.id for c in new_sorted if c.id in old_ids]
    if clash:
        raise ValueError(f"new chunk ids already present: {clash}")
    everyone = sorted(old_sorted + new_sorted, key=lambda c: c.id)
    ids = [c.id for c in everyone]
    Xn = _unit_rows(everyone, embeddings)
    sims = Xn @ Xn.T
    new_ids = {c.id for c in new_sorted}
    edges: List[Edge] = []
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            if ids[i] not in new_ids and ids[j] not in new_ids:
                continue
            s = float(sims[i, j])
            if s >= min_edge_weight:
                edges.append(Edge(ids[i], ids[j], s))
    return edges


def cut_edges_of(graph: Graph, components: Sequence[Iterable[int]]) -> List[Edge]:
    """Graph edges whose endpoints lie in different components, in graph order."""
    owner: Dict[int, int] = {}
    for idx, comp in enumerate(components):
        for node in comp:
            owner[node] = idx
    return [e for e in graph.edges if owner[e.u] != owner[e.v]]


def cut_weight(edges: Iterable[Edge]) -> float:
    return math.fsum(e.weight for e in edges)
