"""Minimum-weight N-way partition of a similarity graph.

Two cooperating modes:

- Recursive bisection: a priority worklist of components ranked by the weight
  of their own global minimum cut (Stoer-Wagner). The cheapest component is
  split first until ``n`` components exist.
- Karger cross-check: independent weighted contraction trials, each seeded
  from ``seed + trial``, contracting straight down to ``n`` groups. The lowest
  cut among the bisection result and all trials is kept.

Node ids are mapped onto indices ``0..V-1`` and the graph onto a dense
adjacency matrix, so contraction is row/column arithmetic on indices. Index
order equals id order, which keeps every tie-break expressible in ids.

Candidates are ranked by weight rounded to ``_DECIMALS``; on equal weight the
candidate whose smallest component has the lower minimum node id wins, then
the lexicographically smaller canonical form.
"""

from __future__ import annotations

import heapq
import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidPartitionCount, UnderconstrainedPartitionError
from .graph import Edge, Graph, cut_edges_of, cut_weight

_DECIMALS = 9

Group = Tuple[int, ...]
CandidateKey = Tuple[float, int, Tuple[Group, ...]]


# ------------------------------
# Results
# ------------------------------
@dataclass(frozen=True)
class Partition:
    components: Tuple[FrozenSet[int], ...]

    def __len__(self) -> int:
        return len(self.components)

    def component_of(self, node: int) -> int:
        for idx, comp in enumerate(self.components):
            if node in comp:
                return idx
        raise KeyError(node)

    def as_lists(self) -> List[List[int]]:
        return [sorted(c) for c in self.components]


@dataclass(frozen=True)
class CutResult:
    partition: Partition
    cut_edges: Tuple[Edge, ...]
    total_cut_weight: float

    @property
    def n(self) -> int:
        return len(self.partition)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "components": self.partition.as_lists(),
            "cutEdges": [[e.u, e.v, e.weight] for e in self.cut_edges],
            "totalCutWeight": self.total_cut_weight,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CutResult":
        comps = tuple(frozenset(int(x) for x in c) for c in d["components"])
        return cls(
            partition=Partition(components=comps),
            cut_edges=tuple(Edge(int(u), int(v), float(w)) for u, v, w in d["cutEdges"]),
            total_cut_weight=float(d["totalCutWeight"]),
        )


# ------------------------------
# Ranking helpers
# ------------------------------
def candidate_key(weight: float, groups: Sequence[Sequence[int]]) -> CandidateKey:
    canon = tuple(sorted(tuple(sorted(g)) for g in groups))
    smallest = min(canon, key=lambda g: (len(g), g[0]))
    return (round(weight, _DECIMALS), smallest[0], canon)


def merge_smallest(groups: Sequence[Sequence[int]], n: int) -> List[Group]:
    """Merge whole groups, two smallest first (ties: lower min id), until ``n`` remain."""
    heap: List[Tuple[int, int, Group]] = [(len(g), min(g), tuple(sorted(g))) for g in groups]
    heapq.heapify(heap)
    while len(heap) > n:
        _, _, a = heapq.heappop(heap)
        _, _, b = heapq.heappop(heap)
        merged = tuple(sorted(a + b))
        heapq.heappush(heap, (len(merged), merged[0], merged))
    return sorted((g for _, _, g in heap), key=lambda g: g[0])


def trial_rng(seed: int, trial: int) -> np.random.Generator:
    return np.random.default_rng((seed + trial) % (2 ** 63))


# ------------------------------
# Stoer-Wagner
# ------------------------------
def stoer_wagner(weights: np.ndarray) -> Tuple[float, Group]:
    """Exact global minimum 2-way cut of a symmetric non-negative weight matrix.

    Returns ``(weight, side)`` with ``side`` as local indices. Each phase
    starts from the lowest active index and ``argmax`` ties go to the lowest
    position, so the result is fully deterministic.
    """
    k = int(weights.shape[0])
    if k < 2:
        raise ValueError("stoer_wagner needs at least two nodes")
    W = np.array(weights, dtype=np.float64, copy=True)
    groups: List[List[int]] = [[i] for i in range(k)]
    active = list(range(k))
    everyone = set(range(k))

    best_key: Optional[CandidateKey] = None
    best: Tuple[float, Group] = (math.inf, ())
    while len(active) > 1:
        act = np.asarray(active)
        conn = W[act[0], act].copy()
        added = np.zeros(len(act), dtype=bool)
        added[0] = True
        prev_pos = last_pos = 0
        for _ in range(len(act) - 1):
            nxt = int(np.argmax(np.where(added, -np.inf, conn)))
            prev_pos, last_pos = last_pos, nxt
            added[nxt] = True
            conn += W[act[nxt], act]
        s, t = int(act[prev_pos]), int(act[last_pos])

        side = sorted(groups[t])
        rest = sorted(everyone.difference(side))
        w = float(weights[np.ix_(side, rest)].sum())
        key = candidate_key(w, [side, rest])
        if best_key is None or key < best_key:
            best_key = key
            best = (w, tuple(side))

        # contract t into s
        W[s, :] += W[t, :]
        W[:, s] += W[:, t]
        W[s, s] = 0.0
        W[t, :] = 0.0
        W[:, t] = 0.0
        groups[s].extend(groups[t])
        groups[t] = []
        active.remove(t)
    return best


# ------------------------------
# Arena: index space + dense adjacency
# ------------------------------
class _Arena:
    def __init__(self, graph: Graph) -> None:
        self.ids: List[int] = list(graph.nodes)
        self.graph = graph
        self.index: Dict[int, int] = {nid: i for i, nid in enumerate(self.ids)}
        index = self.index
        size = len(self.ids)
        self.W = np.zeros((size, size), dtype=np.float64)
        self.edges: List[Tuple[int, int, float]] = []
        for u, v, w in graph.edges:
            i, j = index[u], index[v]
            self.W[i, j] = w
            self.W[j, i] = w
            self.edges.append((i, j, w))

    def __len__(self) -> int:
        return len(self.ids)

    def graph_components(self) -> List[Group]:
        """Connected components of the whole graph, as index tuples ordered by min index."""
        return [tuple(self.index[x] for x in comp) for comp in self.graph.connected_components()]

    def components(self, piece: Sequence[int]) -> List[Group]:
        sub = self.W[np.ix_(piece, piece)] > 0.0
        seen = np.zeros(len(piece), dtype=bool)
        comps: List[Group] = []
        for start in range(len(piece)):
            if seen[start]:
                continue
            seen[start] = True
            stack = [start]
            members: List[int] = []
            while stack:
                cur = stack.pop()
                members.append(piece[cur])
                for nb in np.nonzero(sub[cur] & ~seen)[0]:
                    seen[nb] = True
                    stack.append(int(nb))
            comps.append(tuple(sorted(members)))
        return sorted(comps, key=lambda g: g[0])

    def partition_weight(self, groups: Sequence[Sequence[int]]) -> float:
        label = np.empty(len(self.ids), dtype=np.int64)
        for idx, g in enumerate(groups):
            label[list(g)] = idx
        return math.fsum(w for i, j, w in self.edges if label[i] != label[j])

    def key(self, groups: Sequence[Sequence[int]]) -> CandidateKey:
        return candidate_key(self.partition_weight(groups), groups)


# ------------------------------
# Karger contraction
# ------------------------------
def karger_trial(arena: _Arena, n: int, rng: np.random.Generator) -> List[Group]:
    """One weighted contraction run down to ``n`` groups.

    Edges are contracted in order of exponential clocks ``Exp(1) / weight``,
    which picks each next contraction with probability proportional to its
    weight among the edges still crossing groups.
    """
    size = len(arena)
    parent = list(range(size))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    remaining = size
    if arena.edges and remaining > n:
        weights = np.asarray([w for _, _, w in arena.edges], dtype=np.float64)
        clocks = rng.exponential(size=len(weights)) / weights
        for k in np.argsort(clocks, kind="stable"):
            if remaining <= n:
                break
            i, j, _ = arena.edges[int(k)]
            ri, rj = find(i), find(j)
            if ri == rj:
                continue
            if ri < rj:
                parent[rj] = ri
            else:
                parent[ri] = rj
            remaining -= 1

    members: Dict[int, List[int]] = defaultdict(list)
    for x in range(size):
        members[find(x)].append(x)
    groups = [tuple(sorted(m)) for m in members.values()]
    if len(groups) > n:
        # ran out of edges: disconnected pieces are merged whole
        return merge_smallest(groups, n)
    return sorted(groups, key=lambda g: g[0])


# ------------------------------
# Engine
# ------------------------------
class MinCutEngine:
    """Computes a minimum-weight partition of a graph into ``n`` workstreams."""

    def __init__(self, karger_trials: int = 8, time_budget: Optional[float] = None) -> None:
        if karger_trials < 0:
            raise ValueError(f"karger_trials must be >= 0, got {karger_trials}")
        self.karger_trials = int(karger_trials)
        self.time_budget = time_budget

    def partition(self, graph: Graph, n: int, seed: int, timeout: Optional[float] = None) -> CutResult:
        size = len(graph.nodes)
        if n < 1 or n > size:
            raise InvalidPartitionCount(n, size)

        budget = timeout if timeout is not None else self.time_budget
        deadline = None if budget is None else time.monotonic() + budget

        arena = _Arena(graph)
        if n == 1:
            groups: List[Group] = [tuple(range(size))]
        else:
            groups = self._bisect_to(arena, n)
            best_key = arena.key(groups)
            for trial in range(self.karger_trials):
                if deadline is not None and time.monotonic() >= deadline:
                    logging.info("Karger budget elapsed after %d/%d trial(s)", trial, self.karger_trials)
                    break
                cand = karger_trial(arena, n, trial_rng(seed, trial))
                key = arena.key(cand)
                if key < best_key:
                    logging.debug("Karger trial %d improved cut %.6f -> %.6f", trial, best_key[0], key[0])
                    groups, best_key = cand, key
        return self._result(graph, arena, groups)

    # ---- recursive bisection ----
    def _bisect_to(self, arena: _Arena, n: int) -> List[Group]:
        comps = arena.graph_components()
        if len(comps) >= n:
            return merge_smallest(comps, n)

        heap: List[Tuple[CandidateKey, Group, Group, Group]] = []
        done: List[Group] = []
        for comp in comps:
            self._push(arena, heap, done, comp)
        count = len(comps)
        while count < n:
            if not heap:
                # only singletons left; partition() bounds n by the node count
                raise UnderconstrainedPartitionError(n, count)
            key, piece, side, rest = heapq.heappop(heap)
            logging.debug("bisect %d node(s) at weight %.6f", len(piece), key[0])
            self._push(arena, heap, done, side)
            self._push(arena, heap, done, rest)
            count += 1
        return sorted(done + [entry[1] for entry in heap], key=lambda g: g[0])

    def _push(self, arena: _Arena, heap: list, done: List[Group], piece: Group) -> None:
        if len(piece) < 2:
            done.append(piece)
            return
        side, rest, weight = self._bisect(arena, piece)
        heapq.heappush(heap, (candidate_key(weight, [side, rest]), piece, side, rest))

    @staticmethod
    def _bisect(arena: _Arena, piece: Group) -> Tuple[Group, Group, float]:
        comps = arena.components(piece)
        if len(comps) > 1:
            # already disconnected: separate one component, nothing is cut
            side = min(comps, key=lambda g: (len(g), g[0]))
            rest = tuple(sorted(x for x in piece if x not in side))
            return side, rest, 0.0
        idx = list(piece)
        weight, local_side = stoer_wagner(arena.W[np.ix_(idx, idx)])
        side = tuple(piece[i] for i in local_side)
        rest = tuple(sorted(set(piece).difference(side)))
        return side, rest, weight

    @staticmethod
    def _result(graph: Graph, arena: _Arena, groups: Sequence[Group]) -> CutResult:
        comps = sorted(
            (frozenset(arena.ids[i] for i in g) for g in groups),
            key=min,
        )
        cut = cut_edges_of(graph, comps)
        return CutResult(
            partition=Partition(components=tuple(comps)),
            cut_edges=tuple(cut),
            total_cut_weight=cut_weight(cut),
        )
