from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..analysis import name_workstreams
from ..chunking import Chunk, chunk_text
from ..config import SplitConfig
from ..embeddings import Embedder, build_embedder
from ..errors import EmbedderMismatchError, EmptyInputError, InvalidPartitionCount, PartitionNotCachedError
from ..graph import Edge, Graph, bridge_edges, build_graph
from ..mincut import CutResult, MinCutEngine, Partition
from .cache import EmbeddingCache
from .sessions import SessionStore


# ------------------------------
# Result types
# ------------------------------
@dataclass(frozen=True)
class Workstream:
    index: int
    name: str
    chunks: Tuple[Chunk, ...]
    # cut edges with one endpoint in this workstream
    bleeding_edges: Tuple[Edge, ...] = ()
    connected_to: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "size": len(self.chunks),
            "chunks": [c.to_dict() for c in self.chunks],
            "bleeding_edges": [[e.u, e.v, e.weight] for e in self.bleeding_edges],
            "connected_to": list(self.connected_to),
        }


@dataclass(frozen=True)
class SplitResult:
    session_id: str
    partition: Partition
    cut_edges: Tuple[Edge, ...]
    total_cut_weight: float
    workstreams: Tuple[Workstream, ...]
    stats: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "workstreams": [w.to_dict() for w in self.workstreams],
            "cut_edges": [[e.u, e.v, e.weight] for e in self.cut_edges],
            "total_cut_weight": self.total_cut_weight,
            "stats": dict(self.stats),
        }


@dataclass(frozen=True)
class BleedingEdge:
    u: int
    v: int
    weight: float
    u_text: str
    v_text: str
    u_workstream: int
    v_workstream: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "u": self.u,
            "v": self.v,
            "weight": self.weight,
            "u_text": self.u_text,
            "v_text": self.v_text,
            "u_workstream": self.u_workstream,
            "v_workstream": self.v_workstream,
        }


@dataclass(frozen=True)
class BleedingReport:
    session_id: str
    n: int
    edges: Tuple[BleedingEdge, ...]
    total_cut_weight: float
    workstream_names: Tuple[str, ...]

    def connections(self) -> Dict[Tuple[int, int], List[BleedingEdge]]:
        """Bleeding edges grouped by the (lower, higher) workstream pair they join."""
        grouped: Dict[Tuple[int, int], List[BleedingEdge]] = defaultdict(list)
        for e in self.edges:
            a, b = sorted((e.u_workstream, e.v_workstream))
            grouped[(a, b)].append(e)
        return dict(sorted(grouped.items()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "n": self.n,
            "total_cut_weight": self.total_cut_weight,
            "edges": [e.to_dict() for e in self.edges],
            "connections": [
                {
                    "workstreams": [a, b],
                    "names": [self.workstream_names[a], self.workstream_names[b]],
                    "edge_count": len(edges),
                    "weight": sum(e.weight for e in edges),
                }
                for (a, b), edges in self.connections().items()
            ],
        }


# ------------------------------
# Orchestrator
# ------------------------------
class Orchestrator:
    """Coordinate chunking, cached embedding, graph building and partitioning."""

    def __init__(
        self,
        cache: EmbeddingCache,
        sessions: SessionStore,
        embedder: Embedder,
        config: Optional[SplitConfig] = None,
        engine: Optional[MinCutEngine] = None,
    ) -> None:
        self.config = config or SplitConfig()
        self.cache = cache
        self.sessions = sessions
        self.embedder = embedder
        self.engine = engine or MinCutEngine(
            karger_trials=self.config.karger_trials,
            time_budget=self.config.time_budget,
        )

    @classmethod
    def from_config(cls, config: Optional[SplitConfig] = None) -> "Orchestrator":
        cfg = config or SplitConfig.from_env()
        cfg.validate()
        return cls(
            cache=EmbeddingCache(cfg.embeddings_path),
            sessions=SessionStore(cfg.sessions_path),
            embedder=build_embedder(cfg.provider, cfg.model, cfg.batch_size),
            config=cfg,
        )

    def split(self, text: str, n: int, seed: Optional[int] = None) -> SplitResult:
        cfg = self.config
        chunks = chunk_text(text, method=cfg.chunk_method)
        if not chunks:
            raise EmptyInputError("input text yields no chunks")
        if n < 1 or n > len(chunks):
            raise InvalidPartitionCount(n, len(chunks))
        seed = cfg.seed if seed is None else int(seed)

        logging.info("Split: %d chunk(s) into %d workstream(s), seed=%d", len(chunks), n, seed)
        vectors, cached = self.cache.resolve(chunks, self.embedder)
        graph = build_graph(chunks, vectors, cfg.min_edge_weight)
        result = self.engine.partition(graph, n, seed)

        session_id = self.sessions.create(chunks, graph, seed, cfg.min_edge_weight, embedder=self.embedder.cache_key)
        with self.sessions.writer(session_id):
            session = self.sessions.require(session_id)
            self.sessions.save_partition(session_id, n, result, session.version)
        return self._split_result(session_id, chunks, graph, result, new_chunks=len(chunks), cached=cached)

    def add_and_resplit(self, session_id: str, text: str, n: int) -> SplitResult:
        cfg = self.config
        if not chunk_text(text, method=cfg.chunk_method):
            raise EmptyInputError("input text yields no chunks")

        with self.sessions.writer(session_id):
            session = self.sessions.require(session_id)
            if session.embedder and session.embedder != self.embedder.cache_key:
                raise EmbedderMismatchError(session_id, session.embedder, self.embedder.cache_key)
            new_chunks = chunk_text(
                text,
                start_id=session.next_chunk_id,
                method=cfg.chunk_method,
                skip=session.texts,
            )
            total = len(session.chunks) + len(new_chunks)
            if n < 1 or n > total:
                raise InvalidPartitionCount(n, total)

            if not new_chunks:
                logging.info("Session %s: nothing new in input", session_id)
                cached_result = session.partitions_by_n.get(n)
                if cached_result is not None:
                    if session.last_n != n:
                        self.sessions.save_partition(session_id, n, cached_result, session.version)
                    return self._split_result(
                        session_id, session.chunks, session.graph, cached_result, new_chunks=0, cached=0
                    )
                cached = 0
            else:
                vectors, cached = self.cache.resolve(session.chunks + new_chunks, self.embedder)
                edges = bridge_edges(session.chunks, new_chunks, vectors, session.min_edge_weight)
                session = self.sessions.extend(session_id, new_chunks, edges)

            result = self.engine.partition(session.graph, n, session.seed)
            self.sessions.save_partition(session_id, n, result, session.version)
        return self._split_result(
            session_id, session.chunks, session.graph, result, new_chunks=len(new_chunks), cached=cached
        )

    def get_bleeding_report(self, session_id: str, n: Optional[int] = None) -> BleedingReport:
        session = self.sessions.require(session_id)
        n = session.last_n if n is None else n
        if n is None or n not in session.partitions_by_n:
            raise PartitionNotCachedError(session_id, n)
        result = session.partitions_by_n[n]
        texts = {c.id: c.text for c in session.chunks}
        owner = _owner_map(result.partition)
        edges = tuple(
            BleedingEdge(
                u=e.u,
                v=e.v,
                weight=e.weight,
                u_text=texts[e.u],
                v_text=texts[e.v],
                u_workstream=owner[e.u],
                v_workstream=owner[e.v],
            )
            for e in result.cut_edges
        )
        return BleedingReport(
            session_id=session_id,
            n=n,
            edges=edges,
            total_cut_weight=result.total_cut_weight,
            workstream_names=tuple(name_workstreams(session.chunks, result.partition)),
        )

    # ---- helpers ----
    @staticmethod
    def _split_result(
        session_id: str,
        chunks: Sequence[Chunk],
        graph: Graph,
        result: CutResult,
        *,
        new_chunks: int,
        cached: int,
    ) -> SplitResult:
        by_id = {c.id: c for c in chunks}
        names = name_workstreams(chunks, result.partition)
        owner = _owner_map(result.partition)
        bleeding: Dict[int, List[Edge]] = defaultdict(list)
        for e in result.cut_edges:
            bleeding[owner[e.u]].append(e)
            bleeding[owner[e.v]].append(e)
        workstreams = tuple(
            Workstream(
                index=i,
                name=names[i],
                chunks=tuple(sorted((by_id[x] for x in comp), key=lambda c: c.order)),
                bleeding_edges=tuple(bleeding[i]),
                connected_to=tuple(sorted({owner[x] for e in bleeding[i] for x in (e.u, e.v)} - {i})),
            )
            for i, comp in enumerate(result.partition.components)
        )
        stats = {
            "chunk_count": len(chunks),
            "edge_count": len(graph.edges),
            "cut_edge_count": len(result.cut_edges),
            "cut_weight": result.total_cut_weight,
            "new_chunks": new_chunks,
            "cached_embeddings": cached,
        }
        logging.info(
            "Session %s: %d workstream(s), %d/%d edge(s) cut, weight %.4f",
            session_id,
            result.n,
            len(result.cut_edges),
            len(graph.edges),
            result.total_cut_weight,
        )
        return SplitResult(
            session_id=session_id,
            partition=result.partition,
            cut_edges=result.cut_edges,
            total_cut_weight=result.total_cut_weight,
            workstreams=workstreams,
            stats=stats,
        )


def _owner_map(partition: Partition) -> Dict[int, int]:
    owner: Dict[int, int] = {}
    for idx, comp in enumerate(partition.components):
        for node in comp:
            owner[node] = idx
    return owner
