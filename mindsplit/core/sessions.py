from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from ..chunking import Chunk
from ..errors import SessionNotFoundError
from ..graph import Edge, Graph
from ..mincut import CutResult
from ..utils import ensure_dir


@dataclass
class Session:
    id: str
    chunks: List[Chunk]
    graph: Graph
    seed: int
    min_edge_weight: float
    # cache_key of the embedder whose vectors built the graph
    embedder: str = ""
    partitions_by_n: Dict[int, CutResult] = field(default_factory=dict)
    last_n: Optional[int] = None
    version: int = 1
    created_at: int = 0
    updated_at: int = 0

    @property
    def next_chunk_id(self) -> int:
        return max((c.id for c in self.chunks), default=-1) + 1

    @property
    def texts(self) -> Set[str]:
        return {c.text for c in self.chunks}

    def to_payload(self) -> Dict[str, Any]:
        return {
            "chunks": [c.to_dict() for c in self.chunks],
            "nodes": list(self.graph.nodes),
            "graphEdges": [[e.u, e.v, e.weight] for e in self.graph.edges],
            "seed": self.seed,
            "minEdgeWeight": self.min_edge_weight,
            "embedder": self.embedder,
            "partitionsByN": {str(k): v.to_dict() for k, v in sorted(self.partitions_by_n.items())},
            "lastN": self.last_n,
        }

    @classmethod
    def from_row(cls, session_id: str, payload: str, version: int, created_at: int, updated_at: int) -> "Session":
        d = json.loads(payload)
        graph = Graph.from_dict({"nodes": d.get("nodes", []), "edges": d.get("graphEdges", [])})
        return cls(
            id=session_id,
            chunks=[Chunk.from_dict(c) for c in d.get("chunks", [])],
            graph=graph,
            seed=int(d["seed"]),
            min_edge_weight=float(d.get("minEdgeWeight", 0.3)),
            embedder=str(d.get("embedder", "")),
            partitions_by_n={int(k): CutResult.from_dict(v) for k, v in d.get("partitionsByN", {}).items()},
            last_n=d.get("lastN"),
            version=int(version),
            created_at=int(created_at),
            updated_at=int(updated_at),
        )


class SessionStore:
    """Sessions persisted as one JSON row each.

    Every mutation is a single ``BEGIN IMMEDIATE`` transaction, so readers see
    either the old or the new row. Writers of the same session are
    additionally serialised in-process through :meth:`writer`.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        ensure_dir(os.path.dirname(os.path.abspath(path)))
        self._locks_guard = threading.Lock()
        self._writer_locks: Dict[str, threading.RLock] = {}
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30, isolation_level=None, check_same_thread=False)

    def _init_db(self) -> None:
        with closing(self._connect()) as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                  id TEXT PRIMARY KEY,
                  payload TEXT NOT NULL,
                  version INTEGER NOT NULL,
                  created_at INTEGER NOT NULL,
                  updated_at INTEGER NOT NULL
                )
                """
            )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as con:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield con
            except BaseException:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")

    @contextmanager
    def writer(self, session_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._writer_locks.setdefault(session_id, threading.RLock())
        with lock:
            yield

    @staticmethod
    def _load(con: sqlite3.Connection, session_id: str) -> Optional[Session]:
        row = con.execute(
            "SELECT payload, version, created_at, updated_at FROM sessions WHERE id=?",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return Session.from_row(session_id, *row)

    @staticmethod
    def _store(con: sqlite3.Connection, session: Session) -> None:
        con.execute(
            "UPDATE sessions SET payload=?, version=?, updated_at=? WHERE id=?",
            (json.dumps(session.to_payload(), ensure_ascii=False), session.version, session.updated_at, session.id),
        )

    # ---- public API ----
    def create(
        self,
        chunks: Sequence[Chunk],
        graph: Graph,
        seed: int,
        min_edge_weight: float = 0.3,
        embedder: str = "",
    ) -> str:
        now = int(time.time())
        session = Session(
            id=uuid.uuid4().hex,
            chunks=list(chunks),
            graph=graph,
            seed=int(seed),
            min_edge_weight=float(min_edge_weight),
            embedder=embedder,
            created_at=now,
            updated_at=now,
        )
        with self._transaction() as con:
            con.execute(
                "INSERT INTO sessions(id, payload, version, created_at, updated_at) VALUES (?,?,?,?,?)",
                (session.id, json.dumps(session.to_payload(), ensure_ascii=False), session.version, now, now),
            )
        logging.info("Session %s created: %d chunk(s), %d edge(s)", session.id, len(session.chunks), len(graph.edges))
        return session.id

    def get(self, session_id: str) -> Optional[Session]:
        with closing(self._connect()) as con:
            return self._load(con, session_id)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def extend(self, session_id: str, new_chunks: Sequence[Chunk], new_edges: Sequence[Edge]) -> Session:
        """Append chunks and edges; any graph change drops cached partitions."""
        with self.writer(session_id), self._transaction() as con:
            session = self._load(con, session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if not new_chunks and not new_edges:
                return session

            expected = list(range(session.next_chunk_id, session.next_chunk_id + len(new_chunks)))
            got = [c.id for c in new_chunks]
            if got != expected:
                raise ValueError(f"new chunk ids {got} do not continue session ids (expected {expected})")

            session.chunks = session.chunks + list(new_chunks)
            session.graph = session.graph.with_additions(got, new_edges)
            session.partitions_by_n = {}
            session.version += 1
            session.updated_at = int(time.time())
            self._store(con, session)
        logging.info(
            "Session %s extended to v%d: +%d chunk(s), +%d edge(s)",
            session_id,
            session.version,
            len(new_chunks),
            len(new_edges),
        )
        return session

    def save_partition(self, session_id: str, n: int, result: CutResult, expected_version: int) -> bool:
        with self.writer(session_id), self._transaction() as con:
            session = self._load(con, session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session.version != expected_version:
                logging.warning(
                    "Session %s: partition for n=%d computed on v%d, session is at v%d; not cached",
                    session_id,
                    n,
                    expected_version,
                    session.version,
                )
                return False
            covered = sorted(x for comp in result.partition.components for x in comp)
            if covered != list(session.graph.nodes) or result.n != n:
                raise ValueError(f"partition does not cover session {session_id} with {n} component(s)")
            session.partitions_by_n[n] = result
            session.last_n = n
            session.updated_at = int(time.time())
            self._store(con, session)
        return True

    def delete(self, session_id: str) -> bool:
        with self.writer(session_id), self._transaction() as con:
            cur = con.execute("DELETE FROM sessions WHERE id=?", (session_id,))
            deleted = cur.rowcount > 0
        if deleted:
            with self._locks_guard:
                self._writer_locks.pop(session_id, None)
        return deleted

    def list_ids(self) -> List[str]:
        with closing(self._connect()) as con:
            rows = con.execute("SELECT id FROM sessions ORDER BY created_at, id").fetchall()
        return [r[0] for r in rows]
