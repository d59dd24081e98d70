from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import threading
from contextlib import closing
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from ..chunking import Chunk
from ..embeddings import Embedder
from ..errors import CacheCorruptionError, EmbeddingProviderError
from ..utils import ensure_dir

# stay well under sqlite's bound-parameter limit
_LOOKUP_BATCH = 500


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """Content-addressed embedding store: ``(namespace, sha256(text)) -> float32 vector``.

    The namespace is the embedder's ``cache_key``, so vectors from different
    providers or models never mix. A key is written at most once. Concurrent
    writers of the same key race through ``INSERT OR IGNORE`` and every
    caller re-reads the stored winner, so all sessions observe one vector per
    text and embedder.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        parent = os.path.dirname(os.path.abspath(path))
        ensure_dir(parent)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._provider_calls = 0
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30, check_same_thread=False)

    def _init_db(self) -> None:
        with closing(self._connect()) as con, con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS embeddings (
                    namespace TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    text TEXT NOT NULL,
                    dim INTEGER NOT NULL,
                    vec BLOB NOT NULL,
                    created_at INTEGER NOT NULL DEFAULT (strftime('%s','now')),
                    PRIMARY KEY (namespace, content_hash)
                )
                """
            )

    # ---- reads ----
    def has(self, sha: str, namespace: str) -> bool:
        with closing(self._connect()) as con:
            cur = con.execute(
                "SELECT 1 FROM embeddings WHERE namespace=? AND content_hash=?", (namespace, sha)
            )
            return cur.fetchone() is not None

    def __len__(self) -> int:
        with closing(self._connect()) as con:
            (count,) = con.execute("SELECT COUNT(*) FROM embeddings").fetchone()
        return int(count)

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "provider_calls": self._provider_calls,
                "size": len(self),
            }

    @staticmethod
    def _decode(sha: str, text: str, dim: int, blob: bytes) -> np.ndarray:
        if content_hash(text) != sha:
            raise CacheCorruptionError(sha, "stored text does not hash to its key")
        arr = np.frombuffer(blob, dtype=np.float32)
        if arr.size != int(dim):
            raise CacheCorruptionError(sha, f"blob holds {arr.size} floats, expected {dim}")
        return arr

    def bulk_get(self, shas: Iterable[str], namespace: str) -> Dict[str, np.ndarray]:
        keys = list(dict.fromkeys(shas))
        found: Dict[str, np.ndarray] = {}
        if not keys:
            return found
        with closing(self._connect()) as con:
            for i in range(0, len(keys), _LOOKUP_BATCH):
                part = keys[i : i + _LOOKUP_BATCH]
                qmarks = ",".join(["?"] * len(part))
                cur = con.execute(
                    f"SELECT content_hash, text, dim, vec FROM embeddings WHERE namespace=? AND content_hash IN ({qmarks})",
                    (namespace, *part),
                )
                for sha, text, dim, blob in cur.fetchall():
                    found[sha] = self._decode(sha, text, dim, blob)
        return found

    # ---- writes ----
    @staticmethod
    def _check_provider_output(vecs, expected: int) -> np.ndarray:
        try:
            arr = np.asarray(vecs, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise EmbeddingProviderError(f"provider returned malformed vectors: {e}") from e
        if arr.ndim != 2 or arr.shape[0] != expected:
            raise EmbeddingProviderError(
                f"provider returned shape {arr.shape}, expected ({expected}, dim)"
            )
        if arr.shape[1] == 0:
            raise EmbeddingProviderError("provider returned zero-dimensional vectors")
        if not np.isfinite(arr).all():
            raise EmbeddingProviderError("provider returned non-finite values")
        return arr

    def _write(self, namespace: str, rows: List[Tuple[str, str, np.ndarray]]) -> None:
        # one transaction: all rows land or none do
        with self._lock, closing(self._connect()) as con, con:
            con.executemany(
                "INSERT OR IGNORE INTO embeddings(namespace, content_hash, text, dim, vec) VALUES (?,?,?,?,?)",
                [(namespace, sha, text, int(v.size), np.ascontiguousarray(v, dtype=np.float32).tobytes()) for sha, text, v in rows],
            )

    # ---- pipeline entry ----
    def resolve(self, chunks: Sequence[Chunk], provider: Embedder) -> Tuple[Dict[int, np.ndarray], int]:
        """Vectors keyed by chunk id, plus how many chunks were served from the cache."""
        namespace = provider.cache_key
        hashes = {c.id: content_hash(c.text) for c in chunks}
        found = self.bulk_get(hashes.values(), namespace)

        missing: Dict[str, str] = {}
        for c in chunks:
            h = hashes[c.id]
            if h not in found and h not in missing:
                missing[h] = c.text
        hit_count = sum(1 for h in hashes.values() if h in found)

        with self._lock:
            self._hits += hit_count
            self._misses += len(hashes) - hit_count

        if missing:
            texts = list(missing.values())
            with self._lock:
                self._provider_calls += 1
            vecs = self._check_provider_output(provider.embed(texts), len(texts))
            self._write(namespace, [(sha, text, vecs[k]) for k, (sha, text) in enumerate(missing.items())])
            logging.info("Embedding cache: %d new vector(s) via %s", len(texts), namespace)
            found.update(self.bulk_get(missing.keys(), namespace))

        return {cid: found[h] for cid, h in hashes.items()}, hit_count

    def get_or_compute(self, chunks: Sequence[Chunk], provider: Embedder) -> Dict[int, np.ndarray]:
        vectors, _ = self.resolve(chunks, provider)
        return vectors
