"""Shared fixtures for MindSplit tests."""

import math
from typing import Dict, List, Sequence

import numpy as np
import pytest

from mindsplit.config import SplitConfig
from mindsplit.core.cache import EmbeddingCache
from mindsplit.core.orchestrator import Orchestrator
from mindsplit.core.sessions import SessionStore
from mindsplit.embeddings import Embedder, HashingEmbedder


FOUR_CHUNKS = [
    "Fix login bug.",
    "Auth tokens expiring.",
    "Review dashboard mockups.",
    "Dashboard needs new colors.",
]

# Pairs (0, 1) and (2, 3) sit at cosine 0.95; across pairs the only
# similarity above 0.145 is 1-2 at 0.15.
FOUR_VECTORS = {
    FOUR_CHUNKS[0]: [1.0, 0.0, 0.0, 0.0],
    FOUR_CHUNKS[1]: [0.95, 0.15, math.sqrt(0.075), 0.0],
    FOUR_CHUNKS[2]: [0.0, 1.0, 0.0, 0.0],
    FOUR_CHUNKS[3]: [0.0, 0.95, 0.0, math.sqrt(0.0975)],
    # close to the login/auth pair
    "Login page times out.": [0.9, 0.0, 0.0, math.sqrt(0.19)],
}


class FakeEmbedder(Embedder):
    """Call-counting provider with fixed vectors; unknown texts fall back to hashing."""

    name = "fake"

    def __init__(self, vectors: Dict[str, Sequence[float]] = None, dim: int = 4):
        self.vectors = dict(vectors or {})
        self.calls: List[List[str]] = []
        self._fallback = HashingEmbedder(dim=dim)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def embedded_texts(self) -> List[str]:
        return [t for call in self.calls for t in call]

    def embed(self, texts: List[str]) -> np.ndarray:
        self.calls.append(list(texts))
        rows = []
        for t in texts:
            if t in self.vectors:
                rows.append(np.asarray(self.vectors[t], dtype=np.float32))
            else:
                rows.append(self._fallback.embed([t])[0])
        return np.vstack(rows)


class BrokenEmbedder(Embedder):
    """Provider that fails or returns malformed output."""

    name = "broken"

    def __init__(self, output=None, error: Exception = None):
        self.output = output
        self.error = error
        self.calls = 0

    def embed(self, texts: List[str]):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def four_text():
    return "\n".join(FOUR_CHUNKS)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder(FOUR_VECTORS)


@pytest.fixture
def cache(tmp_path):
    return EmbeddingCache(str(tmp_path / "embeddings.sqlite"))


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(str(tmp_path / "sessions.sqlite"))


@pytest.fixture
def split_config(tmp_path):
    return SplitConfig(store_dir=str(tmp_path / "store"))


@pytest.fixture
def orchestrator(cache, session_store, fake_embedder, split_config):
    return Orchestrator(cache, session_store, fake_embedder, config=split_config)


@pytest.fixture
def make_orchestrator(cache, session_store, fake_embedder, tmp_path):
    """Build an orchestrator over the shared stores with config overrides."""

    def _make(**overrides):
        cfg = SplitConfig(store_dir=str(tmp_path / "store"), **overrides)
        return Orchestrator(cache, session_store, fake_embedder, config=cfg)

    return _make
