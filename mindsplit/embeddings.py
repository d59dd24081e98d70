from __future__ import annotations

import logging
import os
import time
import zlib
from typing import Any, Callable, Dict, List, Tuple, Type

import numpy as np
from tqdm import tqdm

from .errors import ConfigurationError, EmbeddingProviderError


def retry_with_backoff(
    max_retries: int = 4,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (EmbeddingProviderError,),
):
    """Retry decorator for transient provider errors.

    Retries live at the provider boundary only; the cache and the pipeline
    never retry a failed batch.
    """
    def decorator(func: Callable):
        def wrapper(*args, **kwargs):
            last_exc: BaseException | None = None
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exc = e
                    if attempt < max_retries:
                        logging.warning(
                            "Embedding API failed, retry %d in %.1fs: %s",
                            attempt + 1,
                            delay,
                            str(e),
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logging.error("Embedding API exhausted retries: %s", str(e))
            assert last_exc is not None
            raise last_exc
        return wrapper
    return decorator


class Embedder:
    """External embedding capability: one vector per input text, same order."""

    name = "embedder"

    @property
    def cache_key(self) -> str:
        """Identity of the vector space; vectors from different keys never mix."""
        return self.name

    def embed(self, texts: List[str]) -> np.ndarray:  # pragma: no cover - interface
        raise NotImplementedError


class SiliconFlowEmbedder(Embedder):
    """Embed via SiliconFlow's OpenAI-compatible embeddings endpoint."""

    name = "siliconflow"

    def __init__(
        self,
        model: str = "BAAI/bge-m3",
        base_url: str = "https://api.siliconflow.cn/v1/embeddings",
        batch_size: int = 64,
        max_retries: int = 4,
    ):
        import requests  # lazy import

        self.requests = requests
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.batch_size = batch_size
        self.api_key = os.environ.get("SILICONFLOW_API_KEY")
        # The key is checked in embed(), so a cache-only run never needs it.
        self._request = retry_with_backoff(max_retries=max_retries)(self._make_api_request)

    @property
    def cache_key(self) -> str:
        return f"siliconflow:{self.model}"

    def _make_api_request(self, chunk: List[str], headers: Dict[str, str]) -> List[List[float]]:
        payload = {"model": self.model, "input": chunk}
        try:
            resp = self.requests.post(self.base_url, headers=headers, json=payload, timeout=60)
        except self.requests.RequestException as e:
            raise EmbeddingProviderError(f"SiliconFlow request failed: {e}") from e
        if resp.status_code != 200:
            raise EmbeddingProviderError(f"SiliconFlow API error: {resp.status_code} {resp.text}")
        data = resp.json()
        embs = [d["embedding"] for d in data.get("data", [])]
        if len(embs) != len(chunk):
            raise EmbeddingProviderError("Embeddings count mismatch")
        return embs

    def embed(self, texts: List[str]) -> np.ndarray:
        if not self.api_key:
            raise EmbeddingProviderError("SILICONFLOW_API_KEY is not configured")
        out: List[List[float]] = []
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        for i in tqdm(range(0, len(texts), self.batch_size), desc="embedding", ncols=100):
            chunk = texts[i : i + self.batch_size]
            out.extend(self._request(chunk, headers))
        return np.asarray(out, dtype=np.float32)


_ST_MODELS: Dict[str, Any] = {}
try:  # optional dependency
    from sentence_transformers import SentenceTransformer  # type: ignore
except ImportError:  # pragma: no cover - runtime optional import
    SentenceTransformer = None  # type: ignore


class LocalSTEmbedder(Embedder):
    """Local sentence-transformers embedder."""

    name = "local"

    def __init__(self, model: str = "paraphrase-multilingual-MiniLM-L12-v2", batch_size: int = 64):
        if SentenceTransformer is None:
            raise EmbeddingProviderError("sentence-transformers not installed; pip install 'mindsplit[local]'")
        if model not in _ST_MODELS:
            _ST_MODELS[model] = SentenceTransformer(model)
        self.model_name = model
        self.model = _ST_MODELS[model]
        self.batch_size = batch_size

    @property
    def cache_key(self) -> str:
        return f"local:{self.model_name}"

    def embed(self, texts: List[str]) -> np.ndarray:
        try:
            embs = self.model.encode(
                texts, batch_size=self.batch_size, normalize_embeddings=True, show_progress_bar=False
            )
        except Exception as e:  # noqa: BLE001
            raise EmbeddingProviderError(f"sentence-transformers encode failed: {e}") from e
        return np.asarray(embs, dtype=np.float32)


class HashingEmbedder(Embedder):
    """Offline character n-gram hashing embedder.

    Uses crc32 buckets so vectors are stable across processes.
    """

    name = "hashing"

    def __init__(self, dim: int = 256, ngram_min: int = 2, ngram_max: int = 3):
        self.dim = dim
        self.ngram_min = ngram_min
        self.ngram_max = ngram_max

    @property
    def cache_key(self) -> str:
        return f"hashing:{self.dim}:{self.ngram_min}-{self.ngram_max}"

    def _ngrams(self, text: str) -> List[str]:
        t = text.strip().lower()
        ngrams: List[str] = []
        for n in range(self.ngram_min, self.ngram_max + 1):
            for i in range(0, max(0, len(t) - n + 1)):
                ngrams.append(t[i : i + n])
        return ngrams

    def embed(self, texts: List[str]) -> np.ndarray:
        mat = np.zeros((len(texts), self.dim), dtype=np.float32)
        for row, text in enumerate(texts):
            for ng in self._ngrams(text):
                h = zlib.crc32(ng.encode("utf-8")) % self.dim
                mat[row, h] += 1.0
        norms = np.linalg.norm(mat, axis=1, keepdims=True) + 1e-6
        return mat / norms


def build_embedder(provider: str, model: str = "BAAI/bge-m3", batch_size: int = 64) -> Embedder:
    p = provider.lower()
    if p == "hashing":
        return HashingEmbedder()
    if p == "siliconflow":
        return SiliconFlowEmbedder(model=model, batch_size=batch_size)
    if p == "local":
        return LocalSTEmbedder(model=model, batch_size=batch_size)
    raise ConfigurationError("provider must be one of hashing / siliconflow / local")
