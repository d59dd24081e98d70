"""Tests for the content-addressed embedding cache."""

import sqlite3
import threading

import numpy as np
import pytest

from conftest import BrokenEmbedder, FakeEmbedder
from mindsplit.chunking import Chunk, chunk_text
from mindsplit.core.cache import EmbeddingCache, content_hash
from mindsplit.embeddings import HashingEmbedder
from mindsplit.errors import CacheCorruptionError, EmbeddingProviderError


def _chunks(*texts):
    return [Chunk(id=i, text=t, order=i) for i, t in enumerate(texts)]


class TestContentHash:
    def test_sha256_hex(self):
        h = content_hash("alpha")

        assert len(h) == 64
        assert h == content_hash("alpha")
        assert h != content_hash("alpha ")


class TestGetOrCompute:
    """Tests for lookup-then-compute behaviour."""

    def test_misses_are_computed_and_stored(self, cache):
        provider = FakeEmbedder()
        out = cache.get_or_compute(_chunks("alpha", "beta"), provider)

        assert set(out) == {0, 1}
        assert provider.call_count == 1
        assert provider.calls[0] == ["alpha", "beta"]
        assert len(cache) == 2
        assert cache.has(content_hash("alpha"), provider.cache_key)
        assert not cache.has(content_hash("alpha"), HashingEmbedder().cache_key)

    def test_hits_skip_the_provider(self, cache):
        """A second lookup of the same texts never calls the provider."""
        provider = FakeEmbedder()
        first = cache.get_or_compute(_chunks("alpha", "beta"), provider)
        second = cache.get_or_compute(_chunks("beta", "alpha"), provider)

        assert provider.call_count == 1
        assert np.array_equal(first[0], second[1])
        assert np.array_equal(first[1], second[0])

    def test_only_missing_texts_are_sent(self, cache):
        provider = FakeEmbedder()
        cache.get_or_compute(_chunks("alpha"), provider)
        cache.get_or_compute(_chunks("alpha", "beta", "gamma"), provider)

        assert provider.calls == [["alpha"], ["beta", "gamma"]]

    def test_duplicate_texts_in_one_batch_embed_once(self, cache):
        provider = FakeEmbedder()
        out = cache.get_or_compute(_chunks("alpha", "alpha", "beta"), provider)

        assert provider.calls == [["alpha", "beta"]]
        assert np.array_equal(out[0], out[1])

    def test_resolve_reports_hit_count(self, cache):
        provider = FakeEmbedder()
        _, hits = cache.resolve(_chunks("alpha", "beta"), provider)
        assert hits == 0

        _, hits = cache.resolve(_chunks("alpha", "beta", "gamma"), provider)
        assert hits == 2

    def test_stats(self, cache):
        provider = FakeEmbedder()
        cache.get_or_compute(_chunks("alpha", "beta"), provider)
        cache.get_or_compute(_chunks("alpha"), provider)

        assert cache.stats == {"hits": 1, "misses": 2, "provider_calls": 1, "size": 2}

    def test_empty_input(self, cache):
        provider = FakeEmbedder()

        assert cache.get_or_compute([], provider) == {}
        assert provider.call_count == 0

    def test_caches_are_isolated(self, tmp_path):
        """Two cache objects on different files share nothing."""
        a = EmbeddingCache(str(tmp_path / "a.sqlite"))
        b = EmbeddingCache(str(tmp_path / "b.sqlite"))
        provider = FakeEmbedder()

        a.get_or_compute(_chunks("alpha"), provider)
        b.get_or_compute(_chunks("alpha"), provider)

        assert provider.call_count == 2
        assert len(a) == 1 and len(b) == 1

    def test_cache_survives_reopen(self, tmp_path):
        path = str(tmp_path / "emb.sqlite")
        provider = FakeEmbedder()
        first = EmbeddingCache(path).get_or_compute(_chunks("alpha"), provider)
        second = EmbeddingCache(path).get_or_compute(_chunks("alpha"), provider)

        assert provider.call_count == 1
        assert np.array_equal(first[0], second[0])

    def test_concurrent_writers_agree(self, tmp_path):
        """Racing computations of one hash all return the single stored vector."""
        path = str(tmp_path / "emb.sqlite")
        results = []
        errors = []

        def worker(offset):
            try:
                provider = FakeEmbedder({"shared": [1.0 + offset, 0.0, 0.0, 0.0]})
                out = EmbeddingCache(path).get_or_compute(_chunks("shared"), provider)
                results.append(out[0])
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(results) == 4
        assert all(np.array_equal(r, results[0]) for r in results)
        assert len(EmbeddingCache(path)) == 1


class TestNamespaces:
    """Vectors are kept apart per embedder identity."""

    def test_other_embedder_recomputes_same_text(self, cache):
        fake = FakeEmbedder()
        hashing = HashingEmbedder()
        cache.get_or_compute(_chunks("alpha", "beta"), fake)

        vectors, hits = cache.resolve(_chunks("alpha", "beta"), hashing)

        assert hits == 0
        assert {v.shape for v in vectors.values()} == {(256,)}
        assert len(cache) == 4
        assert cache.bulk_get([content_hash("alpha")], fake.cache_key)[content_hash("alpha")].shape == (4,)

    def test_same_embedder_identity_shares_vectors(self, cache):
        first = HashingEmbedder()
        cache.get_or_compute(_chunks("alpha"), first)

        _, hits = cache.resolve(_chunks("alpha"), HashingEmbedder())

        assert hits == 1
        assert len(cache) == 1

    def test_hashing_dimension_is_part_of_identity(self, cache):
        cache.get_or_compute(_chunks("alpha"), HashingEmbedder(dim=8))

        vectors, hits = cache.resolve(_chunks("alpha"), HashingEmbedder(dim=16))

        assert hits == 0
        assert vectors[0].shape == (16,)


class TestProviderFailures:
    """Failed or malformed provider output never reaches the store."""

    def test_provider_exception_propagates_without_writes(self, cache):
        provider = BrokenEmbedder(error=EmbeddingProviderError("quota"))

        with pytest.raises(EmbeddingProviderError, match="quota"):
            cache.get_or_compute(_chunks("alpha", "beta"), provider)
        assert len(cache) == 0

    def test_wrong_row_count(self, cache):
        provider = BrokenEmbedder(output=np.ones((1, 4), dtype=np.float32))

        with pytest.raises(EmbeddingProviderError):
            cache.get_or_compute(_chunks("alpha", "beta"), provider)
        assert len(cache) == 0

    def test_wrong_rank(self, cache):
        provider = BrokenEmbedder(output=np.ones(4, dtype=np.float32))

        with pytest.raises(EmbeddingProviderError):
            cache.get_or_compute(_chunks("alpha"), provider)
        assert len(cache) == 0

    def test_non_finite_values(self, cache):
        provider = BrokenEmbedder(output=np.array([[1.0, np.nan], [0.0, 1.0]], dtype=np.float32))

        with pytest.raises(EmbeddingProviderError):
            cache.get_or_compute(_chunks("alpha", "beta"), provider)
        assert len(cache) == 0

    def test_ragged_output(self, cache):
        provider = BrokenEmbedder(output=[[1.0, 0.0], [1.0]])

        with pytest.raises(EmbeddingProviderError):
            cache.get_or_compute(_chunks("alpha", "beta"), provider)
        assert len(cache) == 0


class TestCorruption:
    """Rows that no longer match their key are reported, not served."""

    def test_text_mismatch(self, cache):
        cache.get_or_compute(_chunks("alpha"), FakeEmbedder())
        with sqlite3.connect(cache.path) as con:
            con.execute("UPDATE embeddings SET text='tampered'")

        with pytest.raises(CacheCorruptionError):
            cache.get_or_compute(_chunks("alpha"), FakeEmbedder())

    def test_blob_size_mismatch(self, cache):
        cache.get_or_compute(_chunks("alpha"), FakeEmbedder())
        with sqlite3.connect(cache.path) as con:
            con.execute("UPDATE embeddings SET dim=dim+1")

        with pytest.raises(CacheCorruptionError):
            cache.bulk_get([content_hash("alpha")], FakeEmbedder().cache_key)


class TestWithChunker:
    def test_line_chunks_share_hashes_across_sessions(self, cache):
        provider = FakeEmbedder()
        cache.get_or_compute(chunk_text("alpha\nbeta"), provider)
        cache.get_or_compute(chunk_text("gamma\nalpha", start_id=10), provider)

        assert provider.embedded_texts == ["alpha", "beta", "gamma"]
