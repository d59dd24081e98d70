"""Tests for workstream naming."""

from mindsplit.analysis import make_workstream_name, name_workstreams, workstream_terms
from mindsplit.chunking import Chunk
from mindsplit.mincut import Partition


class TestWorkstreamTerms:
    """Tests for c-TF-IDF term extraction."""

    def test_distinctive_terms_rank_first(self):
        docs = [
            "login bug login auth tokens expiring auth",
            "dashboard mockups dashboard colors review",
        ]

        terms = workstream_terms(docs, topk=2)

        assert set(terms[0]) == {"login", "auth"}
        assert terms[1][0] == "dashboard"

    def test_stop_words_are_ignored(self):
        terms = workstream_terms(["the and of billing", "just maybe todo invoices"], topk=3)

        assert terms == [["billing"], ["invoices"]]

    def test_all_stop_words(self):
        assert workstream_terms(["the and of", "is it"], topk=3) == [[], []]

    def test_empty(self):
        assert workstream_terms([]) == []


class TestNames:
    def test_top_two_terms_title_cased(self):
        assert make_workstream_name(["login", "auth", "tokens"]) == "Login Auth"

    def test_fallback(self):
        assert make_workstream_name([], fallback="Workstream 3") == "Workstream 3"

    def test_name_workstreams(self):
        chunks = [
            Chunk(0, "Fix login bug.", 0),
            Chunk(1, "Login tokens expiring.", 1),
            Chunk(2, "The and of.", 2),
        ]
        partition = Partition(components=(frozenset({0, 1}), frozenset({2})))

        names = name_workstreams(chunks, partition)

        assert names[0].startswith("Login")
        assert names[1] == "Workstream 2"
