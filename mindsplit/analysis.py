from __future__ import annotations

from typing import Dict, List, Sequence

import numpy as np
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, TfidfVectorizer

from .chunking import Chunk
from .mincut import Partition


DOMAIN_STOPWORDS = set(
    """
todo tbd etc need needs also just like make get got maybe really thing things
http https com www
""".split()
)


def build_vectorizer() -> TfidfVectorizer:
    return TfidfVectorizer(
        lowercase=True,
        token_pattern=r"(?u)\b[^\W\d_][\w'-]+\b",
        ngram_range=(1, 1),
        max_features=50000,
        stop_words=sorted(ENGLISH_STOP_WORDS | DOMAIN_STOPWORDS),
    )


def workstream_terms(docs: Sequence[str], topk: int = 8) -> List[List[str]]:
    """c-TF-IDF: one concatenated document per workstream, top ``topk`` terms each."""
    if not docs:
        return []
    vec = build_vectorizer()
    try:
        X = vec.fit_transform(list(docs))
    except ValueError:
        # every token was a stop word
        return [[] for _ in docs]
    vocab = np.array(vec.get_feature_names_out())
    out: List[List[str]] = []
    for i in range(X.shape[0]):
        scores = X.getrow(i).toarray().ravel()
        # stable sort keeps vocabulary order on equal scores
        idx = np.argsort(-scores, kind="stable")[:topk]
        out.append([str(t) for t, s in zip(vocab[idx], scores[idx]) if s > 0])
    return out


def make_workstream_name(terms: List[str], fallback: str = "Workstream") -> str:
    if not terms:
        return fallback
    return " ".join(t.title() for t in terms[:2])


def name_workstreams(chunks: Sequence[Chunk], partition: Partition) -> List[str]:
    by_id: Dict[int, Chunk] = {c.id: c for c in chunks}
    docs = [
        " ".join(by_id[i].text for i in sorted(comp) if i in by_id)
        for comp in partition.components
    ]
    terms = workstream_terms(docs, topk=2)
    return [make_workstream_name(t, fallback=f"Workstream {i + 1}") for i, t in enumerate(terms)]
