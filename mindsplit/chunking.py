from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List


# ------------------------------
# Data structure
# ------------------------------
@dataclass(frozen=True)
class Chunk:
    id: int
    text: str
    order: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text, "order": self.order}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Chunk":
        return cls(id=int(d["id"]), text=str(d["text"]), order=int(d["order"]))


# ------------------------------
# Cleaning helpers
# ------------------------------
_WHITESPACE_RE = re.compile(r"\s+")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
_PUNCT_ONLY_RE = re.compile(r"\W+")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


def is_bullet(line: str) -> bool:
    return bool(_BULLET_RE.match(line))


def clean_fragment(s: str) -> str:
    s = _BULLET_RE.sub("", s.strip())
    s = _WHITESPACE_RE.sub(" ", s).strip()
    if _PUNCT_ONLY_RE.fullmatch(s):
        return ""
    return s


# ------------------------------
# Segmentation
# ------------------------------
def _split_lines(text: str) -> List[str]:
    return [ln for ln in text.splitlines() if ln.strip()]


def _split_paragraphs(text: str) -> List[str]:
    blocks: List[str] = []
    current: List[str] = []
    for ln in text.splitlines():
        if ln.strip():
            current.append(ln)
        elif current:
            blocks.append(" ".join(current))
            current = []
    if current:
        blocks.append(" ".join(current))
    return blocks


def _split_bullets(text: str) -> List[str]:
    items: List[str] = []
    current: List[str] = []
    for ln in text.splitlines():
        s = ln.strip()
        if not s:
            continue
        if is_bullet(s) and current:
            items.append(" ".join(current))
            current = []
        current.append(s)
    if current:
        items.append(" ".join(current))
    return items


def _split_sentences(text: str) -> List[str]:
    flat = _WHITESPACE_RE.sub(" ", text).strip()
    if not flat:
        return []
    return _SENTENCE_END_RE.split(flat)


_SPLITTERS = {
    "line": _split_lines,
    "paragraph": _split_paragraphs,
    "bullet": _split_bullets,
    "sentence": _split_sentences,
}


def chunk_text(
    text: str,
    start_id: int = 0,
    method: str = "line",
    skip: Iterable[str] = (),
) -> List[Chunk]:
    """Split raw text into ordered chunks with ids starting at ``start_id``.

    Only the first occurrence of a fragment is kept; fragments whose cleaned
    text appears in ``skip`` are dropped (used when appending to a session).
    """
    splitter = _SPLITTERS.get(method)
    if splitter is None:
        raise ValueError(f"unknown chunk method: {method!r}")

    seen = set(skip)
    chunks: List[Chunk] = []
    next_id = start_id
    for raw in splitter(text or ""):
        frag = clean_fragment(raw)
        if not frag or frag in seen:
            continue
        seen.add(frag)
        chunks.append(Chunk(id=next_id, text=frag, order=next_id))
        next_id += 1
    return chunks
