"""Typed failures raised by the split pipeline."""

from __future__ import annotations

from typing import Optional


class MindSplitError(Exception):
    """Base exception for all MindSplit errors."""


class ConfigurationError(MindSplitError):
    """Raised when configuration is invalid."""


class EmptyInputError(MindSplitError):
    """Raised when the input text yields no chunks."""


class InvalidPartitionCount(MindSplitError):
    """Raised when the requested workstream count is outside ``1..chunk_count``."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"cannot split {available} chunk(s) into {requested} workstream(s)")
        self.requested = requested
        self.available = available


class UnderconstrainedPartitionError(MindSplitError):
    """Raised when bisection runs out of splittable components before reaching ``n``."""

    def __init__(self, requested: int, reached: int) -> None:
        super().__init__(f"bisection stopped at {reached} component(s), {requested} requested")
        self.requested = requested
        self.reached = reached


class EmbeddingProviderError(MindSplitError):
    """Raised by embedding providers when a batch cannot be embedded."""


class CacheCorruptionError(MindSplitError):
    """Raised when a cached embedding no longer matches its source text."""

    def __init__(self, content_hash: str, reason: str) -> None:
        super().__init__(f"embedding cache row {content_hash[:16]} is corrupt: {reason}")
        self.content_hash = content_hash


class SessionNotFoundError(MindSplitError):
    """Raised when a session id is unknown."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class PartitionNotCachedError(MindSplitError):
    """Raised when a session has no stored partition for the requested count."""

    def __init__(self, session_id: str, n: Optional[int]) -> None:
        detail = f"n={n}" if n is not None else "any n"
        super().__init__(f"session {session_id} has no cached partition for {detail}")
        self.session_id = session_id
        self.n = n


class EmbedderMismatchError(ConfigurationError):
    """Raised when a session is extended with a different embedder than it was built with."""

    def __init__(self, session_id: str, expected: str, actual: str) -> None:
        super().__init__(f"session {session_id} was embedded with {expected!r}, configured embedder is {actual!r}")
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
