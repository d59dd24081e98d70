"""Runtime settings, read from ``MINDSPLIT_*`` environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError
from .utils import getenv_float, getenv_int, getenv_optional_float

CHUNK_METHODS = ("line", "paragraph", "bullet", "sentence")
PROVIDERS = ("hashing", "siliconflow", "local")


def _slug(s: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", s).strip("._-")


def _resolve_store_dir() -> str:
    """Resolve where the sqlite files live.

    Priority:
    1) MINDSPLIT_STORE_DIR (explicit override)
    2) ./data/mindsplit under the working directory
    """
    override = os.getenv("MINDSPLIT_STORE_DIR")
    if override:
        return os.path.abspath(override)
    return os.path.abspath(os.path.join("data", "mindsplit"))


@dataclass
class SplitConfig:
    # Edges below this cosine similarity are omitted from the graph.
    min_edge_weight: float = 0.3
    karger_trials: int = 8
    seed: int = 42
    # Seconds; once elapsed no further Karger trial starts.
    time_budget: Optional[float] = None
    chunk_method: str = "line"
    store_dir: str = os.path.join("data", "mindsplit")
    provider: str = "hashing"
    model: str = "BAAI/bge-m3"
    batch_size: int = 64

    @classmethod
    def from_env(cls) -> "SplitConfig":
        cfg = cls(
            min_edge_weight=getenv_float("MINDSPLIT_MIN_EDGE_WEIGHT", 0.3),
            karger_trials=getenv_int("MINDSPLIT_KARGER_TRIALS", 8),
            seed=getenv_int("MINDSPLIT_SEED", 42),
            time_budget=getenv_optional_float("MINDSPLIT_TIME_BUDGET"),
            chunk_method=os.getenv("MINDSPLIT_CHUNK_METHOD", "line").strip().lower(),
            store_dir=_resolve_store_dir(),
            provider=os.getenv("MINDSPLIT_PROVIDER", "hashing").strip().lower(),
            model=os.getenv("MINDSPLIT_MODEL", "BAAI/bge-m3"),
            batch_size=getenv_int("MINDSPLIT_BATCH_SIZE", 64),
        )
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not 0.0 < self.min_edge_weight <= 1.0:
            raise ConfigurationError(f"min_edge_weight must be in (0, 1], got {self.min_edge_weight}")
        if self.karger_trials < 0:
            raise ConfigurationError(f"karger_trials must be >= 0, got {self.karger_trials}")
        if self.time_budget is not None and self.time_budget < 0:
            raise ConfigurationError(f"time_budget must be >= 0, got {self.time_budget}")
        if self.chunk_method not in CHUNK_METHODS:
            raise ConfigurationError(f"chunk_method must be one of {CHUNK_METHODS}, got {self.chunk_method!r}")
        if self.provider not in PROVIDERS:
            raise ConfigurationError(f"provider must be one of {PROVIDERS}, got {self.provider!r}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")

    @property
    def embeddings_path(self) -> str:
        # hashing ignores the model name
        if self.provider == "hashing":
            name = "embeddings_hashing.sqlite"
        else:
            name = f"embeddings_{_slug(self.provider)}_{_slug(self.model)}.sqlite"
        return os.path.join(self.store_dir, name)

    @property
    def sessions_path(self) -> str:
        return os.path.join(self.store_dir, "sessions.sqlite")
