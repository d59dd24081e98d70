from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterable, Optional


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def write_jsonl(path: str, rows: Iterable[Dict[str, Any]]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")


def write_json(path: str, obj: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)


def getenv_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def getenv_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def getenv_optional_float(key: str) -> Optional[float]:
    raw = os.getenv(key, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
