"""Bag-of-words cosine search over the param target corpus."""
from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger("hidoc.matcher")

Vector = Dict[str, int]
Row = Dict[str, Any]

DEFAULT_LIMIT = 5
MAX_LIMIT = 20
DEFAULT_TTL_SECONDS = 5 * 60

STOP_WORDS = {
    "the", "a", "an", "of", "and", "or", "to", "is", "for", "with",
    "on", "in", "at", "by", "be", "as", "it", "that", "this",
}

SYNONYMS = {
    "sugar": "glucose",
    "bp": "bloodpressure",
    "a1c": "hba1c",
}

_NON_TOKEN = re.compile(r"[^a-z0-9%\s]")


def tokenize(text: str) -> List[str]:
    cleaned = _NON_TOKEN.sub(" ", (text or "").lower())
    return [SYNONYMS.get(t, t) for t in cleaned.split() if len(t) > 1 and t not in STOP_WORDS]


def build_vector(tokens: Iterable[str]) -> Vector:
    return dict(Counter(tokens))


def cosine(a: Vector, b: Vector) -> float:
    if not a or not b:
        return 0.0
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    smaller, larger = (a, b) if len(a) < len(b) else (b, a)
    dot = sum(v * larger.get(k, 0) for k, v in smaller.items())
    if not dot or not norm_a or not norm_b:
        return 0.0
    return min(1.0, dot / (norm_a * norm_b))


def corpus_text(row: Row) -> str:
    parts = [row.get("param_code"), row.get("description"), row.get("notes"), row.get("organ_system")]
    return " ".join(str(p) for p in parts if p)


def clamp_limit(limit: Optional[int]) -> int:
    try:
        n = int(limit) if limit is not None else DEFAULT_LIMIT
    except (TypeError, ValueError):
        n = DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, n))


class ParamVectorIndex:
    """Cached corpus vectors, rebuilt wholesale once the TTL expires.

    Readers take a snapshot tuple; a rebuild constructs a new tuple off to the
    side and swaps it in under the lock, so a request never sees a partly
    built corpus. Only one thread rebuilds at a time.
    """

    def __init__(
        self,
        loader: Callable[[], List[Row]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Tuple[Tuple[Row, Vector], ...]] = None
        self._built_at = 0.0

    def _stale(self) -> bool:
        return self._snapshot is None or (self._clock() - self._built_at) >= self._ttl

    def _entries(self) -> Tuple[Tuple[Row, Vector], ...]:
        snapshot = self._snapshot
        if snapshot is not None and not self._stale():
            return snapshot
        with self._lock:
            if self._stale():
                rows = list(self._loader() or [])
                self._snapshot = tuple((row, build_vector(tokenize(corpus_text(row)))) for row in rows)
                self._built_at = self._clock()
                logger.debug({"function": "param_index_rebuild", "rows": len(rows)})
            return self._snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None

    def known_codes(self) -> set:
        return {str(row.get("param_code")) for row, _ in self._entries() if row.get("param_code")}

    def get(self, param_code: str) -> Optional[Row]:
        for row, _ in self._entries():
            if row.get("param_code") == param_code:
                return row
        return None

    def match(self, message: str, limit: Optional[int] = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        top = clamp_limit(limit)
        query = build_vector(tokenize(message))
        if not query:
            return []
        scored = []
        for row, vec in self._entries():
            score = cosine(query, vec)
            if score > 0:
                scored.append((score, row))
        scored.sort(key=lambda s: s[0], reverse=True)
        return [
            {
                "param_code": row.get("param_code"),
                "score": round(score, 4),
                "target_min": row.get("target_min"),
                "target_max": row.get("target_max"),
                "preferred_unit": row.get("preferred_unit"),
                "description": row.get("description"),
            }
            for score, row in scored[:top]
        ]
