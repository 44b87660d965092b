"""Relevance ranking for retrieval-augmented context.

``RelevanceRanker.rank`` is the thresholded cosine ranking used by
enrichment and chat; ``select_context`` is the shared recency fallback
applied when nothing clears the threshold. ``hybrid_rank`` blends vector,
recency, entity and mood signals; chat uses it when a question names
``@type:name`` entities explicitly.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from echovault.types import Entry, ScoredEntry

DEFAULT_THRESHOLD = 0.3
DEFAULT_TOP_K = 10
DEFAULT_RECENT_N = 5

HYBRID_WEIGHTS = {"vector": 0.4, "recency": 0.3, "entity": 0.2, "mood": 0.1}
HYBRID_MIN_SCORE = 0.1

_ENTITY_RE = re.compile(r"@\w+:\w+")


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """dot(a, b) / (|a| |b|); 0.0 for empty, mismatched or zero-norm vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def _newest_first(entries: Sequence[Entry]) -> list[Entry]:
    floor = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(entries, key=lambda e: e.sort_date or floor, reverse=True)


class RelevanceRanker:
    """Cosine ranking of a corpus against a query embedding."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, top_k: int = DEFAULT_TOP_K):
        self.threshold = threshold
        self.top_k = top_k

    def rank(
        self,
        query_embedding: Optional[Sequence[float]],
        corpus: Sequence[Entry],
        threshold: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> list[ScoredEntry]:
        """Entries scoring at least ``threshold``, best first, at most ``top_k``.

        Entries without an embedding are skipped.
        """
        threshold = self.threshold if threshold is None else threshold
        top_k = self.top_k if top_k is None else top_k
        if not query_embedding or top_k <= 0:
            return []

        scored = []
        for entry in corpus:
            if not entry.embedding:
                continue
            score = cosine_similarity(query_embedding, entry.embedding)
            if score >= threshold:
                scored.append(ScoredEntry(entry=entry, score=score, scores={"vector": score}))

        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[:top_k]


def select_context(
    ranked: Sequence[ScoredEntry],
    corpus: Sequence[Entry],
    recent_n: int = DEFAULT_RECENT_N,
) -> list[Entry]:
    """Ranked entries, or the ``recent_n`` most recent when ranking is empty."""
    if ranked:
        return [s.entry for s in ranked]
    return _newest_first(corpus)[:recent_n]


def recency_score(
    entry_date: Optional[datetime],
    now: Optional[datetime] = None,
    half_life_days: float = 7.0,
) -> float:
    """Exponential decay: 0.5 ** (days_ago / half_life_days)."""
    now = now or datetime.now(timezone.utc)
    if entry_date is None:
        entry_date = now
    days_ago = (now - entry_date).total_seconds() / 86400
    return math.pow(0.5, days_ago / half_life_days)


def entity_match_score(query_entities: Sequence[str], entry_tags: Sequence[str]) -> float:
    """Fraction of ``@type:name`` query entities found in the entry's tags.

    Exact tag matches count 1, same-type partial name matches count 0.5.
    """
    if not query_entities or not entry_tags:
        return 0.0
    entity_tags = [t for t in entry_tags if t.startswith("@")]
    if not entity_tags:
        return 0.0

    matches = 0.0
    for query in query_entities:
        q_type, _, q_name = query.partition(":")
        q_name = q_name.lower()
        for tag in entity_tags:
            if tag == query:
                matches += 1
                continue
            t_type, _, t_name = tag.partition(":")
            t_name = t_name.lower()
            if t_type == q_type and q_name and t_name and (q_name in t_name or t_name in q_name):
                matches += 0.5
    return min(1.0, matches / len(query_entities))


def extract_query_entities(text: str) -> list[str]:
    """Explicit ``@type:name`` references in a query, lowercased and deduplicated."""
    return list(dict.fromkeys(_ENTITY_RE.findall(text.lower())))


def mood_similarity(query_mood: Optional[float], entry_mood: Optional[float]) -> float:
    if query_mood is None or entry_mood is None:
        return 0.5
    return 1 - abs(query_mood - entry_mood)


def hybrid_rank(
    corpus: Sequence[Entry],
    query_embedding: Optional[Sequence[float]] = None,
    query_entities: Sequence[str] = (),
    query_mood: Optional[float] = None,
    category: Optional[str] = None,
    weights: Optional[dict[str, float]] = None,
    top_k: int = DEFAULT_TOP_K,
    now: Optional[datetime] = None,
) -> list[ScoredEntry]:
    weights = weights or HYBRID_WEIGHTS
    now = now or datetime.now(timezone.utc)
    candidates = [e for e in corpus if category is None or e.category == category]

    scored = []
    for entry in candidates:
        parts = {
            "vector": cosine_similarity(query_embedding, entry.embedding)
            if query_embedding and entry.embedding else 0.0,
            "recency": recency_score(entry.created_at or entry.effective_date, now),
            "entity": entity_match_score(query_entities, entry.tags),
            "mood": mood_similarity(query_mood, entry.mood_score),
        }
        total = sum(parts[k] * weights.get(k, 0.0) for k in parts)
        if total > HYBRID_MIN_SCORE:
            scored.append(ScoredEntry(entry=entry, score=total, scores=parts))

    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:top_k]
