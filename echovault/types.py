"""Plain data types shared by the pipeline, ranker, queue and maintenance jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"


class EntryType(str, Enum):
    REFLECTION = "reflection"
    TASK = "task"
    VENT = "vent"
    MIXED = "mixed"


@dataclass
class Entry:
    """A journal entry as seen by the core (store documents are sanitized into this)."""

    id: Optional[str]
    text: str
    category: str = "personal"
    created_at: Optional[datetime] = None
    effective_date: Optional[datetime] = None
    embedding: Optional[list[float]] = None
    analysis_status: str = AnalysisStatus.COMPLETE.value
    entry_type: str = EntryType.REFLECTION.value
    tags: list[str] = field(default_factory=list)
    context_version: int = 0
    title: str = "Untitled Memory"
    analysis: dict[str, Any] = field(default_factory=lambda: {"mood_score": 0.5})
    safety_flagged: bool = False
    safety_user_response: Optional[str] = None
    has_warning_indicators: bool = False
    temporal_context: Optional[dict[str, Any]] = None
    future_mentions: list[dict[str, Any]] = field(default_factory=list)
    contextual_insight: Optional[dict[str, Any]] = None
    continues_situation: Optional[str] = None
    goal_update: Optional[dict[str, Any]] = None
    extracted_tasks: Optional[list[dict[str, Any]]] = None
    classification_confidence: Optional[float] = None

    @property
    def mood_score(self) -> Optional[float]:
        score = (self.analysis or {}).get("mood_score")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            return float(score)
        return None

    @property
    def sort_date(self) -> Optional[datetime]:
        return self.effective_date or self.created_at


@dataclass
class OfflineQueueItem:
    """A fully gated entry captured while disconnected, waiting for replay."""

    offline_id: str
    text: str
    category: str
    created_at: datetime
    effective_date: datetime
    safety_flagged: bool = False
    safety_user_response: Optional[str] = None
    has_warning_indicators: bool = False
    temporal_context: Optional[dict[str, Any]] = None
    future_mentions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class RetrofitProgress:
    processed: int
    total: int


@dataclass
class ScoredEntry:
    entry: Entry
    score: float
    scores: dict[str, float] = field(default_factory=dict)


# -- TextAnalyzer result shapes --


@dataclass
class Classification:
    entry_type: str = EntryType.REFLECTION.value
    confidence: float = 0.5
    extracted_tasks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Analysis:
    title: str
    tags: list[str] = field(default_factory=list)
    mood_score: Optional[float] = 0.5
    framework: str = "general"
    cbt_breakdown: Optional[dict[str, Any]] = None
    vent_support: Optional[dict[str, Any]] = None
    celebration: Optional[dict[str, Any]] = None
    task_acknowledgment: Optional[str] = None


@dataclass
class Insight:
    found: bool
    type: Optional[str] = None
    message: Optional[str] = None
    follow_up_questions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "type": self.type,
            "message": self.message,
            "followUpQuestions": list(self.follow_up_questions),
        }


@dataclass
class EnhancedContext:
    structured_tags: list[str] = field(default_factory=list)
    topic_tags: list[str] = field(default_factory=list)
    continues_situation: Optional[str] = None
    goal_update: Optional[dict[str, Any]] = None
    sentiment_by_entity: dict[str, str] = field(default_factory=dict)
