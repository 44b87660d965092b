"""Normalisation helpers for raw store documents and write payloads."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from echovault.types import AnalysisStatus, Entry, EntryType

TITLE_MAX_CHARS = 50


def safe_string(value: Any) -> str:
    """Coerce any value to a string; None and unknown types become ''."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return ""


def safe_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def safe_int(value: Any, default: int = 0) -> int:
    """Coerce a stored counter to int; malformed values become ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def remove_none(obj: Any) -> Any:
    """Recursively drop None values from dicts and lists."""
    if isinstance(obj, dict):
        return {k: remove_none(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, list):
        return [remove_none(v) for v in obj if v is not None]
    return obj


def merge_tags(*groups: Optional[Iterable[Any]]) -> list[str]:
    """Union of tag groups: first-seen order, no duplicates, no blanks."""
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for tag in group or []:
            if not isinstance(tag, str):
                continue
            tag = tag.strip()
            if tag and tag not in seen:
                seen.add(tag)
                merged.append(tag)
    return merged


def truncate_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def is_valid_embedding(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    )


def _tag_text(tag: Any) -> str:
    if isinstance(tag, str):
        return tag
    if isinstance(tag, dict) and isinstance(tag.get("text"), str):
        return tag["text"]
    return safe_string(tag)


def sanitize_entry(entry_id: Optional[str], data: dict[str, Any]) -> Entry:
    """Build an ``Entry`` from a raw store document, filling defaults."""
    analysis = data.get("analysis")
    if not isinstance(analysis, dict) or not analysis:
        analysis = {"mood_score": 0.5}
    created_at = safe_datetime(data.get("created_at")) or datetime.now(timezone.utc)
    tags = data.get("tags")
    embedding = data.get("embedding")
    if embedding is not None and not isinstance(embedding, list):
        embedding = list(embedding)
    tasks = data.get("extracted_tasks")

    return Entry(
        id=entry_id,
        text=safe_string(data.get("text")),
        category=safe_string(data.get("category")) or "personal",
        created_at=created_at,
        effective_date=safe_datetime(data.get("effective_date")),
        embedding=embedding or None,
        analysis_status=data.get("analysis_status") or AnalysisStatus.COMPLETE.value,
        entry_type=data.get("entry_type") or EntryType.REFLECTION.value,
        tags=merge_tags([_tag_text(t) for t in tags]) if isinstance(tags, list) else [],
        context_version=safe_int(data.get("context_version")),
        title=(
            safe_string(data.get("title"))
            or safe_string(analysis.get("summary"))
            or "Untitled Memory"
        ),
        analysis=analysis,
        safety_flagged=bool(data.get("safety_flagged", False)),
        safety_user_response=data.get("safety_user_response"),
        has_warning_indicators=bool(data.get("has_warning_indicators", False)),
        temporal_context=data.get("temporal_context"),
        future_mentions=(
            data["future_mentions"] if isinstance(data.get("future_mentions"), list) else []
        ),
        contextual_insight=data.get("contextual_insight"),
        continues_situation=data.get("continues_situation"),
        goal_update=data.get("goal_update"),
        extracted_tasks=tasks if isinstance(tasks, list) else None,
        classification_confidence=data.get("classification_confidence"),
    )
