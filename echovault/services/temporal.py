"""Temporal resolution - backdating and future mentions for new entries.

A regex pre-screen decides whether the model is consulted at all. The model
returns symbolic references ("yesterday", "next_monday") which are resolved
here against the submission time, so date arithmetic never depends on the
model.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from echovault.providers.llm import LLMProvider
from echovault.utils.json_extract import parse_json_object

logger = logging.getLogger(__name__)

FUTURE_HORIZON_DAYS = 7
MIN_FUTURE_CONFIDENCE = 0.4
MIN_RECURRING_CONFIDENCE = 0.5
AUTO_APPLY_ABOVE = 0.8
CONFIRM_FROM = 0.5

_DAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_TEMPORAL_PATTERNS = [
    # past
    r"\byesterday\b", r"\blast night\b", r"\bthe night before\b",
    r"\btwo days ago\b", r"\bthree days ago\b", r"\ba few days ago\b",
    r"\bthe other day\b", r"\bearlier today\b", r"\bthis morning\b",
    r"\btonight\b", r"\blast week\b",
    rf"\bon ({_DAYS})\b", rf"\blast ({_DAYS})\b",
    rf"\b({_DAYS}) (night|morning|afternoon|evening)\b",
    r"\blast (morning|afternoon|evening)\b", r"\bthe past (few|couple) days\b",
    r"\bwas feeling\b",
    r"\bfelt (so |really |very )?(good|bad|anxious|stressed|happy|sad|tired)\b",
    r"\bhad a (good|bad|rough|tough|great|terrible)\b",
    r"\bwent (well|badly|great|terrible)\b",
    # future
    r"\btomorrow\b", r"\bthe day after tomorrow\b",
    rf"\bnext ({_DAYS})\b", rf"\bthis ({_DAYS})\b", r"\bnext week\b",
    r"\bin (a |the )?(few|couple) days\b", r"\bcoming up\b", r"\bupcoming\b",
    r"\blater this week\b", r"\bthis weekend\b", r"\bnext weekend\b",
    r"\bnervous about\b", r"\bworried about\b", r"\bexcited (about|for)\b",
    r"\blooking forward to\b", r"\bdreading\b", r"\bcan't wait for\b",
    r"\bpreparing for\b", r"\bgetting ready for\b",
    # recurring
    rf"\bevery ({_DAYS})\b", r"\bevery week\b", r"\bweekly\b",
    r"\bevery morning\b", r"\bevery (day|night)\b",
]
_TEMPORAL_RE = re.compile("|".join(f"(?:{p})" for p in _TEMPORAL_PATTERNS), re.IGNORECASE)
_DAY_REF_RE = re.compile(rf"(?:(last|next|this)_)?({_DAYS})")
_EVERY_DAY_RE = re.compile(rf"every_({_DAYS})")


def has_temporal_indicators(text: str) -> bool:
    """Cheap pre-screen; False means the model is never called."""
    return bool(_TEMPORAL_RE.search(text))


def _noon(dt: datetime) -> datetime:
    return dt.replace(hour=12, minute=0, second=0, microsecond=0)


def calculate_target_date(
    reference: str, now: datetime, direction: str = "auto"
) -> Optional[tuple[datetime, str]]:
    """Resolve a symbolic reference to ``(date at noon, direction)``.

    ``direction`` of the result is one of ``past``, ``future`` or ``today``.
    Returns None for unknown references.
    """
    today = _noon(now)
    ref = reference.lower().strip().replace(" ", "_")
    weekday = today.weekday()

    past_offsets = {"yesterday": 1, "two_days_ago": 2, "three_days_ago": 3, "last_week": 7}
    if ref in past_offsets:
        return today - timedelta(days=past_offsets[ref]), "past"
    if ref == "last_night":
        if now.hour < 6:
            return today, "today"
        return today - timedelta(days=1), "past"
    if ref in ("this_morning", "earlier_today"):
        return today, "today"

    future_offsets = {
        "tomorrow": 1, "day_after_tomorrow": 2, "next_week": 7,
        "in_a_few_days": 3, "in_couple_days": 3,
    }
    if ref in future_offsets:
        return today + timedelta(days=future_offsets[ref]), "future"
    if ref in ("this_weekend", "next_weekend"):
        until_saturday = (5 - weekday) % 7 or 7
        if ref == "next_weekend":
            until_saturday += 7
        return today + timedelta(days=until_saturday), "future"
    if ref == "later_this_week":
        # Week ends on Saturday.
        until_saturday = 5 - weekday if weekday != 6 else 6
        return today + timedelta(days=max(1, min(3, until_saturday))), "future"

    match = _DAY_REF_RE.fullmatch(ref)
    if not match:
        return None
    prefix, day_name = match.groups()
    target = _WEEKDAYS.index(day_name)

    if prefix == "last":
        back = weekday - target
        if back <= 0:
            back += 7
        return today - timedelta(days=back + 7), "past"
    if prefix == "next":
        forward = target - weekday
        if forward <= 0:
            forward += 7
        return today + timedelta(days=forward + 7), "future"
    if prefix == "this":
        diff = target - weekday
        if diff == 0:
            return today, "today"
        return today + timedelta(days=diff), "future" if diff > 0 else "past"
    if direction == "future":
        forward = target - weekday
        if forward <= 0:
            forward += 7
        return today + timedelta(days=forward), "future"
    back = weekday - target
    if back <= 0:
        back += 7
    return today - timedelta(days=back), "past"


def recurring_occurrences(
    pattern: str, now: datetime, horizon_days: int = FUTURE_HORIZON_DAYS
) -> list[datetime]:
    """Upcoming dates (noon) of a recurring pattern within the horizon."""
    today = _noon(now)
    pattern = pattern.lower()

    match = _EVERY_DAY_RE.fullmatch(pattern)
    if match:
        until = _WEEKDAYS.index(match.group(1)) - today.weekday()
        if until <= 0:
            until += 7
        occurrences = []
        while until <= horizon_days:
            occurrences.append(today + timedelta(days=until))
            until += 7
        return occurrences
    if pattern == "weekly":
        return [today + timedelta(days=7)] if horizon_days >= 7 else []
    if pattern in ("every_day", "daily", "every_morning"):
        return [today + timedelta(days=i) for i in range(1, min(horizon_days, 7) + 1)]
    return []


@dataclass
class TemporalResult:
    """Outcome of ``TemporalResolver.resolve``.

    ``detected``/``confidence`` describe the past reference only; future
    mentions ride along and never influence the gating decision.
    """

    detected: bool
    effective_date: datetime
    confidence: float = 0.0
    reference: Optional[str] = None
    original_phrase: Optional[str] = None
    future_mentions: list[dict[str, Any]] = field(default_factory=list)
    reasoning: Optional[str] = None

    def to_context(self, applied: bool) -> Optional[dict[str, Any]]:
        if not self.detected:
            return None
        return {
            "detected": True,
            "reference": self.reference,
            "original_phrase": self.original_phrase,
            "confidence": self.confidence,
            "backdated": applied,
        }


class TemporalDecision(str, Enum):
    AUTO_APPLY = "auto_apply"
    CONFIRM = "confirm"
    IGNORE = "ignore"


def decide(result: TemporalResult) -> TemporalDecision:
    if not result.detected:
        return TemporalDecision.IGNORE
    if result.confidence > AUTO_APPLY_ABOVE:
        return TemporalDecision.AUTO_APPLY
    if result.confidence >= CONFIRM_FROM:
        return TemporalDecision.CONFIRM
    return TemporalDecision.IGNORE


TEMPORAL_PROMPT = """Analyze this journal entry for temporal references. The user is writing NOW on {today} ({time_of_day}).

ENTRY:
"{text}"

Detect:
1. PAST: is the user describing a past day? (for backdating the entry)
2. FUTURE: upcoming events mentioned with emotion (for follow-up)
3. RECURRING: recurring events (weekly patterns)

Return JSON:
{{"past_reference": {{"detected": boolean,
   "temporal_reference": "yesterday" | "last_night" | "two_days_ago" | "three_days_ago" | "this_morning" | "earlier_today" | "last_week" | "monday" | "last_monday" | null,
   "original_phrase": "exact phrase" | null,
   "confidence": 0.0-1.0}},
 "future_mentions": [{{"temporal_reference": "tomorrow" | "day_after_tomorrow" | "next_week" | "this_weekend" | "next_weekend" | "later_this_week" | "in_a_few_days" | "next_monday" | "this_friday",
   "event": "short description", "sentiment": "nervous" | "excited" | "anxious" | "dreading" | "hopeful" | "worried" | "looking_forward" | "neutral",
   "original_phrase": "exact phrase", "confidence": 0.0-1.0}}],
 "recurring_mentions": [{{"pattern": "every_monday" | "weekly" | "every_morning" | "every_day",
   "event": "short description", "sentiment": "positive" | "negative" | "neutral",
   "original_phrase": "exact phrase", "confidence": 0.0-1.0}}],
 "reasoning": "brief explanation"}}

Rules:
- "last night" = yesterday evening (unless it's before 6am)
- Day names without "last" = most recent occurrence; with "last" = previous week's
- Present tense alone = today; "lately"/"recently" = NOT a specific past day
- Future mentions need an emotional component; pure scheduling is skipped"""

_RECURRING_SENTIMENT = {"negative": "dreading", "positive": "looking_forward"}


def _confidence(value: Any, default: float = 0.0) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return default


class TemporalResolver:
    """Detects past-day references (backdating) and upcoming events."""

    def __init__(self, llm: Optional[LLMProvider] = None):
        self._llm = llm

    def _not_detected(self, now: datetime) -> TemporalResult:
        return TemporalResult(detected=False, effective_date=now)

    async def resolve(self, text: str, now: Optional[datetime] = None) -> TemporalResult:
        now = now or datetime.now(timezone.utc)
        if self._llm is None or not has_temporal_indicators(text):
            return self._not_detected(now)

        hour = now.hour
        prompt = TEMPORAL_PROMPT.format(
            today=now.strftime("%A, %B %d, %Y"),
            time_of_day="morning" if hour < 12 else "afternoon" if hour < 17 else "evening",
            text=text,
        )
        try:
            raw = await self._llm.chat(
                messages=[{"role": "user", "content": prompt}],
                temperature=0.1,
                max_tokens=1024,
            )
        except Exception as e:
            logger.warning(f"Temporal detection failed: {e}")
            return self._not_detected(now)

        parsed = parse_json_object(raw)
        if not parsed.ok:
            return self._not_detected(now)
        return self._interpret(parsed.data, now)

    def _interpret(self, data: dict[str, Any], now: datetime) -> TemporalResult:
        result = self._not_detected(now)
        result.reasoning = data.get("reasoning")

        past = data.get("past_reference")
        if isinstance(past, dict) and past.get("detected") and past.get("temporal_reference"):
            target = calculate_target_date(str(past["temporal_reference"]), now, "past")
            if target and target[1] == "past":
                result.detected = True
                result.effective_date = target[0]
                result.confidence = _confidence(past.get("confidence"), 0.7)
                result.reference = past["temporal_reference"]
                result.original_phrase = past.get("original_phrase")

        seen: set[tuple[str, str]] = set()
        for mention in data.get("future_mentions") or []:
            if not isinstance(mention, dict):
                continue
            if not mention.get("temporal_reference") or not mention.get("event"):
                continue
            confidence = _confidence(mention.get("confidence"))
            if confidence < MIN_FUTURE_CONFIDENCE:
                continue
            target = calculate_target_date(str(mention["temporal_reference"]), now, "future")
            if not target or target[1] != "future":
                continue
            if math.ceil((target[0] - now).total_seconds() / 86400) > FUTURE_HORIZON_DAYS:
                continue
            if not self._first_sighting(seen, mention["event"], target[0]):
                continue
            result.future_mentions.append({
                "target_date": target[0].isoformat(),
                "event": mention["event"],
                "sentiment": mention.get("sentiment") or "neutral",
                "phrase": mention.get("original_phrase"),
                "confidence": confidence,
                "is_recurring": False,
            })

        for recurring in data.get("recurring_mentions") or []:
            if not isinstance(recurring, dict):
                continue
            if not recurring.get("pattern") or not recurring.get("event"):
                continue
            confidence = _confidence(recurring.get("confidence"))
            if confidence < MIN_RECURRING_CONFIDENCE:
                continue
            for occurrence in recurring_occurrences(str(recurring["pattern"]), now):
                if not self._first_sighting(seen, recurring["event"], occurrence):
                    continue
                result.future_mentions.append({
                    "target_date": occurrence.isoformat(),
                    "event": recurring["event"],
                    "sentiment": _RECURRING_SENTIMENT.get(recurring.get("sentiment"), "neutral"),
                    "phrase": recurring.get("original_phrase"),
                    "confidence": confidence,
                    "is_recurring": True,
                    "recurring_pattern": recurring["pattern"],
                })

        return result

    @staticmethod
    def _first_sighting(seen: set, event: str, date: datetime) -> bool:
        key = (str(event).lower(), date.date().isoformat())
        if key in seen:
            return False
        seen.add(key)
        return True
