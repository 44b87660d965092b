"""Entry analysis: classification, framework analysis, insights, enhanced context."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Sequence

from echovault.providers.embedding import EmbeddingProvider
from echovault.providers.llm import LLMProvider
from echovault.providers.transcription import Transcriber
from echovault.types import (
    Analysis,
    Classification,
    EnhancedContext,
    Entry,
    EntryType,
    Insight,
)
from echovault.utils.json_extract import parse_json_object
from echovault.utils.sanitize import is_valid_embedding, merge_tags, truncate_title

logger = logging.getLogger(__name__)

_ENTRY_TYPES = {t.value for t in EntryType}
_INSIGHT_TYPES = (
    "warning", "encouragement", "pattern", "reminder", "progress",
    "streak", "absence", "contradiction", "goal_check", "cyclical",
)


class TextAnalyzer(ABC):
    """AI collaborator consumed by the pipeline, chat and maintenance jobs.

    Implementations may raise; callers own the fallback policy.
    """

    @abstractmethod
    async def classify(self, text: str) -> Classification:
        ...

    @abstractmethod
    async def analyze(self, text: str, entry_type: str) -> Analysis:
        ...

    @abstractmethod
    async def generate_insight(
        self,
        text: str,
        related: Sequence[Entry],
        recent: Sequence[Entry],
        all_entries: Sequence[Entry],
    ) -> Optional[Insight]:
        ...

    @abstractmethod
    async def extract_enhanced_context(
        self, text: str, recent: Sequence[Entry]
    ) -> Optional[EnhancedContext]:
        ...

    @abstractmethod
    async def embed(self, text: str) -> Optional[list[float]]:
        ...

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        raise NotImplementedError("This analyzer has no transcription backend")

    async def complete(self, system: str, user: str) -> str:
        """Free-form completion used by chat and synthesis."""
        raise NotImplementedError("This analyzer has no chat backend")


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

CLASSIFY_PROMPT = """Classify this journal entry into ONE of these types:
- "task": Pure task/todo list, no emotional content
- "mixed": Contains both tasks AND emotional reflection
- "reflection": Emotional processing, self-reflection, no tasks
- "vent": Emotional release, dysregulated state, needs validation not advice

Extract ONLY explicit tasks (verb + object) for task/mixed types. Skip vague
intentions and emotional statements. Empty array if none.

Return JSON only:
{"entry_type": "task" | "mixed" | "reflection" | "vent",
 "confidence": 0.0-1.0,
 "extracted_tasks": [{"text": "Buy milk", "completed": false, "recurrence": null}]}"""

VENT_PROMPT = """This person is venting and needs validation, NOT advice.
{late_night}
Do not challenge their thoughts, offer solutions, or minimize.

Return JSON:
{{"title": "Short empathetic title (max 6 words)",
 "tags": ["Tag1", "Tag2"],
 "mood_score": 0.0-1.0 (0.0=very distressed, 1.0=calm),
 "validation": "A warm validation of their feelings (2-3 sentences)",
 "cooldown": {{"technique": "grounding" | "breathing" | "sensory" | "bilateral" | "vocalization",
              "instruction": "Simple 1-2 sentence instruction"}}}}"""

ANALYZE_PROMPT = """Analyze this journal entry and route it to ONE therapeutic framework.

CONTEXT: Entry submitted during {time_context} ({hour}:00)
{mixed_note}
ROUTING:
1. "cbt" - anxiety, negative self-talk or cognitive distortion
2. "celebration" - wins, accomplishments, gratitude or joy
3. "general" - neutral observations and casual updates

Return JSON:
{{"title": "Short creative title (max 6 words)",
 "tags": ["Tag1", "Tag2"],
 "mood_score": 0.5 (0.0=bad, 1.0=good),
 "framework": "cbt" | "celebration" | "general",
 "cbt_breakdown": {{"automatic_thought": "...", "distortion": "...", "validation": "...",
                   "perspective": "...", "behavioral_activation": {{"activity": "...", "rationale": "..."}}}},
 "celebration": {{"affirmation": "...", "amplify": "..."}},
 "task_acknowledgment": "Brief note about their to-do list load (or null)"}}

Return null for any field that isn't genuinely useful."""

INSIGHT_PROMPT = """You are a proactive memory assistant analyzing journal entries.
Today's date: {today} ({weekday}){extra_context}

INSIGHT TYPES: {insight_types}

Resolve relative time references ("yesterday", "tomorrow") against EACH
entry's own date, not today's date. Tags: @person:name, @place:location,
@goal:intention, @situation:context, @self:statement.

A recurring theme needs 3+ mentions within 14 days; warnings should be within
7 days. If the connection feels forced or weak, return {{"found": false}}.

Output JSON:
{{"found": true, "type": "<one insight type>",
 "message": "Concise observation (1-2 sentences)",
 "followUpQuestions": ["Relevant question?"]}}"""

CONTEXT_PROMPT = """Extract structured context from this journal entry.

EXISTING CONTEXT FROM RECENT ENTRIES:
{recent_context}

Use lowercase, underscore-separated names: @person:name, @place:name,
@activity:name, @media:name, @event:name, @food:name, @topic:name,
@goal:description, @situation:description, @self:statement.

Return JSON:
{{"structured_tags": ["@type:name"],
 "topic_tags": ["general", "topic", "tags"],
 "continues_situation": "@situation:tag_from_recent_entries" or null,
 "goal_update": {{"tag": "@goal:tag", "status": "progress" | "achieved" | "abandoned" | "struggling"}} or null,
 "sentiment_by_entity": {{"@entity:name": "positive" | "negative" | "neutral" | "mixed"}}}}

Be conservative - only extract what's clearly present."""


def _time_context(hour: int) -> str:
    if hour >= 22 or hour < 5:
        return "late_night"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def _entry_date(entry: Entry) -> datetime:
    return entry.created_at or datetime.now(timezone.utc)


def mood_trajectory(recent: Sequence[Entry]) -> Optional[dict]:
    """Summarise the mood trend over the latest (newest first) scored entries."""
    scores = [e.mood_score for e in recent if e.mood_score is not None][:7]
    if len(scores) < 2:
        return None

    average = sum(scores) / len(scores)
    trend = scores[0] - scores[-1]
    low_streak = 0
    for score in scores:
        if score >= 0.4:
            break
        low_streak += 1
    high_streak = 0
    for score in scores:
        if score <= 0.6:
            break
        high_streak += 1

    if low_streak >= 3:
        description = f"User has been struggling for {low_streak} entries"
    elif high_streak >= 3:
        description = f"User has been doing well for {high_streak} entries"
    elif trend > 0.15:
        description = "Mood is improving recently"
    elif trend < -0.15:
        description = "Mood has been declining recently"
    else:
        description = "Mood is relatively stable"

    return {
        "average": round(average, 2),
        "trend": "improving" if trend > 0.1 else "declining" if trend < -0.1 else "stable",
        "description": description,
    }


class LLMTextAnalyzer(TextAnalyzer):
    """TextAnalyzer over an OpenAI-compatible chat model.

    Transport errors propagate to the caller. Unparseable model output
    degrades to neutral defaults, mirroring how a missing response is
    treated.
    """

    def __init__(
        self,
        llm: LLMProvider,
        embedding: Optional[EmbeddingProvider] = None,
        transcriber: Optional[Transcriber] = None,
    ):
        self._llm = llm
        self._embedding = embedding
        self._transcriber = transcriber

    async def _ask(self, system: str, user: str, temperature: float = 0.1) -> str:
        return await self._llm.chat(
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            max_tokens=2048,
        )

    async def complete(self, system: str, user: str) -> str:
        return await self._ask(system, user, temperature=0.7)

    # -- Classification --

    async def classify(self, text: str) -> Classification:
        raw = await self._ask(CLASSIFY_PROMPT, text)
        parsed = parse_json_object(raw)
        if not parsed.ok:
            return Classification()

        data = parsed.data
        entry_type = data.get("entry_type")
        if entry_type not in _ENTRY_TYPES:
            entry_type = EntryType.REFLECTION.value
        confidence = data.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = 0.5

        tasks = []
        for task in data.get("extracted_tasks") or []:
            if not isinstance(task, dict) or not task.get("text"):
                continue
            tasks.append({
                "text": str(task["text"]),
                "completed": bool(task.get("completed", False)),
                "recurrence": task.get("recurrence") or None,
            })
        return Classification(
            entry_type=entry_type,
            confidence=float(confidence),
            extracted_tasks=tasks,
        )

    # -- Analysis --

    async def analyze(self, text: str, entry_type: str) -> Analysis:
        fallback_title = truncate_title(text)

        if entry_type == EntryType.TASK.value:
            return Analysis(title=fallback_title, tags=["task"], mood_score=None)

        hour = datetime.now().hour
        if entry_type == EntryType.VENT.value:
            late_night = _time_context(hour) == "late_night"
            prompt = VENT_PROMPT.format(
                late_night="It is late night. Favor gentle, sleep-compatible techniques."
                if late_night else "",
            )
            parsed = parse_json_object(await self._ask(prompt, text))
            data = parsed.data
            return Analysis(
                title=data.get("title") or fallback_title,
                tags=merge_tags(data.get("tags") if isinstance(data.get("tags"), list) else []),
                mood_score=_score(data.get("mood_score"), 0.3),
                framework="support",
                vent_support={
                    "validation": data.get("validation")
                    or "It's okay to feel this way. Your feelings are valid.",
                    "cooldown": data.get("cooldown")
                    or {"technique": "breathing", "instruction": "Take a slow, deep breath."},
                },
            )

        prompt = ANALYZE_PROMPT.format(
            time_context=_time_context(hour),
            hour=hour,
            mixed_note=(
                "NOTE: This entry contains both tasks AND emotional content. "
                "Acknowledge the emotional weight of their to-do list.\n"
                if entry_type == EntryType.MIXED.value else ""
            ),
        )
        parsed = parse_json_object(await self._ask(prompt, text))
        data = parsed.data
        framework = data.get("framework")
        if framework not in ("cbt", "celebration", "general"):
            framework = "general"

        cbt = data.get("cbt_breakdown")
        celebration = data.get("celebration")
        return Analysis(
            title=data.get("title") or fallback_title,
            tags=merge_tags(data.get("tags") if isinstance(data.get("tags"), list) else []),
            mood_score=_score(data.get("mood_score"), 0.5),
            framework=framework,
            cbt_breakdown=cbt if isinstance(cbt, dict) and cbt else None,
            celebration=celebration if isinstance(celebration, dict) else None,
            task_acknowledgment=data.get("task_acknowledgment") or None,
        )

    # -- Insight --

    async def generate_insight(
        self,
        text: str,
        related: Sequence[Entry],
        recent: Sequence[Entry],
        all_entries: Sequence[Entry],
    ) -> Optional[Insight]:
        history: dict[Optional[str], Entry] = {}
        for entry in list(recent) + list(related):
            history[entry.id] = entry
        if not history:
            return None

        now = datetime.now(timezone.utc)
        lines = []
        for entry in history.values():
            date = _entry_date(entry)
            days_ago = (now - date).days
            mood = f" [mood: {entry.mood_score:.1f}]" if entry.mood_score is not None else ""
            entity_tags = ", ".join(t for t in entry.tags if t.startswith("@"))
            tags = f" {{{entity_tags}}}" if entity_tags else ""
            lines.append(f"[{date.date().isoformat()} - {days_ago} days ago]{mood}{tags} {entry.text}")

        extra = []
        trajectory = mood_trajectory(recent)
        if trajectory:
            extra.append(
                f"MOOD TRAJECTORY: {trajectory['description']} "
                f"(avg: {trajectory['average']}, trend: {trajectory['trend']})"
            )
        for prefix, label in (("@self:", "SELF-STATEMENTS FROM HISTORY"), ("@goal:", "ACTIVE GOALS")):
            found = merge_tags(
                [t for e in history.values() for t in e.tags if t.startswith(prefix)]
            )
            if found:
                extra.append(f"{label}: {', '.join(found)}")

        prompt = INSIGHT_PROMPT.format(
            today=now.date().isoformat(),
            weekday=now.strftime("%A"),
            extra_context="".join(f"\n{line}" for line in extra),
            insight_types=", ".join(_INSIGHT_TYPES),
        )
        user = (
            "HISTORY:\n" + "\n".join(lines)
            + f"\n\nCURRENT ENTRY [{now.date().isoformat()} - written just now]:\n{text}"
        )
        parsed = parse_json_object(await self._ask(prompt, user))
        if not parsed.ok:
            return None

        data = parsed.data
        questions = data.get("followUpQuestions") or data.get("follow_up_questions") or []
        return Insight(
            found=bool(data.get("found")),
            type=data.get("type") if data.get("type") in _INSIGHT_TYPES else None,
            message=data.get("message"),
            follow_up_questions=[str(q) for q in questions if q] if isinstance(questions, list) else [],
        )

    # -- Enhanced context --

    async def extract_enhanced_context(
        self, text: str, recent: Sequence[Entry]
    ) -> Optional[EnhancedContext]:
        recent_context = "\n".join(
            f"[{_entry_date(e).date().isoformat()}] Tags: {', '.join(e.tags) or 'none'} | {e.text[:200]}"
            for e in list(recent)[:10]
        )
        prompt = CONTEXT_PROMPT.format(recent_context=recent_context or "No recent entries")
        parsed = parse_json_object(await self._ask(prompt, text))
        if not parsed.ok:
            return EnhancedContext()

        data = parsed.data
        goal_update = data.get("goal_update")
        sentiment = data.get("sentiment_by_entity")
        return EnhancedContext(
            structured_tags=merge_tags(_as_list(data.get("structured_tags"))),
            topic_tags=merge_tags(_as_list(data.get("topic_tags"))),
            continues_situation=data.get("continues_situation") or None,
            goal_update=goal_update if isinstance(goal_update, dict) else None,
            sentiment_by_entity=sentiment if isinstance(sentiment, dict) else {},
        )

    # -- Embedding / transcription --

    async def embed(self, text: str) -> Optional[list[float]]:
        if self._embedding is None or not text.strip():
            return None
        vector = await self._embedding.embed(text)
        if not is_valid_embedding(vector) or not self._embedding.fits(vector):
            logger.warning(f"Discarding embedding that is not a {self._embedding.dims}-dim vector")
            return None
        return vector

    async def transcribe(self, audio: bytes, mime_type: str) -> str:
        if self._transcriber is None:
            return await super().transcribe(audio, mime_type)
        return await self._transcriber.transcribe(audio, mime_type)


def _score(value, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return min(1.0, max(0.0, float(value)))
    return default


def _as_list(value) -> list:
    return value if isinstance(value, list) else []
