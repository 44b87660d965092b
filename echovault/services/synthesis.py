"""Daily synthesis: a short summary plus mood drivers for one day's entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from echovault.services.analysis import TextAnalyzer
from echovault.types import Entry, EntryType
from echovault.utils.json_extract import parse_json_object, strip_fences

logger = logging.getLogger(__name__)

SYNTHESIS_PROMPT = """You are summarizing journal entries from a single day.

1. Write a 2-3 sentence summary that captures the emotional arc of the day,
   key themes/events and any significant mood shifts.
2. Identify the key factors that most contributed to the person's overall mood
   (specific events, thoughts or situations).

Return a JSON object ONLY, no markdown, no extra text:
{"summary": "2-3 sentence prose summary here",
 "bullets": ["Concise factor 1", "Concise factor 2", "Concise factor 3"]}

Rules:
- 3-6 bullets max, each one short sentence (max 15 words).
- Do NOT include bullet characters like '-', '*', or '•' in the text."""


@dataclass
class DailySynthesis:
    summary: str
    bullets: list[str] = field(default_factory=list)
    parsed: bool = True


async def generate_daily_synthesis(
    analyzer: TextAnalyzer, entries: Sequence[Entry]
) -> Optional[DailySynthesis]:
    """Summarise a day's non-task entries.

    Returns None when there is nothing to summarise or the model call fails.
    Unparseable output becomes the summary itself, with no bullets.
    """
    reflections = [e for e in entries if e.entry_type != EntryType.TASK.value]
    if not reflections:
        return None

    context = "\n---\n".join(
        f"Entry {i} [{e.created_at.strftime('%H:%M') if e.created_at else '--:--'}]: {e.text}"
        for i, e in enumerate(reflections, start=1)
    )
    try:
        raw = await analyzer.complete(SYNTHESIS_PROMPT, context)
    except Exception as e:
        logger.error(f"Daily synthesis failed: {e}", exc_info=True)
        return None
    if not raw:
        return None

    result = parse_json_object(raw)
    summary = result.data.get("summary")
    bullets = result.data.get("bullets")
    if result.ok and isinstance(summary, str) and isinstance(bullets, list):
        return DailySynthesis(summary=summary, bullets=[str(b) for b in bullets if b])

    logger.warning("Daily synthesis returned unstructured text, showing it as-is")
    return DailySynthesis(summary=strip_fences(raw), bullets=[], parsed=False)
