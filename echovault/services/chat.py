"""Ask-your-journal: retrieval over past entries plus a short conversation memory."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from echovault.config import PipelineSettings
from echovault.services.analysis import TextAnalyzer
from echovault.services.ranking import (
    RelevanceRanker,
    extract_query_entities,
    hybrid_rank,
    select_context,
)
from echovault.types import Entry

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6
MAX_CONTEXT_ENTRIES = 20
FALLBACK_REPLY = "I'm here to listen. Could you tell me more about what's on your mind?"

CHAT_PROMPT = """You are a warm, empathetic journal companion helping the user reflect on their {category} life. You have access to their journal entries and remember the current conversation.

PERSONALITY:
- Be conversational and natural, like a supportive friend
- Ask thoughtful follow-up questions to deepen reflection
- Notice patterns and gently point them out
- Validate emotions before offering perspective
- Keep responses concise (2-4 sentences) but meaningful

Tags starting with @ indicate: @person:name, @place:location, @goal:intention, @situation:ongoing_context, @self:self_statement
{history}JOURNAL ENTRIES (most relevant):
{context}

Answer based only on the journal entries provided and reference dates when relevant."""


@dataclass
class ChatAnswer:
    text: str
    sources: int = 0
    entries: list[Entry] = field(default_factory=list)


def tag_matches(question: str, corpus: Sequence[Entry]) -> list[Entry]:
    """Entries whose @person/@situation/@goal tags are mentioned in the question."""
    lowered = question.lower()
    words = [w for w in lowered.split() if len(w) > 3]
    matches: list[Entry] = []

    for entry in corpus:
        for tag in entry.tags:
            low_tag = tag.lower()
            if low_tag.startswith("@person:"):
                name = low_tag[len("@person:"):].replace("_", " ")
                if name and name in lowered:
                    matches.append(entry)
                    break
            elif low_tag.startswith(("@situation:", "@goal:")):
                if any(word in low_tag for word in words):
                    matches.append(entry)
                    break
    return matches


def _format_entry(entry: Entry) -> str:
    date = entry.created_at.date().isoformat() if entry.created_at else "undated"
    entity_tags = ", ".join(t for t in entry.tags if t.startswith("@"))
    tags = f"{{{entity_tags}}} " if entity_tags else ""
    return f"[{date}] {entry.title or 'Entry'}: {tags}{entry.text}"


class JournalChat:
    """Conversational retrieval over one category of the journal.

    The semantic ranking uses the same recency fallback as enrichment.
    Questions naming ``@type:name`` entities also pull in hybrid-ranked
    entries carrying those entities.
    """

    def __init__(
        self,
        analyzer: TextAnalyzer,
        corpus: Callable[[], Sequence[Entry]],
        settings: Optional[PipelineSettings] = None,
        category: str = "personal",
    ):
        self._analyzer = analyzer
        self._corpus = corpus
        self._settings = settings or PipelineSettings()
        self._ranker = RelevanceRanker(
            threshold=self._settings.relevance_threshold,
            top_k=self._settings.relevance_top_k,
        )
        self.category = category
        self.history: list[tuple[str, str]] = []

    async def gather_context(self, question: str) -> tuple[list[Entry], int]:
        """Return (context entries, number of semantic matches)."""
        corpus = [e for e in self._corpus() if e.category == self.category]
        try:
            embedding = await asyncio.wait_for(
                self._analyzer.embed(question), timeout=self._settings.analyzer_timeout
            )
        except Exception as e:
            logger.warning(f"Failed to embed question, using recent entries: {e}")
            embedding = None

        ranked = self._ranker.rank(embedding, corpus)
        selected = select_context(ranked, corpus, self._settings.recent_window)

        by_entity: list[Entry] = []
        entities = extract_query_entities(question)
        if entities:
            scored = hybrid_rank(
                corpus,
                query_embedding=embedding,
                query_entities=entities,
                top_k=len(corpus),
            )
            by_entity = [s.entry for s in scored if s.scores["entity"] > 0]
            by_entity = by_entity[: self._settings.relevance_top_k]

        merged: dict[Optional[str], Entry] = {}
        for entry in selected + by_entity + tag_matches(question, corpus):
            merged.setdefault(entry.id, entry)
        return list(merged.values())[:MAX_CONTEXT_ENTRIES], len(ranked)

    async def ask(self, question: str) -> ChatAnswer:
        if not question.strip():
            raise ValueError("Question is empty")

        entries, sources = await self.gather_context(question)
        recent_history = "\n".join(
            f"{'User' if role == 'user' else 'Assistant'}: {text}"
            for role, text in self.history[-HISTORY_TURNS:]
        )
        prompt = CHAT_PROMPT.format(
            category=self.category,
            history=f"\nCONVERSATION SO FAR:\n{recent_history}\n\n" if recent_history else "\n",
            context="\n\n".join(_format_entry(e) for e in entries) or "No entries yet.",
        )

        try:
            reply = await asyncio.wait_for(
                self._analyzer.complete(prompt, question),
                timeout=self._settings.analyzer_timeout,
            )
        except Exception as e:
            logger.error(f"Journal chat failed: {e}", exc_info=True)
            reply = ""

        text = (reply or "").strip() or FALLBACK_REPLY
        self.history.append(("user", question))
        self.history.append(("assistant", text))
        return ChatAnswer(text=text, sources=sources, entries=entries)

    def reset(self) -> None:
        self.history.clear()
