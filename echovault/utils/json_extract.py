"""Lenient extraction of JSON objects from model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class ParseResult:
    """Outcome of ``parse_json_object``.

    ``ok`` is False when every strategy failed; ``data`` is then empty and
    ``raw`` keeps the original text for display fallbacks.
    """

    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    strategy: Optional[str] = None
    raw: str = ""


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_object(raw: Optional[str]) -> ParseResult:
    """Parse a JSON object out of ``raw`` without raising.

    Strategies, in order: fenced markdown block, first bare ``{...}`` span,
    the whole text as-is. Returns a failed ``ParseResult`` when none apply.
    """
    if not raw or not raw.strip():
        return ParseResult(ok=False, raw=raw or "")

    fenced = _FENCED.search(raw)
    if fenced:
        data = _loads_object(fenced.group(1))
        if data is not None:
            return ParseResult(ok=True, data=data, strategy="fenced", raw=raw)

    bare = _BARE_OBJECT.search(raw)
    if bare:
        data = _loads_object(bare.group(0))
        if data is not None:
            return ParseResult(ok=True, data=data, strategy="bare", raw=raw)

    data = _loads_object(raw.strip())
    if data is not None:
        return ParseResult(ok=True, data=data, strategy="raw", raw=raw)

    logger.warning(f"Could not parse JSON object from model output ({len(raw)} chars)")
    return ParseResult(ok=False, raw=raw)


def strip_fences(raw: str) -> str:
    """Remove markdown code fences, leaving readable text."""
    return re.sub(r"```(?:json)?\s*", "", raw).strip()
