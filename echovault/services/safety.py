"""Safety gate: crisis/warning screening before anything is persisted."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

from echovault.types import Entry

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]

CRISIS_PATTERN = re.compile(
    r"suicide|kill myself|hurt myself|end my life|want to die|better off dead|"
    r"no reason to live|end it all|don't want to wake up|better off without me",
    re.IGNORECASE,
)
WARNING_PATTERN = re.compile(
    r"hopeless|worthless|no point|can't go on|trapped|burden|no way out|"
    r"give up|falling apart",
    re.IGNORECASE,
)

CRISIS_RESOURCES = [
    {"name": "988 Suicide & Crisis Lifeline", "phone": "988", "type": "crisis"},
    {"name": "Crisis Text Line", "phone": "741741", "type": "crisis"},
]
COPING_STRATEGIES = [
    {"activity": "Box Breathing (4-4-4-4)", "notes": "Breathe in 4 sec, hold 4, out 4, hold 4"},
    {"activity": "Splash cold water on face", "notes": "Activates dive reflex, slows heart rate"},
    {"activity": "Hold an ice cube", "notes": "Sensory grounding technique"},
]


def crisis_keywords(text: str) -> bool:
    return bool(CRISIS_PATTERN.search(text))


def warning_indicators(text: str) -> bool:
    return bool(WARNING_PATTERN.search(text))


@dataclass(frozen=True)
class GateResult:
    crisis: bool = False
    warning: bool = False


class GateResolution(str, Enum):
    """The user's answer to a blocked submission."""

    OKAY = "okay"
    SUPPORT = "support"
    CRISIS = "crisis"

    @property
    def proceeds(self) -> bool:
        return self is not GateResolution.CRISIS


class SafetyGate:
    """Evaluates raw text with two injectable predicates.

    ``crisis`` blocks persistence until the caller supplies a
    ``GateResolution``; ``warning`` only annotates the saved entry.
    """

    def __init__(
        self,
        crisis: Optional[Predicate] = None,
        warning: Optional[Predicate] = None,
    ):
        self._crisis = crisis or crisis_keywords
        self._warning = warning or warning_indicators

    def evaluate(self, text: str) -> GateResult:
        return GateResult(crisis=self._crisis(text), warning=self._warning(text))


def check_longitudinal_risk(
    entries: Sequence[Entry],
    now: Optional[datetime] = None,
    window_days: int = 7,
    min_entries: int = 3,
) -> bool:
    """Flag a sustained low or falling mood over the last ``window_days``.

    ``entries`` are expected newest first. Entries without a mood score
    count as neutral (0.5). Risk is a mean below 0.25 or a least-squares
    slope below -0.05 across the window.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=window_days)
    window = [e for e in entries if e.created_at and e.created_at > cutoff]

    if len(window) < min_entries:
        logger.debug(
            f"Longitudinal risk check skipped: {len(window)} entries in window, "
            f"{min_entries} required"
        )
        return False

    # Oldest first, so a falling mood has a negative slope.
    scores = [e.mood_score if e.mood_score is not None else 0.5 for e in reversed(window)]
    n = len(scores)
    average = sum(scores) / n

    sum_x = n * (n - 1) / 2
    sum_y = sum(scores)
    sum_xy = sum(x * y for x, y in enumerate(scores))
    sum_x2 = n * (n - 1) * (2 * n - 1) / 6
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)

    return average < 0.25 or slope < -0.05
