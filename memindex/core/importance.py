"""
Heuristic importance scoring.

Estimates how important a piece of content is (0.1 - 1.0) without an LLM,
from five independent signals added to a 0.5 base:

1. Keywords    - curated high/medium/low importance phrases
2. Structure   - length, bullet/numbered lists, questions, exclamations
3. Type        - procedural > fact > semantic > episodic
4. Entities    - capitalised names, emails, URLs
5. Specificity - numbers, dates, times, amounts of money

Keyword tables and type bonuses are plain data so callers can swap in
locale-specific tables without touching the scoring logic.

Counting policy: each listed phrase counts at most once per content item,
matched case-insensitively on word boundaries ("ok" matches "ok, sure" but
not "book").
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from memindex.models import MemoryType

logger = logging.getLogger(__name__)

MIN_IMPORTANCE = 0.1
MAX_IMPORTANCE = 1.0
BASE_IMPORTANCE = 0.5


@dataclass(frozen=True)
class KeywordTables:
    """Keyword phrases with the weight each match contributes."""

    high: tuple[str, ...]
    medium: tuple[str, ...]
    low: tuple[str, ...]
    high_weight: float = 0.15
    medium_weight: float = 0.05
    low_weight: float = -0.02
    # Summed keyword contribution is clamped to this range
    floor: float = -0.2
    ceiling: float = 0.3


DEFAULT_KEYWORDS = KeywordTables(
    high=(
        "important", "critical", "urgent", "remember", "never forget",
        "always", "must", "essential", "key", "priority",
        "deadline", "requirement", "decision", "agreement", "promise",
        "password", "secret", "credential", "api key", "token",
    ),
    medium=(
        "note", "fyi", "update", "change", "prefer", "like",
        "want", "need", "should", "would", "plan", "goal",
        "project", "task", "meeting", "schedule",
    ),
    low=(
        "hello", "hi", "thanks", "thank you", "okay", "ok",
        "sure", "yes", "no", "maybe", "test", "example",
    ),
)

TYPE_BONUSES: dict[MemoryType, float] = {
    MemoryType.PROCEDURAL: 0.15,  # how-to knowledge
    MemoryType.FACT: 0.10,
    MemoryType.SEMANTIC: 0.05,
    MemoryType.EPISODIC: 0.0,
}

_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s", re.MULTILINE)
_CAPITAL_WORD_RE = re.compile(r"\b[A-Z][a-z]+\b")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_URL_RE = re.compile(r"https?://\S+")
_NUMBER_RE = re.compile(r"\b\d+\b")
_DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b|\b\d{4}[/-]\d{1,2}[/-]\d{1,2}\b")
_TIME_RE = re.compile(r"\b\d{1,2}:\d{2}\b")
_CURRENCY_RE = re.compile("[$€£¥₩]\\d+|\\d+[$€£¥₩]")


def _phrase_pattern(phrase: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(phrase.lower()) + r"\b")


class ImportanceAnalyzer:
    """Content -> importance score in [0.1, 1.0]. Deterministic, never raises."""

    def __init__(
        self,
        keywords: KeywordTables = DEFAULT_KEYWORDS,
        type_bonuses: Optional[Mapping[MemoryType, float]] = None,
    ):
        self.keywords = keywords
        self.type_bonuses = dict(TYPE_BONUSES if type_bonuses is None else type_bonuses)
        self._high = [_phrase_pattern(p) for p in keywords.high]
        self._medium = [_phrase_pattern(p) for p in keywords.medium]
        self._low = [_phrase_pattern(p) for p in keywords.low]

    def analyze(self, content: str, memory_type: MemoryType = MemoryType.EPISODIC) -> float:
        """Analyze content and return an importance score (0.1 to 1.0)."""
        if not content or not content.strip():
            return MIN_IMPORTANCE

        lowered = content.lower()
        score = BASE_IMPORTANCE
        score += self._keyword_signal(lowered)
        score += self._structure_signal(content)
        score += self.type_bonuses.get(memory_type, 0.0)
        score += self._entity_signal(content)
        score += self._specificity_signal(content)

        final = max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, score))
        logger.debug(
            "Importance analysis: length=%d, type=%s, score=%.2f",
            len(content), getattr(memory_type, "value", memory_type), final,
        )
        return final

    def analyze_batch(
        self,
        contents: Iterable[str],
        memory_type: MemoryType = MemoryType.EPISODIC,
    ) -> list[float]:
        """Score each content independently, preserving order."""
        return [self.analyze(c, memory_type) for c in contents]

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _keyword_signal(self, lowered: str) -> float:
        kw = self.keywords
        score = 0.0
        score += kw.high_weight * sum(1 for p in self._high if p.search(lowered))
        score += kw.medium_weight * sum(1 for p in self._medium if p.search(lowered))
        score += kw.low_weight * sum(1 for p in self._low if p.search(lowered))
        return max(kw.floor, min(kw.ceiling, score))

    @staticmethod
    def _structure_signal(content: str) -> float:
        score = 0.0

        word_count = len(content.split())
        if 10 <= word_count <= 100:
            score += 0.05
        elif word_count > 100:
            score += 0.1

        if _BULLET_RE.search(content):
            score += 0.1
        if "?" in content:
            score += 0.05
        if "!" in content:
            score += 0.03

        return score

    @staticmethod
    def _entity_signal(content: str) -> float:
        score = 0.0

        capitalized = len(_CAPITAL_WORD_RE.findall(content))
        if capitalized > 2:
            score += min(0.1, capitalized * 0.02)

        if _EMAIL_RE.search(content):
            score += 0.1
        if _URL_RE.search(content):
            score += 0.05

        return score

    @staticmethod
    def _specificity_signal(content: str) -> float:
        score = 0.0

        numbers = len(_NUMBER_RE.findall(content))
        if numbers:
            score += min(0.1, numbers * 0.03)

        if _DATE_RE.search(content):
            score += 0.1
        if _TIME_RE.search(content):
            score += 0.05
        if _CURRENCY_RE.search(content):
            score += 0.1

        return score


_default_analyzer = ImportanceAnalyzer()


def analyze_importance(content: str, memory_type: MemoryType = MemoryType.EPISODIC) -> float:
    """Score content with the default keyword tables."""
    return _default_analyzer.analyze(content, memory_type)
