"""
ember/speech/aphasia.py — Aphasia pattern detection and sentence reconstruction.

Seven boolean indicators are scored on the transcript. Two or more make
aphasia likely; the combination picks a pattern type (non-fluent, fluent,
anomic, global) that is passed to the interpreter as a hint.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Literal, Optional, Sequence

PatternType = Literal["fluent", "non-fluent", "anomic", "global", "normal"]

_PAUSES = re.compile(r"\.{2,}|…")
_HAS_ARTICLE = re.compile(r"(^|\s)(the|a|an)\s", re.IGNORECASE)
_ACTION_VERB_START = re.compile(
    r"^(want|need|get|go|help|give|take|make|put|see|find|come|bring|eat|drink"
    r"|open|close|call|turn|stop|start)\b",
    re.IGNORECASE,
)
_FILLERS = re.compile(r"\b(um|uh|er|ah|like|you know|well|so)\b", re.IGNORECASE)
_NON_LETTERS = re.compile(r"[^a-z]", re.IGNORECASE)

_STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "um", "uh", "er", "ah",
    "like", "well", "so", "to", "and", "or", "but", "in", "on", "at", "for", "with",
})

_APPROACHES: dict[str, str] = {
    "non-fluent": "Fill in missing words and offer complete sentence options",
    "fluent": "Focus on extracting key meaning from longer speech",
    "anomic": "Help identify the missing word they are searching for",
    "global": "Offer multiple interpretations with visual support",
    "normal": "Standard interpretation",
}


@dataclass(frozen=True)
class AphasiaIndicators:
    has_multiple_pauses: bool
    has_short_fragments: bool
    missing_articles: bool
    has_action_verb_only: bool
    low_word_count: bool
    has_filler_words: bool
    has_word_repetition: bool

    @property
    def count(self) -> int:
        return sum(1 for v in asdict(self).values() if v)


@dataclass(frozen=True)
class AphasiaDetectionResult:
    is_likely_aphasia: bool
    confidence: int
    indicators: AphasiaIndicators
    pattern_type: PatternType
    suggested_approach: str


def _letters(word: str) -> str:
    return _NON_LETTERS.sub("", word)


def _has_repeated_words(words: list[str]) -> bool:
    for current, following in zip(words, words[1:]):
        clean = _letters(current)
        if len(clean) > 2 and clean == _letters(following):
            return True
    return False


def _pattern_type(ind: AphasiaIndicators, words: list[str]) -> PatternType:
    if ind.count < 2:
        return "normal"
    if ind.missing_articles and ind.low_word_count and not ind.has_filler_words:
        return "non-fluent"
    if ind.has_filler_words and not ind.low_word_count:
        return "fluent"
    if ind.has_multiple_pauses and ind.has_filler_words:
        return "anomic"
    if ind.low_word_count and len(words) <= 2:
        return "global"
    return "non-fluent"


def detect_aphasia_pattern(message: str) -> AphasiaDetectionResult:
    """
    Score *message* for aphasic speech.

    Args:
        message: Raw transcript.

    Returns:
        Detection result; confidence is 15 points per indicator, capped at 100.
    """
    normalized = message.strip().lower()
    words = normalized.split()

    indicators = AphasiaIndicators(
        has_multiple_pauses=bool(_PAUSES.search(message)),
        has_short_fragments=sum(1 for w in words if len(_letters(w)) <= 3) >= 3,
        missing_articles=len(words) > 2 and not _HAS_ARTICLE.search(message),
        has_action_verb_only=bool(_ACTION_VERB_START.search(normalized)),
        low_word_count=0 < len(words) < 5,
        has_filler_words=bool(_FILLERS.search(message)),
        has_word_repetition=_has_repeated_words(words),
    )
    pattern = _pattern_type(indicators, words)
    return AphasiaDetectionResult(
        is_likely_aphasia=indicators.count >= 2,
        confidence=min(100, indicators.count * 15),
        indicators=indicators,
        pattern_type=pattern,
        suggested_approach=_APPROACHES[pattern],
    )


def extract_key_concepts(message: str) -> list[str]:
    """Return content words of *message* (longer than two letters), first occurrence order."""
    concepts: list[str] = []
    for word in message.lower().split():
        clean = _letters(word)
        if len(clean) > 2 and clean not in _STOP_WORDS and clean not in concepts:
            concepts.append(clean)
    return concepts


def generate_possible_interpretations(
    message: str,
    objects: Optional[Sequence[str]] = None,
) -> list[str]:
    """
    Build up to three complete sentences from a fragmented *message*.

    Args:
        message: Raw transcript.
        objects: Optional names of things nearby, used to complete "I want the ...".

    Returns:
        Candidate sentences, best guess first.
    """
    concepts = extract_key_concepts(message)
    if not concepts:
        return ["Could you please repeat that?"]

    results: list[str] = []
    if ("want" in concepts or "need" in concepts) and len(concepts) > 1:
        target = next((c for c in concepts if c not in ("want", "need")), "")
        results.append(f"I want {target}")
        results.append(f"I need {target}")

    if ("go" in concepts or "going" in concepts) and len(concepts) > 1:
        place = next((c for c in concepts if c not in ("go", "going")), "")
        results.append(f"I want to go to the {place}")

    if "help" in concepts:
        results.append("I need help")
        results.append("Can you help me?")

    if objects:
        match = next(
            (obj for obj in objects if any(c in obj.lower() for c in concepts)), None
        )
        if match:
            results.append(f"I want the {match}")

    if not results:
        results.append("I " + " ".join(concepts))

    return results[:3]
