"""
ember/storage/corrections.py — Learned corrections from confirmed dialogs.

Every time the user confirms a phrase that differs from what they said, the
pair is stored with a coarse pattern (dropped words, extra words, near-miss
substitutions). Later transcripts that closely match a stored original reuse
the confirmed phrase directly, skipping the cloud model.

The match is a best-effort bag-of-words heuristic: short phrases can produce
false positives.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from ember.core.constants import EmberConstants as C
from ember.core.logger import get_logger
from ember.storage.json_store import JsonStore

_log = get_logger()

_STORE_KEY = "corrections"
_FUNCTION_WORDS = frozenset({"i", "the", "a", "an", "to", "is", "was", "are", "were"})
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


# ──────────────────────────────────────────────────────────────
# Models
# ──────────────────────────────────────────────────────────────

class Substitution(BaseModel):
    from_word: str = Field(alias="from")
    to_word: str = Field(alias="to")

    model_config = {"populate_by_name": True}


class CorrectionPattern(BaseModel):
    missing_words: list[str] = Field(default_factory=list)
    added_words: list[str] = Field(default_factory=list)
    substitutions: list[Substitution] = Field(default_factory=list)


class CorrectionEntry(BaseModel):
    original: str
    corrected: str
    timestamp: str
    pattern: CorrectionPattern = Field(default_factory=CorrectionPattern)


# ──────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────

def normalize(text: str) -> str:
    """Lower-case *text* and strip everything but letters, digits and spaces."""
    return _NON_ALNUM.sub("", text.lower()).strip()


def _words(text: str) -> list[str]:
    return [w for w in text.lower().split() if w]


def are_similar_words(first: str, second: str) -> bool:
    """
    Return True if two words look like a mis-hearing of each other.

    Lengths may differ by at most two characters and more than 60 % of the
    longer word's length must be covered by characters of the shorter one.
    """
    if abs(len(first) - len(second)) > 2:
        return False
    shorter, longer = (first, second) if len(first) < len(second) else (second, first)
    if not longer:
        return False
    matches = sum(1 for ch in shorter if ch in longer)
    return matches / len(longer) > 0.6


def detect_pattern(original: str, corrected: str) -> CorrectionPattern:
    """
    Describe how *corrected* differs from *original*.

    Args:
        original: What the user said (transcript).
        corrected: The phrase they confirmed.

    Returns:
        Missing words (in the correction only, function words excluded),
        added words (in the original only, longer than two characters) and
        candidate substitutions.
    """
    original_words = _words(original)
    corrected_words = _words(corrected)

    missing = [
        w for w in corrected_words
        if w not in original_words and w not in _FUNCTION_WORDS
    ]
    added = [w for w in original_words if w not in corrected_words and len(w) > 2]
    substitutions = [
        Substitution(from_word=o, to_word=c)
        for o in original_words
        for c in corrected_words
        if o != c and are_similar_words(o, c)
    ]
    return CorrectionPattern(
        missing_words=missing, added_words=added, substitutions=substitutions
    )


def overlap_ratio(text: str, original: str) -> float:
    """Fraction of *original*'s normalized words that also appear in *text*."""
    original_words = normalize(original).split()
    if not original_words:
        return 0.0
    text_words = set(normalize(text).split())
    matching = [w for w in original_words if w in text_words]
    return len(matching) / len(original_words)


def apply_learned_patterns(interpretation: str, patterns: list[CorrectionPattern]) -> str:
    """Replace whole-word occurrences of every learned substitution in *interpretation*."""
    improved = interpretation
    for pattern in patterns:
        for sub in pattern.substitutions:
            regex = re.compile(rf"\b{re.escape(sub.from_word)}\b", re.IGNORECASE)
            improved = regex.sub(sub.to_word, improved)
    return improved


# ──────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────

class CorrectionStore:
    """
    Persistent list of the most recent corrections.

    Args:
        path: JSON file for the store.
        max_entries: Oldest entries beyond this count are dropped.
    """

    def __init__(self, path: Path, max_entries: int = C.MAX_CORRECTIONS) -> None:
        self._store = JsonStore(path)
        self._max_entries = max_entries

    def all(self) -> list[CorrectionEntry]:
        raw = self._store.get(_STORE_KEY) or []
        entries: list[CorrectionEntry] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                entries.append(CorrectionEntry.model_validate(item))
            except ValidationError:
                continue
        return entries

    def store(self, original: str, corrected: str) -> CorrectionEntry:
        """
        Record that *original* was confirmed as *corrected*.

        Returns:
            The stored entry.
        """
        entry = CorrectionEntry(
            original=original,
            corrected=corrected,
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            pattern=detect_pattern(original, corrected),
        )
        entries = self.all()
        entries.append(entry)
        entries = entries[-self._max_entries:]
        self._store.set(
            _STORE_KEY, [e.model_dump(by_alias=True) for e in entries]
        )
        _log.info("corrections", "stored", {
            "original": original,
            "corrected": corrected,
            "substitutions": len(entry.pattern.substitutions),
        })
        return entry

    def find_similar(self, text: str) -> Optional[str]:
        """
        Return a previously confirmed phrase for *text*, newest first.

        An entry matches when its normalized original equals the normalized
        text, or when at least 80 % of its words appear in the text.
        """
        normalized = normalize(text)
        if not normalized:
            return None
        for entry in reversed(self.all()):
            original = normalize(entry.original)
            if not original:
                continue
            if original == normalized:
                return entry.corrected
            if overlap_ratio(text, entry.original) >= C.CORRECTION_MATCH_RATIO:
                return entry.corrected
        return None

    def patterns(self) -> list[CorrectionPattern]:
        return [e.pattern for e in self.all()]

    def apply(self, interpretation: str) -> str:
        return apply_learned_patterns(interpretation, self.patterns())

    def clear(self) -> None:
        self._store.delete(_STORE_KEY)

    def stats(self) -> dict:
        """
        Summarise stored corrections.

        Returns:
            ``total_corrections``, the five most common missing words and the
            five most common substitutions with counts.
        """
        patterns = self.patterns()
        missing = Counter(w for p in patterns for w in p.missing_words)
        subs = Counter(
            (s.from_word, s.to_word) for p in patterns for s in p.substitutions
        )
        return {
            "total_corrections": len(patterns),
            "common_missing_words": [w for w, _ in missing.most_common(5)],
            "common_substitutions": [
                {"from": f, "to": t, "count": n} for (f, t), n in subs.most_common(5)
            ],
        }
