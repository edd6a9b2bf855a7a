"""
ember/speech/detection.py — Heuristics for transcripts that need interpretation.

A transcript is "unclear" when it looks fragmentary, slurred or is missing
function words. Clear transcripts are spoken as-is; unclear ones go through
the correction store and the cloud interpreter.
"""

from __future__ import annotations

import re
from typing import Literal

SpeechCategory = Literal["dysarthria", "aphasia", "stutter", "clear"]

_PAUSES = re.compile(r"\s{3,}|\.{2,}")
_ARTICLES = re.compile(r"\b(the|a|an)\b", re.IGNORECASE)
_PREPOSITIONS = re.compile(r"\b(to|for|with|in|on|at)\b", re.IGNORECASE)
_SLURRED = re.compile(r"wan\s+coff|nee\s+hel|too\s+da", re.IGNORECASE)
_SLURRED_WITH_TURN = re.compile(r"wan\s+coff|nee\s+hel|too\s+da|tur\s+on", re.IGNORECASE)

_DYSARTHRIA_PATTERNS = (
    re.compile(r"wan\s+coff", re.IGNORECASE),   # want coffee
    re.compile(r"nee\s+hel", re.IGNORECASE),    # need help
    re.compile(r"ca\s+yo", re.IGNORECASE),      # call you
    re.compile(r"too\s+da", re.IGNORECASE),     # too dark
    re.compile(r"tur\s+on", re.IGNORECASE),     # turn on
    re.compile(r"\b[a-z]{1,2}\s+[a-z]{1,2}\s+[a-z]{1,2}\b", re.IGNORECASE),
)

_COMPLETE_SHORT_PHRASES = (
    "hello", "hi", "yes", "no", "okay", "thanks", "thank you",
    "help me", "call help", "lights on", "lights off",
)


def is_unclear_speech(text: str) -> bool:
    """
    Return True if *text* probably needs interpretation before it is spoken.

    Args:
        text: Raw transcript.

    Returns:
        ``False`` for empty input and for transcripts that look complete.
    """
    if not text or not text.strip():
        return False

    clean = text.lower().strip()
    words = clean.split()

    short_words = [w for w in words if len(w) <= 2]
    if len(short_words) / len(words) > 0.3:
        return True

    if _PAUSES.search(clean):
        return True

    if len(words) <= 3 and len(clean) < 15:
        if not any(phrase in clean for phrase in _COMPLETE_SHORT_PHRASES):
            return True

    if any(p.search(clean) for p in _DYSARTHRIA_PATTERNS):
        return True

    # Missing function words
    if len(words) >= 4 and not _ARTICLES.search(clean) and not _PREPOSITIONS.search(clean):
        return True

    return False


def unclear_confidence(text: str) -> int:
    """Return a 0–100 score for how strongly *text* looks unclear."""
    if not is_unclear_speech(text):
        return 0

    clean = text.lower().strip()
    words = clean.split()
    confidence = 0
    if _SLURRED.search(clean):
        confidence += 40
    if len(words) <= 3:
        confidence += 20
    if _PAUSES.search(clean):
        confidence += 20
    short_words = [w for w in words if len(w) <= 2]
    confidence += min(20, len(short_words) * 10)
    return min(100, confidence)


def speech_category(text: str) -> SpeechCategory:
    """Classify *text* as dysarthria, aphasia, stutter or clear."""
    clean = text.lower().strip()
    if _SLURRED_WITH_TURN.search(clean):
        return "dysarthria"
    if len(clean.split()) >= 4 and not _ARTICLES.search(clean):
        return "aphasia"
    if _PAUSES.search(clean):
        return "stutter"
    return "clear"
