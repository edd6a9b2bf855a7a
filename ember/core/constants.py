"""
ember/core/constants.py — System constants for Ember.

Dialog states (Enum), timing defaults, interpretation thresholds and the
keyword tables used to route transcripts before they reach the cloud model.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


# ──────────────────────────────────────────────────────────────
# Dialog states
# ──────────────────────────────────────────────────────────────

class DialogState(Enum):
    """All valid states for the disambiguation selection state machine."""

    BROWSING = "BROWSING"
    CUSTOM_ENTRY = "CUSTOM_ENTRY"
    CONFIRMING = "CONFIRMING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmberConstants:
    """
    Frozen dataclass holding Ember's system constants.

    Use the class attributes directly; do not instantiate.

    Example::

        from ember.core.constants import EmberConstants as C

        print(C.AUTO_SELECT_TIMEOUT_S)   # 8
    """

    # ── Dialog timing ─────────────────────────────────────────
    AUTO_SELECT_TIMEOUT_S: ClassVar[int] = 8
    """Seconds of inactivity before the selected candidate is auto-confirmed."""

    CONFIRM_DELAY_MS: ClassVar[int] = 300
    """Visual-feedback pause between entering CONFIRMING and emitting the result."""

    TICK_INTERVAL_S: ClassVar[float] = 1.0
    """Length of one countdown tick."""

    MAX_SHORTCUT_DIGIT: ClassVar[int] = 9
    """Highest digit key that selects a candidate."""

    # ── Interpretation thresholds ─────────────────────────────
    DISAMBIGUATION_THRESHOLD: ClassVar[int] = 80
    """Interpretations below this confidence are shown for confirmation."""

    MAX_CANDIDATES: ClassVar[int] = 3
    """Primary interpretation plus at most two alternatives."""

    ALTERNATIVE_CONFIDENCE_STEP: ClassVar[int] = 20
    """Confidence dropped per rank for alternatives without their own score."""

    ALTERNATIVE_CONFIDENCE_FLOOR: ClassVar[int] = 10

    CAREGIVER_MIN_CONFIDENCE: ClassVar[int] = 60
    """Interpretation SMS is suppressed below this confidence."""

    CORRECTION_MATCH_RATIO: ClassVar[float] = 0.8
    """Word-overlap ratio at which a learned correction is reused."""

    MAX_CORRECTIONS: ClassVar[int] = 50

    # ── Confidence display bands ──────────────────────────────
    CONFIDENCE_HIGH: ClassVar[int] = 75
    CONFIDENCE_MEDIUM: ClassVar[int] = 50


# ──────────────────────────────────────────────────────────────
# Keyword routing tables
# ──────────────────────────────────────────────────────────────

HELP_KEYWORDS: tuple[str, ...] = (
    "help",
    "i need help",
    "help me",
    "call for help",
    "emergency",
    "call 911",
)

LIGHTS_ON_KEYWORDS: tuple[str, ...] = (
    "lights on",
    "light on",
    "turn on the lights",
    "turn on lights",
    "too dark",
    "it's dark",
    "is dark",
)

LIGHTS_OFF_KEYWORDS: tuple[str, ...] = (
    "lights off",
    "light off",
    "turn off the lights",
    "turn off lights",
    "too bright",
    "it's bright",
    "is bright",
)


def confidence_band(confidence: int) -> str:
    """Return ``'high'``, ``'medium'`` or ``'low'`` for a 0–100 confidence."""
    if confidence >= EmberConstants.CONFIDENCE_HIGH:
        return "high"
    if confidence >= EmberConstants.CONFIDENCE_MEDIUM:
        return "medium"
    return "low"
