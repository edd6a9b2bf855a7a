"""In-session interpretation accuracy statistics."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field


@dataclass(frozen=True)
class InterpretationRecord:
    input: str
    interpretation: str
    confidence: int
    was_correct: bool
    timestamp: float = field(default_factory=time.time)


class AccuracyTracker:
    """Collects one record per confirmed or overridden interpretation."""

    def __init__(self) -> None:
        self._records: list[InterpretationRecord] = []

    def add_record(
        self,
        input_text: str,
        interpretation: str,
        confidence: int,
        was_correct: bool,
    ) -> InterpretationRecord:
        record = InterpretationRecord(
            input=input_text,
            interpretation=interpretation,
            confidence=confidence,
            was_correct=was_correct,
        )
        self._records.append(record)
        return record

    @property
    def records(self) -> list[InterpretationRecord]:
        return list(self._records)

    def stats(self) -> dict:
        """
        Return totals, accuracy percentage, mean confidence and the five most
        frequent interpretations.
        """
        total = len(self._records)
        correct = sum(1 for r in self._records if r.was_correct)
        phrases = Counter(r.interpretation for r in self._records)
        return {
            "total_interpretations": total,
            "correct_interpretations": correct,
            "accuracy": (correct / total) * 100 if total else 0.0,
            "average_confidence": (
                sum(r.confidence for r in self._records) / total if total else 0.0
            ),
            "most_common_phrases": [p for p, _ in phrases.most_common(5)],
        }
