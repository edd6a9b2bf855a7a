"""
tests/test_corrections.py — pytest unit tests for learned corrections and accuracy stats.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ember.storage.accuracy import AccuracyTracker
from ember.storage.corrections import (
    CorrectionStore,
    apply_learned_patterns,
    are_similar_words,
    detect_pattern,
    normalize,
    overlap_ratio,
)


@pytest.fixture
def store(tmp_path: Path) -> CorrectionStore:
    return CorrectionStore(tmp_path / "corrections.json", max_entries=5)


class TestHelpers:

    def test_normalize_strips_punctuation_and_case(self) -> None:
        assert normalize("  Wan COFF!? ") == "wan coff"

    @pytest.mark.parametrize("a, b, expected", [
        ("coff", "coffee", True),
        ("hel", "help", True),
        ("cat", "elephant", False),
        ("abc", "xyz", False),
    ])
    def test_similar_words(self, a: str, b: str, expected: bool) -> None:
        assert are_similar_words(a, b) is expected

    def test_detect_pattern(self) -> None:
        pattern = detect_pattern("wan coff", "I want coffee")
        assert pattern.missing_words == ["want", "coffee"]
        assert pattern.added_words == ["wan", "coff"]
        subs = {(s.from_word, s.to_word) for s in pattern.substitutions}
        assert ("coff", "coffee") in subs
        assert ("wan", "want") in subs

    def test_overlap_ratio(self) -> None:
        assert overlap_ratio("please wan coff now", "wan coff") == 1.0
        assert overlap_ratio("wan tea", "wan coff") == 0.5
        assert overlap_ratio("anything", "...") == 0.0

    def test_apply_learned_patterns_whole_words(self) -> None:
        pattern = detect_pattern("wan coff", "want coffee")
        assert apply_learned_patterns("I wan coff", [pattern]) == "I want coffee"
        assert apply_learned_patterns("swan song", [pattern]) == "swan song"


class TestCorrectionStore:

    def test_empty_store(self, store: CorrectionStore) -> None:
        assert store.all() == []
        assert store.find_similar("wan coff") is None

    def test_exact_match(self, store: CorrectionStore) -> None:
        store.store("wan coff", "I want coffee")
        assert store.find_similar("Wan coff.") == "I want coffee"

    def test_overlap_match(self, store: CorrectionStore) -> None:
        store.store("wan coff", "I want coffee")
        assert store.find_similar("wan coff please") == "I want coffee"
        assert store.find_similar("wan tea") is None

    def test_newest_entry_wins(self, store: CorrectionStore) -> None:
        store.store("wan coff", "I want coffee")
        store.store("wan coff", "I want a cough drop")
        assert store.find_similar("wan coff") == "I want a cough drop"

    def test_keeps_only_most_recent(self, store: CorrectionStore) -> None:
        for i in range(8):
            store.store(f"phrase {i}", f"Corrected {i}")
        originals = [e.original for e in store.all()]
        assert originals == [f"phrase {i}" for i in range(3, 8)]

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        CorrectionStore(tmp_path / "c.json").store("nee hel", "I need help")
        assert CorrectionStore(tmp_path / "c.json").find_similar("nee hel") == "I need help"

    def test_corrupt_file_reads_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "c.json"
        path.write_text("{not json", encoding="utf-8")
        assert CorrectionStore(path).all() == []

    def test_apply_uses_stored_substitutions(self, store: CorrectionStore) -> None:
        store.store("wan coff", "want coffee")
        assert store.apply("I wan coff") == "I want coffee"

    def test_stats_and_clear(self, store: CorrectionStore) -> None:
        store.store("wan coff", "I want coffee")
        store.store("wan wata", "I want water")
        stats = store.stats()
        assert stats["total_corrections"] == 2
        assert "want" in stats["common_missing_words"]
        assert {"from": "wan", "to": "want", "count": 2} in stats["common_substitutions"]
        store.clear()
        assert store.stats()["total_corrections"] == 0


class TestAccuracyTracker:

    def test_empty_stats(self) -> None:
        stats = AccuracyTracker().stats()
        assert stats["total_interpretations"] == 0
        assert stats["accuracy"] == 0.0

    def test_stats(self) -> None:
        tracker = AccuracyTracker()
        tracker.add_record("nee hel", "I need help", 80, True)
        tracker.add_record("nee hel", "I need help", 60, False)
        tracker.add_record("wan coff", "I want coffee", 70, True)
        stats = tracker.stats()
        assert stats["total_interpretations"] == 3
        assert stats["correct_interpretations"] == 2
        assert stats["accuracy"] == pytest.approx(200 / 3)
        assert stats["average_confidence"] == pytest.approx(70.0)
        assert stats["most_common_phrases"][0] == "I need help"
