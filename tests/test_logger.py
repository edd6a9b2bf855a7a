"""
tests/test_logger.py — pytest unit tests for ember.core.logger.
"""

from __future__ import annotations

import json
from pathlib import Path

from ember.core.logger import EmberLogger, redact


def _records(log_dir: Path) -> list[dict]:
    files = list(log_dir.glob("ember_*.jsonl"))
    assert len(files) == 1
    return [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]


class TestRedact:

    def test_masks_credentials_recursively(self) -> None:
        data = {"api_key": "sk-1", "nested": {"auth_token": "t"}, "to": "***1234"}
        assert redact(data) == {"api_key": "***", "nested": {"auth_token": "***"}, "to": "***1234"}

    def test_empty_values_stay_visible(self) -> None:
        assert redact({"api_key": None}) == {"api_key": None}

    def test_lists(self) -> None:
        assert redact([{"password": "x"}, 3]) == [{"password": "***"}, 3]


class TestEmberLogger:

    def test_startup_and_entries(self, tmp_path: Path) -> None:
        log = EmberLogger(tmp_path)
        log.info("dialog", "opened", {"candidates": 2})
        log.perf("tts", "synthesis_done", latency_ms=12.34567)
        log.flush()

        records = _records(tmp_path)
        assert [r["event"] for r in records] == ["startup", "opened", "synthesis_done"]
        assert {r["session"] for r in records} == {log.session_id}
        assert records[1]["data"] == {"candidates": 2}
        assert records[2]["level"] == "PERF"
        assert records[2]["latency_ms"] == 12.346
        assert "latency_ms" not in records[1]

    def test_secrets_never_written(self, tmp_path: Path) -> None:
        log = EmberLogger(tmp_path)
        log.warn("gemini", "request_failed", {"api_key": "g-secret"})
        log.flush()
        text = next(tmp_path.glob("*.jsonl")).read_text(encoding="utf-8")
        assert "g-secret" not in text

    def test_relocate(self, tmp_path: Path) -> None:
        log = EmberLogger(tmp_path / "a")
        log.relocate(tmp_path / "b")
        log.info("system", "moved")
        log.flush()
        assert log.log_dir == tmp_path / "b"
        events = [r["event"] for r in _records(tmp_path / "b")]
        assert events == ["log_relocated", "moved"]
