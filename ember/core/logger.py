"""
ember/core/logger.py — JSONL structured logger for Ember.

One JSON object per line goes to ``{log_dir}/ember_{date}.jsonl``; a new
file starts when the UTC date changes. WARN and above are mirrored to the
``ember`` stdlib logger on stderr.

Every record carries the process session id so entries from one server run
can be grouped. Values under credential-like keys (``api_key``, ``token``,
``auth_token``...) are masked before they reach disk.

Usage::

    from ember.core.logger import get_logger
    log = get_logger()
    log.info("dialog", "opened", {"candidates": 2})
    log.perf("tts", "synthesis_done", latency_ms=412.0, data={"bytes": 18230})
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, TextIO

_stdlib = logging.getLogger("ember")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.INFO)
_stdlib.propagate = False

_DEFAULT_DIR = Path(os.environ.get("EMBER_LOG_DIR", "logs"))

_MIRRORED = {
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_SECRET_MARKERS = ("api_key", "apikey", "token", "secret", "password", "auth")

_instance: Optional["EmberLogger"] = None
_instance_lock = threading.Lock()


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def redact(data: Any) -> Any:
    """Return *data* with credential-like dict values replaced by ``***``."""
    if isinstance(data, dict):
        return {
            k: ("***" if v and _is_secret(str(k)) else redact(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(v) for v in data]
    return data


class EmberLogger:
    """
    Process-wide JSONL logger. Obtain it with :func:`get_logger`.

    A record looks like::

        {"ts": "2026-03-02T14:20:49.123456+00:00", "session": "3f9c0a1b",
         "level": "INFO", "phase": "dialog", "event": "confirmed",
         "data": {"text": "I need help"}, "latency_ms": 301.2}

    ``latency_ms`` only appears on PERF records.

    Args:
        log_dir: Directory that receives the daily JSONL files.
    """

    def __init__(self, log_dir: Path) -> None:
        self._lock = threading.Lock()
        self._log_dir = log_dir
        self._stream: Optional[TextIO] = None
        self._day = ""
        self.session_id = uuid.uuid4().hex[:8]
        self._emit("INFO", "system", "startup", {
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "pid": os.getpid(),
        })

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def debug(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("DEBUG", phase, event, data)

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Record an INFO entry.

        Args:
            phase: Subsystem name, e.g. ``'dialog'`` or ``'twilio'``.
            event: Short event identifier, e.g. ``'playback_started'``.
            data: Extra context; credential-like keys are masked.
        """
        self._emit("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("WARN", phase, event, data)

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("ERROR", phase, event, data)

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("CRITICAL", phase, event, data)

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record how long an external call or local step took."""
        self._emit("PERF", phase, event, data, latency_ms=latency_ms)

    def flush(self) -> None:
        with self._lock:
            if self._stream is not None and not self._stream.closed:
                self._stream.flush()

    def relocate(self, log_dir: Path) -> None:
        """Close the current file and continue writing under *log_dir*."""
        with self._lock:
            self._close_stream()
            self._log_dir = log_dir
            self._day = ""
        self._emit("INFO", "system", "log_relocated", {"log_dir": str(log_dir)})

    # ── internals ─────────────────────────────────────────────

    def _emit(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        now = datetime.now(tz=timezone.utc)
        clean = redact(data) if data else {}
        record: dict[str, Any] = {
            "ts": now.isoformat(),
            "session": self.session_id,
            "level": level,
            "phase": phase,
            "event": event,
            "data": clean,
        }
        if latency_ms is not None:
            record["latency_ms"] = round(latency_ms, 3)
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            stream = self._stream_for(now)
            stream.write(line + "\n")

        mirror_level = _MIRRORED.get(level)
        if mirror_level is not None:
            _stdlib.log(mirror_level, "[%s] %s | %s", phase, event, clean)

    def _stream_for(self, now: datetime) -> TextIO:
        """Return the file for *now*'s date, rolling over at midnight UTC. Caller holds the lock."""
        day = now.strftime("%Y-%m-%d")
        if day != self._day or self._stream is None or self._stream.closed:
            self._close_stream()
            self._log_dir.mkdir(parents=True, exist_ok=True)
            self._stream = open(
                self._log_dir / f"ember_{day}.jsonl", "a", encoding="utf-8", buffering=1
            )
            self._day = day
        return self._stream

    def _close_stream(self) -> None:
        if self._stream is not None and not self._stream.closed:
            self._stream.close()
        self._stream = None


def get_logger() -> EmberLogger:
    """Return the process-wide :class:`EmberLogger`, creating it on first use."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = EmberLogger(_DEFAULT_DIR)
    return _instance


def configure_logging(log_dir: str | Path, level: str = "INFO") -> EmberLogger:
    """
    Point the JSONL files at *log_dir* and set the stderr mirror threshold.

    Args:
        log_dir: Directory for the daily files.
        level: ``DEBUG``, ``INFO``, ``WARN`` or ``ERROR``.

    Returns:
        The shared logger.
    """
    log = get_logger()
    target = Path(log_dir)
    if target != log.log_dir:
        log.relocate(target)
    name = "WARNING" if level.upper() == "WARN" else level.upper()
    _stdlib.setLevel(getattr(logging, name, logging.INFO))
    return log
