"""
ember/speech/feedback.py — Local spoken feedback using pyttsx3.

Announces system events ("Did you mean: ...?", "Calling your emergency
contact now...") through the offline speech engine. Speech runs in a daemon
worker thread; a new request interrupts whatever is being said. Each request
returns a :class:`SpeechJob` whose completion can be awaited.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pyttsx3  # type: ignore[import]

from ember.core.config import FeedbackConfig

logger = logging.getLogger(__name__)

_job_ids = itertools.count(1)

_RATE_NORMAL = 0.9
_RATE_CONFIRMATION = 1.0
_RATE_EMERGENCY = 0.85


@dataclass
class SpeechJob:
    """One queued utterance. ``done`` is set when it finishes or is dropped."""

    text: str
    rate_factor: float
    job_id: int = field(default_factory=lambda: next(_job_ids))
    done: threading.Event = field(default_factory=threading.Event)
    completed: bool = False
    interrupted: bool = False


class VoiceFeedback:
    """
    Offline spoken feedback wrapping pyttsx3.

    Args:
        config: Feedback configuration (base rate, volume, voice).
        voice_speed: Multiplier from the user's accessibility settings.
        engine_factory: Callable returning a pyttsx3-compatible engine.
            The engine is created and used only inside the worker thread.
    """

    def __init__(
        self,
        config: FeedbackConfig,
        voice_speed: float = 1.0,
        engine_factory: Callable[[], Any] = pyttsx3.init,
    ) -> None:
        self._cfg = config
        self._voice_speed = voice_speed
        self._engine_factory = engine_factory
        self._enabled = config.enabled
        self._lock = threading.Lock()
        self._pending: Optional[SpeechJob] = None
        self._current: Optional[SpeechJob] = None
        self._engine: Optional[Any] = None
        self._shutdown_flag = False
        self._worker_thread = threading.Thread(
            target=self._worker_loop, name="feedback-worker", daemon=True
        )
        self._worker_thread.start()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_voice_speed(self, voice_speed: float) -> None:
        self._voice_speed = voice_speed

    def speak(self, text: str, rate_factor: float = _RATE_NORMAL) -> Optional[SpeechJob]:
        """
        Queue *text*, interrupting current speech.

        Args:
            text: Sentence to speak.
            rate_factor: Multiplier applied to the configured base rate.

        Returns:
            The queued job, or ``None`` when feedback is disabled or *text* is blank.
        """
        text = text.strip()
        if not self._enabled or not text:
            return None

        job = SpeechJob(text=text, rate_factor=rate_factor)
        with self._lock:
            if self._pending is not None:
                self._pending.done.set()
            self._pending = job
            self._stop_engine()
        logger.info("Feedback: queuing speech: %r", text[:80])
        return job

    def speak_interpretation(self, interpretation: str) -> Optional[SpeechJob]:
        return self.speak(f"Did you mean: {interpretation}?")

    def speak_confirmation(self, text: str) -> Optional[SpeechJob]:
        return self.speak(f"I understand: {text}", rate_factor=_RATE_CONFIRMATION)

    def speak_emergency(self, message: str) -> Optional[SpeechJob]:
        return self.speak(message, rate_factor=_RATE_EMERGENCY)

    async def speak_and_wait(
        self,
        text: str,
        rate_factor: float = _RATE_NORMAL,
        timeout_s: float = 30.0,
    ) -> bool:
        """
        Speak *text* and wait until it finishes.

        Returns:
            True if the utterance played to the end, False if it was disabled,
            interrupted, cancelled or timed out.
        """
        job = self.speak(text, rate_factor)
        if job is None:
            return False
        finished = await asyncio.to_thread(job.done.wait, timeout_s)
        return finished and job.completed

    def toggle(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.cancel()

    def cancel(self) -> None:
        """Drop pending speech and stop the current utterance."""
        with self._lock:
            if self._pending is not None:
                self._pending.done.set()
                self._pending = None
            self._stop_engine()

    def shutdown(self) -> None:
        """Stop the worker thread. Safe to call multiple times."""
        self._shutdown_flag = True
        self.cancel()
        self._worker_thread.join(timeout=3.0)
        logger.info("VoiceFeedback shut down")

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _stop_engine(self) -> None:
        """Interrupt the utterance in progress. Called with ``self._lock`` held."""
        if self._current is not None:
            self._current.interrupted = True
        if self._engine is not None and self._current is not None:
            try:
                self._engine.stop()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Feedback engine stop raised: %s", exc)

    def _init_engine(self) -> None:
        try:
            self._engine = self._engine_factory()
            self._engine.setProperty("volume", self._cfg.volume)
            if self._cfg.voice_id:
                self._engine.setProperty("voice", self._cfg.voice_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Feedback engine init failed: %s — feedback unavailable", exc)
            self._engine = None

    def _worker_loop(self) -> None:
        """Poll for pending speech every 50 ms and speak it (blocking runAndWait)."""
        self._init_engine()
        while not self._shutdown_flag:
            with self._lock:
                job, self._pending = self._pending, None
                self._current = job

            if job is None:
                time.sleep(0.05)
                continue

            if self._engine is None:
                job.done.set()
                continue

            try:
                rate = int(self._cfg.rate * job.rate_factor * self._voice_speed)
                self._engine.setProperty("rate", rate)
                self._engine.say(job.text)
                self._engine.runAndWait()
                with self._lock:
                    job.completed = not job.interrupted
            except Exception as exc:  # noqa: BLE001
                logger.error("Feedback speak error: %s", exc)
            finally:
                with self._lock:
                    self._current = None
                job.done.set()
