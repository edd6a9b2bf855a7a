"""
ember/dialog/disambiguation.py — The "Did you mean?" confirmation dialog.

Composes the selection state machine, the auto-confirm countdown and the
voice preview adapter into one object that a transport (web socket, tests)
drives with key presses and clicks. Every lifecycle ends with exactly one
outcome: a confirmed phrase or a cancel.

Keyboard contract (browsing)::

    1..9        select candidate N (ignored past the last candidate)
    ArrowUp     move selection up (clamped)
    ArrowDown   move selection down (clamped)
    Enter       confirm
    Escape      cancel
    Space       start typing a custom phrase
    p / P       preview the selected candidate

While a custom phrase is being typed only Escape (back to browsing) and
Enter (confirm the typed text) act; everything else belongs to the text field.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

from ember.core.constants import DialogState, EmberConstants as C, confidence_band
from ember.core.errors import Notice
from ember.core.logger import get_logger
from ember.dialog.countdown import CountdownTimer
from ember.dialog.fsm import SelectionFSM
from ember.dialog.models import DialogOutcome, DisambiguationRequest, InterpretationCandidate
from ember.dialog.playback import AudioPlayer, Synthesizer, VoicePlaybackAdapter

_log = get_logger()

_SPACE_KEYS = frozenset({" ", "Space", "Spacebar"})


def _log_callback_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _log.error("dialog", "outcome_callback_failed", {"error": repr(exc)})


class DisambiguationDialog:
    """
    One disambiguation session, from open to confirm or cancel.

    Args:
        request: Original message, ranked candidates and auto-select timeout.
        synthesizer: Text-to-speech client for previews.
        player: Audio output for previews.
        voice_id_provider: Returns a stored cloned voice id, or ``None``.
            Errors are ignored and the default voice is used.
        on_confirm: Called once with the confirmed phrase.
        on_cancel: Called once when the dialog is cancelled.
        on_change: Called with :meth:`snapshot` after every visible change.
        on_notice: Called with each user-visible notice.
        confirm_delay_ms: Pause between entering CONFIRMING and emitting.
        tick_interval_s: Countdown tick length.
    """

    def __init__(
        self,
        request: DisambiguationRequest,
        synthesizer: Synthesizer,
        player: AudioPlayer,
        voice_id_provider: Optional[Callable[[], Optional[str]]] = None,
        on_confirm: Optional[Callable[[str], Any]] = None,
        on_cancel: Optional[Callable[[], Any]] = None,
        on_change: Optional[Callable[[dict], None]] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
        confirm_delay_ms: int = C.CONFIRM_DELAY_MS,
        tick_interval_s: float = C.TICK_INTERVAL_S,
    ) -> None:
        self._request = request
        self._candidates: list[InterpretationCandidate] = list(request.alternatives)
        self._voice_id_provider = voice_id_provider
        self._on_confirm = on_confirm
        self._on_cancel = on_cancel
        self._on_change = on_change
        self._on_notice = on_notice
        self._confirm_delay_s = confirm_delay_ms / 1000.0

        self._selected_index = 0
        self._custom_text = ""
        self._confirm_custom = False
        self._opened = False
        self._opened_at: Optional[float] = None
        self._outcome: Optional[DialogOutcome] = None
        self._outcome_future: Optional[asyncio.Future] = None
        self._finalize_task: Optional[asyncio.Task] = None
        self.notices: list[Notice] = []
        self.callback_task: Optional[asyncio.Task] = None

        self._fsm = SelectionFSM()
        self._playback = VoicePlaybackAdapter(
            synthesizer,
            player,
            on_change=self._on_playing_changed,
            on_notice=self._notify,
        )
        self._countdown = CountdownTimer(
            timeout_s=request.auto_select_timeout_s,
            on_expire=self._on_countdown_expired,
            is_suspended=self._countdown_suspended,
            tick_interval_s=tick_interval_s,
            on_tick=lambda _remaining: self._changed(),
        )

    # ──────────────────────────────────────────
    # Read-only state
    # ──────────────────────────────────────────

    @property
    def state(self) -> DialogState:
        return self._fsm.current_state

    @property
    def candidates(self) -> list[InterpretationCandidate]:
        return list(self._candidates)

    @property
    def original_message(self) -> str:
        return self._request.original_message

    @property
    def selected_index(self) -> int:
        return self._selected_index

    @property
    def custom_text(self) -> str:
        return self._custom_text

    @property
    def custom_active(self) -> bool:
        return self._fsm.current_state is DialogState.CUSTOM_ENTRY

    @property
    def countdown_seconds(self) -> int:
        return self._countdown.remaining

    @property
    def playing_index(self) -> Optional[int]:
        return self._playback.playing_index

    @property
    def is_confirming(self) -> bool:
        return self._fsm.current_state is DialogState.CONFIRMING

    @property
    def is_open(self) -> bool:
        return self._opened and not self._fsm.is_terminal

    @property
    def outcome(self) -> Optional[DialogOutcome]:
        return self._outcome

    @property
    def voice_id(self) -> Optional[str]:
        return self._playback.voice_id

    def can_confirm(self) -> bool:
        """Confirm is disabled while confirming and for blank custom text."""
        if not self._fsm.accepts_input:
            return False
        if self.custom_active and not self._custom_text.strip():
            return False
        return True

    def snapshot(self) -> dict:
        """Return the session as a JSON-safe dict for clients."""
        return {
            "original_message": self._request.original_message,
            "candidates": [
                {
                    "text": c.text,
                    "confidence": c.confidence,
                    "band": confidence_band(c.confidence),
                }
                for c in self._candidates
            ],
            "state": self._fsm.current_state.value,
            "selected_index": self._selected_index,
            "custom_active": self.custom_active,
            "custom_text": self._custom_text,
            "countdown_seconds": self._countdown.remaining,
            "playing_index": self._playback.playing_index,
            "is_confirming": self.is_confirming,
            "can_confirm": self.can_confirm(),
            "using_cloned_voice": self._playback.voice_id is not None,
            "outcome": self._outcome.model_dump() if self._outcome else None,
        }

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def open(self) -> None:
        """
        Start the session on the running loop: load the voice, start the countdown.

        Calling twice is a no-op.
        """
        if self._opened:
            return
        self._opened = True
        self._opened_at = time.perf_counter()
        self._outcome_future = asyncio.get_running_loop().create_future()
        self._playback.voice_id = self._load_voice_id()
        self._countdown.start()
        _log.info("dialog", "opened", {
            "original": self._request.original_message,
            "candidates": len(self._candidates),
            "timeout_s": self._request.auto_select_timeout_s,
        })
        self._changed()

    async def wait_outcome(self) -> DialogOutcome:
        """Wait until the dialog confirms or cancels."""
        if self._outcome is not None:
            return self._outcome
        if self._outcome_future is None:
            raise RuntimeError("Dialog has not been opened")
        return await asyncio.shield(self._outcome_future)

    def close(self) -> None:
        """
        Tear the dialog down.

        Stops the countdown and any preview. A dialog still taking input is
        cancelled; one already confirming finishes its confirm.
        """
        if self._fsm.accepts_input:
            self.cancel(reason="closed")
            return
        self._teardown()

    # ──────────────────────────────────────────
    # Input
    # ──────────────────────────────────────────

    def handle_key(self, key: str) -> bool:
        """
        Apply one key press.

        Args:
            key: Key name as reported by a browser ``KeyboardEvent.key``.

        Returns:
            True if the key changed anything.
        """
        if not self._fsm.accepts_input:
            return False

        if self.custom_active:
            if key == "Escape":
                return self.exit_custom_mode()
            if key == "Enter":
                return self.request_confirm(reason="enter")
            return False

        if len(key) == 1 and key in "123456789":
            index = int(key) - 1
            if index < min(len(self._candidates), C.MAX_SHORTCUT_DIGIT):
                return self.select(index)
            return False
        if key == "ArrowUp":
            return self.move_selection(-1)
        if key == "ArrowDown":
            return self.move_selection(1)
        if key == "Enter":
            return self.request_confirm(reason="enter")
        if key == "Escape":
            return self.cancel(reason="escape")
        if key in _SPACE_KEYS:
            return self.enter_custom_mode()
        if key in ("p", "P"):
            return self.play(self._selected_index)
        return False

    def select(self, index: int) -> bool:
        """
        Select candidate *index* (a click on an option).

        Leaves custom entry if it was active and resets the countdown.
        """
        if not self._fsm.accepts_input or not (0 <= index < len(self._candidates)):
            return False
        if self.custom_active:
            self._fsm.transition(DialogState.BROWSING, reason="option_clicked")
        self._selected_index = index
        self._countdown.reset()
        self._changed()
        return True

    def move_selection(self, delta: int) -> bool:
        """Move the selection by *delta*, clamped. False when it stays put."""
        if self._fsm.current_state is not DialogState.BROWSING:
            return False
        target = max(0, min(len(self._candidates) - 1, self._selected_index + delta))
        if target == self._selected_index:
            return False
        self._selected_index = target
        self._countdown.reset()
        self._changed()
        return True

    def enter_custom_mode(self) -> bool:
        if self._fsm.current_state is not DialogState.BROWSING:
            return False
        self._fsm.transition(DialogState.CUSTOM_ENTRY, reason="custom_requested")
        self._countdown.reset()
        self._changed()
        return True

    def exit_custom_mode(self) -> bool:
        if not self.custom_active:
            return False
        self._fsm.transition(DialogState.BROWSING, reason="custom_dismissed")
        self._countdown.reset()
        self._changed()
        return True

    def set_custom_text(self, text: str) -> bool:
        """Replace the free-text field contents. Only valid during custom entry."""
        if not self.custom_active:
            return False
        self._custom_text = text
        self._changed()
        return True

    def play(self, index: Optional[int] = None) -> bool:
        """Toggle the voice preview for *index* (default: the selected candidate)."""
        if not self._fsm.accepts_input:
            return False
        if index is None:
            index = self._selected_index
        if not (0 <= index < len(self._candidates)):
            return False
        self._playback.play_voice(self._candidates[index].text, index)
        return True

    # ──────────────────────────────────────────
    # Confirm / cancel
    # ──────────────────────────────────────────

    def request_confirm(self, reason: str = "button") -> bool:
        """
        Enter CONFIRMING and schedule the result.

        Input is blocked immediately; audio and countdown stop; the phrase is
        emitted after the confirm delay.

        Returns:
            False if confirm is currently disabled.
        """
        if not self.can_confirm():
            return False
        self._confirm_custom = self.custom_active
        self._fsm.transition(DialogState.CONFIRMING, reason=reason)
        self._teardown()
        self._finalize_task = asyncio.get_running_loop().create_task(
            self._finalize(), name="ember-confirm"
        )
        self._changed()
        return True

    async def confirm(self, reason: str = "button") -> Optional[DialogOutcome]:
        """Confirm and wait for the outcome. Returns ``None`` if confirm is disabled."""
        if not self.request_confirm(reason):
            return None
        return await self.wait_outcome()

    def cancel(self, reason: str = "button") -> bool:
        """
        Cancel without confirming.

        Ignored once a confirm is in progress.
        """
        if not self._fsm.accepts_input:
            return False
        self._teardown()
        self._fsm.transition(DialogState.CANCELLED, reason=reason)
        _log.info("dialog", "cancelled", {"reason": reason, **self._elapsed()})
        self._emit(DialogOutcome.cancelled())
        self._changed()
        return True

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _load_voice_id(self) -> Optional[str]:
        if self._voice_id_provider is None:
            return None
        try:
            voice_id = self._voice_id_provider()
        except Exception as exc:  # noqa: BLE001
            _log.warn("dialog", "voice_id_unavailable", {"error": str(exc)})
            return None
        return voice_id if isinstance(voice_id, str) and voice_id else None

    def _countdown_suspended(self) -> bool:
        return (
            self._fsm.current_state is not DialogState.BROWSING
            or self._playback.playing_index is not None
        )

    def _on_countdown_expired(self) -> None:
        self.request_confirm(reason="auto_confirm")

    def _on_playing_changed(self, index: Optional[int]) -> None:
        if index is not None:
            self._countdown.reset()
        else:
            self._countdown.notify()
        self._changed()

    def _teardown(self) -> None:
        self._countdown.cancel()
        self._playback.stop()

    def _resolve_text(self) -> str:
        if self._confirm_custom:
            return self._custom_text.strip()
        return self._candidates[self._selected_index].text

    async def _finalize(self) -> None:
        await asyncio.sleep(self._confirm_delay_s)
        try:
            text = self._resolve_text()
        except Exception as exc:  # noqa: BLE001
            _log.error("dialog", "resolve_failed", {"error": str(exc)})
            text = self._candidates[0].text
        self._fsm.transition(DialogState.CONFIRMED, reason="emitted")
        _log.info("dialog", "confirmed", {
            "text": text,
            "custom": self._confirm_custom,
            "selected_index": None if self._confirm_custom else self._selected_index,
            **self._elapsed(),
        })
        self._emit(DialogOutcome.confirmed(text))
        self._changed()

    def _emit(self, outcome: DialogOutcome) -> None:
        if self._outcome is not None:
            return
        self._outcome = outcome
        if self._outcome_future is not None and not self._outcome_future.done():
            self._outcome_future.set_result(outcome)
        try:
            result = None
            if outcome.kind == "confirmed" and self._on_confirm is not None:
                result = self._on_confirm(outcome.text)
            elif outcome.kind == "cancelled" and self._on_cancel is not None:
                result = self._on_cancel()
            if asyncio.iscoroutine(result):
                self.callback_task = asyncio.get_running_loop().create_task(
                    result, name="ember-outcome-callback"
                )
                self.callback_task.add_done_callback(_log_callback_failure)
        except Exception as exc:  # noqa: BLE001
            _log.error("dialog", "outcome_callback_failed", {"error": str(exc)})

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._on_notice is not None:
            try:
                self._on_notice(notice)
            except Exception as exc:  # noqa: BLE001
                _log.warn("dialog", "notice_callback_failed", {"error": str(exc)})
        self._changed()

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception as exc:  # noqa: BLE001
            _log.warn("dialog", "change_callback_failed", {"error": str(exc)})

    def _elapsed(self) -> dict:
        if self._opened_at is None:
            return {}
        return {"elapsed_ms": round((time.perf_counter() - self._opened_at) * 1000.0, 1)}
