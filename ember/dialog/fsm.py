"""
ember/dialog/fsm.py — Selection state machine for the disambiguation dialog.

Explicit validated transition map, per-state enter/exit hooks, transition
history (last 50) and stdlib logging. All mutations happen on the event-loop
thread, so no lock is taken.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from ember.core.constants import DialogState

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested transition is not in the valid transition map.

    Args:
        from_state: Current state at the time of the illegal attempt.
        to_state: Requested (invalid) target state.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_state: DialogState,
        to_state: DialogState,
        reason: str = "",
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[DialogState, list[DialogState]] = {
    DialogState.BROWSING: [
        DialogState.CUSTOM_ENTRY,
        DialogState.CONFIRMING,
        DialogState.CANCELLED,
    ],
    DialogState.CUSTOM_ENTRY: [
        DialogState.BROWSING,
        DialogState.CONFIRMING,
        DialogState.CANCELLED,
    ],
    DialogState.CONFIRMING: [
        DialogState.CONFIRMED,
    ],
    DialogState.CONFIRMED: [],
    DialogState.CANCELLED: [],
}

_TERMINAL_STATES = frozenset({DialogState.CONFIRMED, DialogState.CANCELLED})

_MAX_HISTORY = 50


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class SelectionFSM:
    """
    Finite state machine tracking where the user is in the dialog.

    ``BROWSING`` → ``CUSTOM_ENTRY`` → ``CONFIRMING`` → ``CONFIRMED``, with
    ``CANCELLED`` reachable from either input state. Terminal states accept
    no further transitions.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[DialogState, DialogState, str], None] | None = None,
    ) -> None:
        self._state: DialogState = DialogState.BROWSING
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._last_transition: dict | None = None

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def current_state(self) -> DialogState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in _TERMINAL_STATES

    @property
    def accepts_input(self) -> bool:
        """True while the user can still change the selection."""
        return self._state in (DialogState.BROWSING, DialogState.CUSTOM_ENTRY)

    def transition(self, new_state: DialogState, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Fires ``_on_exit_<from>`` then ``_on_enter_<to>`` hooks, records the
        transition and notifies the external callback.

        Args:
            new_state: Target state.
            reason: Human-readable reason (for logs/history).

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        from_state = self._state
        if new_state not in _VALID_TRANSITIONS.get(from_state, []):
            raise InvalidTransitionError(from_state, new_state, reason)

        self._fire_hook("exit", from_state)
        self._state = new_state

        record = {
            "from": from_state.value,
            "to": new_state.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

        logger.info(
            "Dialog FSM: %s → %s%s",
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        self._fire_hook("enter", new_state)

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Dialog FSM external callback raised: %s", exc)

    def can_transition(self, target: DialogState) -> bool:
        return target in _VALID_TRANSITIONS.get(self._state, [])

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records.

        Each record has keys ``from``, ``to``, ``reason`` and ``timestamp``.
        """
        return list(self._history)

    # ──────────────────────────────────────────
    # Hooks, override in subclass
    # ──────────────────────────────────────────

    def _on_enter_custom_entry(self) -> None:
        logger.debug("Dialog enter: CUSTOM_ENTRY — countdown suspended")

    def _on_enter_confirming(self) -> None:
        logger.debug("Dialog enter: CONFIRMING — input blocked")

    def _on_enter_cancelled(self) -> None:
        logger.debug("Dialog enter: CANCELLED")

    def _on_exit_custom_entry(self) -> None:
        logger.debug("Dialog exit: CUSTOM_ENTRY")

    # ──────────────────────────────────────────
    # Internal dispatch
    # ──────────────────────────────────────────

    def _fire_hook(self, kind: str, state: DialogState) -> None:
        """Dispatch to ``_on_<kind>_<state>`` if the subclass defines it."""
        method_name = f"_on_{kind}_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s hook raised: %s", method_name, exc)

    def __repr__(self) -> str:
        if self._last_transition:
            last = f"{self._last_transition['from']}→{self._last_transition['to']}"
            if self._last_transition["reason"]:
                last += f"[{self._last_transition['reason']}]"
        else:
            last = "none"
        return f"SelectionFSM(state={self._state.value}, last={last})"
