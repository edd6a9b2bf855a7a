"""
ember/dialog/countdown.py — Cooperative auto-confirm countdown.

An asyncio task that decrements an integer once per tick and calls
``on_expire`` when it reaches zero. While ``is_suspended()`` is true it neither
ticks nor expires. Any reset or suspension change restarts the current tick,
so a resumed countdown always waits a full tick before decrementing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    """
    Decrementing timer driven by the running event loop.

    Args:
        timeout_s: Number of ticks to count down from.
        on_expire: Called once, synchronously, when the count reaches zero
            while not suspended. Must not block.
        is_suspended: Predicate evaluated before every tick and before expiry.
        tick_interval_s: Length of one tick in seconds.
        on_tick: Optional callback receiving the remaining count after each tick.
    """

    def __init__(
        self,
        timeout_s: int,
        on_expire: Callable[[], None],
        is_suspended: Callable[[], bool],
        tick_interval_s: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._remaining = timeout_s
        self._on_expire = on_expire
        self._is_suspended = is_suspended
        self._tick_interval_s = tick_interval_s
        self._on_tick = on_tick
        self._poke = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._expired = False

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def timeout_s(self) -> int:
        return self._timeout_s

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        """Begin counting on the running loop. Calling twice is a no-op."""
        if self._task is not None or self._cancelled:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="ember-countdown"
        )

    def reset(self) -> None:
        """Restore the full timeout and restart the current tick."""
        self._remaining = self._timeout_s
        self._poke.set()

    def notify(self) -> None:
        """Re-evaluate suspension; restarts the current tick."""
        self._poke.set()

    def cancel(self) -> None:
        """Stop permanently. No tick or expiry fires after this returns."""
        self._cancelled = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._poke.set()

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    async def _run(self) -> None:
        while not self._cancelled:
            self._poke.clear()

            if self._is_suspended():
                await self._poke.wait()
                continue

            if self._remaining <= 0:
                self._expired = True
                logger.debug("Countdown expired")
                self._on_expire()
                return

            try:
                await asyncio.wait_for(self._poke.wait(), timeout=self._tick_interval_s)
                continue
            except asyncio.TimeoutError:
                pass

            if self._cancelled or self._is_suspended():
                continue
            self._remaining -= 1
            if self._on_tick is not None:
                try:
                    self._on_tick(self._remaining)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Countdown tick callback raised: %s", exc)
