"""
tests/test_countdown.py — unittest tests for ember.dialog.countdown.CountdownTimer.

Ticks are shortened to a few milliseconds so the whole module runs fast.
"""

from __future__ import annotations

import asyncio
import unittest

from ember.dialog.countdown import CountdownTimer
from fakes import wait_until

_TICK = 0.01


class TestCountdownTimer(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.expired = 0
        self.suspended = False
        self.ticks: list[int] = []

    def _timer(self, timeout_s: int = 3) -> CountdownTimer:
        return CountdownTimer(
            timeout_s=timeout_s,
            on_expire=self._on_expire,
            is_suspended=lambda: self.suspended,
            tick_interval_s=_TICK,
            on_tick=self.ticks.append,
        )

    def _on_expire(self) -> None:
        self.expired += 1

    async def test_expires_once_after_timeout(self) -> None:
        timer = self._timer(3)
        timer.start()
        self.assertTrue(await wait_until(lambda: self.expired > 0))
        await asyncio.sleep(5 * _TICK)
        self.assertEqual(self.expired, 1)
        self.assertEqual(timer.remaining, 0)
        self.assertTrue(timer.expired)
        self.assertEqual(self.ticks, [2, 1, 0])

    async def test_start_twice_is_noop(self) -> None:
        timer = self._timer(2)
        timer.start()
        timer.start()
        self.assertTrue(await wait_until(lambda: self.expired > 0))
        await asyncio.sleep(3 * _TICK)
        self.assertEqual(self.expired, 1)

    async def test_suspended_timer_neither_ticks_nor_expires(self) -> None:
        self.suspended = True
        timer = self._timer(2)
        timer.start()
        await asyncio.sleep(10 * _TICK)
        self.assertEqual(self.expired, 0)
        self.assertEqual(timer.remaining, 2)

        self.suspended = False
        timer.notify()
        self.assertTrue(await wait_until(lambda: self.expired == 1))

    async def test_reset_restores_full_timeout(self) -> None:
        timer = self._timer(50)
        timer.start()
        self.assertTrue(await wait_until(lambda: timer.remaining < 50))
        timer.reset()
        self.assertEqual(timer.remaining, 50)
        timer.cancel()

    async def test_cancel_prevents_expiry(self) -> None:
        timer = self._timer(5)
        timer.start()
        await asyncio.sleep(_TICK)
        timer.cancel()
        await asyncio.sleep(10 * _TICK)
        self.assertEqual(self.expired, 0)
        self.assertFalse(timer.running)

    async def test_cancel_before_start_keeps_it_stopped(self) -> None:
        timer = self._timer(1)
        timer.cancel()
        timer.start()
        await asyncio.sleep(5 * _TICK)
        self.assertEqual(self.expired, 0)
        self.assertFalse(timer.running)


if __name__ == "__main__":
    unittest.main()
