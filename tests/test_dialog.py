"""
tests/test_dialog.py — unittest tests for ember.dialog.disambiguation.DisambiguationDialog.

Drives the dialog with key presses and clicks on a real event loop, with
millisecond ticks, a zero confirm delay and in-memory audio.
"""

from __future__ import annotations

import asyncio
import unittest
from typing import Optional

from ember.core.constants import DialogState
from ember.dialog.disambiguation import DisambiguationDialog
from ember.dialog.models import DisambiguationRequest, DialogOutcome, InterpretationCandidate
from fakes import FakePlayer, FakeSynthesizer, wait_until

_TICK = 0.01


def _request(*candidates: tuple[str, int], timeout_s: int = 8) -> DisambiguationRequest:
    return DisambiguationRequest(
        original_message="nee hel",
        alternatives=[InterpretationCandidate(text=t, confidence=c) for t, c in candidates],
        auto_select_timeout_s=timeout_s,
    )


_NEE_HEL = (("I need help", 72), ("I need health", 45), ("Need a hand", 30))


class DialogTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.confirmed: list[str] = []
        self.cancelled = 0
        self.snapshots: list[dict] = []
        self.synth = FakeSynthesizer()
        self.player = FakePlayer(duration_s=1.0)

    def _open(
        self,
        request: Optional[DisambiguationRequest] = None,
        confirm_delay_ms: int = 0,
        voice_id_provider=None,
    ) -> DisambiguationDialog:
        dialog = DisambiguationDialog(
            request or _request(*_NEE_HEL, timeout_s=1000),
            self.synth,
            self.player,
            voice_id_provider=voice_id_provider,
            on_confirm=self.confirmed.append,
            on_cancel=self._on_cancel,
            on_change=self.snapshots.append,
            confirm_delay_ms=confirm_delay_ms,
            tick_interval_s=_TICK,
        )
        dialog.open()
        return dialog

    def _on_cancel(self) -> None:
        self.cancelled += 1


class TestAutoConfirm(DialogTestCase):

    async def test_selected_candidate_confirms_after_timeout(self) -> None:
        dialog = self._open(_request(*_NEE_HEL))
        outcome = await asyncio.wait_for(dialog.wait_outcome(), timeout=2.0)
        self.assertEqual(outcome, DialogOutcome.confirmed("I need help"))
        self.assertEqual(self.confirmed, ["I need help"])
        self.assertIs(dialog.state, DialogState.CONFIRMED)
        self.assertFalse(dialog.is_open)

    async def test_no_auto_confirm_during_custom_entry(self) -> None:
        dialog = self._open(_request(*_NEE_HEL, timeout_s=3))
        dialog.handle_key(" ")
        await asyncio.sleep(15 * _TICK)
        self.assertTrue(dialog.is_open)
        self.assertEqual(dialog.countdown_seconds, 3)
        dialog.handle_key("Escape")
        self.assertTrue(await wait_until(lambda: dialog.outcome is not None))
        self.assertEqual(self.confirmed, ["I need help"])

    async def test_no_auto_confirm_while_preview_plays(self) -> None:
        dialog = self._open(_request(*_NEE_HEL, timeout_s=3))
        dialog.handle_key("p")
        await asyncio.sleep(15 * _TICK)
        self.assertTrue(dialog.is_open)
        self.assertEqual(dialog.playing_index, 0)

        dialog.play(0)
        self.assertIsNone(dialog.playing_index)
        self.assertTrue(await wait_until(lambda: dialog.outcome is not None))
        self.assertEqual(self.confirmed, ["I need help"])

    async def test_selection_resets_countdown(self) -> None:
        dialog = self._open(_request(*_NEE_HEL, timeout_s=50))
        self.assertTrue(await wait_until(lambda: dialog.countdown_seconds < 50))
        dialog.select(1)
        self.assertEqual(dialog.countdown_seconds, 50)
        dialog.close()


class TestKeyboard(DialogTestCase):

    async def test_digit_then_enter(self) -> None:
        dialog = self._open()
        self.assertTrue(dialog.handle_key("2"))
        self.assertEqual(dialog.selected_index, 1)
        self.assertTrue(dialog.handle_key("Enter"))
        self.assertTrue(dialog.is_confirming)
        outcome = await dialog.wait_outcome()
        self.assertEqual(outcome.text, "I need health")

    async def test_digit_past_last_candidate_is_ignored(self) -> None:
        dialog = self._open()
        self.assertFalse(dialog.handle_key("4"))
        self.assertFalse(dialog.handle_key("9"))
        self.assertEqual(dialog.selected_index, 0)
        dialog.close()

    async def test_arrows_clamp_to_bounds(self) -> None:
        dialog = self._open()
        self.assertFalse(dialog.handle_key("ArrowUp"))
        self.assertEqual(dialog.selected_index, 0)
        moves = [dialog.handle_key("ArrowDown") for _ in range(5)]
        self.assertEqual(moves, [True, True, False, False, False])
        self.assertEqual(dialog.selected_index, 2)
        dialog.close()

    async def test_arrow_at_edge_publishes_nothing(self) -> None:
        dialog = self._open()
        published = len(self.snapshots)
        self.assertFalse(dialog.handle_key("ArrowUp"))
        self.assertEqual(len(self.snapshots), published)
        dialog.close()

    async def test_escape_cancels(self) -> None:
        dialog = self._open()
        self.assertTrue(dialog.handle_key("Escape"))
        self.assertEqual(await dialog.wait_outcome(), DialogOutcome.cancelled())
        self.assertEqual(self.cancelled, 1)
        self.assertEqual(self.confirmed, [])

    async def test_unknown_key_does_nothing(self) -> None:
        dialog = self._open()
        self.assertFalse(dialog.handle_key("x"))
        self.assertIs(dialog.state, DialogState.BROWSING)
        dialog.close()


class TestCustomEntry(DialogTestCase):

    async def test_space_custom_text_enter(self) -> None:
        dialog = self._open()
        self.assertTrue(dialog.handle_key("Space"))
        self.assertTrue(dialog.custom_active)
        dialog.set_custom_text("  I need my glasses  ")
        self.assertTrue(dialog.handle_key("Enter"))
        outcome = await dialog.wait_outcome()
        self.assertEqual(outcome.text, "I need my glasses")

    async def test_blank_custom_text_cannot_confirm(self) -> None:
        dialog = self._open()
        dialog.enter_custom_mode()
        dialog.set_custom_text("   ")
        self.assertFalse(dialog.can_confirm())
        self.assertFalse(dialog.handle_key("Enter"))
        self.assertTrue(dialog.custom_active)
        dialog.close()

    async def test_keys_belong_to_text_field(self) -> None:
        dialog = self._open()
        dialog.enter_custom_mode()
        self.assertFalse(dialog.handle_key("2"))
        self.assertFalse(dialog.handle_key("ArrowDown"))
        self.assertEqual(dialog.selected_index, 0)
        self.assertTrue(dialog.handle_key("Escape"))
        self.assertIs(dialog.state, DialogState.BROWSING)
        dialog.close()

    async def test_clicking_option_leaves_custom_entry(self) -> None:
        dialog = self._open()
        dialog.enter_custom_mode()
        dialog.set_custom_text("something else")
        self.assertTrue(dialog.select(2))
        self.assertFalse(dialog.custom_active)
        outcome = await dialog.confirm()
        self.assertEqual(outcome.text, "Need a hand")

    async def test_custom_entry_keeps_preview_playing(self) -> None:
        dialog = self._open()
        dialog.play(1)
        dialog.enter_custom_mode()
        self.assertEqual(dialog.playing_index, 1)
        dialog.close()
        self.assertIsNone(dialog.playing_index)


class TestSingleOutcome(DialogTestCase):

    async def test_cancel_ignored_while_confirming(self) -> None:
        dialog = self._open(confirm_delay_ms=50)
        self.assertTrue(dialog.request_confirm())
        self.assertFalse(dialog.cancel())
        self.assertFalse(dialog.request_confirm())
        self.assertFalse(dialog.handle_key("2"))
        outcome = await dialog.wait_outcome()
        self.assertEqual(outcome.kind, "confirmed")
        self.assertEqual(self.confirmed, ["I need help"])
        self.assertEqual(self.cancelled, 0)

    async def test_close_while_browsing_cancels(self) -> None:
        dialog = self._open()
        dialog.close()
        self.assertEqual(dialog.outcome, DialogOutcome.cancelled())
        self.assertEqual(self.cancelled, 1)
        dialog.close()
        self.assertEqual(self.cancelled, 1)

    async def test_close_while_confirming_lets_confirm_finish(self) -> None:
        dialog = self._open(confirm_delay_ms=30)
        dialog.request_confirm()
        dialog.close()
        outcome = await dialog.wait_outcome()
        self.assertEqual(outcome.kind, "confirmed")
        self.assertEqual(self.cancelled, 0)

    async def test_confirm_stops_preview(self) -> None:
        dialog = self._open()
        dialog.play(0)
        await wait_until(lambda: len(self.player.handles) == 1)
        await dialog.confirm()
        self.assertTrue(self.player.handles[0].stopped)
        self.assertIsNone(dialog.playing_index)

    async def test_async_confirm_callback_is_scheduled(self) -> None:
        received: list[str] = []

        async def on_confirm(text: str) -> None:
            received.append(text)

        dialog = DisambiguationDialog(
            _request(*_NEE_HEL, timeout_s=1000),
            self.synth,
            self.player,
            on_confirm=on_confirm,
            confirm_delay_ms=0,
            tick_interval_s=_TICK,
        )
        dialog.open()
        await dialog.confirm()
        self.assertIsNotNone(dialog.callback_task)
        await dialog.callback_task
        self.assertEqual(received, ["I need help"])


class TestVoiceAndSnapshot(DialogTestCase):

    async def test_cloned_voice_used_for_previews(self) -> None:
        dialog = self._open(voice_id_provider=lambda: "clone-7")
        self.assertEqual(dialog.voice_id, "clone-7")
        dialog.play(0)
        await wait_until(lambda: bool(self.synth.calls))
        self.assertEqual(self.synth.calls[0], ("I need help", "clone-7"))
        self.assertTrue(dialog.snapshot()["using_cloned_voice"])
        dialog.close()

    async def test_failing_voice_lookup_falls_back_to_default(self) -> None:
        def broken() -> str:
            raise OSError("vault unreadable")

        dialog = self._open(voice_id_provider=broken)
        self.assertIsNone(dialog.voice_id)
        dialog.close()

    async def test_synthesis_failure_becomes_notice(self) -> None:
        self.synth.fail = True
        dialog = self._open()
        dialog.play(0)
        self.assertTrue(await wait_until(lambda: bool(dialog.notices)))
        self.assertEqual(dialog.notices[0].title, "Voice Playback Failed")
        self.assertTrue(dialog.is_open)
        dialog.close()

    async def test_snapshot_keeps_caller_order_and_bands(self) -> None:
        dialog = self._open()
        snap = dialog.snapshot()
        self.assertEqual([c["text"] for c in snap["candidates"]],
                         ["I need help", "I need health", "Need a hand"])
        self.assertEqual([c["band"] for c in snap["candidates"]], ["medium", "low", "low"])
        self.assertEqual(snap["state"], "BROWSING")
        self.assertTrue(snap["can_confirm"])
        self.assertTrue(self.snapshots)
        dialog.close()


if __name__ == "__main__":
    unittest.main()
