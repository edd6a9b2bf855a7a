"""
ember/dialog/playback.py — Candidate voice preview with a single playing slot.

:class:`VoicePlaybackAdapter` owns the one audio handle a dialog may have.
Starting a new preview stops the previous one first; a generation counter
makes sure a superseded synthesis or playback can never touch visible state.
Failures become :class:`~ember.core.errors.Notice` objects, never exceptions.

The audio device sits behind :class:`AudioPlayer`; :class:`PygameAudioPlayer`
is the implementation used outside tests.
"""

from __future__ import annotations

import asyncio
import io
import time
from typing import Callable, Optional, Protocol

from ember.core.errors import Notice, PlaybackError
from ember.core.logger import get_logger

_log = get_logger()

SYNTHESIS_FAILED = Notice(
    title="Voice Playback Failed",
    description="Could not generate voice preview",
)
PLAYBACK_FAILED = Notice(
    title="Playback Error",
    description="Could not play audio",
)


# ──────────────────────────────────────────────────────────────
# Collaborator protocols
# ──────────────────────────────────────────────────────────────

class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes: ...


class PlaybackHandle(Protocol):
    async def wait(self) -> None:
        """Return on natural completion; raise :class:`PlaybackError` on failure."""

    def stop(self) -> None:
        """Stop output and release the decoded audio. Idempotent."""


class AudioPlayer(Protocol):
    def play(self, audio: bytes) -> PlaybackHandle: ...


# ──────────────────────────────────────────────────────────────
# Adapter
# ──────────────────────────────────────────────────────────────

class VoicePlaybackAdapter:
    """
    Plays synthesized previews of candidate phrases, one at a time.

    Args:
        synthesizer: Async text-to-speech client.
        player: Audio output device.
        voice_id: Cloned voice to synthesize with; ``None`` uses the default voice.
        on_change: Called with the new playing index (or ``None``) whenever
            the playing slot changes.
        on_notice: Called with a user-visible notice when a preview fails.
    """

    def __init__(
        self,
        synthesizer: Synthesizer,
        player: AudioPlayer,
        voice_id: Optional[str] = None,
        on_change: Optional[Callable[[Optional[int]], None]] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ) -> None:
        self._synthesizer = synthesizer
        self._player = player
        self.voice_id = voice_id
        self._on_change = on_change
        self._on_notice = on_notice
        self._playing_index: Optional[int] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._handle: Optional[PlaybackHandle] = None

    @property
    def playing_index(self) -> Optional[int]:
        return self._playing_index

    def play_voice(self, text: str, index: int) -> Optional[asyncio.Task]:
        """
        Toggle the preview of *text* for candidate *index*.

        If *index* is already playing it is stopped and nothing new starts.
        Otherwise any other preview is stopped first, *index* becomes the
        playing slot and synthesis starts in a background task.

        Args:
            text: Phrase to synthesize.
            index: Candidate position the preview belongs to.

        Returns:
            The preview task, or ``None`` for a toggle-off.
        """
        if self._playing_index == index:
            self.stop()
            return None

        self.stop()
        self._generation += 1
        generation = self._generation
        self._set_playing(index)
        self._task = asyncio.get_running_loop().create_task(
            self._run(text, index, generation), name=f"ember-preview-{index}"
        )
        return self._task

    def stop(self) -> None:
        """Stop any preview in flight and clear the playing slot."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.stop()
            except Exception as exc:  # noqa: BLE001
                _log.warn("playback", "stop_failed", {"error": str(exc)})
        if self._playing_index is not None:
            self._set_playing(None)

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run(self, text: str, index: int, generation: int) -> None:
        t0 = time.perf_counter()
        try:
            audio = await self._synthesizer.synthesize(text, self.voice_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            if self._current(generation):
                _log.warn("playback", "synthesis_failed", {"index": index, "error": str(exc)})
                self._fail(SYNTHESIS_FAILED)
            return

        if not self._current(generation):
            return
        _log.perf("playback", "synthesized", (time.perf_counter() - t0) * 1_000.0, {
            "index": index, "bytes": len(audio), "cloned_voice": self.voice_id is not None,
        })

        try:
            handle = self._player.play(audio)
        except Exception as exc:  # noqa: BLE001
            _log.warn("playback", "play_failed", {"index": index, "error": str(exc)})
            self._fail(PLAYBACK_FAILED)
            return
        self._handle = handle

        try:
            await handle.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            if self._current(generation):
                _log.warn("playback", "playback_error", {"index": index, "error": str(exc)})
                self._release(handle)
                self._fail(PLAYBACK_FAILED)
            return

        if self._current(generation):
            self._release(handle)
            self._set_playing(None)
            _log.info("playback", "finished", {"index": index})

    def _release(self, handle: PlaybackHandle) -> None:
        if self._handle is handle:
            self._handle = None
        try:
            handle.stop()
        except Exception as exc:  # noqa: BLE001
            _log.warn("playback", "release_failed", {"error": str(exc)})

    def _fail(self, notice: Notice) -> None:
        self._task = None
        self._set_playing(None)
        if self._on_notice is not None:
            self._on_notice(notice)

    def _set_playing(self, index: Optional[int]) -> None:
        self._playing_index = index
        if self._on_change is not None:
            self._on_change(index)


# ──────────────────────────────────────────────────────────────
# pygame output
# ──────────────────────────────────────────────────────────────

class _PygameHandle:
    """Handle over ``pygame.mixer.music``; polls ``get_busy`` every 20 ms."""

    def __init__(self, pygame_module, poll_interval_s: float) -> None:
        self._pygame = pygame_module
        self._poll_interval_s = poll_interval_s
        self._stopped = False

    async def wait(self) -> None:
        try:
            while not self._stopped and self._pygame.mixer.music.get_busy():
                await asyncio.sleep(self._poll_interval_s)
        except self._pygame.error as exc:
            raise PlaybackError(str(exc)) from exc

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        try:
            self._pygame.mixer.music.stop()
            self._pygame.mixer.music.unload()
        except self._pygame.error:
            pass


class PygameAudioPlayer:
    """
    Plays MP3 payloads through the pygame mixer music channel.

    The mixer is initialised lazily on the first clip.

    Args:
        poll_interval_s: How often completion is polled.
    """

    def __init__(self, poll_interval_s: float = 0.02) -> None:
        self._poll_interval_s = poll_interval_s

    def play(self, audio: bytes) -> PlaybackHandle:
        import pygame  # type: ignore

        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init()
            pygame.mixer.music.load(io.BytesIO(audio), "mp3")
            pygame.mixer.music.play()
        except pygame.error as exc:
            raise PlaybackError(str(exc)) from exc
        return _PygameHandle(pygame, self._poll_interval_s)

    def shutdown(self) -> None:
        import pygame  # type: ignore

        if pygame.mixer.get_init():
            pygame.mixer.quit()
