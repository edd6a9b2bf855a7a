"""
ember/pipeline/controller.py — EmberController: application orchestrator.

Routes every transcript through the same decision chain::

    transcript ─► help keywords? ─► emergency call
               ─► lights on/off? ─► smart-home action
               ─► learned correction? (unclear / aphasic speech only)
               ─► Gemini interpretation ─► confidence < threshold? ─► dialog

A confirmed dialog stores the correction, records accuracy, speaks the
result and texts the caregivers. An internal EventBus lets the web layer
follow everything without holding references to internal modules.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from ember.core.config import EmberConfig
from ember.core.constants import HELP_KEYWORDS, LIGHTS_OFF_KEYWORDS, LIGHTS_ON_KEYWORDS
from ember.core.errors import (
    DialogNotOpenError,
    Notice,
    StorageError,
    TelephonyError,
    describe_error,
    with_graceful_fallback,
)
from ember.core.logger import get_logger
from ember.core.settings import AccessibilitySettings, SettingsStore
from ember.dialog.disambiguation import DisambiguationDialog
from ember.dialog.models import DisambiguationRequest, InterpretationCandidate
from ember.dialog.playback import AudioPlayer, PygameAudioPlayer, Synthesizer
from ember.services.caregiver import CaregiverDirectory, CaregiverNotifier
from ember.services.interpreter import GeminiInterpreter
from ember.services.smart_home import SmartHomeAction, SmartHomeController
from ember.services.telephony import TwilioClient, emergency_alert_text
from ember.services.tts_client import ElevenLabsSynthesizer
from ember.speech.aphasia import detect_aphasia_pattern
from ember.speech.detection import is_unclear_speech, speech_category
from ember.speech.feedback import VoiceFeedback
from ember.storage.accuracy import AccuracyTracker
from ember.storage.corrections import CorrectionStore
from ember.storage.voice_vault import SecureVoiceStorage

_log = get_logger()

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_TRANSCRIPT      = "ON_TRANSCRIPT"
"""Fired when a transcript enters the controller."""

ON_INTERPRETATION  = "ON_INTERPRETATION"
"""Fired when a transcript has been interpreted (cloud, learned or fallback)."""

ON_DIALOG_OPENED   = "ON_DIALOG_OPENED"
"""Fired when a disambiguation dialog opens."""

ON_DIALOG_CHANGED  = "ON_DIALOG_CHANGED"
"""Fired with the dialog snapshot after every visible change."""

ON_CONFIRMED       = "ON_CONFIRMED"
"""Fired once when a dialog confirms a phrase."""

ON_CANCELLED       = "ON_CANCELLED"
"""Fired once when a dialog is cancelled."""

ON_NOTICE          = "ON_NOTICE"
"""Fired with a user-visible notice (toast)."""

ON_EMERGENCY       = "ON_EMERGENCY"
"""Fired after an emergency call or text was attempted."""

ON_SMART_HOME      = "ON_SMART_HOME"
"""Fired after a smart-home action ran."""

ON_CAREGIVER_ALERT = "ON_CAREGIVER_ALERT"
"""Fired after caregivers were (or were not) texted about a confirmation."""

ON_ASSISTANT       = "ON_ASSISTANT"
"""Fired with an assistant message for the conversation transcript."""

_HISTORY_LEN = 10

_NO_EMERGENCY_CONTACT = "No emergency contact configured. Please add one in settings."
_CALLING = "Calling your emergency contact now. Stay calm, help is on the way."
_CALL_FAILED = "Sorry, I couldn't make the emergency call. Please try again or call manually."
_NO_LIGHTS = "No lights configured. Please add a light in settings."


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(k in text for k in keywords)


class EmberController:
    """
    Main orchestrator for Ember.

    Owns at most one :class:`DisambiguationDialog` at a time. All
    collaborators are injected so tests can substitute fakes; use
    :meth:`from_config` for the real wiring.

    Args:
        config: Loaded configuration.
        synthesizer: TTS client used for candidate previews.
        player: Audio output for previews.
        interpreter: Gemini interpreter.
        telephony: Twilio client (emergency calls, caregiver SMS).
        smart_home: Smart-home controller.
        caregivers: Caregiver and emergency-contact directory.
        corrections: Learned corrections.
        voice_storage: Encrypted voice bank (cloned voice id).
        settings: Accessibility settings store.
        feedback: Local spoken feedback, or ``None`` for silence.
        accuracy: Session accuracy tracker.

    Example::

        ctrl = EmberController.from_config(load_config())
        ctrl.subscribe(ON_CONFIRMED, lambda d: print("Confirmed:", d["text"]))
        await ctrl.handle_transcript("nee hel")
        ...
        await ctrl.shutdown()
    """

    def __init__(
        self,
        config: EmberConfig,
        synthesizer: Synthesizer,
        player: AudioPlayer,
        interpreter: GeminiInterpreter,
        telephony: TwilioClient,
        smart_home: SmartHomeController,
        caregivers: CaregiverDirectory,
        corrections: CorrectionStore,
        voice_storage: SecureVoiceStorage,
        settings: SettingsStore,
        feedback: Optional[VoiceFeedback] = None,
        accuracy: Optional[AccuracyTracker] = None,
    ) -> None:
        self._cfg = config
        self._synthesizer = synthesizer
        self._player = player
        self._interpreter = interpreter
        self._telephony = telephony
        self._smart_home = smart_home
        self._caregivers = caregivers
        self._corrections = corrections
        self._voice_storage = voice_storage
        self._settings = settings
        self._feedback = feedback
        self._accuracy = accuracy or AccuracyTracker()
        self._notifier = CaregiverNotifier(
            caregivers, telephony, min_confidence=config.caregiver.min_confidence
        )

        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = (
            defaultdict(list)
        )
        self._dialog: Optional[DisambiguationDialog] = None
        self._history: deque[dict[str, str]] = deque(maxlen=_HISTORY_LEN)
        self._processing = False

        if self._feedback is not None:
            self._feedback.set_voice_speed(settings.get().voice_speed)

        _log.info("pipeline", "controller_ready", {
            "interpreter": interpreter.configured,
            "synthesizer": getattr(synthesizer, "configured", True),
            "telephony": telephony.configured,
            "smart_home_demo": smart_home.demo_mode,
            "feedback": feedback is not None,
        })

    @classmethod
    def from_config(
        cls,
        config: EmberConfig,
        feedback: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "EmberController":
        """
        Build the controller and all real collaborators from *config*.

        Args:
            config: Loaded configuration.
            feedback: Override ``config.feedback.enabled``.
            transport: Optional httpx transport shared by every service client.
        """
        _t = time.perf_counter()
        data_dir: Path = config.storage.resolved_data_dir
        data_dir.mkdir(parents=True, exist_ok=True)

        settings = SettingsStore(data_dir / "settings.json")
        use_feedback = config.feedback.enabled if feedback is None else feedback
        controller = cls(
            config=config,
            synthesizer=ElevenLabsSynthesizer(config.tts, transport=transport),
            player=PygameAudioPlayer(),
            interpreter=GeminiInterpreter(config.gemini, transport=transport),
            telephony=TwilioClient(config.twilio, transport=transport),
            smart_home=SmartHomeController.from_config(
                config.smartthings, data_dir / "smart_home.json", transport=transport
            ),
            caregivers=CaregiverDirectory(data_dir / "caregivers.json"),
            corrections=CorrectionStore(
                data_dir / "corrections.json", max_entries=config.storage.max_corrections
            ),
            voice_storage=SecureVoiceStorage(
                data_dir / "voice_bank.json", user_id=config.storage.user_id
            ),
            settings=settings,
            feedback=VoiceFeedback(config.feedback, settings.get().voice_speed)
            if use_feedback else None,
        )
        _log.perf("pipeline", "init_controller", (time.perf_counter() - _t) * 1_000.0, {
            "data_dir": str(data_dir),
        })
        return controller

    # ── EventBus ──────────────────────────────────────────────────────────────

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously in registration order; a failing callback
        is logged and never disrupts the others.
        """
        self._subscribers[event].append(callback)
        _log.debug("pipeline", "event_subscribed", {"event": event})

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        for cb in self._subscribers.get(event, []):
            try:
                cb(data)
            except Exception as exc:  # noqa: BLE001
                _log.error("pipeline", "event_callback_error", {
                    "event": event,
                    "error": str(exc),
                })

    # ── Read-only state ───────────────────────────────────────────────────────

    @property
    def dialog(self) -> Optional[DisambiguationDialog]:
        return self._dialog

    @property
    def caregivers(self) -> CaregiverDirectory:
        return self._caregivers

    @property
    def corrections(self) -> CorrectionStore:
        return self._corrections

    @property
    def accuracy(self) -> AccuracyTracker:
        return self._accuracy

    @property
    def smart_home(self) -> SmartHomeController:
        return self._smart_home

    @property
    def settings(self) -> AccessibilitySettings:
        return self._settings.get()

    def snapshot(self) -> dict[str, Any]:
        """Return the whole application state as a JSON-safe dict."""
        emergency = self._caregivers.emergency_contact()
        return {
            "processing": self._processing,
            "dialog": self._dialog.snapshot() if self._dialog is not None else None,
            "history": list(self._history),
            "settings": self._settings.get().model_dump(),
            "display": self._settings.get().display_attributes(),
            "feedback_enabled": self.feedback_enabled,
            "emergency_contact": emergency.model_dump() if emergency else None,
            "services": {
                "interpreter": self._interpreter.configured,
                "synthesizer": getattr(self._synthesizer, "configured", True),
                "telephony": self._telephony.configured,
                "smart_home_demo": self._smart_home.demo_mode,
            },
        }

    # ── Transcript routing ────────────────────────────────────────────────────

    async def handle_transcript(self, transcript: str) -> dict[str, Any]:
        """
        Route one recognised utterance.

        Args:
            transcript: Final speech-recognition text.

        Returns:
            A summary dict whose ``route`` is one of ``ignored``, ``emergency``,
            ``smart_home``, ``learned``, ``dialog`` or ``understood``.
        """
        text = (transcript or "").strip()
        if not text:
            return {"route": "ignored"}

        self._remember("user", text)
        self.publish(ON_TRANSCRIPT, {"text": text})
        lowered = text.lower()

        if _contains_any(lowered, HELP_KEYWORDS):
            result = await self.trigger_emergency(text)
            return {"route": "emergency", **result}

        if _contains_any(lowered, LIGHTS_ON_KEYWORDS) or _contains_any(lowered, LIGHTS_OFF_KEYWORDS):
            action = (
                SmartHomeAction.LIGHTS_ON
                if _contains_any(lowered, LIGHTS_ON_KEYWORDS)
                else SmartHomeAction.LIGHTS_OFF
            )
            result = await self._control_lights(action)
            return {"route": "smart_home", **result}

        self._processing = True
        try:
            return await self._interpret(text)
        finally:
            self._processing = False

    async def _interpret(self, text: str) -> dict[str, Any]:
        unclear = is_unclear_speech(text)
        aphasia = detect_aphasia_pattern(text)

        if unclear or aphasia.is_likely_aphasia:
            learned = self._corrections.find_similar(text)
            if learned:
                _log.info("pipeline", "learned_correction_used", {"text": text, "learned": learned})
                self._notice(Notice(
                    title="Learned Pattern",
                    description=f'Using your previous preference: "{learned}"',
                    variant="default",
                ))
                self._say(learned, kind="confirmation")
                self._remember("assistant", learned)
                self.publish(ON_INTERPRETATION, {
                    "original": text, "interpretation": learned, "source": "learned",
                })
                return {"route": "learned", "interpretation": learned}

        hint = None
        if aphasia.is_likely_aphasia:
            hint = f"{aphasia.pattern_type} aphasia ({aphasia.suggested_approach})"
        elif unclear:
            hint = speech_category(text)

        t0 = time.perf_counter()
        result = await self._interpreter.interpret(
            text, self._user_profile(), list(self._history)[:-1], pattern_hint=hint
        )
        _log.perf("pipeline", "interpretation_done", (time.perf_counter() - t0) * 1_000.0, {
            "ok": result is not None, "unclear": unclear, "aphasia": aphasia.is_likely_aphasia,
        })

        if result is None:
            candidates = [InterpretationCandidate(text=text, confidence=50)]
            self._say(f"I heard: {text}. Is that correct?")
            self.publish(ON_INTERPRETATION, {
                "original": text, "interpretation": text, "confidence": 50, "source": "fallback",
            })
            self.open_dialog(DisambiguationRequest(
                original_message=text,
                alternatives=candidates,
                auto_select_timeout_s=self._cfg.dialog.auto_select_timeout_s,
            ))
            return {"route": "dialog", "interpretation": text, "confidence": 50}

        interpretation = self._corrections.apply(result.interpretation)
        result = result.model_copy(update={"interpretation": interpretation})
        self.publish(ON_INTERPRETATION, {
            "original": text,
            "interpretation": result.interpretation,
            "confidence": result.confidence,
            "category": result.category,
            "alternatives": result.alternatives,
            "source": "gemini",
        })

        action_type = result.action.type if result.action else None
        if action_type in (SmartHomeAction.LIGHTS_ON.value, SmartHomeAction.LIGHTS_OFF.value):
            device = self._smart_home.first_device("lights")
            if device:
                outcome = await self._smart_home.execute(action_type, device_id=device)
                self.publish(ON_SMART_HOME, outcome.to_dict())
                if outcome.success:
                    self._say(result.response or f"Done! {outcome.message}")

        if result.needs_confirmation(self._cfg.dialog.disambiguation_threshold):
            if not result.action:
                self._say_interpretation(result.interpretation)
            self.open_dialog(result.to_request(text, self._cfg.dialog.auto_select_timeout_s))
            return {
                "route": "dialog",
                "interpretation": result.interpretation,
                "confidence": result.confidence,
            }

        if not result.action:
            self._say_interpretation(result.interpretation)
        self._remember("assistant", result.interpretation)
        self._accuracy.add_record(text, result.interpretation, result.confidence, True)
        return {
            "route": "understood",
            "interpretation": result.interpretation,
            "confidence": result.confidence,
        }

    # ── Emergency ─────────────────────────────────────────────────────────────

    async def trigger_emergency(self, message: Optional[str] = None) -> dict[str, Any]:
        """
        Call (or text) the emergency contact.

        Never raises; failures are spoken, published as a notice and returned.
        """
        contact = self._caregivers.emergency_contact()
        if contact is None:
            self._say(_NO_EMERGENCY_CONTACT, kind="emergency")
            self._notice(Notice(
                title="No emergency contact",
                description="Go to Settings to add your emergency contact number.",
            ))
            return {"success": False, "reason": "no_contact"}

        self._say(_CALLING, kind="emergency")
        user_name = self._cfg.caregiver.user_name
        try:
            if contact.method == "sms":
                sent = await self._telephony.send_sms(
                    contact.phone, emergency_alert_text(user_name, message)
                )
                result = {"success": True, "method": "sms", "sid": sent.get("messageSid")}
            else:
                placed = await self._telephony.place_emergency_call(
                    contact.phone, message, user_name
                )
                result = {"success": True, "method": "call", "sid": placed.get("callSid")}
        except TelephonyError as exc:
            _log.error("pipeline", "emergency_failed", {"error": str(exc)})
            self._say(_CALL_FAILED, kind="emergency")
            self._notice(Notice(title="Emergency call failed", description=str(exc)))
            result = {"success": False, "reason": "telephony_error", "error": str(exc)}

        self.publish(ON_EMERGENCY, {"message": message, **result})
        if result["success"]:
            self._notice(Notice(
                title="Emergency contact alerted",
                description="Your emergency contact is being called now."
                if contact.method == "call" else "Your emergency contact has been texted.",
                variant="default",
            ))
        return result

    # ── Smart home ────────────────────────────────────────────────────────────

    async def _control_lights(self, action: SmartHomeAction) -> dict[str, Any]:
        device = self._smart_home.first_device("lights")
        if device is None and not self._smart_home.demo_mode:
            self._say(_NO_LIGHTS)
            self._notice(Notice(
                title="No lights configured",
                description="Go to Settings → Smart Home to add your lights.",
            ))
            return {"success": False, "reason": "no_device", "action": action.value}

        outcome = await self._smart_home.execute(action, device_id=device)
        self.publish(ON_SMART_HOME, outcome.to_dict())
        if outcome.success:
            self._say(f"Done! {outcome.message}")
            self._remember("assistant", outcome.message)
        else:
            verb = "turn on" if action is SmartHomeAction.LIGHTS_ON else "turn off"
            self._say(f"Sorry, I couldn't {verb} the lights.")
            self._notice(Notice(
                title="Smart home error",
                description="Could not control lights. Check your SmartThings connection.",
            ))
        return outcome.to_dict()

    # ── Dialog ────────────────────────────────────────────────────────────────

    def open_dialog(self, request: DisambiguationRequest) -> DisambiguationDialog:
        """
        Open a disambiguation dialog for *request* on the running loop.

        An already open dialog is closed first (counts as a cancel).
        """
        if self._dialog is not None and self._dialog.is_open:
            self._dialog.close()

        original = request.original_message
        primary = request.alternatives[0]
        dialog = DisambiguationDialog(
            request,
            self._synthesizer,
            self._player,
            voice_id_provider=self._voice_id,
            on_confirm=lambda text: self._on_confirmed(original, primary, text),
            on_cancel=lambda: self._on_cancelled(original),
            on_change=lambda snap: self.publish(ON_DIALOG_CHANGED, snap),
            on_notice=self._notice,
            confirm_delay_ms=self._cfg.dialog.confirm_delay_ms,
            tick_interval_s=self._cfg.dialog.tick_interval_s,
        )
        self._dialog = dialog
        dialog.open()
        self.publish(ON_DIALOG_OPENED, dialog.snapshot())
        return dialog

    def _require_dialog(self) -> DisambiguationDialog:
        if self._dialog is None or not self._dialog.is_open:
            raise DialogNotOpenError("No disambiguation dialog is open")
        return self._dialog

    def dialog_key(self, key: str) -> bool:
        return self._require_dialog().handle_key(key)

    def dialog_select(self, index: int) -> bool:
        return self._require_dialog().select(index)

    def dialog_custom(self, text: Optional[str] = None, active: bool = True) -> bool:
        """Enter (or leave, with ``active=False``) custom entry and set its text."""
        dialog = self._require_dialog()
        if not active:
            return dialog.exit_custom_mode()
        changed = dialog.enter_custom_mode() if not dialog.custom_active else False
        if text is not None:
            changed = dialog.set_custom_text(text) or changed
        return changed

    def dialog_play(self, index: Optional[int] = None) -> bool:
        return self._require_dialog().play(index)

    def dialog_confirm(self) -> bool:
        return self._require_dialog().request_confirm(reason="button")

    def dialog_cancel(self) -> bool:
        return self._require_dialog().cancel(reason="button")

    def _voice_id(self) -> Optional[str]:
        return self._voice_storage.get_cloned_voice_id()

    def _release_finished_dialog(self) -> None:
        if self._dialog is not None and self._dialog.outcome is not None:
            self._dialog = None

    async def _on_confirmed(
        self,
        original: str,
        primary: InterpretationCandidate,
        text: str,
    ) -> None:
        self._release_finished_dialog()
        self.publish(ON_CONFIRMED, {"original": original, "text": text})
        self._say(text, kind="confirmation")
        self._remember("assistant", text)
        self._notice(Notice(
            title="Understood", description=f'Proceeding with: "{text}"', variant="default",
        ))

        self._accuracy.add_record(original, text, primary.confidence, text == primary.text)
        try:
            self._corrections.store(original, text)
        except StorageError as exc:
            _log.error("pipeline", "correction_store_failed", {"error": str(exc)})
            self.notify_error(exc, title="Could not save correction")

        alert = await with_graceful_fallback(
            self._notifier.send_interpretation_sms(original, text, primary.confidence),
            {"success": False, "reason": "error"},
            on_error=lambda msg: self._notice(
                Notice(title="Caregiver alert failed", description=msg)
            ),
        )
        self.publish(ON_CAREGIVER_ALERT, alert)

    def _on_cancelled(self, original: str) -> None:
        self._release_finished_dialog()
        self.publish(ON_CANCELLED, {"original": original})

    # ── Settings and feedback ─────────────────────────────────────────────────

    def update_settings(self, **changes: Any) -> AccessibilitySettings:
        """Apply a partial settings update. Raises ``ValueError`` on bad input."""
        updated = self._settings.update(**changes)
        if self._feedback is not None:
            self._feedback.set_voice_speed(updated.voice_speed)
        return updated

    def reset_settings(self) -> AccessibilitySettings:
        updated = self._settings.reset()
        if self._feedback is not None:
            self._feedback.set_voice_speed(updated.voice_speed)
        return updated

    @property
    def feedback_enabled(self) -> bool:
        return bool(self._feedback and self._feedback.enabled)

    def set_feedback_enabled(self, enabled: bool) -> bool:
        """
        Switch local spoken feedback on or off.

        Returns:
            The resulting state; always False when no speaker is attached.
        """
        if self._feedback is not None:
            self._feedback.toggle(enabled)
        _log.info("pipeline", "feedback_toggled", {"enabled": self.feedback_enabled})
        return self.feedback_enabled

    def _say(self, text: str, kind: str = "normal") -> None:
        if self._feedback is None:
            return
        if kind == "confirmation":
            self._feedback.speak_confirmation(text)
        elif kind == "emergency":
            self._feedback.speak_emergency(text)
        else:
            self._feedback.speak(text)
        self.publish(ON_ASSISTANT, {"text": text, "kind": kind})

    def _say_interpretation(self, interpretation: str) -> None:
        if self._feedback is not None:
            self._feedback.speak_interpretation(interpretation)
        self.publish(ON_ASSISTANT, {"text": f"Did you mean: {interpretation}?", "kind": "question"})

    def _notice(self, notice: Notice) -> None:
        self.publish(ON_NOTICE, notice.to_dict())

    def _remember(self, role: str, content: str) -> None:
        self._history.append({"role": role, "content": content})

    def _user_profile(self) -> dict[str, Any]:
        return {
            "name": self._cfg.caregiver.user_name,
            "conditions": ["dysarthria", "aphasia"],
            "preferences": self._settings.get().model_dump(),
        }

    def notify_error(self, exc: BaseException, title: str = "Something went wrong") -> None:
        """Publish a friendly notice for *exc*."""
        self._notice(Notice(title=title, description=describe_error(exc)))

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close the dialog, the HTTP clients, audio and feedback; flush the log."""
        _log.info("pipeline", "shutdown_requested", {})
        if self._dialog is not None:
            self._dialog.close()
            self._dialog = None
        for client in (self._synthesizer, self._interpreter, self._telephony, self._smart_home):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as exc:  # noqa: BLE001
                    _log.warn("pipeline", "client_close_failed", {"error": str(exc)})
        stop_player = getattr(self._player, "shutdown", None)
        if stop_player is not None:
            try:
                stop_player()
            except Exception as exc:  # noqa: BLE001
                _log.warn("pipeline", "player_shutdown_failed", {"error": str(exc)})
        if self._feedback is not None:
            self._feedback.shutdown()
        _log.info("pipeline", "controller_shutdown", {})
        _log.flush()
