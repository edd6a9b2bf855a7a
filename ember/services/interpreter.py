"""
ember/services/interpreter.py — Cloud interpretation of unclear speech (Gemini).

Builds a prompt describing dysarthric and aphasic speech patterns, sends the
transcript with a little context to ``generateContent`` and parses the JSON
answer into an :class:`Interpretation`. The model may wrap its JSON in a
markdown fence; that is stripped before parsing.
"""

from __future__ import annotations

import json
import re
import time
from datetime import datetime
from typing import Any, Optional, Sequence

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from ember.core.config import GeminiConfig
from ember.core.constants import EmberConstants as C
from ember.core.errors import InterpretationError
from ember.core.logger import get_logger
from ember.dialog.models import DisambiguationRequest, InterpretationCandidate
from ember.services.http import ServiceClient

_log = get_logger()

DEFAULT_USER_PROFILE: dict[str, Any] = {
    "name": "User",
    "conditions": ["dysarthria", "aphasia"],
    "preferences": {},
}

_FENCE = re.compile(r"```(?:json)?\n?")

SYSTEM_PROMPT = """You are an expert speech interpreter for people with dysarthria, aphasia and other speech disabilities.

Interpret unclear, fragmented or slurred speech and work out what the person actually means.

Dysarthria (slurred speech) drops consonants and shortens words:
- "wan coff" means "want coffee"
- "nee hel" means "need help"
- "tur on ligh" means "turn on light"

Aphasia (fragmented speech) drops articles, pronouns and prepositions:
- "want coffee" means "I want coffee"
- "bathroom... help... now" means "I need help getting to the bathroom now"
- "go store" means "I want to go to the store"

Treat "help", "pain", "hurt", "can't breathe", "fall", "fell", "stuck" and their
slurred forms as urgent. Treat darkness, brightness and temperature complaints
as home-control requests.

Respond with one JSON object and nothing else:
{
  "interpretation": "complete, grammatical sentence",
  "confidence": 0-100,
  "category": "dysarthria" | "aphasia" | "clear" | "urgent",
  "alternatives": ["alternative 1", "alternative 2"],
  "action": {"type": "lights_on" | "lights_off" | "emergency_call" | "temp_up" | "temp_down", "params": {}} or null,
  "response": "short natural reply to say back to the user"
}

Rules:
1. Always give a complete sentence with articles, pronouns and prepositions filled in.
2. Never copy the input verbatim unless confidence is 100.
3. Below 70 confidence give three alternatives; at 90 or above give one or two.
4. Interpret the intent, not just the words.
"""


# ──────────────────────────────────────────────────────────────
# Result model
# ──────────────────────────────────────────────────────────────

class InterpretationAction(BaseModel):
    type: Optional[str] = None
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or {}


class Interpretation(BaseModel):
    """A parsed interpretation with ranked alternatives."""

    interpretation: str
    confidence: int = 0
    category: Optional[str] = None
    alternatives: list[str] = Field(default_factory=list)
    action: Optional[InterpretationAction] = None
    response: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        """Coerce to an int in ``[0, 100]``; unusable values become 0."""
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))

    @field_validator("alternatives", mode="before")
    @classmethod
    def keep_strings(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(a) for a in v if isinstance(a, str) and a.strip()]

    def needs_confirmation(self, threshold: int = C.DISAMBIGUATION_THRESHOLD) -> bool:
        return self.confidence < threshold

    def to_candidates(self, limit: int = C.MAX_CANDIDATES) -> list[InterpretationCandidate]:
        """
        Rank the primary interpretation first, then the alternatives.

        Alternatives carry ``max(10, confidence - 20 * rank)``.
        """
        candidates = [InterpretationCandidate(text=self.interpretation, confidence=self.confidence)]
        seen = {self.interpretation.strip().lower()}
        rank = 0
        for alt in self.alternatives:
            key = alt.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            rank += 1
            candidates.append(InterpretationCandidate(
                text=alt,
                confidence=max(
                    C.ALTERNATIVE_CONFIDENCE_FLOOR,
                    self.confidence - C.ALTERNATIVE_CONFIDENCE_STEP * rank,
                ),
            ))
        return candidates[:limit]

    def to_request(
        self,
        original_message: str,
        auto_select_timeout_s: int = C.AUTO_SELECT_TIMEOUT_S,
    ) -> DisambiguationRequest:
        return DisambiguationRequest(
            original_message=original_message,
            alternatives=self.to_candidates(),
            auto_select_timeout_s=auto_select_timeout_s,
        )


def parse_model_text(text: str) -> Interpretation:
    """
    Parse the model's text answer.

    Raises:
        InterpretationError: If the answer is not a usable JSON object.
    """
    cleaned = _FENCE.sub("", text).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise InterpretationError(f"Model answer is not JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise InterpretationError("Model answer is not a JSON object")
    try:
        result = Interpretation.model_validate(payload)
    except ValidationError as exc:
        raise InterpretationError(f"Model answer has wrong shape: {exc.error_count()} errors") from exc
    if not result.interpretation.strip():
        raise InterpretationError("Model returned an empty interpretation")
    return result


# ──────────────────────────────────────────────────────────────
# Client
# ──────────────────────────────────────────────────────────────

class GeminiInterpreter(ServiceClient):
    """
    ``generateContent`` client for speech interpretation.

    Args:
        config: Gemini configuration (model, sampling parameters).
        api_key: Overrides the key read from the configured environment variable.
        transport: Optional httpx transport for tests.
    """

    service_name = "gemini"
    error_cls = InterpretationError

    def __init__(
        self,
        config: GeminiConfig,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config.base_url, config.timeout_s, transport)
        self._cfg = config
        self._api_key = api_key or config.api_key

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _default_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key or "", "Content-Type": "application/json"}

    def build_user_message(
        self,
        transcript: str,
        user_profile: Optional[dict] = None,
        history: Optional[Sequence[Any]] = None,
        pattern_hint: Optional[str] = None,
    ) -> str:
        recent = list(history or [])[-self._cfg.history_window:]
        lines = [
            f'User speech input: "{transcript}"',
            "",
            "Additional context:",
            f"- User profile: {json.dumps(user_profile or DEFAULT_USER_PROFILE)}",
            f"- Time of day: {datetime.now().strftime('%H:%M')}",
            f"- Recent conversation: {json.dumps(recent, default=str)}",
        ]
        if pattern_hint:
            lines.append(f"- Detected speech pattern: {pattern_hint}")
        lines += ["", "Interpret what they mean and respond in JSON format."]
        return "\n".join(lines)

    async def interpret_or_raise(
        self,
        transcript: str,
        user_profile: Optional[dict] = None,
        history: Optional[Sequence[Any]] = None,
        pattern_hint: Optional[str] = None,
    ) -> Interpretation:
        """
        Interpret *transcript*.

        Raises:
            InterpretationError: On a missing key, transport failure or unusable answer.
        """
        if not self._api_key:
            raise InterpretationError("GEMINI_API_KEY is not configured")
        if not transcript or not transcript.strip():
            raise InterpretationError("Transcript is required")

        t0 = time.perf_counter()
        body = {
            "contents": [{
                "parts": [{
                    "text": SYSTEM_PROMPT + "\n\n"
                    + self.build_user_message(transcript, user_profile, history, pattern_hint),
                }],
            }],
            "generationConfig": {
                "temperature": self._cfg.temperature,
                "topK": self._cfg.top_k,
                "topP": self._cfg.top_p,
                "maxOutputTokens": self._cfg.max_output_tokens,
            },
        }
        response = await self._request(
            "POST", f"/models/{self._cfg.model}:generateContent", json=body
        )
        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InterpretationError("Response has no candidate text") from exc

        result = parse_model_text(text)
        _log.perf("gemini", "interpreted", (time.perf_counter() - t0) * 1_000.0, {
            "transcript": transcript,
            "interpretation": result.interpretation,
            "confidence": result.confidence,
            "category": result.category,
        })
        return result

    async def interpret(
        self,
        transcript: str,
        user_profile: Optional[dict] = None,
        history: Optional[Sequence[Any]] = None,
        pattern_hint: Optional[str] = None,
    ) -> Optional[Interpretation]:
        """Like :meth:`interpret_or_raise` but returns ``None`` on any failure."""
        try:
            return await self.interpret_or_raise(transcript, user_profile, history, pattern_hint)
        except InterpretationError as exc:
            _log.warn("gemini", "interpret_failed", {"transcript": transcript, "error": str(exc)})
            return None

    async def quick_interpret(self, transcript: str) -> str:
        """Return the interpretation text, or *transcript* unchanged on failure."""
        result = await self.interpret(transcript)
        return result.interpretation if result else transcript
