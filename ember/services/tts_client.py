"""
ember/services/tts_client.py — ElevenLabs speech synthesis and voice cloning.
"""

from __future__ import annotations

from typing import Optional, Sequence

import httpx

from ember.core.config import TTSConfig
from ember.core.errors import SynthesisError
from ember.core.logger import get_logger
from ember.services.http import ServiceClient

_log = get_logger()


class ElevenLabsSynthesizer(ServiceClient):
    """
    Text-to-speech over the ElevenLabs REST API.

    Args:
        config: TTS configuration (voice, model, voice settings).
        api_key: Overrides the key read from the configured environment variable.
        transport: Optional httpx transport for tests.
    """

    service_name = "elevenlabs"
    error_cls = SynthesisError

    def __init__(
        self,
        config: TTSConfig,
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
        return {"xi-api-key": self._api_key or ""}

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        """
        Synthesize *text* as MP3.

        Args:
            text: Phrase to speak.
            voice_id: Cloned voice id; the configured default voice when ``None``.

        Returns:
            MP3 bytes.

        Raises:
            SynthesisError: If the key is missing, *text* is blank or the request fails.
        """
        if not self._api_key:
            raise SynthesisError("ELEVENLABS_API_KEY not configured")
        if not text or not text.strip():
            raise SynthesisError("Text is required")

        voice = voice_id or self._cfg.default_voice_id
        response = await self._request(
            "POST",
            f"/text-to-speech/{voice}",
            headers={"Accept": "audio/mpeg"},
            json={
                "text": text,
                "model_id": self._cfg.model_id,
                "voice_settings": {
                    "stability": self._cfg.stability,
                    "similarity_boost": self._cfg.similarity_boost,
                    "style": self._cfg.style,
                    "use_speaker_boost": self._cfg.use_speaker_boost,
                },
            },
        )
        audio = response.content
        if not audio:
            raise SynthesisError("Empty audio payload")
        _log.info("elevenlabs", "synthesized", {
            "chars": len(text), "bytes": len(audio), "voice": voice,
        })
        return audio

    async def clone_voice(
        self,
        name: str,
        samples: Sequence[tuple[str, bytes, str]],
        description: str = "Voice cloned via Ember",
    ) -> str:
        """
        Create a cloned voice from recorded samples.

        Args:
            name: Display name of the new voice.
            samples: ``(filename, audio_bytes, mime_type)`` tuples.
            description: Voice description.

        Returns:
            The new ElevenLabs voice id.

        Raises:
            SynthesisError: If no samples are given or the request fails.
        """
        if not self._api_key:
            raise SynthesisError("ELEVENLABS_API_KEY not configured")
        if not samples:
            raise SynthesisError("No audio files provided")

        response = await self._request(
            "POST",
            "/voices/add",
            data={"name": name, "description": description},
            files=[("files", sample) for sample in samples],
        )
        try:
            voice_id = response.json()["voice_id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SynthesisError("Voice clone response had no voice_id") from exc
        _log.info("elevenlabs", "voice_cloned", {"voice_id": voice_id, "samples": len(samples)})
        return voice_id
