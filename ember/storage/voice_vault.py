"""
ember/storage/voice_vault.py — Encrypted local voice bank.

Stores the user's voice recordings, calibration phrases and the id of a cloned
synthesis voice. Audio payloads are encrypted at rest with AES-256-GCM; the key
is derived with PBKDF2-HMAC-SHA256 from a fixed application base, the user id
and a host fingerprint, so a copied data file is unreadable on another machine.

Encrypted values are strings prefixed with ``ENCRYPTED:``. Values without the
prefix are legacy plaintext and pass through unchanged.
"""

from __future__ import annotations

import base64
import binascii
import platform
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, Field, ValidationError

from ember.core.logger import get_logger
from ember.storage.json_store import JsonStore

_log = get_logger()

ENCRYPTED_PREFIX = "ENCRYPTED:"
_KEY_BASE = "ember_voice_protection_v1"
_SALT_INFO = b"ember-voice-salt-v1"
_KDF_ITERATIONS = 100_000
_NONCE_BYTES = 12

_VOICE_BANK_KEY = "voice_bank"
_CALIBRATION_KEY = "calibration_examples"


# ──────────────────────────────────────────────────────────────
# Models
# ──────────────────────────────────────────────────────────────

class VoiceSample(BaseModel):
    """One archived recording kept in the voice bank history."""

    audio_blob: Optional[str] = None
    recorded_at: Optional[str] = None
    clarity_score: Optional[float] = None
    version: int = 1


class VoiceBank(BaseModel):
    """The user's current recording, clarity score and cloned voice id."""

    audio_blob: Optional[str] = None
    recorded_at: Optional[str] = None
    clarity_score: Optional[float] = None
    cloned_voice_id: Optional[str] = None
    history: list[VoiceSample] = Field(default_factory=list)


class CalibrationExample(BaseModel):
    """A phrase the user recorded while calibrating."""

    phrase: str
    audio_blob: Optional[str] = None
    timestamp: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Key derivation and cipher
# ──────────────────────────────────────────────────────────────

def device_fingerprint() -> str:
    """Return a stable, non-secret identifier for this host."""
    return "|".join([platform.node(), platform.system(), platform.machine()])


def derive_key(user_id: Optional[str], fingerprint: str) -> bytes:
    """
    Derive the 256-bit voice-bank key for *user_id* on this host.

    Args:
        user_id: Owner of the data; ``None`` maps to ``'anonymous'``.
        fingerprint: Host fingerprint from :func:`device_fingerprint`.

    Returns:
        32 raw key bytes.
    """
    material = f"{_KEY_BASE}:{user_id or 'anonymous'}:{fingerprint}".encode()
    salt = HKDF(
        algorithm=hashes.SHA256(),
        length=16,
        salt=None,
        info=_SALT_INFO,
    ).derive(material)
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=_KDF_ITERATIONS,
    )
    return kdf.derive(material)


class VoiceCipher:
    """
    AES-GCM wrapper producing ``ENCRYPTED:<base64(nonce + ciphertext)>`` strings.

    Args:
        key: 32-byte key from :func:`derive_key`.
    """

    def __init__(self, key: bytes) -> None:
        self._aead = AESGCM(key)

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(_NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return ENCRYPTED_PREFIX + base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, value: str) -> str:
        """
        Decrypt *value*; legacy plaintext and undecryptable data are returned as-is.

        Args:
            value: Stored string, encrypted or not.

        Returns:
            The plaintext, or *value* unchanged when it cannot be decrypted.
        """
        if not self.is_encrypted(value):
            return value
        try:
            packed = base64.b64decode(value[len(ENCRYPTED_PREFIX):], validate=True)
            nonce, sealed = packed[:_NONCE_BYTES], packed[_NONCE_BYTES:]
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError, UnicodeDecodeError) as exc:
            _log.warn("voice_vault", "decrypt_failed", {"error": type(exc).__name__})
            return value


# ──────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────

class SecureVoiceStorage:
    """
    Encrypted voice bank and calibration store backed by a JSON file.

    Args:
        path: JSON file for the store.
        user_id: Owner of the data (part of the key).
        fingerprint: Host fingerprint; defaults to :func:`device_fingerprint`.
    """

    def __init__(
        self,
        path: Path,
        user_id: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> None:
        self._store = JsonStore(path)
        self._cipher = VoiceCipher(derive_key(user_id, fingerprint or device_fingerprint()))

    # ── Voice bank ────────────────────────────────────────────

    def save_voice_bank(self, bank: VoiceBank) -> None:
        """Encrypt every audio payload in *bank* and persist it."""
        payload = bank.model_dump()
        payload["audio_blob"] = self._seal(payload.get("audio_blob"))
        for sample in payload["history"]:
            sample["audio_blob"] = self._seal(sample.get("audio_blob"))
        self._store.set(_VOICE_BANK_KEY, payload)
        _log.info("voice_vault", "voice_bank_saved", {
            "history": len(payload["history"]),
            "has_clone": bank.cloned_voice_id is not None,
        })

    def get_voice_bank(self) -> Optional[VoiceBank]:
        """
        Return the decrypted voice bank, or ``None`` when absent or malformed.

        A malformed record is logged and treated as absent.
        """
        raw = self._store.get(_VOICE_BANK_KEY)
        if raw is None:
            return None
        try:
            bank = VoiceBank.model_validate(raw)
        except ValidationError as exc:
            _log.warn("voice_vault", "voice_bank_malformed", {"errors": exc.error_count()})
            return None
        bank.audio_blob = self._open(bank.audio_blob)
        for sample in bank.history:
            sample.audio_blob = self._open(sample.audio_blob)
        return bank

    def get_cloned_voice_id(self) -> Optional[str]:
        bank = self.get_voice_bank()
        return bank.cloned_voice_id if bank else None

    def record_voice(self, audio_blob: str, clarity_score: Optional[float] = None) -> VoiceBank:
        """
        Replace the current recording, archiving the previous one in history.

        Args:
            audio_blob: Encoded audio (typically a base64 data URL).
            clarity_score: Optional 0–100 clarity rating.

        Returns:
            The updated voice bank.
        """
        bank = self.get_voice_bank() or VoiceBank()
        if bank.audio_blob:
            bank.history.append(VoiceSample(
                audio_blob=bank.audio_blob,
                recorded_at=bank.recorded_at,
                clarity_score=bank.clarity_score,
                version=len(bank.history) + 1,
            ))
        bank.audio_blob = audio_blob
        bank.clarity_score = clarity_score
        bank.recorded_at = datetime.now(tz=timezone.utc).isoformat()
        self.save_voice_bank(bank)
        return bank

    def set_cloned_voice_id(self, voice_id: Optional[str]) -> VoiceBank:
        bank = self.get_voice_bank() or VoiceBank()
        bank.cloned_voice_id = voice_id
        self.save_voice_bank(bank)
        return bank

    # ── Calibration ───────────────────────────────────────────

    def save_calibration_examples(self, examples: list[CalibrationExample]) -> None:
        payload = []
        for example in examples:
            item = example.model_dump()
            item["audio_blob"] = self._seal(item.get("audio_blob"))
            payload.append(item)
        self._store.set(_CALIBRATION_KEY, payload)

    def get_calibration_examples(self) -> list[CalibrationExample]:
        raw = self._store.get(_CALIBRATION_KEY) or []
        examples: list[CalibrationExample] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                example = CalibrationExample.model_validate(item)
            except ValidationError:
                continue
            example.audio_blob = self._open(example.audio_blob)
            examples.append(example)
        return examples

    def clear_all(self) -> None:
        """Delete the voice bank and calibration examples."""
        self._store.clear()
        _log.info("voice_vault", "cleared", {})

    # ── Internal ──────────────────────────────────────────────

    def _seal(self, value: Optional[str]) -> Optional[str]:
        if value is None or VoiceCipher.is_encrypted(value):
            return value
        return self._cipher.encrypt(value)

    def _open(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._cipher.decrypt(value)
