"""
tests/test_storage.py — pytest unit tests for the encrypted voice bank, the
accessibility settings store and the JSON store they share.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ember.core.settings import AccessibilitySettings, SettingsStore
from ember.storage.json_store import JsonStore
from ember.storage.voice_vault import (
    ENCRYPTED_PREFIX,
    CalibrationExample,
    SecureVoiceStorage,
    VoiceCipher,
    derive_key,
)

_FINGERPRINT = "test-host|Linux|x86_64"


# ──────────────────────────────────────────────────────────────
# Voice vault
# ──────────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def key() -> bytes:
    return derive_key("alice", _FINGERPRINT)


@pytest.fixture
def vault(tmp_path: Path) -> SecureVoiceStorage:
    return SecureVoiceStorage(tmp_path / "voice.json", user_id="alice", fingerprint=_FINGERPRINT)


class TestVoiceCipher:

    def test_key_is_deterministic_per_user_and_host(self, key: bytes) -> None:
        assert len(key) == 32
        assert derive_key("alice", _FINGERPRINT) == key
        assert derive_key("bob", _FINGERPRINT) != key
        assert derive_key(None, _FINGERPRINT) == derive_key("anonymous", _FINGERPRINT)

    def test_encrypt_decrypt(self, key: bytes) -> None:
        cipher = VoiceCipher(key)
        sealed = cipher.encrypt("data:audio/webm;base64,AAAA")
        assert sealed.startswith(ENCRYPTED_PREFIX)
        assert cipher.encrypt("same") != cipher.encrypt("same")
        assert cipher.decrypt(sealed) == "data:audio/webm;base64,AAAA"

    def test_plaintext_passes_through(self, key: bytes) -> None:
        assert VoiceCipher(key).decrypt("legacy-blob") == "legacy-blob"

    def test_wrong_key_returns_value_unchanged(self, key: bytes) -> None:
        sealed = VoiceCipher(key).encrypt("secret")
        other = VoiceCipher(derive_key("mallory", _FINGERPRINT))
        assert other.decrypt(sealed) == sealed


class TestSecureVoiceStorage:

    def test_empty(self, vault: SecureVoiceStorage) -> None:
        assert vault.get_voice_bank() is None
        assert vault.get_cloned_voice_id() is None

    def test_audio_encrypted_at_rest(self, vault: SecureVoiceStorage, tmp_path: Path) -> None:
        vault.record_voice("blob-1", clarity_score=82.5)
        raw = json.loads((tmp_path / "voice.json").read_text(encoding="utf-8"))
        assert raw["voice_bank"]["audio_blob"].startswith(ENCRYPTED_PREFIX)
        assert "blob-1" not in json.dumps(raw)
        bank = vault.get_voice_bank()
        assert bank.audio_blob == "blob-1"
        assert bank.clarity_score == 82.5

    def test_rerecording_archives_previous(self, vault: SecureVoiceStorage) -> None:
        vault.record_voice("blob-1")
        vault.record_voice("blob-2")
        bank = vault.get_voice_bank()
        assert bank.audio_blob == "blob-2"
        assert [s.audio_blob for s in bank.history] == ["blob-1"]
        assert bank.history[0].version == 1

    def test_cloned_voice_id(self, vault: SecureVoiceStorage) -> None:
        vault.record_voice("blob-1")
        vault.set_cloned_voice_id("voice-123")
        assert vault.get_cloned_voice_id() == "voice-123"
        assert vault.get_voice_bank().audio_blob == "blob-1"

    def test_malformed_record_reads_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "voice.json"
        path.write_text(json.dumps({"voice_bank": {"history": "nope"}}), encoding="utf-8")
        store = SecureVoiceStorage(path, user_id="alice", fingerprint=_FINGERPRINT)
        assert store.get_voice_bank() is None

    def test_calibration_examples(self, vault: SecureVoiceStorage) -> None:
        vault.save_calibration_examples([
            CalibrationExample(phrase="I want water", audio_blob="clip-1"),
            CalibrationExample(phrase="Turn on the light"),
        ])
        examples = vault.get_calibration_examples()
        assert [e.phrase for e in examples] == ["I want water", "Turn on the light"]
        assert examples[0].audio_blob == "clip-1"
        assert examples[1].audio_blob is None

    def test_clear_all(self, vault: SecureVoiceStorage) -> None:
        vault.record_voice("blob-1")
        vault.clear_all()
        assert vault.get_voice_bank() is None
        assert vault.get_calibration_examples() == []


# ──────────────────────────────────────────────────────────────
# Settings
# ──────────────────────────────────────────────────────────────

class TestSettingsStore:

    def test_defaults(self, tmp_path: Path) -> None:
        settings = SettingsStore(tmp_path / "settings.json").get()
        assert settings == AccessibilitySettings()
        assert settings.voice_speed == 1.0
        assert settings.keyboard_shortcuts is True

    def test_update_persists(self, tmp_path: Path) -> None:
        SettingsStore(tmp_path / "s.json").update(font_size="xl", high_contrast=True)
        reloaded = SettingsStore(tmp_path / "s.json").get()
        assert reloaded.font_size == "xl"
        assert reloaded.display_attributes() == {
            "data-font-size": "xl",
            "classes": ["high-contrast"],
        }

    @pytest.mark.parametrize("changes", [
        {"voice_speed": 3.0},
        {"font_size": "huge"},
        {"unknown_field": True},
    ])
    def test_invalid_update_rejected(self, tmp_path: Path, changes: dict) -> None:
        store = SettingsStore(tmp_path / "s.json")
        with pytest.raises(ValueError):
            store.update(**changes)
        assert store.get() == AccessibilitySettings()

    def test_reset(self, tmp_path: Path) -> None:
        store = SettingsStore(tmp_path / "s.json")
        store.update(use_cloned_voice=True)
        assert store.reset() == AccessibilitySettings()
        assert SettingsStore(tmp_path / "s.json").get().use_cloned_voice is False

    def test_invalid_stored_values_fall_back(self, tmp_path: Path) -> None:
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"accessibility": {"voice_speed": 9}}), encoding="utf-8")
        assert SettingsStore(path).get() == AccessibilitySettings()


class TestJsonStore:

    def test_roundtrip_and_delete(self, tmp_path: Path) -> None:
        store = JsonStore(tmp_path / "nested" / "store.json")
        store.set("a", [1, 2])
        assert JsonStore(tmp_path / "nested" / "store.json").get("a") == [1, 2]
        store.delete("a")
        assert store.get("a", "missing") == "missing"

    def test_non_object_file_reads_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert JsonStore(path).get("anything") is None
