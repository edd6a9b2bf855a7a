"""
tests/test_config.py — pytest unit tests for ember.core.config.load_config.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from ember.core.config import EmberConfig, load_config

_REPO_CONFIG = Path(__file__).resolve().parent.parent / "config" / "ember.yaml"


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "ember.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadConfig:

    def test_repository_config_matches_defaults(self) -> None:
        config = load_config(_REPO_CONFIG)
        assert config.dialog == EmberConfig().dialog
        assert config.gemini.model == "gemini-2.0-flash"
        assert config.web.port == 7860

    def test_partial_file_keeps_defaults(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, {"dialog": {"auto_select_timeout_s": 5}}))
        assert config.dialog.auto_select_timeout_s == 5
        assert config.dialog.confirm_delay_ms == 300
        assert config.caregiver.min_confidence == 60

    def test_overrides_win(self, tmp_path: Path) -> None:
        path = _write(tmp_path, {"web": {"port": 8000, "host": "0.0.0.0"}})
        config = load_config(path, overrides={"web": {"port": 9000}})
        assert config.web.port == 9000
        assert config.web.host == "0.0.0.0"

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_env_var_location(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMBER_CONFIG", str(_write(tmp_path, {"caregiver": {"user_name": "Sam"}})))
        assert load_config().caregiver.user_name == "Sam"

    @pytest.mark.parametrize("data", [
        {"nonsense": {}},
        {"dialog": {"unknown_key": 1}},
        {"dialog": {"auto_select_timeout_s": 0}},
        {"tts": {"stability": 1.5}},
        {"caregiver": {"min_confidence": 120}},
        {"logging": {"level": "LOUD"}},
        {"web": {"port": 70000}},
        {"dialog": "not a mapping"},
    ])
    def test_invalid_values(self, tmp_path: Path, data: dict) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, data))

    def test_non_mapping_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, [1, 2, 3]))

    def test_secrets_come_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = load_config(_REPO_CONFIG)
        assert config.gemini.api_key is None
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        assert config.gemini.api_key == "g-key"
        assert config.twilio.account_sid == "AC123"
        assert config.twilio.auth_token is None
