"""
ember/core/config.py — Typed configuration loader for Ember.

Loads config/ember.yaml and validates all values into typed dataclasses.
All downstream modules import from this module; never read YAML directly.
API credentials are never stored in YAML: each service section names the
environment variable that holds its secret.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Dataclass hierarchy, mirrors ember.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class DialogConfig:
    """Disambiguation dialog timing."""

    auto_select_timeout_s: int = 8
    confirm_delay_ms: int = 300
    tick_interval_s: float = 1.0
    disambiguation_threshold: int = 80


@dataclass(frozen=True)
class TTSConfig:
    """ElevenLabs speech synthesis configuration."""

    base_url: str = "https://api.elevenlabs.io/v1"
    api_key_env: str = "ELEVENLABS_API_KEY"
    default_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True
    timeout_s: float = 30.0

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class GeminiConfig:
    """Generative-language interpretation backend configuration."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.0-flash"
    api_key_env: str = "GEMINI_API_KEY"
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 1024
    history_window: int = 3
    timeout_s: float = 30.0

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class TwilioConfig:
    """Telephony (SMS + emergency voice call) configuration."""

    base_url: str = "https://api.twilio.com/2010-04-01"
    account_sid_env: str = "TWILIO_ACCOUNT_SID"
    auth_token_env: str = "TWILIO_AUTH_TOKEN"
    from_number_env: str = "TWILIO_PHONE_NUMBER"
    call_voice: str = "Polly.Matthew"
    timeout_s: float = 20.0

    @property
    def account_sid(self) -> Optional[str]:
        return os.environ.get(self.account_sid_env) or None

    @property
    def auth_token(self) -> Optional[str]:
        return os.environ.get(self.auth_token_env) or None

    @property
    def from_number(self) -> Optional[str]:
        return os.environ.get(self.from_number_env) or None


@dataclass(frozen=True)
class SmartThingsConfig:
    """Smart-home control configuration."""

    base_url: str = "https://api.smartthings.com/v1"
    token_env: str = "SMARTTHINGS_PAT"
    demo_mode: bool = False
    simulated_delay_ms: int = 800
    test_toggle_delay_ms: int = 500
    timeout_s: float = 15.0

    @property
    def token(self) -> Optional[str]:
        return os.environ.get(self.token_env) or None


@dataclass(frozen=True)
class CaregiverConfig:
    """Caregiver alerting thresholds."""

    min_confidence: int = 60
    user_name: str = "User"


@dataclass(frozen=True)
class StorageConfig:
    """Local JSON stores and the encrypted voice bank."""

    data_dir: str = "data"
    user_id: str = "anonymous"
    max_corrections: int = 50

    @property
    def resolved_data_dir(self) -> Path:
        """Return the data directory as a Path, expanding ~ if needed."""
        return Path(os.path.expanduser(self.data_dir))


@dataclass(frozen=True)
class FeedbackConfig:
    """Local pyttsx3 voice feedback."""

    enabled: bool = True
    rate: int = 150
    volume: float = 1.0
    voice_id: Optional[str] = None


@dataclass(frozen=True)
class LoggingConfig:
    """JSONL log location and stderr mirror level."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class WebConfig:
    """FastAPI / uvicorn bind settings."""

    host: str = "127.0.0.1"
    port: int = 7860


@dataclass(frozen=True)
class EmberConfig:
    """Root configuration object — single source of truth for all settings."""

    dialog: DialogConfig = field(default_factory=DialogConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    smartthings: SmartThingsConfig = field(default_factory=SmartThingsConfig)
    caregiver: CaregiverConfig = field(default_factory=CaregiverConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────

_SECTIONS: dict[str, type] = {
    "dialog": DialogConfig,
    "tts": TTSConfig,
    "gemini": GeminiConfig,
    "twilio": TwilioConfig,
    "smartthings": SmartThingsConfig,
    "caregiver": CaregiverConfig,
    "storage": StorageConfig,
    "feedback": FeedbackConfig,
    "logging": LoggingConfig,
    "web": WebConfig,
}


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(config_path: Path | str | None) -> Path | None:
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")
        return resolved
    if "EMBER_CONFIG" in os.environ:
        resolved = Path(os.environ["EMBER_CONFIG"])
        if not resolved.exists():
            raise FileNotFoundError(f"EMBER_CONFIG points to missing file: {resolved}")
        return resolved

    # Auto-discover: working directory first, then the project root
    here = Path(__file__).resolve()
    for parent in [Path.cwd(), here.parent.parent.parent]:
        candidate = parent / "config" / "ember.yaml"
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Path | str | None = None,
    overrides: Optional[dict] = None,
) -> EmberConfig:
    """
    Load, validate, and return an EmberConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. EMBER_CONFIG environment variable
    3. ``config/ember.yaml`` in the working directory or the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to an ``ember.yaml`` file.
        overrides: Optional nested dict applied on top of the file values
            (used by the CLI and by tests).

    Returns:
        A fully populated and frozen :class:`EmberConfig` instance.

    Raises:
        ValueError: If a YAML field has an invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path = _resolve_path(config_path)

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    if overrides:
        raw = _merge(raw, overrides)

    unknown = set(raw) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")

    sections: dict = {}
    try:
        for name, cls in _SECTIONS.items():
            section_raw = raw.get(name) or {}
            if not isinstance(section_raw, dict):
                raise ValueError(f"Config section '{name}' must be a mapping")
            sections[name] = cls(**section_raw)
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    config = EmberConfig(**sections)
    _validate_config(config)
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(config: EmberConfig) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    dialog = config.dialog
    if dialog.auto_select_timeout_s < 1:
        raise ValueError(
            f"dialog.auto_select_timeout_s must be ≥1, got {dialog.auto_select_timeout_s}"
        )
    if dialog.confirm_delay_ms < 0:
        raise ValueError(f"dialog.confirm_delay_ms must be ≥0, got {dialog.confirm_delay_ms}")
    if dialog.tick_interval_s <= 0:
        raise ValueError(f"dialog.tick_interval_s must be positive, got {dialog.tick_interval_s}")
    if not (0 <= dialog.disambiguation_threshold <= 100):
        raise ValueError(
            f"dialog.disambiguation_threshold must be in [0, 100], got {dialog.disambiguation_threshold}"
        )
    for name in ("stability", "similarity_boost", "style"):
        value = getattr(config.tts, name)
        if not (0.0 <= value <= 1.0):
            raise ValueError(f"tts.{name} must be in [0, 1], got {value}")
    if not (0.0 <= config.gemini.temperature <= 2.0):
        raise ValueError(f"gemini.temperature must be in [0, 2], got {config.gemini.temperature}")
    if not (0 <= config.caregiver.min_confidence <= 100):
        raise ValueError(
            f"caregiver.min_confidence must be in [0, 100], got {config.caregiver.min_confidence}"
        )
    if config.storage.max_corrections < 1:
        raise ValueError(
            f"storage.max_corrections must be ≥1, got {config.storage.max_corrections}"
        )
    if not (0.0 <= config.feedback.volume <= 1.0):
        raise ValueError(f"feedback.volume must be in [0, 1], got {config.feedback.volume}")
    if config.logging.level.upper() not in {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}:
        raise ValueError(f"logging.level is not a known level: '{config.logging.level}'")
    if not (0 < config.web.port < 65536):
        raise ValueError(f"web.port must be a valid TCP port, got {config.web.port}")
