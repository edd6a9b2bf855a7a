"""
ember/core/settings.py — User accessibility preferences.

Preferences are an explicit object passed to whoever needs them (voice
feedback, synthesis, the web client). :class:`SettingsStore` persists them
and exposes read / update / reset; nothing here is module-level state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ValidationError, field_validator

from ember.core.logger import get_logger
from ember.storage.json_store import JsonStore

_log = get_logger()

_STORE_KEY = "accessibility"


class AccessibilitySettings(BaseModel):
    """Pydantic-validated accessibility preferences with their defaults."""

    use_cloned_voice: bool = False
    audio_quality: Literal["fast", "high"] = "fast"
    voice_speed: float = 1.0
    font_size: Literal["small", "medium", "large", "xl"] = "medium"
    high_contrast: bool = False
    reduce_animations: bool = False
    keyboard_shortcuts: bool = True

    model_config = {"extra": "forbid"}

    @field_validator("voice_speed")
    @classmethod
    def speed_in_range(cls, v: float) -> float:
        """
        Validate that the speech rate multiplier is usable.

        Raises:
            ValueError: If *v* is outside ``[0.5, 2.0]``.
        """
        if not (0.5 <= v <= 2.0):
            raise ValueError("voice_speed must be between 0.5 and 2.0")
        return v

    def display_attributes(self) -> dict[str, Any]:
        """Return the document-level attributes a client should apply."""
        classes = []
        if self.high_contrast:
            classes.append("high-contrast")
        if self.reduce_animations:
            classes.append("reduce-animations")
        return {"data-font-size": self.font_size, "classes": classes}


class SettingsStore:
    """
    Persistent holder of one :class:`AccessibilitySettings` instance.

    Stored values are merged over the defaults, so fields added later pick
    up their default. An unreadable record falls back to defaults.

    Args:
        path: JSON file for the store.
    """

    def __init__(self, path: Path) -> None:
        self._store = JsonStore(path)
        self._settings = self._load()

    def get(self) -> AccessibilitySettings:
        return self._settings

    def update(self, **changes: Any) -> AccessibilitySettings:
        """
        Apply a partial update and persist it.

        Raises:
            ValueError: If a field is unknown or a value is invalid.
        """
        merged = {**self._settings.model_dump(), **changes}
        try:
            updated = AccessibilitySettings.model_validate(merged)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        self._settings = updated
        self._store.set(_STORE_KEY, updated.model_dump())
        _log.info("settings", "updated", {"fields": sorted(changes)})
        return updated

    def reset(self) -> AccessibilitySettings:
        self._settings = AccessibilitySettings()
        self._store.set(_STORE_KEY, self._settings.model_dump())
        _log.info("settings", "reset", {})
        return self._settings

    def _load(self) -> AccessibilitySettings:
        saved = self._store.get(_STORE_KEY) or {}
        try:
            return AccessibilitySettings.model_validate(
                {**AccessibilitySettings().model_dump(), **saved}
            )
        except ValidationError:
            _log.warn("settings", "stored_settings_invalid", {})
            return AccessibilitySettings()
