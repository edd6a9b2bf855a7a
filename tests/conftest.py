"""
tests/conftest.py — Shared pytest configuration.

Points the structured logger at a throwaway directory before any Ember
module is imported, and clears service credentials from the environment.
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("EMBER_LOG_DIR", tempfile.mkdtemp(prefix="ember-test-logs-"))

import pytest  # noqa: E402

_SECRET_VARS = (
    "ELEVENLABS_API_KEY",
    "GEMINI_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "SMARTTHINGS_PAT",
    "EMBER_CONFIG",
)


@pytest.fixture(autouse=True)
def _no_real_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SECRET_VARS:
        monkeypatch.delenv(name, raising=False)
