"""
tests/test_caregiver.py — pytest unit tests for caregiver contacts and SMS alerts.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ember.core.errors import TelephonyError
from ember.services.caregiver import (
    CaregiverDirectory,
    CaregiverNotifier,
    clean_phone,
    format_interpretation_message,
)


class FakeSms:
    def __init__(self, failing: tuple[str, ...] = ()) -> None:
        self.sent: list[tuple[str, str]] = []
        self._failing = failing

    async def send_sms(self, to: str, message: str) -> dict:
        if to in self._failing:
            raise TelephonyError("undeliverable", 400)
        self.sent.append((to, message))
        return {"success": True, "messageSid": f"SM{len(self.sent)}"}


@pytest.fixture
def directory(tmp_path: Path) -> CaregiverDirectory:
    return CaregiverDirectory(tmp_path / "caregivers.json")


class TestDirectory:

    def test_clean_phone(self) -> None:
        assert clean_phone(" +1 (555) 123-4567 ") == "+15551234567"
        assert clean_phone("555.123.4567") == "5551234567"

    def test_add_and_list(self, directory: CaregiverDirectory) -> None:
        first = directory.add("Sam", "(555) 123-4567", "daughter")
        second = directory.add("Jo", "555 987 6543")
        assert first.phone == "5551234567"
        assert second.id > first.id
        assert [c.name for c in directory.contacts()] == ["Sam", "Jo"]
        assert second.relationship is None

    @pytest.mark.parametrize("name, phone", [("", "5551234567"), ("Sam", "no digits")])
    def test_add_requires_name_and_phone(
        self, directory: CaregiverDirectory, name: str, phone: str
    ) -> None:
        with pytest.raises(ValueError, match="Name and phone required"):
            directory.add(name, phone)

    def test_toggle_and_remove(self, directory: CaregiverDirectory) -> None:
        contact = directory.add("Sam", "5551234567")
        toggled = directory.toggle(contact.id)
        assert toggled is not None and toggled.active is False
        assert directory.active_contacts() == []
        assert directory.toggle(12345) is None
        assert directory.remove(contact.id) is True
        assert directory.remove(contact.id) is False
        assert directory.contacts() == []

    def test_emergency_contact(self, directory: CaregiverDirectory) -> None:
        assert directory.emergency_contact() is None
        directory.set_emergency_contact("+1 555 000 1111", "sms")
        contact = directory.emergency_contact()
        assert contact.phone == "+15550001111"
        assert contact.method == "sms"
        directory.clear_emergency_contact()
        assert directory.emergency_contact() is None

    def test_emergency_contact_validation(self, directory: CaregiverDirectory) -> None:
        with pytest.raises(ValueError):
            directory.set_emergency_contact("")
        with pytest.raises(ValueError):
            directory.set_emergency_contact("5551234567", "pigeon")


class TestNotifier:

    def test_message_format(self) -> None:
        text = format_interpretation_message("nee hel", "I need help", 72, "2026-01-01 09:30")
        assert text.splitlines() == [
            "[Ember Alert]",
            'They said: "nee hel"',
            'Meant: "I need help"',
            "Confidence: 72%",
            "Time: 2026-01-01 09:30",
            "Reply HELP for assistance, STOP to unsubscribe",
        ]

    def test_no_contacts(self, directory: CaregiverDirectory) -> None:
        sms = FakeSms()
        result = asyncio.run(CaregiverNotifier(directory, sms).send_interpretation_sms(
            "nee hel", "I need help", 30
        ))
        assert result == {"success": False, "reason": "no_contacts"}
        assert sms.sent == []

    def test_low_confidence(self, directory: CaregiverDirectory) -> None:
        directory.add("Sam", "5551234567")
        sms = FakeSms()
        result = asyncio.run(CaregiverNotifier(directory, sms).send_interpretation_sms(
            "nee hel", "I need help", 59
        ))
        assert result == {"success": False, "reason": "low_confidence"}
        assert sms.sent == []

    def test_sends_to_active_contacts_only(self, directory: CaregiverDirectory) -> None:
        directory.add("Sam", "5551234567")
        directory.add("Jo", "5559876543")
        inactive = directory.add("Max", "5550001111")
        directory.toggle(inactive.id)
        sms = FakeSms()
        result = asyncio.run(CaregiverNotifier(directory, sms).send_interpretation_sms(
            "nee hel", "I need help", 60
        ))
        assert result == {"success": True, "sent": 2, "total": 2}
        assert sorted(to for to, _ in sms.sent) == ["5551234567", "5559876543"]
        assert 'Meant: "I need help"' in sms.sent[0][1]

    def test_partial_failure_counts(self, directory: CaregiverDirectory) -> None:
        directory.add("Sam", "5551234567")
        directory.add("Jo", "5559876543")
        sms = FakeSms(failing=("5559876543",))
        result = asyncio.run(CaregiverNotifier(directory, sms).send_interpretation_sms(
            "nee hel", "I need help", 90
        ))
        assert result == {"success": True, "sent": 1, "total": 2}

    def test_all_failed(self, directory: CaregiverDirectory) -> None:
        directory.add("Sam", "5551234567")
        sms = FakeSms(failing=("5551234567",))
        result = asyncio.run(CaregiverNotifier(directory, sms).send_interpretation_sms(
            "nee hel", "I need help", 90
        ))
        assert result == {"success": False, "sent": 0, "total": 1}
