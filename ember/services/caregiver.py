"""
ember/services/caregiver.py — Caregiver contacts and interpretation alerts.

Contacts and the single emergency contact live in a local JSON store. After a
confirmed interpretation, :class:`CaregiverNotifier` texts every active
contact, unless the interpretation confidence is too low to be worth it.
"""

from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from ember.core.constants import EmberConstants as C
from ember.core.logger import get_logger
from ember.storage.json_store import JsonStore

_log = get_logger()

_CONTACTS_KEY = "contacts"
_EMERGENCY_KEY = "emergency_contact"


def clean_phone(phone: str) -> str:
    """Keep digits and a single leading ``+``."""
    phone = (phone or "").strip()
    if phone.startswith("+"):
        return "+" + re.sub(r"\D", "", phone[1:])
    return re.sub(r"\D", "", phone)


class CaregiverContact(BaseModel):
    id: int
    name: str
    phone: str
    relationship: Optional[str] = None
    active: bool = True
    added_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class EmergencyContact(BaseModel):
    phone: str
    method: Literal["call", "sms"] = "call"


class CaregiverDirectory:
    """
    Persistent list of caregiver contacts plus the emergency contact.

    Args:
        path: JSON file backing the directory.
    """

    def __init__(self, path: Path) -> None:
        self._store = JsonStore(path)

    # ──────────────────────────────────────────
    # Contacts
    # ──────────────────────────────────────────

    def contacts(self) -> list[CaregiverContact]:
        raw = self._store.get(_CONTACTS_KEY, [])
        if not isinstance(raw, list):
            return []
        contacts = []
        for item in raw:
            try:
                contacts.append(CaregiverContact.model_validate(item))
            except ValidationError:
                _log.warn("caregiver", "contact_skipped", {"entry": str(item)[:80]})
        return contacts

    def active_contacts(self) -> list[CaregiverContact]:
        return [c for c in self.contacts() if c.active]

    def add(self, name: str, phone: str, relationship: Optional[str] = None) -> CaregiverContact:
        """
        Add a contact.

        Raises:
            ValueError: If *name* or the cleaned *phone* is empty.
        """
        cleaned = clean_phone(phone)
        if not name or not name.strip() or not cleaned.strip("+"):
            raise ValueError("Name and phone required")

        contacts = self.contacts()
        new_id = int(time.time() * 1000)
        if contacts:
            new_id = max(new_id, max(c.id for c in contacts) + 1)
        contact = CaregiverContact(
            id=new_id,
            name=name.strip(),
            phone=cleaned,
            relationship=relationship or None,
        )
        contacts.append(contact)
        self._save(contacts)
        _log.info("caregiver", "contact_added", {"id": contact.id, "relationship": relationship})
        return contact

    def remove(self, contact_id: int) -> bool:
        contacts = self.contacts()
        kept = [c for c in contacts if c.id != contact_id]
        if len(kept) == len(contacts):
            return False
        self._save(kept)
        return True

    def toggle(self, contact_id: int) -> Optional[CaregiverContact]:
        """Flip a contact's ``active`` flag; ``None`` if the id is unknown."""
        contacts = self.contacts()
        found: Optional[CaregiverContact] = None
        for i, contact in enumerate(contacts):
            if contact.id == contact_id:
                found = contact.model_copy(update={"active": not contact.active})
                contacts[i] = found
        if found is not None:
            self._save(contacts)
        return found

    def _save(self, contacts: list[CaregiverContact]) -> None:
        self._store.set(_CONTACTS_KEY, [c.model_dump() for c in contacts])

    # ──────────────────────────────────────────
    # Emergency contact
    # ──────────────────────────────────────────

    def emergency_contact(self) -> Optional[EmergencyContact]:
        raw = self._store.get(_EMERGENCY_KEY)
        if not raw:
            return None
        try:
            return EmergencyContact.model_validate(raw)
        except ValidationError:
            return None

    def set_emergency_contact(self, phone: str, method: str = "call") -> EmergencyContact:
        cleaned = clean_phone(phone)
        if not cleaned.strip("+"):
            raise ValueError("Phone number is required")
        contact = EmergencyContact(phone=cleaned, method=method)
        self._store.set(_EMERGENCY_KEY, contact.model_dump())
        return contact

    def clear_emergency_contact(self) -> None:
        self._store.delete(_EMERGENCY_KEY)


class SmsSender(Protocol):
    async def send_sms(self, to: str, message: str) -> dict[str, Any]: ...


def format_interpretation_message(
    original_message: str,
    interpretation: str,
    confidence: int,
    timestamp: Optional[str] = None,
) -> str:
    stamp = timestamp or datetime.now().strftime("%Y-%m-%d %H:%M")
    return (
        "[Ember Alert]\n"
        f'They said: "{original_message}"\n'
        f'Meant: "{interpretation}"\n'
        f"Confidence: {confidence}%\n"
        f"Time: {stamp}\n"
        "Reply HELP for assistance, STOP to unsubscribe"
    )


class CaregiverNotifier:
    """
    Texts confirmed interpretations to every active caregiver.

    Args:
        directory: Contact source.
        sender: SMS transport (normally :class:`~ember.services.telephony.TwilioClient`).
        min_confidence: Interpretations below this are not sent.
    """

    def __init__(
        self,
        directory: CaregiverDirectory,
        sender: SmsSender,
        min_confidence: int = C.CAREGIVER_MIN_CONFIDENCE,
    ) -> None:
        self._directory = directory
        self._sender = sender
        self._min_confidence = min_confidence

    async def send_interpretation_sms(
        self,
        original_message: str,
        interpretation: str,
        confidence: int,
    ) -> dict[str, Any]:
        """
        Send the interpretation to all active contacts concurrently.

        Returns:
            ``{"success", "sent", "total"}``, or ``{"success": False, "reason"}``
            with reason ``no_contacts`` or ``low_confidence``.
        """
        contacts = self._directory.active_contacts()
        if not contacts:
            return {"success": False, "reason": "no_contacts"}
        if confidence < self._min_confidence:
            return {"success": False, "reason": "low_confidence"}

        body = format_interpretation_message(original_message, interpretation, confidence)
        results = await asyncio.gather(
            *(self._sender.send_sms(c.phone, body) for c in contacts),
            return_exceptions=True,
        )
        sent = 0
        for contact, result in zip(contacts, results):
            if isinstance(result, BaseException):
                _log.warn("caregiver", "sms_failed", {"id": contact.id, "error": str(result)})
            else:
                sent += 1
        _log.info("caregiver", "interpretation_sent", {"sent": sent, "total": len(contacts)})
        return {"success": sent > 0, "sent": sent, "total": len(contacts)}
