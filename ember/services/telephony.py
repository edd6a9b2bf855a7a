"""
ember/services/telephony.py — Twilio SMS and emergency voice calls.

Requests are form-encoded and authenticated with the account SID and auth
token (HTTP basic auth). Emergency calls carry inline TwiML: the alert is
read twice with a short pause and the call then hangs up.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx

from ember.core.config import TwilioConfig
from ember.core.errors import TelephonyError
from ember.core.logger import get_logger
from ember.services.http import ServiceClient

_log = get_logger()

_TWIML_UNSAFE = re.compile(r"[<>&'\"]")


def format_phone(number: str) -> str:
    """
    Normalise a phone number to E.164.

    Non-digits are dropped; a bare 10-digit number gets the US ``1`` prefix.

    Raises:
        TelephonyError: If *number* contains no digits.
    """
    digits = re.sub(r"\D", "", number or "")
    if not digits:
        raise TelephonyError("Phone number is required")
    if len(digits) == 10 and not digits.startswith("1"):
        digits = "1" + digits
    return "+" + digits


def emergency_alert_text(user_name: Optional[str], message: Optional[str]) -> str:
    said = f"They said: {message}. " if message else ""
    return (
        f"Hello, this is an urgent alert from Ember. {user_name or 'Your contact'} is asking "
        f"for help. {said}Please reach out to them as soon as possible. "
        "This is an automated emergency message. Thank you."
    )


def build_call_twiml(alert: str, voice: str = "Polly.Matthew") -> str:
    """Return TwiML that reads *alert* twice and hangs up."""
    text = _TWIML_UNSAFE.sub("", alert)
    say = f'<Say voice="{voice}" language="en-US">'
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        f"{say}{text}</Say>"
        '<Pause length="1"/>'
        f"{say}This message will repeat once more.</Say>"
        '<Pause length="1"/>'
        f"{say}{text}</Say>"
        "<Hangup/>"
        "</Response>"
    )


class TwilioClient(ServiceClient):
    """
    Minimal Twilio REST client.

    Args:
        config: Twilio configuration.
        account_sid: Overrides the SID from the environment.
        auth_token: Overrides the token from the environment.
        from_number: Overrides the sending number from the environment.
        transport: Optional httpx transport for tests.
    """

    service_name = "twilio"
    error_cls = TelephonyError

    def __init__(
        self,
        config: TwilioConfig,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config.base_url, config.timeout_s, transport)
        self._cfg = config
        self._sid = account_sid or config.account_sid
        self._token = auth_token or config.auth_token
        self._from = from_number or config.from_number

    @property
    def configured(self) -> bool:
        return bool(self._sid and self._token and self._from)

    def _auth(self) -> Optional[tuple[str, str]]:
        if self._sid and self._token:
            return (self._sid, self._token)
        return None

    def _require_configured(self) -> None:
        if not self.configured:
            raise TelephonyError("Twilio credentials not configured")

    async def send_sms(self, to: str, message: str) -> dict[str, Any]:
        """
        Send an SMS.

        Returns:
            ``{"success": True, "messageSid": ..., "status": ...}``.

        Raises:
            TelephonyError: On missing credentials, empty input or API failure.
        """
        self._require_configured()
        if not message:
            raise TelephonyError("Missing 'to' or 'message'")
        to_number = format_phone(to)

        response = await self._request(
            "POST",
            f"/Accounts/{self._sid}/Messages.json",
            data={"To": to_number, "From": self._from, "Body": message},
        )
        payload = response.json()
        _log.info("twilio", "sms_sent", {"to": "***" + to_number[-4:], "sid": payload.get("sid")})
        return {"success": True, "messageSid": payload.get("sid"), "status": payload.get("status")}

    async def place_emergency_call(
        self,
        phone_number: str,
        message: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Call *phone_number* and read the emergency alert twice.

        Returns:
            ``{"success": True, "callSid": ...}``.

        Raises:
            TelephonyError: On missing credentials, missing number or API failure.
        """
        twiml = build_call_twiml(emergency_alert_text(user_name, message), self._cfg.call_voice)
        sid = await self.place_call(phone_number, twiml)
        _log.critical("twilio", "emergency_call_placed", {"sid": sid})
        return {"success": True, "callSid": sid, "message": "Emergency call initiated"}

    async def place_call(self, to: str, twiml: str) -> Optional[str]:
        """
        Start an outbound call that executes *twiml*.

        Returns:
            The call SID.
        """
        self._require_configured()
        cleaned = re.sub(r"[^+\d]", "", to or "")
        if not cleaned.strip("+"):
            raise TelephonyError("Phone number is required")
        to_number = cleaned if cleaned.startswith("+") else "+" + cleaned

        response = await self._request(
            "POST",
            f"/Accounts/{self._sid}/Calls.json",
            data={"To": to_number, "From": self._from, "Twiml": twiml},
        )
        sid = response.json().get("sid")
        _log.info("twilio", "call_placed", {"to": "***" + to_number[-4:], "sid": sid})
        return sid
