"""
ember/services/smart_home.py — Smart-home actions over SmartThings.

:class:`SmartThingsClient` is a thin REST client (bearer token).
:class:`SmartHomeController` maps Ember actions onto SmartThings capability
commands, keeps the local device registry, and simulates any action it has
no device or command for (always, in demo mode).
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import httpx

from ember.core.config import SmartThingsConfig
from ember.core.errors import SmartHomeError
from ember.core.logger import get_logger
from ember.services.http import ServiceClient
from ember.storage.json_store import JsonStore

_log = get_logger()


class SmartHomeAction(str, Enum):
    LIGHTS_ON = "lights_on"
    LIGHTS_OFF = "lights_off"
    LIGHTS_BRIGHT = "lights_bright"
    LIGHTS_DIM = "lights_dim"
    TEMP_UP = "temp_up"
    TEMP_DOWN = "temp_down"
    TEMP_SET = "temp_set"
    TV_ON = "tv_on"
    TV_OFF = "tv_off"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"
    DOOR_LOCK = "door_lock"
    DOOR_UNLOCK = "door_unlock"
    CURTAINS_OPEN = "curtains_open"
    CURTAINS_CLOSE = "curtains_close"
    CALL_HELP = "call_help"
    CALL_FAMILY = "call_family"

    @property
    def label(self) -> str:
        return ACTION_LABELS[self]


ACTION_LABELS: dict[SmartHomeAction, str] = {
    SmartHomeAction.LIGHTS_ON: "Turn lights on",
    SmartHomeAction.LIGHTS_OFF: "Turn lights off",
    SmartHomeAction.LIGHTS_BRIGHT: "Increase brightness",
    SmartHomeAction.LIGHTS_DIM: "Decrease brightness",
    SmartHomeAction.TEMP_UP: "Increase temperature",
    SmartHomeAction.TEMP_DOWN: "Decrease temperature",
    SmartHomeAction.TEMP_SET: "Set temperature",
    SmartHomeAction.TV_ON: "Turn TV on",
    SmartHomeAction.TV_OFF: "Turn TV off",
    SmartHomeAction.VOLUME_UP: "Increase volume",
    SmartHomeAction.VOLUME_DOWN: "Decrease volume",
    SmartHomeAction.DOOR_LOCK: "Lock the door",
    SmartHomeAction.DOOR_UNLOCK: "Unlock the door",
    SmartHomeAction.CURTAINS_OPEN: "Open curtains",
    SmartHomeAction.CURTAINS_CLOSE: "Close curtains",
    SmartHomeAction.CALL_HELP: "Call for help",
    SmartHomeAction.CALL_FAMILY: "Call family",
}

# action -> (capability, command, arguments)
SMARTTHINGS_COMMANDS: dict[SmartHomeAction, tuple[str, str, list]] = {
    SmartHomeAction.LIGHTS_ON: ("switch", "on", []),
    SmartHomeAction.LIGHTS_OFF: ("switch", "off", []),
    SmartHomeAction.LIGHTS_BRIGHT: ("switchLevel", "setLevel", [100]),
    SmartHomeAction.LIGHTS_DIM: ("switchLevel", "setLevel", [30]),
    SmartHomeAction.TV_ON: ("switch", "on", []),
    SmartHomeAction.TV_OFF: ("switch", "off", []),
    SmartHomeAction.DOOR_LOCK: ("lock", "lock", []),
    SmartHomeAction.DOOR_UNLOCK: ("lock", "unlock", []),
}

DEVICE_CATEGORIES = ("lights", "thermostats", "entertainment", "locks")


@dataclass
class ActionResult:
    success: bool
    message: str
    action: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ──────────────────────────────────────────────────────────────
# REST client
# ──────────────────────────────────────────────────────────────

class SmartThingsClient(ServiceClient):
    """
    SmartThings REST client.

    Args:
        config: SmartThings configuration.
        token: Overrides the personal access token from the environment.
        transport: Optional httpx transport for tests.
    """

    service_name = "smartthings"
    error_cls = SmartHomeError

    def __init__(
        self,
        config: SmartThingsConfig,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config.base_url, config.timeout_s, transport)
        self._token = token or config.token

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def _default_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token or ''}", "Content-Type": "application/json"}

    def _require_token(self) -> None:
        if not self._token:
            raise SmartHomeError("SmartThings PAT not configured")

    async def list_devices(self) -> list[dict[str, Any]]:
        self._require_token()
        response = await self._request("GET", "/devices")
        items = response.json().get("items") or []
        return [
            {
                "id": d.get("deviceId"),
                "label": d.get("label") or d.get("name"),
                "name": d.get("name"),
                "components": d.get("components"),
            }
            for d in items
        ]

    async def device_status(self, device_id: str) -> dict[str, Any]:
        self._require_token()
        if not device_id:
            raise SmartHomeError("deviceId required")
        response = await self._request("GET", f"/devices/{device_id}/status")
        return response.json()

    async def control_device(
        self,
        device_id: str,
        capability: str,
        command: str,
        arguments: Optional[list] = None,
    ) -> dict[str, Any]:
        """
        Send one command to the device's ``main`` component.

        Raises:
            SmartHomeError: On a missing token or argument, or an API failure.
        """
        self._require_token()
        if not device_id or not capability or not command:
            raise SmartHomeError("deviceId, capability, and command are required")
        body = {
            "commands": [{
                "component": "main",
                "capability": capability,
                "command": command,
                "arguments": list(arguments or []),
            }],
        }
        response = await self._request("POST", f"/devices/{device_id}/commands", json=body)
        _log.info("smartthings", "command_sent", {
            "device": device_id, "capability": capability, "command": command,
        })
        return response.json()


# ──────────────────────────────────────────────────────────────
# Visual targets
# ──────────────────────────────────────────────────────────────

_TARGET_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("lights", ("ceiling", "light", "lamp", "bulb", "chandelier", "fixture", "switch", "fan")),
    ("entertainment", ("tv", "television", "screen", "monitor", "speaker", "soundbar", "remote")),
    ("thermostat", ("thermostat", "ac", "air condition", "heater", "heating", "cooling")),
    ("locks", ("door", "lock", "entrance", "gate")),
)


def device_type_from_target(target: Optional[str]) -> Optional[str]:
    """Map a pointed-at object description to a device category."""
    if not target:
        return None
    lowered = target.lower()
    for category, keywords in _TARGET_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return category
    return None


def action_from_visual_command(
    command: str,
    pointing_target: Optional[str] = None,
    pointing_direction: Optional[str] = None,
) -> Optional[tuple[SmartHomeAction, str]]:
    """
    Combine a short spoken command with what the user points at.

    Returns:
        ``(action, device_category)`` or ``None`` when nothing matches.
    """
    category = device_type_from_target(pointing_target)
    if category is None and (pointing_direction or "").lower() == "up":
        category = "lights"
    if category is None:
        return None

    cmd = command.lower().strip()
    is_on = bool(re.fullmatch(r"on|turn\s*on|switch\s*on|open", cmd)) or "turn on" in cmd
    is_off = bool(re.fullmatch(r"off|turn\s*off|switch\s*off|close|stop", cmd)) or "turn off" in cmd
    is_up = bool(re.fullmatch(r"bright|brighter|up|more|louder", cmd))
    is_down = bool(re.fullmatch(r"dim|dimmer|down|less|quieter|lower", cmd))

    A = SmartHomeAction
    table = {
        "lights": ((is_on, A.LIGHTS_ON), (is_off, A.LIGHTS_OFF),
                   (is_up, A.LIGHTS_BRIGHT), (is_down, A.LIGHTS_DIM)),
        "entertainment": ((is_on, A.TV_ON), (is_off, A.TV_OFF),
                          (is_up, A.VOLUME_UP), (is_down, A.VOLUME_DOWN)),
        "thermostat": ((is_up or is_on, A.TEMP_UP), (is_down or is_off, A.TEMP_DOWN)),
        "locks": ((is_on or "lock" in cmd, A.DOOR_LOCK), (is_off or "unlock" in cmd, A.DOOR_UNLOCK)),
    }
    for matched, action in table[category]:
        if matched:
            return action, category
    return None


# ──────────────────────────────────────────────────────────────
# Controller
# ──────────────────────────────────────────────────────────────

class SmartHomeController:
    """
    Executes :class:`SmartHomeAction` values against real or simulated devices.

    Args:
        client: SmartThings client.
        registry_path: JSON file holding the device registry.
        demo_mode: Simulate every action.
        simulated_delay_ms: Delay of a simulated action.
        test_toggle_delay_ms: Time a tested device stays on.
    """

    def __init__(
        self,
        client: SmartThingsClient,
        registry_path: Path,
        demo_mode: bool = False,
        simulated_delay_ms: int = 800,
        test_toggle_delay_ms: int = 500,
    ) -> None:
        self._client = client
        self._registry = JsonStore(registry_path)
        self.demo_mode = demo_mode
        self._simulated_delay_s = simulated_delay_ms / 1000.0
        self._test_delay_s = test_toggle_delay_ms / 1000.0

    @classmethod
    def from_config(
        cls,
        config: SmartThingsConfig,
        registry_path: Path,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SmartHomeController":
        return cls(
            SmartThingsClient(config, transport=transport),
            registry_path,
            demo_mode=config.demo_mode,
            simulated_delay_ms=config.simulated_delay_ms,
            test_toggle_delay_ms=config.test_toggle_delay_ms,
        )

    @property
    def client(self) -> SmartThingsClient:
        return self._client

    # ── device registry ────────────────────────

    def devices(self) -> dict[str, list[dict[str, str]]]:
        stored = self._registry.get("devices") or {}
        return {cat: list(stored.get(cat) or []) for cat in DEVICE_CATEGORIES}

    def save_devices(self, devices: dict[str, list[dict[str, str]]]) -> None:
        unknown = set(devices) - set(DEVICE_CATEGORIES)
        if unknown:
            raise ValueError(f"Unknown device categories: {sorted(unknown)}")
        merged = self.devices()
        merged.update(devices)
        self._registry.set("devices", merged)

    def first_device(self, category: str) -> Optional[str]:
        entries = self.devices().get(category) or []
        return entries[0].get("id") if entries else None

    # ── actions ────────────────────────────────

    async def execute(
        self,
        action: SmartHomeAction | str,
        room: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Run *action*; never raises.

        Mapped actions with a *device_id* go to SmartThings; everything else
        is simulated after a short delay.
        """
        try:
            action = SmartHomeAction(action)
        except ValueError:
            return ActionResult(False, f"Unknown action: {action}")

        message = action.label + (f" in {room}" if room else "")
        try:
            command = SMARTTHINGS_COMMANDS.get(action)
            if not self.demo_mode and command and device_id:
                capability, cmd, args = command
                await self._client.control_device(device_id, capability, cmd, args)
            else:
                await asyncio.sleep(self._simulated_delay_s)
                if not self.demo_mode:
                    message += " (simulated)"
        except SmartHomeError as exc:
            _log.warn("smarthome", "action_failed", {"action": action.value, "error": str(exc)})
            return ActionResult(False, str(exc), action.value)

        _log.info("smarthome", "action_done", {
            "action": action.value, "device": device_id, "demo": self.demo_mode,
        })
        return ActionResult(True, message, action.value)

    async def list_devices(self) -> list[dict[str, str]]:
        """Devices known to SmartThings as ``{id, name}``; empty on failure."""
        try:
            devices = await self._client.list_devices()
        except SmartHomeError as exc:
            _log.warn("smarthome", "list_failed", {"error": str(exc)})
            return []
        return [{"id": d["id"], "name": d["label"]} for d in devices]

    async def test_device(self, device_id: str) -> ActionResult:
        """Switch *device_id* on, wait briefly, and switch it off again."""
        try:
            await self._client.control_device(device_id, "switch", "on")
            await asyncio.sleep(self._test_delay_s)
            await self._client.control_device(device_id, "switch", "off")
        except SmartHomeError as exc:
            return ActionResult(False, str(exc))
        return ActionResult(True, "Device responded successfully")

    async def aclose(self) -> None:
        await self._client.aclose()
