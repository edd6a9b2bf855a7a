"""
ember/web/app.py — FastAPI web server for Ember.

Exposes the controller over REST and streams every controller event to the
browser over a WebSocket at /ws.

REST endpoints
--------------
GET    /health                    JSON health check
GET    /state                     Full application snapshot
POST   /transcript                Route a recognised utterance  {"text": "..."}
POST   /dialog/open               Open a dialog from a DisambiguationRequest
POST   /dialog/key                Key press                     {"key": "Enter"}
POST   /dialog/select             Click a candidate             {"index": 1}
POST   /dialog/custom             Custom phrase                 {"text": "...", "active": true}
POST   /dialog/play               Toggle a preview              {"index": 0}
POST   /dialog/confirm            Confirm button
POST   /dialog/cancel             Cancel button
GET    /settings                  Accessibility settings
PATCH  /settings                  Partial settings update
DELETE /settings                  Reset settings to defaults
PUT    /feedback                  Spoken feedback on/off        {"enabled": false}
GET    /caregivers                List caregiver contacts
POST   /caregivers                Add a contact {"name", "phone", "relationship"}
DELETE /caregivers/{id}           Remove a contact
POST   /caregivers/{id}/toggle    Flip a contact's active flag
PUT    /emergency-contact         {"phone": "...", "method": "call"|"sms"}
POST   /emergency                 Manual emergency trigger {"message": "..."}
GET    /corrections/stats         Learned-correction statistics
GET    /accuracy                  Session accuracy statistics

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "snapshot", ...}                       ← on connect
  {"type": "transcript",     "text": "..."}
  {"type": "interpretation", "interpretation": "...", "confidence": 72, ...}
  {"type": "dialog_opened",  ...dialog snapshot}
  {"type": "dialog",         ...dialog snapshot}
  {"type": "confirmed",      "original": "...", "text": "..."}
  {"type": "cancelled",      "original": "..."}
  {"type": "notice",         "title": "...", "description": "...", "variant": "..."}
  {"type": "emergency",      "success": true, ...}
  {"type": "smart_home",     "success": true, "message": "...", "action": "..."}
  {"type": "caregiver_alert","success": true, "sent": 2, "total": 2}
  {"type": "assistant",      "text": "...", "kind": "..."}
  {"type": "tick",           "timestamp_ms": ..., "dialog_open": false}   ← heartbeat

Client messages (JSON) mirror the dialog endpoints:
  {"action": "key", "key": "ArrowDown"}, {"action": "select", "index": 2},
  {"action": "custom", "text": "..."}, {"action": "play", "index": 0},
  {"action": "confirm"}, {"action": "cancel"}, {"action": "emergency"},
  {"action": "transcript", "text": "..."}, {"action": "feedback", "enabled": false}
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Literal, Optional, Set

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ember import __version__
from ember.core.errors import DialogNotOpenError, EmberError, StorageError, describe_error
from ember.core.logger import get_logger
from ember.dialog.models import DisambiguationRequest
from ember.pipeline.controller import (
    ON_ASSISTANT,
    ON_CANCELLED,
    ON_CAREGIVER_ALERT,
    ON_CONFIRMED,
    ON_DIALOG_CHANGED,
    ON_DIALOG_OPENED,
    ON_EMERGENCY,
    ON_INTERPRETATION,
    ON_NOTICE,
    ON_SMART_HOME,
    ON_TRANSCRIPT,
    EmberController,
)

logger = logging.getLogger(__name__)
_log = get_logger()

# ── FastAPI app ───────────────────────────────────────────────────────────────
app = FastAPI(title="Ember", version=__version__)

# ── Shared state ──────────────────────────────────────────────────────────────
_controller: Optional[EmberController] = None
_connected_clients: Set[WebSocket] = set()

# Last-event snapshot merged into /state and sent to new WS connections
_snapshot: Dict[str, Any] = {
    "last_transcript": None,
    "last_interpretation": None,
    "last_outcome": None,
    "emergency_active": False,
}

_loop: Optional[asyncio.AbstractEventLoop] = None
_heartbeat_task: Optional[asyncio.Task] = None

_EVENT_TYPES: Dict[str, str] = {
    ON_TRANSCRIPT: "transcript",
    ON_INTERPRETATION: "interpretation",
    ON_DIALOG_OPENED: "dialog_opened",
    ON_DIALOG_CHANGED: "dialog",
    ON_CONFIRMED: "confirmed",
    ON_CANCELLED: "cancelled",
    ON_NOTICE: "notice",
    ON_EMERGENCY: "emergency",
    ON_SMART_HOME: "smart_home",
    ON_CAREGIVER_ALERT: "caregiver_alert",
    ON_ASSISTANT: "assistant",
}


# ── Request bodies ────────────────────────────────────────────────────────────

class TranscriptBody(BaseModel):
    text: str


class KeyBody(BaseModel):
    key: str


class SelectBody(BaseModel):
    index: int


class CustomBody(BaseModel):
    text: Optional[str] = None
    active: bool = True


class PlayBody(BaseModel):
    index: Optional[int] = None


class CaregiverBody(BaseModel):
    name: str
    phone: str
    relationship: Optional[str] = None


class EmergencyContactBody(BaseModel):
    phone: str
    method: Literal["call", "sms"] = "call"


class EmergencyBody(BaseModel):
    message: Optional[str] = None


class FeedbackBody(BaseModel):
    enabled: bool


# ── WebSocket helpers ─────────────────────────────────────────────────────────

def _push(msg: Dict[str, Any]) -> None:
    """Schedule a broadcast of *msg* on the server loop (callable from any thread)."""
    if _loop is None or _loop.is_closed():
        return
    asyncio.run_coroutine_threadsafe(_broadcast(msg), _loop)


async def _broadcast(msg: Dict[str, Any]) -> None:
    text = json.dumps(msg, default=str)
    dead: List[WebSocket] = []
    for ws in list(_connected_clients):
        try:
            await ws.send_text(text)
        except Exception:  # noqa: BLE001
            dead.append(ws)
    for ws in dead:
        _connected_clients.discard(ws)


# ── EventBus → WebSocket bridge ───────────────────────────────────────────────

def _forward(event: str):
    msg_type = _EVENT_TYPES[event]

    def _handler(data: Dict[str, Any]) -> None:
        if event == ON_TRANSCRIPT:
            _snapshot["last_transcript"] = data.get("text")
        elif event == ON_INTERPRETATION:
            _snapshot["last_interpretation"] = data
        elif event in (ON_CONFIRMED, ON_CANCELLED):
            _snapshot["last_outcome"] = {"type": msg_type, **data}
        elif event == ON_EMERGENCY:
            _snapshot["emergency_active"] = bool(data.get("success"))
        _push({"type": msg_type, **data})

    return _handler


def wire_controller(ctrl: EmberController) -> None:
    """Register EventBus callbacks so *ctrl* feeds the WS stream."""
    global _controller
    _controller = ctrl
    for event in _EVENT_TYPES:
        ctrl.subscribe(event, _forward(event))
    _log.info("web_app", "controller_wired", {})


def _require_controller() -> EmberController:
    if _controller is None:
        raise HTTPException(status_code=503, detail="controller not ready")
    return _controller


# ── Heartbeat ─────────────────────────────────────────────────────────────────

async def _heartbeat() -> None:
    """Push a tick message every second so the client can detect disconnects."""
    while True:
        await asyncio.sleep(1.0)
        dialog = _controller.dialog if _controller is not None else None
        _push({
            "type": "tick",
            "timestamp_ms": round(time.time() * 1000),
            "dialog_open": bool(dialog and dialog.is_open),
        })


# ── App lifecycle ─────────────────────────────────────────────────────────────

@app.on_event("startup")
async def _on_startup() -> None:
    global _loop, _heartbeat_task
    _loop = asyncio.get_running_loop()
    _heartbeat_task = asyncio.create_task(_heartbeat())
    _log.info("web_app", "startup", {})


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    global _loop, _heartbeat_task
    if _heartbeat_task is not None:
        _heartbeat_task.cancel()
        _heartbeat_task = None
    if _controller is not None:
        await _controller.shutdown()
    _loop = None
    _log.info("web_app", "shutdown", {})


@app.exception_handler(DialogNotOpenError)
async def _dialog_not_open(_request: Request, exc: DialogNotOpenError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(StorageError)
async def _storage_failed(_request: Request, exc: StorageError) -> JSONResponse:
    _log.error("web_app", "storage_failed", {"error": str(exc)})
    if _controller is not None:
        _controller.notify_error(exc, title="Could not save")
    return JSONResponse({"error": describe_error(exc)}, status_code=500)


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> JSONResponse:
    ctrl_ok = _controller is not None
    return JSONResponse({
        "status": "ok" if ctrl_ok else "controller_not_ready",
        "version": __version__,
        "clients": len(_connected_clients),
    })


@app.get("/state")
async def state() -> JSONResponse:
    ctrl = _require_controller()
    return JSONResponse({**ctrl.snapshot(), **_snapshot})


@app.post("/transcript")
async def transcript(body: TranscriptBody) -> JSONResponse:
    ctrl = _require_controller()
    result = await ctrl.handle_transcript(body.text)
    return JSONResponse(result)


# ── Dialog ──

@app.post("/dialog/open")
async def dialog_open(body: DisambiguationRequest) -> JSONResponse:
    ctrl = _require_controller()
    dialog = ctrl.open_dialog(body)
    return JSONResponse(dialog.snapshot())


def _dialog_reply(changed: bool) -> JSONResponse:
    ctrl = _require_controller()
    dialog = ctrl.dialog
    return JSONResponse({
        "ok": changed,
        "dialog": dialog.snapshot() if dialog is not None else None,
    })


@app.post("/dialog/key")
async def dialog_key(body: KeyBody) -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_key(body.key))


@app.post("/dialog/select")
async def dialog_select(body: SelectBody) -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_select(body.index))


@app.post("/dialog/custom")
async def dialog_custom(body: CustomBody) -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_custom(body.text, body.active))


@app.post("/dialog/play")
async def dialog_play(body: PlayBody) -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_play(body.index))


@app.post("/dialog/confirm")
async def dialog_confirm() -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_confirm())


@app.post("/dialog/cancel")
async def dialog_cancel() -> JSONResponse:
    return _dialog_reply(_require_controller().dialog_cancel())


# ── Settings ──

@app.get("/settings")
async def get_settings() -> JSONResponse:
    return JSONResponse(_require_controller().settings.model_dump())


@app.patch("/settings")
async def patch_settings(changes: Dict[str, Any]) -> JSONResponse:
    ctrl = _require_controller()
    try:
        updated = ctrl.update_settings(**changes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return JSONResponse(updated.model_dump())


@app.delete("/settings")
async def reset_settings() -> JSONResponse:
    return JSONResponse(_require_controller().reset_settings().model_dump())


@app.put("/feedback")
async def put_feedback(body: FeedbackBody) -> JSONResponse:
    return JSONResponse({"enabled": _require_controller().set_feedback_enabled(body.enabled)})


# ── Caregivers ──

@app.get("/caregivers")
async def list_caregivers() -> JSONResponse:
    contacts = _require_controller().caregivers.contacts()
    return JSONResponse([c.model_dump() for c in contacts])


@app.post("/caregivers", status_code=201)
async def add_caregiver(body: CaregiverBody) -> JSONResponse:
    ctrl = _require_controller()
    try:
        contact = ctrl.caregivers.add(body.name, body.phone, body.relationship)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return JSONResponse(contact.model_dump(), status_code=201)


@app.delete("/caregivers/{contact_id}")
async def remove_caregiver(contact_id: int) -> JSONResponse:
    if not _require_controller().caregivers.remove(contact_id):
        raise HTTPException(status_code=404, detail="contact not found")
    return JSONResponse({"ok": True})


@app.post("/caregivers/{contact_id}/toggle")
async def toggle_caregiver(contact_id: int) -> JSONResponse:
    contact = _require_controller().caregivers.toggle(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="contact not found")
    return JSONResponse(contact.model_dump())


@app.put("/emergency-contact")
async def put_emergency_contact(body: EmergencyContactBody) -> JSONResponse:
    ctrl = _require_controller()
    try:
        contact = ctrl.caregivers.set_emergency_contact(body.phone, body.method)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return JSONResponse(contact.model_dump())


@app.post("/emergency")
async def emergency(body: Optional[EmergencyBody] = None) -> JSONResponse:
    ctrl = _require_controller()
    result = await ctrl.trigger_emergency(body.message if body else None)
    return JSONResponse(result)


# ── Statistics ──

@app.get("/corrections/stats")
async def correction_stats() -> JSONResponse:
    return JSONResponse(_require_controller().corrections.stats())


@app.get("/accuracy")
async def accuracy() -> JSONResponse:
    return JSONResponse(_require_controller().accuracy.stats())


# ── WebSocket ──

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    await ws.accept()
    _connected_clients.add(ws)

    state_payload = _controller.snapshot() if _controller is not None else {}
    await ws.send_text(json.dumps({"type": "snapshot", **state_payload, **_snapshot}, default=str))
    _log.info("web_app", "ws_connected", {"total": len(_connected_clients)})

    try:
        while True:
            msg = await ws.receive_text()
            try:
                data = json.loads(msg)
                await _handle_client_msg(data)
            except DialogNotOpenError as exc:
                await ws.send_text(json.dumps({"type": "error", "message": str(exc)}))
            except EmberError as exc:
                _log.error("web_app", "ws_action_failed", {"error": str(exc)})
                if _controller is not None:
                    _controller.notify_error(exc)
                await ws.send_text(json.dumps({"type": "error", "message": describe_error(exc)}))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.warning("Bad WS message: %s", exc)
                await ws.send_text(json.dumps({"type": "error", "message": "bad message"}))
    except WebSocketDisconnect:
        pass
    finally:
        _connected_clients.discard(ws)
        _log.info("web_app", "ws_disconnected", {"total": len(_connected_clients)})


async def _handle_client_msg(data: Dict[str, Any]) -> None:
    """Handle one browser message (dialog input, transcript, emergency)."""
    if _controller is None or not isinstance(data, dict):
        return
    action = data.get("action")
    if action == "key":
        _controller.dialog_key(str(data.get("key", "")))
    elif action == "select":
        index = data.get("index")
        if index is None:
            raise ValueError("select needs an index")
        _controller.dialog_select(int(index))
    elif action == "custom":
        _controller.dialog_custom(data.get("text"), bool(data.get("active", True)))
    elif action == "play":
        index = data.get("index")
        _controller.dialog_play(int(index) if index is not None else None)
    elif action == "confirm":
        _controller.dialog_confirm()
    elif action == "cancel":
        _controller.dialog_cancel()
    elif action == "emergency":
        await _controller.trigger_emergency(data.get("message"))
    elif action == "transcript":
        await _controller.handle_transcript(str(data.get("text", "")))
    elif action == "feedback":
        _controller.set_feedback_enabled(bool(data.get("enabled", True)))
    else:
        raise ValueError(f"unknown action: {action!r}")


# ── Public launcher ───────────────────────────────────────────────────────────

def start_web_server(
    controller: EmberController,
    host: str = "127.0.0.1",
    port: int = 7860,
) -> None:
    """
    Wire *controller* to the WS bridge and start uvicorn in the current thread.

    Blocking until the server stops; the controller is shut down with it.

    Args:
        controller: Initialised :class:`~ember.pipeline.controller.EmberController`.
        host:       Bind address (default ``127.0.0.1``).
        port:       TCP port (default ``7860``).
    """
    wire_controller(controller)

    import uvicorn  # type: ignore
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    _log.info("web_app", "server_start", {"host": host, "port": port})
    server.run()
