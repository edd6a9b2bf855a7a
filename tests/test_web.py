"""
tests/test_web.py — pytest tests for the FastAPI layer in ember.web.app.

Uses Starlette's TestClient against a controller wired with in-memory fakes
and unconfigured service clients; no network traffic leaves the process.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ember import __version__
from ember.core.config import EmberConfig
from ember.core.errors import StorageError
from ember.core.settings import SettingsStore
from ember.pipeline.controller import ON_NOTICE, EmberController
from ember.services.caregiver import CaregiverDirectory
from ember.services.interpreter import GeminiInterpreter
from ember.services.smart_home import SmartHomeController
from ember.services.telephony import TwilioClient
from ember.storage.corrections import CorrectionStore
from ember.storage.voice_vault import SecureVoiceStorage
from ember.web import app as web_app
from fakes import FakeFeedback, FakePlayer, FakeSynthesizer


@pytest.fixture
def feedback() -> FakeFeedback:
    return FakeFeedback()


@pytest.fixture
def controller(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, feedback: FakeFeedback
) -> EmberController:
    config = EmberConfig()
    ctrl = EmberController(
        config=config,
        synthesizer=FakeSynthesizer(),
        player=FakePlayer(),
        interpreter=GeminiInterpreter(config.gemini),
        telephony=TwilioClient(config.twilio),
        smart_home=SmartHomeController.from_config(config.smartthings, tmp_path / "home.json"),
        caregivers=CaregiverDirectory(tmp_path / "caregivers.json"),
        corrections=CorrectionStore(tmp_path / "corrections.json"),
        voice_storage=SecureVoiceStorage(tmp_path / "voice.json", fingerprint="test-host"),
        settings=SettingsStore(tmp_path / "settings.json"),
        feedback=feedback,
    )
    monkeypatch.setattr(web_app, "_controller", None)
    web_app.wire_controller(ctrl)
    return ctrl


@pytest.fixture
def client(controller: EmberController) -> TestClient:
    return TestClient(web_app.app)


class TestHealthAndState:

    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["version"] == __version__

    def test_controller_not_ready(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(web_app, "_controller", None)
        client = TestClient(web_app.app)
        assert client.get("/health").json()["status"] == "controller_not_ready"
        assert client.get("/state").status_code == 503

    def test_state(self, client: TestClient) -> None:
        body = client.get("/state").json()
        assert body["dialog"] is None
        assert body["services"]["interpreter"] is False
        assert body["settings"]["font_size"] == "medium"
        assert "last_transcript" in body

    def test_blank_transcript(self, client: TestClient) -> None:
        assert client.post("/transcript", json={"text": "  "}).json() == {"route": "ignored"}


class TestDialogEndpoints:

    @pytest.mark.parametrize("path, body", [
        ("/dialog/key", {"key": "Enter"}),
        ("/dialog/select", {"index": 0}),
        ("/dialog/custom", {"text": "hi"}),
        ("/dialog/play", {}),
        ("/dialog/confirm", None),
        ("/dialog/cancel", None),
    ])
    def test_conflict_without_open_dialog(self, client: TestClient, path: str, body) -> None:
        response = client.post(path, json=body)
        assert response.status_code == 409
        assert "No disambiguation dialog is open" in response.json()["error"]

    def test_open_rejects_empty_candidates(self, client: TestClient) -> None:
        response = client.post("/dialog/open", json={"original_message": "x", "alternatives": []})
        assert response.status_code == 422


class TestSettingsEndpoints:

    def test_get_patch_reset(self, client: TestClient, feedback: FakeFeedback) -> None:
        assert client.get("/settings").json()["voice_speed"] == 1.0
        patched = client.patch("/settings", json={"voice_speed": 1.25, "high_contrast": True})
        assert patched.status_code == 200
        assert patched.json()["high_contrast"] is True
        assert feedback.voice_speed == 1.25
        assert client.delete("/settings").json()["high_contrast"] is False

    def test_invalid_patch(self, client: TestClient) -> None:
        assert client.patch("/settings", json={"voice_speed": 5}).status_code == 422
        assert client.patch("/settings", json={"bogus": 1}).status_code == 422

    def test_toggle_feedback(self, client: TestClient, feedback: FakeFeedback) -> None:
        assert client.get("/state").json()["feedback_enabled"] is True
        assert client.put("/feedback", json={"enabled": False}).json() == {"enabled": False}
        assert feedback.enabled is False
        assert client.get("/state").json()["feedback_enabled"] is False
        assert client.put("/feedback", json={}).status_code == 422


class TestCaregiverEndpoints:

    def test_crud(self, client: TestClient) -> None:
        created = client.post(
            "/caregivers", json={"name": "Sam", "phone": "(555) 123-4567", "relationship": "son"}
        )
        assert created.status_code == 201
        contact = created.json()
        assert contact["phone"] == "5551234567"
        assert [c["name"] for c in client.get("/caregivers").json()] == ["Sam"]

        toggled = client.post(f"/caregivers/{contact['id']}/toggle")
        assert toggled.json()["active"] is False

        assert client.delete(f"/caregivers/{contact['id']}").json() == {"ok": True}
        assert client.get("/caregivers").json() == []

    def test_unknown_contact(self, client: TestClient) -> None:
        assert client.delete("/caregivers/42").status_code == 404
        assert client.post("/caregivers/42/toggle").status_code == 404

    def test_invalid_contact(self, client: TestClient) -> None:
        response = client.post("/caregivers", json={"name": " ", "phone": "5551234567"})
        assert response.status_code == 422

    def test_emergency_contact_and_trigger(self, client: TestClient) -> None:
        assert client.post("/emergency").json() == {"success": False, "reason": "no_contact"}

        saved = client.put("/emergency-contact", json={"phone": "+1 555 000 1111", "method": "sms"})
        assert saved.json() == {"phone": "+15550001111", "method": "sms"}
        assert client.get("/state").json()["emergency_contact"]["method"] == "sms"

        result = client.post("/emergency", json={"message": "nee hel"}).json()
        assert result["success"] is False
        assert result["reason"] == "telephony_error"

    def test_statistics(self, client: TestClient, controller: EmberController) -> None:
        controller.corrections.store("wan coff", "I want coffee")
        assert client.get("/corrections/stats").json()["total_corrections"] == 1
        assert client.get("/accuracy").json()["total_interpretations"] == 0

    def test_storage_failure_reports_notice(
        self, client: TestClient, controller: EmberController, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        notices: list[dict] = []
        controller.subscribe(ON_NOTICE, notices.append)

        def _fail(*_args, **_kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(controller.caregivers, "add", _fail)
        res = client.post("/caregivers", json={"name": "Sam", "phone": "5551234567"})
        assert res.status_code == 500
        assert res.json() == {"error": "Your changes could not be saved. Please try again."}
        assert [n["title"] for n in notices] == ["Could not save"]


class TestWebSocket:

    def test_snapshot_then_error_replies(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "snapshot"
            assert first["dialog"] is None

            ws.send_json({"action": "confirm"})
            assert ws.receive_json() == {
                "type": "error", "message": "No disambiguation dialog is open",
            }

            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "bad message"}

            ws.send_json({"action": "dance"})
            assert ws.receive_json()["type"] == "error"

    def test_select_without_index_keeps_socket_open(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_json({"action": "select"})
            assert ws.receive_json() == {"type": "error", "message": "bad message"}

            ws.send_json({"action": "select", "index": 0})
            assert ws.receive_json() == {
                "type": "error", "message": "No disambiguation dialog is open",
            }

    def test_feedback_action(self, client: TestClient, feedback: FakeFeedback) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "feedback", "enabled": False})
            ws.send_json({"action": "confirm"})
            assert ws.receive_json()["type"] == "error"
        assert feedback.enabled is False
