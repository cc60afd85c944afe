from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from bazzeye.main import create_app


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as client:
        yield client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_connect_reports_session_status(client):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {
            "type": "auth:status",
            "authenticated": True,
            "elevated": False,
            "dashboardPasswordSet": False,
            "elevationPasswordSet": False,
            "elevationOffered": False,
        }


def test_locked_dashboard_login_flow(client, vault):
    vault.set_dashboard_password("pw")

    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["authenticated"] is False

        ws.send_json({"type": "auth:login", "password": "nope"})
        assert ws.receive_json()["type"] == "auth:login-fail"

        ws.send_json({"type": "auth:login", "password": "pw"})
        assert ws.receive_json() == {"type": "auth:login-success"}
        assert ws.receive_json()["authenticated"] is True

        ws.send_json({"type": "auth:logout"})
        assert ws.receive_json()["authenticated"] is False


def test_elevation_password_scenario(client):
    with client.websocket_connect("/ws") as first:
        first.receive_json()
        first.send_json({"type": "auth:request-elevate"})
        assert first.receive_json()["elevated"] is True

        first.send_json({"type": "auth:set-password", "tier": "elevation", "newPassword": "abc"})
        assert first.receive_json() == {"type": "auth:set-password-success", "tier": "elevation"}
        assert first.receive_json()["elevationPasswordSet"] is True

    with client.websocket_connect("/ws") as second:
        second.receive_json()
        second.send_json({"type": "auth:request-elevate"})
        assert second.receive_json() == {"type": "auth:require-password"}

        second.send_json({"type": "auth:verify-elevate", "password": "wrong"})
        assert second.receive_json()["type"] == "auth:verify-fail"

        second.send_json({"type": "auth:verify-elevate", "password": "abc"})
        assert second.receive_json() == {"type": "auth:verify-success"}
        assert second.receive_json()["elevated"] is True

        second.send_json({"type": "auth:revoke-elevate"})
        assert second.receive_json()["elevated"] is False


def test_set_password_errors_are_typed(client, vault):
    vault.set_dashboard_password("pw")

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "auth:login", "password": "pw"})
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"type": "auth:set-password", "tier": "dashboard", "newPassword": "x", "oldPassword": "bad"})
        reply = ws.receive_json()
        assert reply["type"] == "auth:set-password-error"
        assert reply["code"] == "wrong_old_password"

        ws.send_json({"type": "auth:set-password", "tier": "dashboard", "newPassword": "", "oldPassword": "pw"})
        assert ws.receive_json()["code"] == "confirmation_required"
        assert vault.dashboard_password_set is True

        ws.send_json({
            "type": "auth:set-password",
            "tier": "dashboard",
            "newPassword": "",
            "oldPassword": "pw",
            "confirmUnprotected": True,
        })
        assert ws.receive_json()["type"] == "auth:set-password-success"
        assert vault.dashboard_password_set is False


def test_privileged_action_without_elevation_is_rejected_visibly(client, tmp_path):
    target = tmp_path / "keep.txt"
    target.write_text("data")

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "files:delete", "path": str(target)})
        reply = ws.receive_json()

    assert reply["type"] == "files:error"
    assert reply["code"] == "not_elevated"
    assert target.exists()


def test_elevated_delete_and_create(client, tmp_path):
    doomed = tmp_path / "old; touch pwned"
    doomed.write_text("data")
    folder = tmp_path / "new folder"
    created = folder / "notes.txt"

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "auth:request-elevate"})
        ws.receive_json()

        ws.send_json({"type": "files:delete", "path": str(doomed)})
        assert ws.receive_json()["status"] == "ok"

        ws.send_json({"type": "files:create-folder", "path": str(folder)})
        assert ws.receive_json()["operation"] == "create-folder"

        ws.send_json({"type": "files:create-file", "path": str(created)})
        assert ws.receive_json()["status"] == "ok"

    assert not doomed.exists()
    assert not (tmp_path / "pwned").exists()
    assert created.is_file()


def test_system_control_outside_allow_list_reports_misconfiguration(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "auth:request-elevate"})
        ws.receive_json()

        ws.send_json({"type": "system:control", "action": "reboot"})
        reply = ws.receive_json()

    assert reply["type"] == "system:error"
    assert reply["code"] == "escalation_misconfigured"


def test_bad_messages_get_error_replies(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"type": "nope:nothing"})
        assert ws.receive_json()["code"] == "unknown_message"

        ws.send_json({"type": "files:delete", "path": "relative/path"})
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "system:control", "action": "format-disk"})
        assert ws.receive_json()["code"] == "invalid_message"


def test_non_json_frames_keep_the_connection_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_text("{not json")
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "auth:status"})
        assert ws.receive_json()["type"] == "auth:status"
