"""Operator device endpoints (/api/devices)."""

from unittest.mock import MagicMock, patch

import pytest

from helpers import ADMIN_KEY
from wabridge.whatsapp.provider_client import ProviderError, ProviderResponse

ADMIN = {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def provider():
    client = MagicMock()
    client.create_session.return_value = ProviderResponse(200, {"success": True})
    with patch("wabridge.services.sessions.ProviderClient", return_value=client):
        yield client


class TestAdminGuard:
    def test_requires_admin_key(self, client, store):
        assert client.get("/api/devices").status_code == 401
        assert client.get("/api/devices", headers={"X-Admin-Key": "wrong"}).status_code == 401


class TestCreateDevice:
    def test_create_returns_full_credentials(self, client, store, provider):
        response = client.post(
            "/api/devices",
            headers=ADMIN,
            json={"device_name": "  Sales  ", "webhook_url": "https://x.io/hook"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["device_name"] == "Sales"
        assert data["status"] == "disconnected"
        assert data["api_key"] == store.devices[data["id"]].api_key
        assert data["device_token"].startswith("dev_")

    @pytest.mark.parametrize(
        "payload",
        [
            {"device_name": "ab"},
            {"device_name": "   abc   ", "webhook_url": "not a url"},
            {"device_name": "Sales", "unexpected": 1},
            {},
        ],
    )
    def test_validation_errors_are_400(self, client, store, provider, payload):
        response = client.post("/api/devices", headers=ADMIN, json=payload)
        assert response.status_code == 400
        assert response.json()["success"] is False
        provider.create_session.assert_not_called()

    def test_taken_session_id_is_400(self, client, store, provider):
        store.add_device(session_id="wa_taken")
        response = client.post(
            "/api/devices", headers=ADMIN, json={"device_name": "Sales", "session_id": "wa_taken"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Session ID already exists"

    def test_provider_rejection_is_502(self, client, store, provider):
        provider.create_session.return_value = ProviderResponse(
            500, {"success": False, "error": "engine busy"}
        )
        response = client.post("/api/devices", headers=ADMIN, json={"device_name": "Sales"})
        assert response.status_code == 502
        assert "engine busy" in response.json()["error"]

    def test_provider_unreachable_is_502(self, client, store, provider):
        provider.create_session.side_effect = ProviderError("down")
        response = client.post("/api/devices", headers=ADMIN, json={"device_name": "Sales"})
        assert response.status_code == 502
        assert response.json()["error"] == "Provider unavailable"


class TestReadUpdateDelete:
    def test_list_masks_api_key(self, client, store):
        device = store.add_device()
        store.add_device(status="inactive")

        response = client.get("/api/devices", headers=ADMIN)

        body = response.json()
        assert body["total"] == 1
        assert body["data"][0]["id"] == device.id
        assert body["data"][0]["api_key"] != device.api_key
        assert "*" in body["data"][0]["api_key"]
        assert "device_token" not in body["data"][0]

    def test_get_missing_or_retired_is_404(self, client, store):
        retired = store.add_device(status="inactive")
        assert client.get("/api/devices/999", headers=ADMIN).status_code == 404
        response = client.get(f"/api/devices/{retired.id}", headers=ADMIN)
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Device not found"}

    def test_patch_updates_fields(self, client, store):
        device = store.add_device(webhook_url="https://old.io/h")
        response = client.patch(
            f"/api/devices/{device.id}",
            headers=ADMIN,
            json={"device_name": "Renamed", "webhook_url": ""},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["device_name"] == "Renamed"
        assert data["webhook_url"] is None

    def test_patch_rejects_empty_name(self, client, store):
        device = store.add_device()
        response = client.patch(f"/api/devices/{device.id}", headers=ADMIN, json={"device_name": " "})
        assert response.status_code == 400

    def test_patch_rejects_bad_url(self, client, store):
        device = store.add_device()
        response = client.patch(
            f"/api/devices/{device.id}", headers=ADMIN, json={"webhook_url": "ftp://x"}
        )
        assert response.status_code == 400

    def test_delete_retires(self, client, store, provider):
        device = store.add_device()
        provider.disconnect_session.return_value = ProviderResponse(200, {})

        response = client.delete(f"/api/devices/{device.id}", headers=ADMIN)

        assert response.status_code == 200
        assert store.devices[device.id].status == "inactive"
        assert client.get(f"/api/devices/{device.id}", headers=ADMIN).status_code == 404


class TestSessionProxyEndpoints:
    def test_connect(self, client, store, provider):
        device = store.add_device()
        provider.connect_session.return_value = ProviderResponse(200, {"success": True})
        response = client.post(f"/api/devices/{device.id}/connect", headers=ADMIN)
        assert response.status_code == 200
        assert store.devices[device.id].status == "connecting"

    def test_connect_provider_failure(self, client, store, provider):
        device = store.add_device()
        provider.connect_session.return_value = ProviderResponse(400, {"error": "Already connected"})
        response = client.post(f"/api/devices/{device.id}/connect", headers=ADMIN)
        assert response.status_code == 502
        assert "Already connected" in response.json()["error"]

    def test_disconnect(self, client, store, provider):
        device = store.add_device(status="connected")
        provider.disconnect_session.return_value = ProviderResponse(200, {})
        response = client.post(f"/api/devices/{device.id}/disconnect", headers=ADMIN)
        assert response.status_code == 200
        assert store.devices[device.id].status == "disconnected"

    def test_status(self, client, store, provider):
        device = store.add_device()
        provider.get_session_status.return_value = ProviderResponse(
            200, {"data": {"state": "QR_GENERATED"}}
        )
        response = client.get(f"/api/devices/{device.id}/status", headers=ADMIN)
        body = response.json()
        assert body["status"] == "connecting"
        assert body["node_status"] == "QR_GENERATED"

    def test_qr(self, client, store, provider):
        device = store.add_device()
        provider.get_qr_code.return_value = ProviderResponse(200, {"data": {"qr": "2@abc"}})
        response = client.get(f"/api/devices/{device.id}/qr", headers=ADMIN)
        assert response.json() == {"success": True, "qr_code": "2@abc", "qr_url": None}
