"""Tests for device lifecycle and outbound sends (provider mocked)."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from wabridge.services import sessions
from wabridge.services.sessions import (
    InvalidRecipientError,
    MediaFetchError,
    ProviderRejectedError,
    SessionIdTakenError,
)
from wabridge.whatsapp.provider_client import ProviderError, ProviderResponse

OK = ProviderResponse(200, {"success": True, "data": {"messageId": "PM1"}})


@pytest.fixture
def provider():
    """ProviderClient mock returned by sessions._client()."""
    client = MagicMock()
    with patch("wabridge.services.sessions.ProviderClient", return_value=client) as cls:
        client.cls = cls
        yield client


class TestCreateDevice:
    def test_creates_device_and_session(self, store, provider):
        provider.create_session.return_value = ProviderResponse(200, {"success": True})

        device = sessions.create_device(device_name="Sales", webhook_url="https://x.io/h")

        assert device.id in store.devices
        assert device.status == "disconnected"
        assert device.api_key.startswith("wa_")
        assert device.device_token.startswith("dev_")
        assert device.session_id.startswith("wa_")
        provider.create_session.assert_called_once_with(device.session_id, None)
        provider.cls.assert_called_with(api_key=device.api_key)

    def test_explicit_session_id(self, store, provider):
        provider.create_session.return_value = ProviderResponse(200, {"success": True})
        device = sessions.create_device(device_name="Sales", session_id="custom_1")
        assert device.session_id == "custom_1"

    def test_taken_session_id(self, store, provider):
        store.add_device(session_id="custom_1")
        with pytest.raises(SessionIdTakenError):
            sessions.create_device(device_name="Sales", session_id="custom_1")
        provider.create_session.assert_not_called()

    def test_invalid_webhook_url(self, store, provider):
        with pytest.raises(ValueError, match="Invalid webhook URL"):
            sessions.create_device(device_name="Sales", webhook_url="ftp://x")

    def test_provider_rejection_retires_device(self, store, provider):
        provider.create_session.return_value = ProviderResponse(
            409, {"success": False, "error": "Session exists"}
        )

        with pytest.raises(ProviderRejectedError, match="Session exists") as exc_info:
            sessions.create_device(device_name="Sales")

        assert exc_info.value.status_code == 409
        (device,) = store.devices.values()
        assert device.status == "inactive"

    def test_provider_unreachable_retires_device(self, store, provider):
        provider.create_session.side_effect = ProviderError("down")
        with pytest.raises(ProviderError):
            sessions.create_device(device_name="Sales")
        (device,) = store.devices.values()
        assert device.status == "inactive"


class TestSessionProxy:
    def test_connect_sets_connecting(self, store, provider):
        device = store.add_device()
        provider.connect_session.return_value = ProviderResponse(200, {"success": True})
        sessions.connect_device(device)
        assert store.devices[device.id].status == "connecting"

    def test_connect_rejected_leaves_status(self, store, provider):
        device = store.add_device()
        provider.connect_session.return_value = ProviderResponse(500, {"error": "boom"})
        with pytest.raises(ProviderRejectedError):
            sessions.connect_device(device)
        assert store.devices[device.id].status == "disconnected"

    def test_disconnect(self, store, provider):
        device = store.add_device(status="connected")
        provider.disconnect_session.return_value = ProviderResponse(200, {})
        sessions.disconnect_device(device)
        assert store.devices[device.id].status == "disconnected"

    def test_refresh_status_syncs_device(self, store, provider):
        device = store.add_device()
        provider.get_session_status.return_value = ProviderResponse(
            200, {"success": True, "data": {"state": "CONNECTED", "phone": "628111"}}
        )

        result = sessions.refresh_status(device)

        assert result["status"] == "connected"
        assert result["node_status"] == "CONNECTED"
        assert store.devices[device.id].status == "connected"
        assert store.devices[device.id].phone_number == "628111"

    def test_refresh_status_unknown_state_keeps_status(self, store, provider):
        device = store.add_device(status="connected")
        provider.get_session_status.return_value = ProviderResponse(
            200, {"data": {"state": "SYNCING"}}
        )
        result = sessions.refresh_status(device)
        assert result["status"] == "unknown"
        assert store.devices[device.id].status == "connected"

    def test_get_qr(self, store, provider):
        device = store.add_device()
        provider.get_qr_code.return_value = ProviderResponse(
            200, {"data": {"qr": "2@abc", "qrUrl": "https://provider/qr.png"}}
        )
        assert sessions.get_qr(device) == {"qr_code": "2@abc", "qr_url": "https://provider/qr.png"}

    def test_retire_tolerates_provider_outage(self, store, provider):
        device = store.add_device()
        provider.disconnect_session.side_effect = ProviderError("down")
        assert sessions.retire_device(device) is True
        assert store.devices[device.id].status == "inactive"
        assert sessions.retire_device(store.devices[device.id]) is False


class TestRecipients:
    def test_single_and_list(self):
        assert sessions.normalize_recipients("0812-3456-789") == ["628123456789"]
        assert sessions.normalize_recipients(["628111111111", "628222222222"]) == [
            "628111111111",
            "628222222222",
        ]

    def test_first_invalid_number_raises(self):
        with pytest.raises(InvalidRecipientError, match="Invalid phone number: 123"):
            sessions.normalize_recipients(["628111111111", "123"])

    def test_empty_list(self):
        with pytest.raises(InvalidRecipientError):
            sessions.normalize_recipients([])


class TestSends:
    def test_send_text_stores_one_row_per_recipient(self, store, provider):
        device = store.add_device()
        provider.send_text_message.return_value = OK

        result = sessions.send_text(device, ["628111111111", "628222222222"], "Hi")

        assert result["recipients"] == ["628111111111", "628222222222"]
        assert result["data"] == {"messageId": "PM1"}
        assert [m["counterpart_number"] for m in store.messages] == [
            "628111111111",
            "628222222222",
        ]
        assert all(m["status"] == "sent" for m in store.messages)
        assert all(m["provider_message_id"] == "PM1" for m in store.messages)

    def test_send_text_rejected_stores_nothing(self, store, provider):
        device = store.add_device()
        provider.send_text_message.return_value = ProviderResponse(
            400, {"success": False, "error": "Not connected"}
        )
        with pytest.raises(ProviderRejectedError, match="Not connected"):
            sessions.send_text(device, "628111111111", "Hi")
        assert store.messages == []

    def test_send_media_downloads_and_forwards(self, store, provider):
        device = store.add_device()
        provider.send_media_message.return_value = OK
        with patch("wabridge.services.sessions.fetch_media", return_value=b"img") as fetch:
            sessions.send_media(
                device, "628111111111", "https://cdn.x/a/photo.jpg", "image", "nice"
            )

        fetch.assert_called_once_with("https://cdn.x/a/photo.jpg")
        args = provider.send_media_message.call_args.args
        assert args[2] == b"img"
        assert args[3] == "image"
        assert args[4]["caption"] == "nice"
        assert args[4]["fileName"] == "photo.jpg"
        assert store.messages[0]["message_type"] == "image"
        assert store.messages[0]["media_url"] == "https://cdn.x/a/photo.jpg"

    def test_send_media_bad_type(self, store, provider):
        with pytest.raises(ValueError, match="Invalid media type"):
            sessions.send_media(store.add_device(), "628111111111", "https://x/y", "sticker")

    def test_send_location_range(self, store, provider):
        with pytest.raises(ValueError, match="Invalid coordinates"):
            sessions.send_location(store.add_device(), "628111111111", 91, 0)

    def test_send_location(self, store, provider):
        provider.send_location.return_value = OK
        sessions.send_location(store.add_device(), "628111111111", -6.2, 106.8, "Office")
        assert store.messages[0]["message_type"] == "location"
        assert '"name": "Office"' in store.messages[0]["content"]

    def test_send_contact_requires_name_and_phone(self, store, provider):
        with pytest.raises(ValueError, match="name and phone"):
            sessions.send_contact(store.add_device(), "628111111111", [{"name": "Ana"}])

    def test_send_contact(self, store, provider):
        provider.send_contact.return_value = OK
        sessions.send_contact(
            store.add_device(),
            "628111111111",
            [{"name": "Ana", "phone": "1"}, {"name": "Bo", "phone": "2"}],
        )
        assert store.messages[0]["content"] == "Ana, Bo"


class TestFetchMedia:
    def _streaming(self, chunks):
        response = MagicMock()
        response.__enter__.return_value = response
        response.iter_content.return_value = iter(chunks)
        return response

    def test_rejects_non_http_url(self):
        with pytest.raises(MediaFetchError):
            sessions.fetch_media("/var/uploads/a.jpg")

    def test_downloads(self):
        with patch(
            "wabridge.services.sessions.requests.get",
            return_value=self._streaming([b"ab", b"cd"]),
        ):
            assert sessions.fetch_media("https://cdn.x/a.jpg") == b"abcd"

    def test_size_cap(self, monkeypatch):
        monkeypatch.setenv("MAX_MEDIA_BYTES", "3")
        with patch(
            "wabridge.services.sessions.requests.get",
            return_value=self._streaming([b"ab", b"cd"]),
        ):
            with pytest.raises(MediaFetchError, match="exceeds 3 bytes"):
                sessions.fetch_media("https://cdn.x/a.jpg")

    def test_http_error(self):
        with patch(
            "wabridge.services.sessions.requests.get",
            side_effect=requests.ConnectionError("nope"),
        ):
            with pytest.raises(MediaFetchError):
                sessions.fetch_media("https://cdn.x/a.jpg")


class TestProviderHealth:
    def test_healthy(self, provider):
        provider.health_check.return_value = ProviderResponse(200, {"status": "ok"})
        assert sessions.provider_healthy() is True

    def test_unreachable(self, provider):
        provider.health_check.side_effect = ProviderError("down")
        assert sessions.provider_healthy() is False
