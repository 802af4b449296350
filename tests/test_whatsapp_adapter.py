import asyncio
import hashlib
import hmac
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from relay.schemas.webhook import InboundMessage
from relay.services.adapters.whatsapp import WhatsAppSender, extract_message_content, verify_signature
from relay.services.result import CONFIG_ERROR, NETWORK_ERROR, UPSTREAM_ERROR

USER = "15550001111"


def _patched_post(response=None, side_effect=None):
    client = MagicMock()
    client.post = AsyncMock(return_value=response, side_effect=side_effect)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=client)
    context.__aexit__ = AsyncMock(return_value=False)
    return patch("relay.services.adapters.whatsapp.httpx.AsyncClient", return_value=context), client


def _response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = "error body"
    response.json.return_value = json_data
    return response


def _sender(make_config, **values):
    values.setdefault("whatsapp_phone_number_id", "phone-1")
    values.setdefault("whatsapp_access_token", "token-1")
    return WhatsAppSender(make_config(**values), graph_url="https://graph.test", api_version="v21.0", timeout_seconds=5)


def _message(**data):
    return InboundMessage.model_validate({"from": USER, "id": "wamid.in", **data})


class TestSendText:
    def test_sends_text_message(self, make_config):
        sender = _sender(make_config)
        patcher, client = _patched_post(_response(json_data={"messages": [{"id": "wamid.out"}]}))
        with patcher:
            result = asyncio.run(sender.send_text(USER, "Hello there"))

        assert result.ok is True
        assert result.value == "wamid.out"
        assert client.post.call_args[0][0] == "https://graph.test/v21.0/phone-1/messages"
        assert client.post.call_args[1]["headers"]["Authorization"] == "Bearer token-1"
        assert client.post.call_args[1]["json"] == {
            "messaging_product": "whatsapp",
            "to": USER,
            "type": "text",
            "text": {"body": "Hello there"},
        }

    def test_template_mode_puts_reply_in_body_parameter(self, make_config):
        sender = _sender(make_config, send_mode="template", template_name="ai_reply", template_language="es")

        payload = sender.build_payload(USER, "Hola")

        assert payload["type"] == "template"
        assert payload["template"]["name"] == "ai_reply"
        assert payload["template"]["language"] == {"code": "es"}
        assert payload["template"]["components"][0]["parameters"] == [{"type": "text", "text": "Hola"}]

    def test_template_mode_without_name_sends_text(self, make_config):
        sender = _sender(make_config, send_mode="template")
        assert sender.build_payload(USER, "Hola")["type"] == "text"

    def test_missing_credentials_is_config_error(self, make_config):
        sender = WhatsAppSender(make_config())
        result = asyncio.run(sender.send_text(USER, "Hello"))
        assert result.ok is False
        assert result.error_code == CONFIG_ERROR

    def test_api_error_is_upstream_error(self, make_config):
        sender = _sender(make_config)
        patcher, _ = _patched_post(_response(status_code=401))
        with patcher:
            result = asyncio.run(sender.send_text(USER, "Hello"))

        assert result.ok is False
        assert result.error_code == UPSTREAM_ERROR
        assert "401" in result.error

    def test_transport_error_is_network_error(self, make_config):
        sender = _sender(make_config)
        patcher, _ = _patched_post(side_effect=httpx.ConnectError("unreachable"))
        with patcher:
            result = asyncio.run(sender.send_text(USER, "Hello"))

        assert result.ok is False
        assert result.error_code == NETWORK_ERROR


class TestMarkAsRead:
    def test_swallows_errors(self, make_config):
        sender = _sender(make_config)
        patcher, _ = _patched_post(side_effect=httpx.ReadTimeout("slow"))
        with patcher:
            assert asyncio.run(sender.mark_as_read("wamid.in")) is False

    def test_posts_read_status(self, make_config):
        sender = _sender(make_config)
        patcher, client = _patched_post(_response(json_data={"success": True}))
        with patcher:
            assert asyncio.run(sender.mark_as_read("wamid.in")) is True

        assert client.post.call_args[1]["json"] == {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": "wamid.in",
        }


class TestVerifySignature:
    def _sign(self, secret, body):
        return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        body = b'{"object":"whatsapp_business_account"}'
        assert verify_signature("app-secret", self._sign("app-secret", body), body) is True

    def test_tampered_body(self):
        signature = self._sign("app-secret", b"original")
        assert verify_signature("app-secret", signature, b"tampered") is False

    def test_missing_or_malformed_header(self):
        assert verify_signature("app-secret", None, b"{}") is False
        assert verify_signature("app-secret", "md5=abc", b"{}") is False

    def test_no_secret_accepts(self):
        assert verify_signature(None, None, b"{}") is True


class TestExtractMessageContent:
    @pytest.mark.parametrize(
        "data, expected",
        [
            ({"type": "text", "text": {"body": "Hello"}}, "Hello"),
            ({"type": "text", "text": {}}, ""),
            ({"type": "image", "image": {"caption": "my cat"}}, "my cat"),
            ({"type": "image", "image": {"id": "media-1"}}, "[Image received]"),
            ({"type": "audio", "audio": {"id": "media-2"}}, "[Audio message received]"),
            ({"type": "video", "video": {"id": "media-3"}}, "[Video received]"),
            ({"type": "document", "document": {"filename": "menu.pdf"}}, "[Document: menu.pdf]"),
            ({"type": "document", "document": {}}, "[Document: unknown]"),
            ({"type": "location", "location": {"name": "Office"}}, "[Location: Office]"),
            ({"type": "location", "location": {"latitude": 40.4, "longitude": -3.7}}, "[Location: 40.4, -3.7]"),
            ({"type": "interactive", "interactive": {"button_reply": {"title": "Yes"}}}, "Yes"),
            ({"type": "interactive", "interactive": {"list_reply": {"title": "Option B"}}}, "Option B"),
            ({"type": "interactive", "interactive": {}}, "[Interactive response]"),
            ({"type": "sticker"}, "[sticker message]"),
        ],
    )
    def test_content_by_type(self, data, expected):
        assert extract_message_content(_message(**data)) == expected
