"""
Tests for the Evolution API client and its webhook parsing.
"""

import json
from uuid import UUID

import httpx
import pytest

from whatsapp_connector.clients.base import (
    ClientAuthFailure,
    ClientDisconnected,
    ClientError,
    ClientReady,
    InboundMessage,
    MessageReceived,
    OutgoingContent,
    PairingCodeIssued,
)
from whatsapp_connector.clients.evolution import EvolutionMessagingClient
from whatsapp_connector.clients.evolution.client import instance_name_for, session_id_from_instance
from whatsapp_connector.clients.evolution.webhook import (
    extract_instance_name,
    normalize_event_name,
    parse_client_event,
    parse_inbound_message,
    validate_api_key,
)

SESSION_ID = UUID("aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee")
INSTANCE = f"wa_{SESSION_ID}"


@pytest.fixture
def text_message_webhook():
    """Sample Evolution API webhook for a text message."""
    return {
        "event": "messages.upsert",
        "instance": INSTANCE,
        "data": {
            "key": {
                "id": "msg_123",
                "remoteJid": "447911123456@s.whatsapp.net",
                "fromMe": False,
            },
            "message": {"conversation": "Is the order ready?"},
            "messageType": "conversation",
            "messageTimestamp": 1704067200,
        },
    }


@pytest.fixture
def image_message_webhook():
    """Sample Evolution API webhook for an image with a caption."""
    return {
        "event": "MESSAGES_UPSERT",
        "instance": INSTANCE,
        "data": {
            "key": {"id": "msg_img", "remoteJid": "447911123456@s.whatsapp.net"},
            "message": {
                "imageMessage": {"mimetype": "image/png", "caption": "Receipt"},
            },
            "messageType": "imageMessage",
        },
    }


class EvolutionRecorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responses=None):
        self.requests: list[httpx.Request] = []
        self.responses = responses or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, (status, body) in self.responses.items():
            if request.url.path.startswith(prefix):
                return httpx.Response(status, json=body)
        return httpx.Response(200, json={})

    def json_of(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


def make_client(recorder: EvolutionRecorder) -> tuple[EvolutionMessagingClient, list]:
    client = EvolutionMessagingClient(
        session_id=SESSION_ID,
        api_url="http://evolution.test",
        api_key="evo-key",
        webhook_url="http://connector.test/webhook/evolution",
    )
    client.manager._client = httpx.AsyncClient(
        transport=httpx.MockTransport(recorder),
        headers={"apikey": "evo-key"},
    )
    events = []
    client.bind(events.append)
    return client, events


class TestWebhookHelpers:
    """Tests for Evolution webhook helper functions."""

    def test_normalize_event_name(self):
        assert normalize_event_name("QRCODE_UPDATED") == "qrcode.updated"
        assert normalize_event_name("connection.update") == "connection.update"
        assert normalize_event_name(None) == ""

    def test_extract_instance_name(self, text_message_webhook):
        assert extract_instance_name(text_message_webhook) == INSTANCE
        assert extract_instance_name({}) is None

    def test_validate_api_key(self):
        """Test API key validation."""
        assert validate_api_key({"apikey": "test-key"}, "test-key") is True
        assert validate_api_key({"apikey": "test-key"}, "wrong-key") is False

    def test_validate_api_key_bearer(self):
        """Test API key validation with Bearer token."""
        assert validate_api_key({"Authorization": "Bearer test-key"}, "test-key") is True
        assert validate_api_key({"Authorization": "Bearer other"}, "test-key") is False

    def test_instance_names(self):
        assert instance_name_for(SESSION_ID, "wa_") == INSTANCE
        assert session_id_from_instance(INSTANCE, "wa_") == SESSION_ID
        assert session_id_from_instance("other_instance", "wa_") is None
        assert session_id_from_instance("wa_not-a-uuid", "wa_") is None
        assert session_id_from_instance(None, "wa_") is None


class TestParseClientEvent:
    """Tests for webhook -> client event conversion."""

    def test_qr_code(self):
        event = parse_client_event({"event": "QRCODE_UPDATED", "data": {"qrcode": {"code": "2@abc"}}})
        assert event == PairingCodeIssued(code="2@abc")

    def test_qr_code_without_code(self):
        assert parse_client_event({"event": "qrcode.updated", "data": {}}) is None

    def test_connection_open(self):
        event = parse_client_event(
            {"event": "connection.update", "data": {"state": "open", "wuid": "16502530000@s.whatsapp.net"}}
        )
        assert event == ClientReady(identity="16502530000@s.whatsapp.net")

    def test_connection_open_falls_back_to_sender(self):
        event = parse_client_event(
            {"event": "connection.update", "data": {"state": "open"}, "sender": "16502530000@s.whatsapp.net"}
        )
        assert event.identity == "16502530000@s.whatsapp.net"

    def test_connection_close(self):
        event = parse_client_event({"event": "connection.update", "data": {"state": "close", "statusReason": 428}})
        assert isinstance(event, ClientDisconnected)
        assert event.reason == "428"

    def test_logged_out_is_auth_failure(self):
        event = parse_client_event({"event": "connection.update", "data": {"state": "close", "statusReason": 401}})
        assert isinstance(event, ClientAuthFailure)

    def test_connecting_ignored(self):
        assert parse_client_event({"event": "connection.update", "data": {"state": "connecting"}}) is None

    def test_untracked_event_ignored(self):
        assert parse_client_event({"event": "messages.update", "data": {}}) is None

    def test_text_message(self, text_message_webhook):
        event = parse_client_event(text_message_webhook)

        assert isinstance(event, MessageReceived)
        assert event.message.message_id == "msg_123"
        assert event.message.from_address == "447911123456@s.whatsapp.net"
        assert event.message.body == "Is the order ready?"
        assert event.message.has_media is False
        assert event.message.timestamp.year == 2024

    def test_media_message(self, image_message_webhook):
        event = parse_client_event(image_message_webhook)

        assert event.message.has_media is True
        assert event.message.media_mime == "image/png"
        assert event.message.body == "Receipt"

    def test_own_messages_dropped(self, text_message_webhook):
        text_message_webhook["data"]["key"]["fromMe"] = True
        assert parse_client_event(text_message_webhook) is None

    def test_batched_messages(self, text_message_webhook):
        """Test the v1 payload shape with a messages list."""
        message = parse_inbound_message({"messages": [text_message_webhook["data"]]})
        assert message.message_id == "msg_123"

    def test_extended_text(self):
        message = parse_inbound_message(
            {
                "key": {"id": "m1", "remoteJid": "447911123456@s.whatsapp.net"},
                "message": {"extendedTextMessage": {"text": "See https://example.com"}},
                "messageType": "extendedTextMessage",
            }
        )
        assert message.body == "See https://example.com"


class TestEvolutionMessagingClient:
    """Tests for EvolutionMessagingClient against a mocked Evolution API."""

    @pytest.mark.asyncio
    async def test_initialize_creates_instance(self):
        recorder = EvolutionRecorder({"/instance/create": (201, {"qrcode": {"code": "2@first"}})})
        client, events = make_client(recorder)

        await client.initialize()

        assert recorder.requests[0].url.path == "/instance/create"
        body = recorder.json_of(0)
        assert body["instanceName"] == INSTANCE
        assert body["webhook"]["url"] == "http://connector.test/webhook/evolution"
        assert events == [PairingCodeIssued(code="2@first")]

    @pytest.mark.asyncio
    async def test_initialize_reconnects_existing_instance(self):
        recorder = EvolutionRecorder(
            {
                "/instance/create": (403, {"error": "instance already in use"}),
                f"/instance/connect/{INSTANCE}": (200, {"code": "2@again"}),
            }
        )
        client, events = make_client(recorder)

        await client.initialize()

        assert [r.url.path for r in recorder.requests] == ["/instance/create", f"/instance/connect/{INSTANCE}"]
        assert events == [PairingCodeIssued(code="2@again")]

    @pytest.mark.asyncio
    async def test_initialize_failure_raises(self):
        recorder = EvolutionRecorder({"/instance/create": (500, {"error": "boom"})})
        client, _ = make_client(recorder)

        with pytest.raises(ClientError) as exc_info:
            await client.initialize()
        assert exc_info.value.code == "500"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_send_text(self):
        recorder = EvolutionRecorder({"/message/sendText": (201, {"key": {"id": "EVO123"}})})
        client, _ = make_client(recorder)

        sent = await client.send_message("447911123456@c.us", OutgoingContent(body="Hello"))

        assert sent.message_id == "EVO123"
        assert recorder.requests[0].url.path == f"/message/sendText/{INSTANCE}"
        assert recorder.json_of(0) == {"number": "447911123456", "text": "Hello"}

    @pytest.mark.asyncio
    async def test_send_data_url_media(self):
        recorder = EvolutionRecorder({"/message/sendMedia": (201, {"key": {"id": "EVO456"}})})
        client, _ = make_client(recorder)

        await client.send_message(
            "447911123456@c.us",
            OutgoingContent(body="Receipt", media_ref="data:image/png;base64,iVBORw0KGgo="),
        )

        body = recorder.json_of(0)
        assert body["mediatype"] == "image"
        assert body["mimetype"] == "image/png"
        assert body["media"] == "iVBORw0KGgo="
        assert body["caption"] == "Receipt"

    @pytest.mark.asyncio
    async def test_send_rejected(self):
        recorder = EvolutionRecorder({"/message/sendText": (400, {"message": "number not on WhatsApp"})})
        client, _ = make_client(recorder)

        with pytest.raises(ClientError) as exc_info:
            await client.send_message("447911123456@c.us", OutgoingContent(body="Hello"))
        assert "number not on WhatsApp" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_download_media(self):
        recorder = EvolutionRecorder(
            {"/chat/fetchBase64FromMediaMessage": (200, {"base64": "AAAA", "mimetype": "image/jpeg"})}
        )
        client, _ = make_client(recorder)
        message = InboundMessage(message_id="msg_img", from_address="447911123456@c.us", has_media=True)

        media = await client.download_media(message)

        assert media.data == "AAAA"
        assert media.mimetype == "image/jpeg"

    @pytest.mark.asyncio
    async def test_webhook_ready_fetches_owner(self):
        recorder = EvolutionRecorder(
            {
                "/instance/fetchInstances": (
                    200,
                    [{"instance": {"instanceName": INSTANCE, "owner": "16502530000@s.whatsapp.net"}}],
                )
            }
        )
        client, events = make_client(recorder)

        await client.handle_webhook({"event": "connection.update", "instance": INSTANCE, "data": {"state": "open"}})

        assert events == [ClientReady(identity="16502530000@s.whatsapp.net")]

    @pytest.mark.asyncio
    async def test_webhook_ready_when_owner_lookup_fails(self):
        """Test that a failed owner lookup still reports the instance as connected."""
        recorder = EvolutionRecorder({"/instance/fetchInstances": (500, {"error": "boom"})})
        client, events = make_client(recorder)

        await client.handle_webhook({"event": "connection.update", "instance": INSTANCE, "data": {"state": "open"}})

        assert events == [ClientReady(identity=None)]

    @pytest.mark.asyncio
    async def test_destroy_logs_out_and_deletes(self):
        recorder = EvolutionRecorder({"/instance/logout": (404, {"error": "not connected"})})
        client, _ = make_client(recorder)

        await client.destroy()

        assert [r.url.path for r in recorder.requests] == [
            f"/instance/logout/{INSTANCE}",
            f"/instance/delete/{INSTANCE}",
        ]
