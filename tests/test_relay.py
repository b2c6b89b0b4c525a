"""
Tests for outbound dispatch, inbound attribution and message history.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from whatsapp_connector.clients.base import InboundMessage, MediaContent
from whatsapp_connector.clients.stub import StubMessagingClient
from whatsapp_connector.errors import (
    ClientUnavailable,
    DeliveryFailed,
    EmptyMessage,
    Forbidden,
    InvalidPhoneFormat,
    NotFound,
    SessionNotReady,
)
from whatsapp_connector.persistence.models import Message, MessageDirection, ProviderInstallation
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.service.relay import DOWNLOAD_FAILED_BODY


@pytest.fixture
def ready_session(subaccount, make_session):
    return make_session(subaccount, status="ready", phone_number="+16502530000")


@pytest.fixture
def installation(session_factory, subaccount, tenant_id, location_id):
    with session_factory() as db:
        installation = ProviderInstallation(
            user_id=tenant_id,
            subaccount_id=subaccount.id,
            location_id=location_id,
            conversation_provider_id="cp_123",
            access_token="crm-access-token",
        )
        db.add(installation)
        db.commit()
        return installation


def inbound(from_address="447911123456@c.us", body="Hello", **kwargs):
    return InboundMessage(message_id=f"in_{uuid4().hex[:8]}", from_address=from_address, body=body, **kwargs)


class TestSendMessage:
    """Tests for MessageRelay.send_message()."""

    @pytest.mark.asyncio
    async def test_send_text(self, relay, ready_session, attach_client, session_factory, tenant_id):
        client = attach_client(ready_session)

        result = await relay.send_message(tenant_id, ready_session.id, "+44 7911 123456", body="Hi there")

        assert result.recipient == "+447911123456"
        assert result.provider_message_id == client.sent_messages[0]["message_id"]
        assert client.sent_messages[0]["to"] == "447911123456@c.us"
        assert client.sent_messages[0]["body"] == "Hi there"

        with session_factory() as db:
            stored = db.get(Message, result.message_id)
            assert stored.direction == "out"
            assert stored.from_number == "+16502530000"
            assert stored.to_number == "+447911123456"
            assert stored.provider_message_id == result.provider_message_id

    @pytest.mark.asyncio
    async def test_send_media_with_caption(self, relay, ready_session, attach_client, tenant_id):
        client = attach_client(ready_session)

        await relay.send_message(
            tenant_id,
            ready_session.id,
            "+447911123456",
            body="Invoice",
            media_ref="https://example.com/invoice.pdf",
            media_mime="application/pdf",
        )

        sent = client.sent_messages[0]
        assert sent["media_ref"] == "https://example.com/invoice.pdf"
        assert sent["media_mime"] == "application/pdf"
        assert sent["body"] == "Invoice"

    @pytest.mark.asyncio
    async def test_empty_message_rejected_first(self, relay, tenant_id):
        """Test that empty content fails before any lookup."""
        with pytest.raises(EmptyMessage):
            await relay.send_message(tenant_id, uuid4(), "not even a phone", body="", media_ref=None)

    @pytest.mark.asyncio
    async def test_unknown_session(self, relay, tenant_id):
        with pytest.raises(NotFound):
            await relay.send_message(tenant_id, uuid4(), "+447911123456", body="Hi")

    @pytest.mark.asyncio
    async def test_other_tenants_session(self, relay, ready_session, attach_client, other_tenant_id):
        """Test that a session of another tenant looks like a missing one."""
        attach_client(ready_session)
        with pytest.raises(NotFound):
            await relay.send_message(other_tenant_id, ready_session.id, "+447911123456", body="Hi")

    @pytest.mark.asyncio
    async def test_session_not_ready(self, relay, subaccount, make_session, tenant_id, session_factory):
        session = make_session(subaccount, status="qr", phone_number=None)
        with pytest.raises(SessionNotReady):
            await relay.send_message(tenant_id, session.id, "+447911123456", body="Hi")

        with session_factory() as db:
            assert db.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_ready_without_live_client(self, relay, ready_session, tenant_id):
        """Test a ready row whose client is gone (e.g. after a process restart)."""
        with pytest.raises(ClientUnavailable):
            await relay.send_message(tenant_id, ready_session.id, "+447911123456", body="Hi")

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, relay, ready_session, attach_client, tenant_id):
        client = attach_client(ready_session)
        with pytest.raises(InvalidPhoneFormat):
            await relay.send_message(tenant_id, ready_session.id, "12", body="Hi")
        assert client.sent_messages == []

    @pytest.mark.asyncio
    async def test_client_rejection(self, relay, ready_session, attach_client, session_factory, tenant_id):
        attach_client(ready_session, fail_sends=True)

        with pytest.raises(DeliveryFailed):
            await relay.send_message(tenant_id, ready_session.id, "+447911123456", body="Hi")

        with session_factory() as db:
            assert db.query(Message).count() == 0


class TestSendForLocation:
    """Tests for CRM-originated sends."""

    @pytest.fixture
    def mapped_session(self, ready_session, session_factory, tenant_id, subaccount, location_id):
        with session_factory() as db:
            ConnectorRepository(db).upsert_location_map(location_id, ready_session.id, tenant_id, subaccount.id)
            db.commit()
        return ready_session

    @pytest.mark.asyncio
    async def test_text_then_attachments(self, relay, mapped_session, attach_client, location_id):
        client = attach_client(mapped_session)

        result = await relay.send_for_location(
            location_id,
            "(650) 253-0001",
            message="Your order shipped",
            attachments=["https://example.com/a.jpg", "https://example.com/b.jpg"],
        )

        assert result.sent_count == 3
        assert len(result.message_ids) == 3
        assert [m["body"] for m in client.sent_messages] == ["Your order shipped", None, None]
        assert [m["media_ref"] for m in client.sent_messages] == [
            None,
            "https://example.com/a.jpg",
            "https://example.com/b.jpg",
        ]
        assert result.provider_message_id == client.sent_messages[0]["message_id"]

    @pytest.mark.asyncio
    async def test_unmapped_location(self, relay, ready_session, location_id):
        with pytest.raises(NotFound):
            await relay.send_for_location(location_id, "+447911123456", message="Hi")

    @pytest.mark.asyncio
    async def test_empty(self, relay, location_id):
        with pytest.raises(EmptyMessage):
            await relay.send_for_location(location_id, "+447911123456", message=None, attachments=[""])


class TestHandleInbound:
    """Tests for MessageRelay.handle_inbound()."""

    @pytest.mark.asyncio
    async def test_stores_with_session_attribution(self, relay, ready_session, tenant_id, subaccount):
        client = StubMessagingClient(ready_session.id)

        stored = await relay.handle_inbound(ready_session.id, inbound(), client)

        assert stored.direction == "in"
        assert stored.user_id == tenant_id
        assert stored.subaccount_id == subaccount.id
        assert stored.from_number == "+447911123456"
        assert stored.to_number == "+16502530000"
        assert stored.body == "Hello"

    @pytest.mark.asyncio
    async def test_broadcast_ignored(self, relay, ready_session, session_factory, forwarder):
        client = StubMessagingClient(ready_session.id)

        stored = await relay.handle_inbound(ready_session.id, inbound(from_address="status@broadcast"), client)

        assert stored is None
        assert forwarder.calls == []
        with session_factory() as db:
            assert db.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_unknown_session_dropped(self, relay):
        stored = await relay.handle_inbound(uuid4(), inbound(), StubMessagingClient(uuid4()))
        assert stored is None

    @pytest.mark.asyncio
    async def test_no_installation_no_forward(self, relay, ready_session, forwarder):
        """Test that a subaccount without CRM credentials keeps messages local."""
        stored = await relay.handle_inbound(ready_session.id, inbound(), StubMessagingClient(ready_session.id))

        assert stored is not None
        assert forwarder.calls == []

    @pytest.mark.asyncio
    async def test_forwards_to_crm(self, relay, ready_session, installation, forwarder, location_id):
        stored = await relay.handle_inbound(ready_session.id, inbound(), StubMessagingClient(ready_session.id))

        assert len(forwarder.calls) == 1
        call = forwarder.calls[0]
        assert call["access_token"] == "crm-access-token"
        assert call["location_id"] == location_id
        assert call["phone"] == "+447911123456"
        assert call["message"] == "Hello"
        assert call["message_id"] == str(stored.id)

    @pytest.mark.asyncio
    async def test_incomplete_installation_not_forwarded(
        self, relay, ready_session, session_factory, installation, forwarder
    ):
        with session_factory() as db:
            row = db.get(ProviderInstallation, installation.id)
            row.conversation_provider_id = None
            db.commit()

        await relay.handle_inbound(ready_session.id, inbound(), StubMessagingClient(ready_session.id))

        assert forwarder.calls == []

    @pytest.mark.asyncio
    async def test_media_materialized(self, relay, ready_session, installation, forwarder):
        client = StubMessagingClient(ready_session.id)
        message = inbound(body=None, has_media=True, media_mime="image/png")
        client.media[message.message_id] = MediaContent.from_bytes(b"\x89PNG", "image/png")

        stored = await relay.handle_inbound(ready_session.id, message, client)

        assert stored.body == "[image/png]"
        assert stored.media_mime == "image/png"
        assert stored.media_url.startswith("data:image/png;base64,")
        assert forwarder.calls[0]["media_url"] == stored.media_url

    @pytest.mark.asyncio
    async def test_media_download_failure_fallback(self, relay, ready_session):
        """Test that an undownloadable attachment is stored with a placeholder body."""
        message = inbound(body=None, has_media=True)

        stored = await relay.handle_inbound(ready_session.id, message, StubMessagingClient(ready_session.id))

        assert stored.body == DOWNLOAD_FAILED_BODY
        assert stored.media_url is None

    @pytest.mark.asyncio
    async def test_caption_kept_when_download_fails(self, relay, ready_session):
        message = inbound(body="Look at this", has_media=True)

        stored = await relay.handle_inbound(ready_session.id, message, StubMessagingClient(ready_session.id))

        assert stored.body == "Look at this"


class TestHistory:
    """Tests for the paginated read side."""

    @pytest.fixture
    def history(self, session_factory, ready_session):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with session_factory() as db:
            repo = ConnectorRepository(db)
            for i in range(5):
                repo.create_message(
                    session_id=ready_session.id,
                    user_id=ready_session.user_id,
                    subaccount_id=ready_session.subaccount_id,
                    from_number="+447911123456" if i % 2 == 0 else "+16502530000",
                    to_number="+16502530000" if i % 2 == 0 else "+447911123456",
                    direction=MessageDirection.INBOUND if i % 2 == 0 else MessageDirection.OUTBOUND,
                    body=f"message {i}",
                    created_at=base + timedelta(minutes=i),
                )
            repo.create_message(
                session_id=ready_session.id,
                user_id=ready_session.user_id,
                subaccount_id=ready_session.subaccount_id,
                from_number="+923001234567",
                to_number="+16502530000",
                direction=MessageDirection.INBOUND,
                body="other contact",
                created_at=base + timedelta(minutes=10),
            )
            db.commit()
        return ready_session

    def test_session_messages_newest_first(self, relay, history, tenant_id):
        page = relay.list_session_messages(tenant_id, history.id, limit=3)

        assert page.count == 3
        assert page.has_more is True
        assert [m.body for m in page.messages] == ["other contact", "message 4", "message 3"]

    def test_last_page(self, relay, history, tenant_id):
        page = relay.list_session_messages(tenant_id, history.id, limit=3, offset=3)

        assert page.count == 3
        assert page.has_more is False

    def test_session_messages_other_tenant(self, relay, history, other_tenant_id):
        with pytest.raises(NotFound):
            relay.list_session_messages(other_tenant_id, history.id)

    def test_subaccount_messages(self, relay, history, subaccount, tenant_id):
        page = relay.list_subaccount_messages(tenant_id, subaccount.id, limit=50)
        assert page.count == 6
        assert page.has_more is False

    def test_subaccount_messages_other_tenant(self, relay, history, subaccount, other_tenant_id):
        with pytest.raises(Forbidden):
            relay.list_subaccount_messages(other_tenant_id, subaccount.id)

    def test_conversation_normalizes_phone(self, relay, history, tenant_id):
        """Test that the contact number is matched in either direction."""
        page = relay.get_conversation(tenant_id, history.id, "+44 7911 123456")

        assert page.count == 5
        assert all("other contact" != m.body for m in page.messages)
