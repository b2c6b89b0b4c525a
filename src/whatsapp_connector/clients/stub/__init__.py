"""
Stub Client

Development client that simulates WhatsApp without external calls.
"""

from whatsapp_connector.clients.stub.client import StubMessagingClient

__all__ = ["StubMessagingClient"]
