"""
WhatsApp Connector

Bridges CRM locations with WhatsApp sessions: pairing, session lifecycle,
and message relay in both directions.
"""

__version__ = "1.0.0"
