"""
Connector Errors

Typed errors raised on the request path. Each carries a stable machine
code, a human message and the HTTP status the API renders it with as
``{"error": code, "message": message}``.
"""

from typing import Any


class ConnectorError(Exception):
    """Base error for connector operations."""

    code = "internal_error"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidPhoneFormat(ConnectorError):
    code = "invalid_phone_format"
    status_code = 400
    default_message = "Invalid phone number format"


class Unauthenticated(ConnectorError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Missing or invalid bearer token"


class Forbidden(ConnectorError):
    code = "forbidden"
    status_code = 403
    default_message = "Access denied"


class NotFound(ConnectorError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class SessionNotReady(ConnectorError):
    code = "session_not_ready"
    status_code = 409
    default_message = "Session is not ready"


class EmptyMessage(ConnectorError):
    code = "empty_message"
    status_code = 400
    default_message = "Either message or media is required"


class ClientUnavailable(ConnectorError):
    code = "client_unavailable"
    status_code = 503
    default_message = "WhatsApp client not available"


class PersistenceError(ConnectorError):
    code = "persistence_error"
    status_code = 500
    default_message = "Database operation failed"


class DeliveryFailed(ConnectorError):
    code = "delivery_failed"
    status_code = 502
    default_message = "WhatsApp client rejected the message"


class RateLimited(ConnectorError):
    code = "rate_limited"
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, retry_after: int | None = None):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after
