"""
Phone Normalization

Three numbering formats flow through the connector:

- raw: whatever a user or the CRM typed ("(555) 123-4567", "0300 1234567")
- canonical: E.164 ("+15551234567"), the internal key for every stored number
- network address: the WhatsApp representation ("15551234567@c.us")

Parsing and validation are delegated to ``phonenumbers``.
"""

import re

import phonenumbers

from connector_core.settings import get_settings
from whatsapp_connector.errors import InvalidPhoneFormat

NETWORK_SUFFIX = "@c.us"
BROADCAST_SUFFIX = "@broadcast"

_STRIP_RE = re.compile(r"[^\d+]")


def _parse_valid(value: str, region: str | None) -> phonenumbers.PhoneNumber | None:
    try:
        parsed = phonenumbers.parse(value, region)
    except phonenumbers.NumberParseException:
        return None
    if phonenumbers.is_valid_number(parsed):
        return parsed
    return None


def _to_e164(parsed: phonenumbers.PhoneNumber) -> str:
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize(
    raw: str,
    regions: list[str] | None = None,
    default_region: str | None = None,
) -> str:
    """
    Normalize a raw phone number to canonical E.164.

    Args:
        raw: Phone number as typed
        regions: Ordered regions to try for numbers without a country code
            (defaults to settings.PHONE_REGIONS)
        default_region: Region for the final attempt (defaults to
            settings.PHONE_DEFAULT_REGION)

    Returns:
        Canonical phone number, e.g. "+15551234567"

    Raises:
        InvalidPhoneFormat: If no region yields a valid number
    """
    if regions is None or default_region is None:
        settings = get_settings()
        regions = settings.PHONE_REGIONS if regions is None else regions
        default_region = settings.PHONE_DEFAULT_REGION if default_region is None else default_region

    cleaned = _STRIP_RE.sub("", raw or "")
    if not cleaned or not any(ch.isdigit() for ch in cleaned):
        raise InvalidPhoneFormat(f"Invalid phone number format: {raw!r}")

    if cleaned.startswith("+"):
        parsed = _parse_valid(cleaned, None)
        if parsed:
            return _to_e164(parsed)

    for region in regions:
        parsed = _parse_valid(cleaned, region)
        if parsed:
            return _to_e164(parsed)

    parsed = _parse_valid(cleaned, default_region)
    if parsed:
        return _to_e164(parsed)

    raise InvalidPhoneFormat(f"Invalid phone number format: {raw!r}")


def to_network_address(canonical: str) -> str:
    """Convert a canonical number to a WhatsApp address ("+1555..." -> "1555...@c.us")."""
    if not canonical:
        raise InvalidPhoneFormat("Phone number is required")
    return f"{canonical.lstrip('+')}{NETWORK_SUFFIX}"


def from_network_address(address: str) -> str:
    """Convert a WhatsApp address to canonical form ("1555...@c.us" -> "+1555...")."""
    if not address:
        raise InvalidPhoneFormat("Network address is required")
    user = address.split("@", 1)[0]
    if not user:
        raise InvalidPhoneFormat(f"Invalid network address: {address!r}")
    return f"+{user.lstrip('+')}"


def is_valid_e164(value: str) -> bool:
    """Check whether a value is already a valid canonical number."""
    if not value or not value.startswith("+"):
        return False
    parsed = _parse_valid(value, None)
    return parsed is not None and _to_e164(parsed) == value


def format_for_display(canonical: str) -> str:
    """Format a canonical number for humans, falling back to the input."""
    parsed = _parse_valid(canonical, None)
    if not parsed:
        return canonical
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)


def is_broadcast_address(address: str | None) -> bool:
    """Status updates and broadcast lists arrive from ``...@broadcast`` senders."""
    return bool(address) and address.endswith(BROADCAST_SUFFIX)
