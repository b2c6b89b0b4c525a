"""
Token encryption at rest.

Provider and marketplace tokens are Fernet-encrypted when ENCRYPTION_KEY
is configured and stored as-is otherwise.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken

from connector_core.settings import get_settings

logger = logging.getLogger(__name__)


def _get_fernet(key: str | None = None) -> Fernet | None:
    key = key if key is not None else get_settings().ENCRYPTION_KEY
    if not key:
        return None
    return Fernet(key.encode())


def encrypt_secret(value: str | None, key: str | None = None) -> str | None:
    """Encrypt a secret for storage. None passes through."""
    if value is None:
        return None
    fernet = _get_fernet(key)
    if fernet is None:
        return value
    return fernet.encrypt(value.encode()).decode()


def decrypt_secret(value: str | None, key: str | None = None) -> str | None:
    """
    Decrypt a stored secret.

    Values that are not valid Fernet tokens are returned unchanged, so rows
    written before a key was configured stay readable.
    """
    if value is None:
        return None
    fernet = _get_fernet(key)
    if fernet is None:
        return value
    try:
        return fernet.decrypt(value.encode()).decode()
    except InvalidToken:
        logger.warning("Stored secret is not encrypted with the configured key")
        return value
