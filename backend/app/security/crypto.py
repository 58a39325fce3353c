import base64
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from backend.app.config import get_settings

logger = logging.getLogger(__name__)


def _load_key() -> bytes:
    settings = get_settings()
    key = settings.encryption_key
    if not key:
        # Tokens written with an ephemeral key become unreadable after a restart
        logger.warning("ENCRYPTION_KEY not set; using a per-process key for stored tokens")
        key = base64.urlsafe_b64encode(os.urandom(32)).decode()
    if isinstance(key, str):
        key = key.encode()
    return key


@lru_cache()
def get_fernet() -> Fernet:
    return Fernet(_load_key())


def encrypt_token(raw: str) -> str:
    return get_fernet().encrypt(raw.encode()).decode()


def decrypt_token(encoded: str) -> str:
    return get_fernet().decrypt(encoded.encode()).decode()


def decrypt_optional(encoded: Optional[str]) -> Optional[str]:
    """Decrypt a nullable column, treating unreadable ciphertext as missing."""
    if not encoded:
        return None
    try:
        return decrypt_token(encoded)
    except InvalidToken:
        logger.warning("Stored token could not be decrypted; treating it as absent")
        return None
