"""Encryption of model API keys at rest.

Uses Fernet from the ``cryptography`` library. The key comes from the
``PAPERTABLE_SECRET_KEY`` environment variable; either a Fernet key or an
arbitrary passphrase (hashed into one) is accepted. Without it a fixed
fallback key is derived and a warning is logged.
"""

from __future__ import annotations

import base64
import hashlib
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

_ENV_KEY = "PAPERTABLE_SECRET_KEY"
_TOKEN_PREFIX = "enc:"

_fernet: Optional[Fernet] = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is not None:
        return _fernet

    raw = os.getenv(_ENV_KEY, "").strip()
    if raw:
        try:
            Fernet(raw.encode())
            key = raw.encode()
        except ValueError:
            key = base64.urlsafe_b64encode(hashlib.sha256(raw.encode()).digest())
    else:
        logger.warning(
            f"{_ENV_KEY} is not set, API keys are encrypted with a fallback key"
        )
        key = base64.urlsafe_b64encode(hashlib.sha256(b"papertable-fallback-key").digest())

    _fernet = Fernet(key)
    return _fernet


def reset_cipher() -> None:
    """Forget the cached cipher so a changed environment key takes effect."""
    global _fernet
    _fernet = None


def encrypt(plaintext: str) -> str:
    if not plaintext:
        return ""
    return _TOKEN_PREFIX + _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(token: str) -> str:
    """Decrypt a stored value. Values without the prefix are treated as plaintext."""
    if not token:
        return ""
    if not token.startswith(_TOKEN_PREFIX):
        return token
    try:
        return _get_fernet().decrypt(token[len(_TOKEN_PREFIX):].encode()).decode()
    except InvalidToken:
        logger.error("Stored API key could not be decrypted; check PAPERTABLE_SECRET_KEY")
        return ""
