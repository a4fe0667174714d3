"""Encryption helpers for Shopify access tokens stored at rest.

:func:`encrypt` and :func:`decrypt` wrap AES-GCM with a key derived from
``settings.SECRET_KEY``. Ciphertexts are versioned and prefixed:

    ENC:v1:<base64(nonce || ciphertext || tag)>

``decrypt`` passes through values without the prefix, so rows written before
encryption was enabled keep working.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from dispute_manager.config import settings


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12
_KEY_SIZE = 32


def _get_key() -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"shopify-token-encryption",
    )
    return hkdf.derive(settings.SECRET_KEY.encode("utf-8"))


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a string value. ``None`` is passed through."""

    if plaintext is None:
        return None
    if not isinstance(plaintext, str):
        plaintext = str(plaintext)

    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(_NONCE_SIZE)
    ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
    return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt`.

    Non-prefixed values are returned unchanged. A prefixed value that fails
    to decrypt is logged and returned unchanged as well.
    """

    if value is None:
        return None
    if not isinstance(value, str) or not value.startswith(_PREFIX):
        return value

    try:
        raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
        if len(raw) <= _NONCE_SIZE:
            return value
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        return AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except Exception as e:
        from dispute_manager.utils.logger import logger
        logger.error(f"Crypto decryption failed: {type(e).__name__}: {e}")
        return value
