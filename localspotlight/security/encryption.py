"""
AES-256-GCM encryption for Google refresh tokens stored in `connections_google`.

Payload format is three base64 segments joined by dots: IV, ciphertext and
the 16-byte GCM tag. The key is the SHA-256 digest of
GOOGLE_REFRESH_TOKEN_SECRET.
"""
import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import settings

IV_LENGTH = 12
TAG_LENGTH = 16
MIN_SECRET_LENGTH = 32


class TokenEncryptionError(Exception):
    pass


def _get_key(secret: str | None = None) -> bytes:
    secret = secret if secret is not None else settings.google_refresh_token_secret
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        raise TokenEncryptionError(
            "GOOGLE_REFRESH_TOKEN_SECRET must be set and at least 32 characters long to encrypt refresh tokens."
        )
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_refresh_token(token: str, secret: str | None = None) -> str:
    key = _get_key(secret)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, token.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return ".".join(base64.b64encode(part).decode("ascii") for part in (iv, ciphertext, tag))


def decrypt_refresh_token(payload: str, secret: str | None = None) -> str:
    parts = (payload or "").split(".")
    if len(parts) != 3 or not all(parts):
        raise TokenEncryptionError("Invalid encrypted refresh token format.")

    try:
        iv, ciphertext, tag = (base64.b64decode(p, validate=True) for p in parts)
    except (binascii.Error, ValueError) as e:
        raise TokenEncryptionError(f"Invalid encrypted refresh token encoding: {e}") from e

    key = _get_key(secret)
    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except (InvalidTag, ValueError) as e:
        raise TokenEncryptionError("Refresh token could not be decrypted with the configured secret.") from e
    return plain.decode("utf-8")
