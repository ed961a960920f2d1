"""AES-256-GCM encryption for stored banking credentials and cached session keys.

Two independent keys are configured (``BANKING_CREDENTIALS_ENCRYPTION_KEY`` and
``PROMETEO_SESSION_ENCRYPTION_KEY``) so that leaking one store does not expose
the other. Keys are arbitrary secret strings; the 256-bit AES key is their
SHA-256 digest.

Ciphertext format (URL-safe base64, no padding stripped):
    nonce (12 bytes) || ciphertext || GCM tag (16 bytes)
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
TAG_SIZE = 16


class CipherError(Exception):
    """Raised when a value cannot be encrypted or decrypted.

    Decryption failures (tampered data, wrong key, garbage input) are all
    reported the same way; callers treat them as "credentials invalid".
    """


def derive_key(secret: str) -> bytes:
    """Derive a 256-bit AES key from a configured secret string."""
    if not secret:
        raise CipherError("encryption key must not be empty")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt ``plaintext`` with ``key``.

    A fresh random nonce is used on every call, so encrypting the same value
    twice yields different ciphertexts.
    """
    aesgcm = AESGCM(derive_key(key))
    nonce = os.urandom(NONCE_SIZE)
    try:
        sealed = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    except (TypeError, ValueError) as e:
        raise CipherError(f"Encryption failed: {e}") from e
    return base64.urlsafe_b64encode(nonce + sealed).decode("ascii")


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt a value produced by :func:`encrypt`.

    Raises:
        CipherError: On malformed input, a wrong key or tampered data
    """
    try:
        raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise CipherError("Decryption failed: ciphertext is not valid base64") from e

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise CipherError("Decryption failed: ciphertext is too short")

    aesgcm = AESGCM(derive_key(key))
    try:
        plaintext = aesgcm.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise CipherError("Decryption failed: wrong key or tampered data") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CipherError("Decryption failed: plaintext is not valid UTF-8") from e


class CredentialCipher:
    """Cipher bound to a single key.

    Example:
        >>> cipher = CredentialCipher(settings.BANKING_CREDENTIALS_ENCRYPTION_KEY)
        >>> token = cipher.encrypt('{"username": "jdoe"}')
        >>> cipher.decrypt(token)
        '{"username": "jdoe"}'
    """

    def __init__(self, key: str):
        derive_key(key)
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._key)

    def decrypt(self, ciphertext: str) -> str:
        return decrypt(ciphertext, self._key)
