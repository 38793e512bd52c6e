"""
Credential encryption
AES-256-GCM envelopes for calendar OAuth tokens and CalDAV passwords
"""

import base64
import binascii
import logging
import os
import warnings
from functools import lru_cache
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import CryptoError, DecryptionFailed

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
ENVELOPE_SEPARATOR = ":"

# Stored in place of an envelope when there is no secret at all
NO_SECRET = None

_DEV_PASSPHRASE = b"bluemoon-insecure-development-key"
_DEV_SALT = b"bluemoon-dev-salt"


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class CredentialCipher:
    """
    Authenticated symmetric encryption for secret blobs.

    Envelope format is ``b64(nonce):b64(ciphertext):b64(tag)``. A fresh nonce is
    drawn for every call to encrypt.
    """

    def __init__(
        self,
        key: bytes,
        random_source: Callable[[int], bytes] = os.urandom,
        insecure: bool = False,
    ):
        if not isinstance(key, bytes) or len(key) != KEY_LENGTH:
            raise CryptoError(f"Encryption key must be exactly {KEY_LENGTH} bytes")
        self._aead = AESGCM(key)
        self._random = random_source
        self.insecure = insecure

    def __repr__(self) -> str:
        return f"CredentialCipher(insecure={self.insecure})"

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a secret; empty or missing secrets map to NO_SECRET"""
        if not plaintext:
            return NO_SECRET

        nonce = self._random(NONCE_LENGTH)
        if len(nonce) != NONCE_LENGTH:
            raise CryptoError("Random source returned a nonce of the wrong length")

        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ENVELOPE_SEPARATOR.join(
            (_b64encode(nonce), _b64encode(ciphertext), _b64encode(tag))
        )

    def decrypt(self, envelope: Optional[str]) -> Optional[str]:
        """Decrypt an envelope produced by encrypt. Raises CryptoError, never returns partial data."""
        if envelope is NO_SECRET:
            return NO_SECRET
        if not isinstance(envelope, str):
            raise CryptoError("Envelope must be a string")

        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            raise CryptoError("Malformed envelope: expected nonce, ciphertext and tag")

        try:
            nonce, ciphertext, tag = (_b64decode(part) for part in parts)
        except (binascii.Error, ValueError) as e:
            raise CryptoError("Malformed envelope: invalid base64") from e

        if len(nonce) != NONCE_LENGTH:
            raise CryptoError("Malformed envelope: wrong nonce length")
        if len(tag) != TAG_LENGTH:
            raise CryptoError("Malformed envelope: wrong tag length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionFailed("Authentication tag mismatch") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted payload is not valid UTF-8") from e


def derive_development_key() -> bytes:
    """Deterministic, publicly known key. Only for local development."""
    kdf = Scrypt(salt=_DEV_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(_DEV_PASSPHRASE)


def load_key(encoded_key: Optional[str], production: bool) -> tuple[bytes, bool]:
    """
    Decode the base64 process key.

    Returns (key, insecure). Without a configured key, production refuses to
    start and development falls back to a derived, clearly flagged key.
    """
    if not encoded_key:
        if production:
            raise CryptoError("ENCRYPTION_KEY is not set; refusing to start in production")

        warnings.warn(
            "ENCRYPTION_KEY not set! Using insecure development key - DO NOT USE IN PRODUCTION",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.error(
            "🚨 ENCRYPTION_KEY not set - calendar credentials are encrypted with an INSECURE development key"
        )
        return derive_development_key(), True

    try:
        key = _b64decode(encoded_key.strip())
    except (binascii.Error, ValueError) as e:
        raise CryptoError("ENCRYPTION_KEY is not valid base64") from e

    if len(key) != KEY_LENGTH:
        raise CryptoError(f"ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}")
    return key, False


@lru_cache(maxsize=1)
def get_cipher() -> CredentialCipher:
    """Process-wide cipher, built once from configuration and read-only afterwards"""
    from .config import ENCRYPTION_KEY, IS_PRODUCTION

    key, insecure = load_key(ENCRYPTION_KEY, IS_PRODUCTION)
    cipher = CredentialCipher(key, insecure=insecure)
    logger.info(f"🔐 Credential cipher initialised (insecure={insecure})")
    return cipher
