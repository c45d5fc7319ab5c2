"""Field-level encryption for PHI at rest.

Uses AES-256-GCM for individual sensitive fields such as patient names,
contact details and clinical note sections.  Each encryption draws a fresh
16-byte nonce and produces an ``Envelope`` of hex-encoded ciphertext, nonce
and authentication tag.

The secret is loaded from the PHI_ENCRYPTION_KEY environment variable.  A
value of exactly 64 hex characters is used as the raw key; anything else is
treated as a passphrase and stretched with scrypt.  Generate a raw key with:

    python crypto.py
"""

import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from config import get_settings
from exceptions import ConfigurationError, DecryptionFailure
from models.envelope import (
    EmptyValue,
    Envelope,
    EnvelopeValue,
    LegacyPlaintext,
    MalformedValue,
    StoredValue,
    parse_stored_value,
)

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16

# Scheme-wide salt; changing it orphans every passphrase-derived envelope
KDF_SALT = b"therapybill-phi-salt"
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1

_RAW_KEY_RE = re.compile(r"[0-9a-fA-F]{64}")


def generate_encryption_key() -> str:
    """Return a fresh raw key as 64 hex characters, for PHI_ENCRYPTION_KEY."""
    return os.urandom(KEY_LENGTH).hex()


def derive_key(passphrase: str) -> bytes:
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


class KeyProvider:
    """Resolves the 256-bit key from the configured secret.

    The key is recomputed on every ``get_key`` call unless
    ``cache_derived_key`` is set, in which case it lives as long as the
    provider does.
    """

    def __init__(self, secret: str | None, *, cache_derived_key: bool = False):
        self._secret = secret
        self._cache_derived_key = cache_derived_key
        self._cached: bytes | None = None

    def get_key(self) -> bytes:
        if self._cached is not None:
            return self._cached
        if not self._secret:
            raise ConfigurationError(
                "PHI_ENCRYPTION_KEY is not set; refusing to handle PHI without a key"
            )

        if _RAW_KEY_RE.fullmatch(self._secret):
            key = bytes.fromhex(self._secret)
        else:
            try:
                key = derive_key(self._secret)
            except UnicodeEncodeError as exc:
                raise ConfigurationError("PHI_ENCRYPTION_KEY is not valid UTF-8") from exc

        if self._cache_derived_key:
            self._cached = key
        return key


class FieldCipher:
    """Encrypts and decrypts single field values."""

    def __init__(self, key_provider: KeyProvider):
        self.key_provider = key_provider

    def encrypt(self, plaintext: str | None) -> Envelope | None:
        """Encrypt a string value.  ``None`` and ``""`` return ``None``.

        Raises ConfigurationError if no key is configured.
        """
        if plaintext is None or plaintext == "":
            return None
        if not isinstance(plaintext, str):
            raise TypeError(f"PHI field values must be str, got {type(plaintext).__name__}")

        aesgcm = AESGCM(self.key_provider.get_key())
        iv = os.urandom(IV_LENGTH)
        sealed = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return Envelope.from_bytes(sealed[:-TAG_LENGTH], iv, sealed[-TAG_LENGTH:])

    def decrypt(self, value) -> str | None:
        """Decrypt an envelope, its JSON text, or pass legacy plaintext through.

        Never raises: anything that cannot be decrypted comes back as ``None``.
        """
        return self.decrypt_stored(parse_stored_value(value))

    def decrypt_stored(self, stored: StoredValue) -> str | None:
        if isinstance(stored, EmptyValue):
            return None
        if isinstance(stored, LegacyPlaintext):
            logger.debug("Returning legacy plaintext field unchanged")
            return stored.text

        try:
            if isinstance(stored, MalformedValue):
                raise DecryptionFailure(stored.reason)
            return self._open(stored)
        except DecryptionFailure as exc:
            logger.warning("PHI field could not be decrypted: %s", exc.reason)
            return None

    def _open(self, stored: EnvelopeValue) -> str:
        try:
            key = self.key_provider.get_key()
        except ConfigurationError as exc:
            raise DecryptionFailure("encryption key is not configured") from exc

        try:
            ciphertext, iv, tag = stored.envelope.to_bytes()
        except ValueError as exc:
            raise DecryptionFailure("envelope is not valid hex") from exc
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionFailure("envelope iv or tag has the wrong length")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionFailure("authentication failed (tampered data or wrong key)") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailure("decrypted bytes are not UTF-8") from exc


# ─── Default cipher ───────────────────────────────────────────────────────────

_cipher: FieldCipher | None = None


def get_field_cipher() -> FieldCipher:
    """Lazily build the process-wide cipher from settings."""
    global _cipher
    if _cipher is not None:
        return _cipher

    settings = get_settings()
    if not settings.phi_encryption_key:
        logger.warning(
            "PHI_ENCRYPTION_KEY is not set; writes of protected fields will fail. "
            "Generate a key with: python crypto.py"
        )
    _cipher = FieldCipher(
        KeyProvider(
            settings.phi_encryption_key,
            cache_derived_key=settings.phi_cache_derived_key,
        )
    )
    return _cipher


def encrypt_value(plaintext: str | None) -> Envelope | None:
    return get_field_cipher().encrypt(plaintext)


def decrypt_value(value) -> str | None:
    return get_field_cipher().decrypt(value)


if __name__ == "__main__":
    print(generate_encryption_key())
