"""
Envelope encryption for Amparo.

Every piece of sensitive user content (message bodies, goal titles and
descriptions, check-in notes) is stored as an EncryptedPayload: AES-256-GCM
ciphertext, a 128-bit IV and a 128-bit authentication tag, each hex-encoded
and kept in its own column.

Keys are never stored. A user's key is derived with PBKDF2-HMAC-SHA256 from
``external_uid + master_secret`` and the user's persisted random salt, so the
same identity always yields the same key and a leaked database alone cannot
be decrypted.

Usage:
    from amparo.lib.encryption import EncryptionSession, generate_salt

    session = EncryptionSession(user.external_uid, user.encryption_salt, settings.master_secret)
    await session.prepare()
    payload = session.encrypt_data("texto sensível")
    plaintext = session.decrypt_data(payload)
"""

from __future__ import annotations

import asyncio
import binascii
import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from amparo.lib.exceptions import CryptoError

KEY_SIZE = 32  # 256 bits for AES-256
IV_SIZE = 16  # 128 bits
TAG_SIZE = 16  # 128 bits
SALT_SIZE = 16
PRIMARY_ITERATIONS = 100_000
SECONDARY_ITERATIONS = 150_000

# Shown in place of a stored record that can no longer be decrypted
DECRYPTION_PLACEHOLDER = "[Erro ao descriptografar]"


# =============================================================================
# Encrypted Payload
# =============================================================================

@dataclass(frozen=True)
class EncryptedPayload:
    """
    Ciphertext plus the IV and tag needed to decrypt it, all hex-encoded.

    The three fields always travel together; a missing field makes the
    payload undecryptable.
    """

    ciphertext: str
    iv: str
    auth_tag: str

    def to_db_dict(self, prefix: str) -> dict[str, str]:
        """Column values for a ``<prefix>_encrypted/_iv/_auth_tag`` triple."""
        return {
            f"{prefix}_encrypted": self.ciphertext,
            f"{prefix}_iv": self.iv,
            f"{prefix}_auth_tag": self.auth_tag,
        }

    @classmethod
    def from_row(cls, row: object, prefix: str) -> EncryptedPayload:
        """Read the column triple for ``prefix`` off an ORM row."""
        return cls(
            ciphertext=getattr(row, f"{prefix}_encrypted"),
            iv=getattr(row, f"{prefix}_iv"),
            auth_tag=getattr(row, f"{prefix}_auth_tag"),
        )


# =============================================================================
# Primitives
# =============================================================================

def generate_salt() -> str:
    """Return a fresh 16-byte random salt, hex-encoded."""
    return os.urandom(SALT_SIZE).hex()


def derive_key(identity_material: str, salt: str, iterations: int = PRIMARY_ITERATIONS) -> bytes:
    """
    Derive a 32-byte key with PBKDF2-HMAC-SHA256.

    The salt is used in its stored hex text form. Derivation is deterministic:
    equal inputs always produce the same key.

    Raises:
        CryptoError: If iterations is below 100,000 or the salt is empty.
    """
    if iterations < PRIMARY_ITERATIONS:
        raise CryptoError(f"PBKDF2 iterations must be at least {PRIMARY_ITERATIONS}")
    if not salt:
        raise CryptoError("salt is required for key derivation")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(identity_material.encode("utf-8"))


def encrypt(plaintext: str, key: bytes) -> EncryptedPayload:
    """
    Encrypt a UTF-8 string with AES-256-GCM under a fresh random IV.

    Raises:
        CryptoError: If the key is not 32 bytes.
    """
    if not isinstance(key, bytes) or len(key) != KEY_SIZE:
        raise CryptoError("encryption key must be 32 bytes")

    iv = os.urandom(IV_SIZE)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return EncryptedPayload(
        ciphertext=sealed[:-TAG_SIZE].hex(),
        iv=iv.hex(),
        auth_tag=sealed[-TAG_SIZE:].hex(),
    )


def decrypt(payload: EncryptedPayload, key: bytes) -> str:
    """
    Decrypt and authenticate a payload.

    Fails closed: no plaintext is ever returned unless the tag verifies.

    Raises:
        CryptoError: On a wrong key, tampered ciphertext, tag mismatch,
            missing or malformed fields, or non-UTF-8 plaintext.
    """
    if not isinstance(key, bytes) or len(key) != KEY_SIZE:
        raise CryptoError("decryption key must be 32 bytes")
    if payload.ciphertext is None or not payload.iv or not payload.auth_tag:
        raise CryptoError("encrypted payload is incomplete")

    try:
        ciphertext = bytes.fromhex(payload.ciphertext)
        iv = bytes.fromhex(payload.iv)
        tag = bytes.fromhex(payload.auth_tag)
    except (ValueError, TypeError) as e:
        raise CryptoError("encrypted payload is not valid hex") from e

    if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
        raise CryptoError("encrypted payload has a malformed iv or tag")

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag as e:
        raise CryptoError("authentication failed") from e
    except (UnicodeDecodeError, binascii.Error) as e:
        raise CryptoError("decrypted data is not valid UTF-8") from e


def hash_data(data: str, salt: str = "") -> str:
    """SHA-256 hex digest of ``data + salt`` (pseudonymous identifiers)."""
    return hashlib.sha256((data + salt).encode("utf-8")).hexdigest()


# =============================================================================
# Per-user Session
# =============================================================================

class EncryptionSession:
    """
    Per-user encryption context.

    Holds the user's derived primary key (and optional PIN-derived secondary
    key) for the lifetime of one request or pipeline run. Instances must not
    be shared between users or cached across runs.

    Args:
        user_identifier: Stable external user id. Never rotates.
        user_salt: The user's persisted hex salt.
        master_secret: Server-side master secret mixed into the identity material.
    """

    def __init__(self, user_identifier: str, user_salt: str, master_secret: str):
        if not user_salt:
            raise CryptoError("user has no encryption salt")
        self._identity_material = f"{user_identifier}{master_secret}"
        self._salt = user_salt
        self._primary_key: bytes | None = None
        self._secondary_key: bytes | None = None

    def __repr__(self) -> str:
        return "EncryptionSession(<redacted>)"

    @property
    def has_secondary_key(self) -> bool:
        return self._secondary_key is not None

    def _key(self, use_secondary: bool) -> bytes:
        if use_secondary and self._secondary_key is not None:
            return self._secondary_key
        if self._primary_key is None:
            self._primary_key = derive_key(self._identity_material, self._salt)
        return self._primary_key

    async def prepare(self) -> EncryptionSession:
        """Derive the primary key in a worker thread so the event loop stays free."""
        if self._primary_key is None:
            self._primary_key = await asyncio.to_thread(
                derive_key, self._identity_material, self._salt
            )
        return self

    def set_secondary_key(self, pin: str | None) -> None:
        """Derive a secondary key from a user PIN. Empty PINs are ignored."""
        if pin:
            self._secondary_key = derive_key(pin, self._salt, SECONDARY_ITERATIONS)

    def encrypt_data(self, plaintext: str, use_secondary: bool = False) -> EncryptedPayload:
        return encrypt(plaintext, self._key(use_secondary))

    def decrypt_data(self, payload: EncryptedPayload, use_secondary: bool = False) -> str:
        return decrypt(payload, self._key(use_secondary))

    def decrypt_or_placeholder(self, payload: EncryptedPayload) -> str:
        """Decrypt a stored record, degrading to DECRYPTION_PLACEHOLDER on failure."""
        try:
            return self.decrypt_data(payload)
        except CryptoError:
            return DECRYPTION_PLACEHOLDER


__all__ = [
    "DECRYPTION_PLACEHOLDER",
    "EncryptedPayload",
    "EncryptionSession",
    "PRIMARY_ITERATIONS",
    "SECONDARY_ITERATIONS",
    "decrypt",
    "derive_key",
    "encrypt",
    "generate_salt",
    "hash_data",
]
