"""
Vault Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements the passphrase layer of the form vault:
- Key derivation: PBKDF2-HMAC-SHA256(passphrase, salt 16B, 100k rounds) → 32B key
- Encryption: AES-256-GCM(key, nonce 12B) → ciphertext + auth tag 16B
- Form payloads: field id -> value mappings as UTF-8 JSON (orjson)

Security Note:
    Never log plaintext, ciphertext, passphrases or key material.
    Salts and nonces are random per call; nothing here is ever reused.
"""
import os
import logging
from collections.abc import Mapping
from typing import Any, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationFailure, ValidationError

logger = logging.getLogger("formvault")

SALT_SIZE = 16  # 128-bit salt
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
KDF_ITERATIONS = 100_000


def generate_salt() -> bytes:
    """Return a fresh random salt."""
    return os.urandom(SALT_SIZE)


def generate_nonce() -> bytes:
    """Return a fresh random nonce."""
    return os.urandom(NONCE_SIZE)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    passphrase: Union[str, bytes],
    salt: bytes,
    iterations: int = KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key using PBKDF2-HMAC-SHA256.

    The minimum passphrase length is a caller policy; only an empty
    passphrase is rejected here.

    Args:
        passphrase: User passphrase (str is UTF-8 encoded).
        salt: 16 random bytes stored alongside the ciphertext.
        iterations: PBKDF2 round count.

    Returns:
        32-byte derived key.

    Raises:
        ValidationError: If the passphrase is empty or the salt has the wrong size.
    """
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    if not passphrase:
        raise ValidationError("Passphrase cannot be empty")
    if len(salt) != SALT_SIZE:
        raise ValidationError(
            f"Salt must be exactly {SALT_SIZE} bytes, got {len(salt)}"
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(key: bytes, nonce: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt plaintext with AES-256-GCM.

    The caller must supply a nonce that was never used with this key.

    Args:
        key: 32-byte key from derive_key.
        nonce: 12 fresh random bytes.
        plaintext: Data to encrypt.

    Returns:
        Tuple of (ciphertext, auth_tag).
    """
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    return sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]


def decrypt(key: bytes, nonce: bytes, ciphertext: bytes, auth_tag: bytes) -> bytes:
    """Decrypt AES-256-GCM ciphertext, failing closed.

    Args:
        key: 32-byte key from derive_key.
        nonce: Nonce used at encryption time.
        ciphertext: Encrypted payload without the tag.
        auth_tag: 16-byte GCM tag.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationFailure: On a wrong key, tampering, truncation or
            malformed sizes. The causes are not distinguished.
    """
    if (
        len(key) != KEY_LENGTH
        or len(nonce) != NONCE_SIZE
        or len(auth_tag) != TAG_SIZE
    ):
        raise AuthenticationFailure()
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + auth_tag, None)
    except InvalidTag:
        raise AuthenticationFailure() from None


# ---------------------------------------------------------------------------
# Form payload serialization
# ---------------------------------------------------------------------------

def serialize_form(fields: Mapping[str, Any]) -> bytes:
    """Encode a form snapshot (field id -> value) as compact UTF-8 JSON.

    The output is byte-compatible with the JSON the legacy cookie layout
    stored, so a migrated payload decodes with ``deserialize_form``.

    Raises:
        ValidationError: If fields is not a mapping with string keys, or a
            value is not JSON serializable.
    """
    if not isinstance(fields, Mapping):
        raise ValidationError(
            f"Form data must be a mapping, got {type(fields).__name__}"
        )
    for name in fields:
        if not isinstance(name, str) or not name:
            raise ValidationError(f"Form field ids must be non-empty strings: {name!r}")
    try:
        return orjson.dumps(dict(fields))
    except orjson.JSONEncodeError as err:
        raise ValidationError(f"Form data is not JSON serializable: {err}") from None


def deserialize_form(data: bytes) -> dict[str, Any]:
    """Decode a payload written by ``serialize_form`` (or the legacy layout).

    Raises:
        ValidationError: If data is not UTF-8 JSON or not a JSON object.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError:
        raise ValidationError("Form payload is not valid JSON") from None
    if not isinstance(parsed, dict):
        raise ValidationError(
            f"Form payload must be a JSON object, got {type(parsed).__name__}"
        )
    return parsed
