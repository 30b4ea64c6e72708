"""
Vault Migration — Upgrade of legacy (cookie based) storage into envelopes.

The legacy layout kept three cookies:
    userFormData   = base64(salt 16B || nonce 12B || ciphertext || tag 16B)
    hasStoredData  = "true"
    dataExpiration = <epoch milliseconds>

Each known legacy layout is registered by version in ``LEGACY_DECODERS``;
supporting another layout means adding a decoder there. The operation is
idempotent: once migrated, the legacy entries are gone and later calls do
nothing.

Security Note:
    Plaintext exists in memory only while it is being re-encrypted.
    Never log plaintext, ciphertext or passphrases.
"""
import asyncio
import base64
import binascii
import logging
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .crypto import (
    SALT_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    KDF_ITERATIONS,
    derive_key,
    decrypt,
)
from .errors import AuthenticationFailure, EnvelopeFormatError
from .stores import KeyValueStore

logger = logging.getLogger("formvault")

LEGACY_FORMAT_VERSION = 1
LEGACY_FLAG_KEY = "hasStoredData"
LEGACY_EXPIRATION_KEY = "dataExpiration"


class MigrationResult(Enum):
    """Outcome of a single ``migrate_if_needed`` call."""

    NOTHING = "nothing"  # no legacy data present
    DISCARDED = "discarded"  # legacy data expired or superseded, removed
    DEFERRED = "deferred"  # legacy data kept, needs a valid passphrase
    MIGRATED = "migrated"  # re-saved as a current envelope, legacy removed


@dataclass(frozen=True)
class SealedPayload:
    """Decoded pieces of a legacy blob."""

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes


@dataclass(frozen=True)
class LegacyRecord:
    """Legacy entry as found in the store (not yet decoded)."""

    version: int
    blob: str
    expires_at: Optional[datetime]

    def __repr__(self) -> str:
        return f'<LegacyRecord v{self.version} size={len(self.blob)} expires={self.expires_at}>'

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def decode_packed_v1(blob: str) -> SealedPayload:
    """Split a v1 packed blob into salt, nonce, ciphertext and tag.

    Raises:
        EnvelopeFormatError: If the blob is not base64 or is too short.
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as err:
        raise EnvelopeFormatError(f"Legacy blob is not base64: {err}") from None
    _min = SALT_SIZE + NONCE_SIZE + TAG_SIZE
    if len(raw) < _min:
        raise EnvelopeFormatError(
            f"Legacy blob too short: {len(raw)} bytes (minimum {_min})"
        )
    body = raw[SALT_SIZE + NONCE_SIZE:]
    return SealedPayload(
        salt=raw[:SALT_SIZE],
        nonce=raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE],
        ciphertext=body[:-TAG_SIZE],
        auth_tag=body[-TAG_SIZE:],
    )


LEGACY_DECODERS: dict[int, Callable[[str], SealedPayload]] = {
    LEGACY_FORMAT_VERSION: decode_packed_v1,
}


def parse_expiration(raw: Optional[str]) -> Optional[datetime]:
    """Parse an epoch-milliseconds string; None when absent or unreadable."""
    if not raw:
        return None
    try:
        millis = int(raw)
    except ValueError:
        logger.warning("Ignoring unreadable legacy expiration value")
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class LegacyMigrator:
    """Detect legacy data and move it into the current envelope format.

    Args:
        store: Store holding the legacy entries (e.g. a CookieStore).
        storage_key: Name of the legacy payload entry.
        clock: Returns the current UTC time.
        version: Legacy layout found in ``store``.
        iterations: PBKDF2 rounds the legacy layout was written with.
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str,
        clock: Callable[[], datetime],
        version: int = LEGACY_FORMAT_VERSION,
        iterations: int = KDF_ITERATIONS,
    ):
        if version not in LEGACY_DECODERS:
            raise ValueError(f"No decoder registered for legacy version {version}")
        self._store = store
        self._key = storage_key
        self._clock = clock
        self._version = version
        self._iterations = iterations

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def inspect(self) -> Optional[LegacyRecord]:
        """Return the legacy record without decrypting it, or None."""
        blob = await self._store.get(self._key)
        if not blob:
            return None
        expires_at = parse_expiration(await self._store.get(LEGACY_EXPIRATION_KEY))
        return LegacyRecord(version=self._version, blob=blob, expires_at=expires_at)

    async def discard(self) -> None:
        """Remove every legacy entry."""
        for key in (self._key, LEGACY_FLAG_KEY, LEGACY_EXPIRATION_KEY):
            await self._store.delete(key)

    def _open(self, record: LegacyRecord, passphrase: str) -> bytes:
        sealed = LEGACY_DECODERS[record.version](record.blob)
        key = derive_key(passphrase, sealed.salt, self._iterations)
        return decrypt(key, sealed.nonce, sealed.ciphertext, sealed.auth_tag)

    async def migrate_if_needed(
        self,
        passphrase: Optional[str],
        resave: Callable[[bytes, str], Awaitable[None]],
        current_exists: Callable[[], Awaitable[bool]],
    ) -> MigrationResult:
        """Upgrade legacy data when present.

        Args:
            passphrase: Passphrase supplied to the current load, if any.
            resave: Current save path; called with (payload, passphrase).
            current_exists: Reports whether a current envelope is stored.

        Returns:
            The MigrationResult for this attempt.

        Raises:
            StorageWriteFailure: If ``resave`` cannot persist the upgraded
                envelope. Legacy data is kept in that case.
        """
        record = await self.inspect()
        if record is None:
            return MigrationResult.NOTHING

        if record.is_expired(self._clock()):
            logger.info("Legacy v%d data expired, discarding", record.version)
            await self.discard()
            return MigrationResult.DISCARDED

        if await current_exists():
            logger.info(
                "Legacy v%d data superseded by current envelope, discarding",
                record.version,
            )
            await self.discard()
            return MigrationResult.DISCARDED

        if not passphrase:
            logger.debug("Legacy v%d migration deferred: no passphrase", record.version)
            return MigrationResult.DEFERRED

        try:
            payload = await asyncio.to_thread(self._open, record, passphrase)
        except (AuthenticationFailure, EnvelopeFormatError):
            logger.warning(
                "Legacy v%d migration deferred: unable to decrypt", record.version,
            )
            return MigrationResult.DEFERRED

        await resave(payload, passphrase)
        await self.discard()
        logger.info(
            "Migrated legacy v%d data (%d bytes) to current envelope",
            record.version, len(payload),
        )
        return MigrationResult.MIGRATED
