"""
StorageManager — Passphrase-protected persistence of form data on the device.

Provides the public API for the form vault:
- ``save(payload, passphrase)`` — encrypt and persist, cache the passphrase
- ``load(passphrase)`` — migrate legacy data, then decrypt and return
- ``update(payload)`` — re-save with the cached passphrase
- ``save_form()`` / ``load_form()`` / ``update_form()`` — same, for field mappings
- ``clear()`` — drop every stored entry and the cached passphrase
- ``has_stored_data()`` / ``remaining_days()`` — metadata only
- ``open()`` — factory that constructs and starts a manager

Security Note:
    Never log plaintext, ciphertext or passphrases. Only log sizes,
    format versions and outcomes.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from collections.abc import Mapping
from typing import Any, Callable, Optional

from ..session import SessionCache
from .config import StorageConfig
from .crypto import (
    KDF_ITERATIONS,
    derive_key,
    encrypt,
    decrypt,
    deserialize_form,
    generate_salt,
    generate_nonce,
    serialize_form,
)
from .envelope import StorageEnvelope, remaining_days
from .errors import (
    AuthenticationFailure,
    EnvelopeFormatError,
    Expired,
    NoActivePassphrase,
    NotFound,
    StorageWriteFailure,
    ValidationError,
)
from .migration import LegacyMigrator, MigrationResult
from .stores import KeyValueStore

logger = logging.getLogger("formvault")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageManager:
    """Encrypted, expiring storage slot for one user's form data.

    One envelope lives under ``config.storage_key`` in ``store``. When a
    ``legacy_store`` is given, legacy entries found there are migrated on
    the first ``load()`` that supplies the right passphrase.

    Instances are built explicitly and handed to whoever needs them; the
    only state shared between calls is the session passphrase cache.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[StorageConfig] = None,
        legacy_store: Optional[KeyValueStore] = None,
        session: Optional[SessionCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._config = config or StorageConfig()
        self._clock = clock or _utcnow
        self._session = session if session is not None else SessionCache()
        self._migrator: Optional[LegacyMigrator] = None
        if legacy_store is not None:
            self._migrator = LegacyMigrator(
                legacy_store,
                storage_key=self._config.storage_key,
                clock=self._clock,
            )
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()

    def __repr__(self) -> str:
        return (
            f'<StorageManager key={self._config.storage_key!r} '
            f'unlocked={self.is_unlocked} ready={self._ready.is_set()}>'
        )

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Finish initialization and signal readiness. Safe to call twice."""
        if self._ready.is_set():
            return
        stored = await self.has_stored_data()
        logger.debug(
            "Storage manager ready: key=%s stored=%s legacy=%s",
            self._config.storage_key, stored, self._migrator is not None,
        )
        self._ready.set()

    async def wait_ready(self) -> None:
        """Block until ``start()`` has completed."""
        await self._ready.wait()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @classmethod
    async def open(
        cls,
        store: KeyValueStore,
        config: Optional[StorageConfig] = None,
        legacy_store: Optional[KeyValueStore] = None,
        session: Optional[SessionCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "StorageManager":
        """Construct a manager and start it.

        Returns:
            A ready StorageManager instance.
        """
        manager = cls(
            store,
            config=config,
            legacy_store=legacy_store,
            session=session,
            clock=clock,
        )
        await manager.start()
        return manager

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def session(self) -> SessionCache:
        return self._session

    @property
    def is_unlocked(self) -> bool:
        """True while a passphrase is cached for this session."""
        return self._session.active

    def get_expiration_policy_days(self) -> int:
        return self._config.retention_days

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_payload(self, payload: bytes) -> None:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise ValidationError(
                f"Payload must be bytes, got {type(payload).__name__}"
            )
        if len(payload) == 0:
            raise ValidationError("Payload cannot be empty")

    def _validate_passphrase(self, passphrase: str) -> None:
        if not isinstance(passphrase, str) or not passphrase:
            raise ValidationError("Passphrase cannot be empty")
        minimum = self._config.min_passphrase_length
        if len(passphrase) < minimum:
            raise ValidationError(
                f"Passphrase must be at least {minimum} characters long"
            )

    # ------------------------------------------------------------------
    # Crypto helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _seal(self, payload: bytes, passphrase: str) -> StorageEnvelope:
        salt = generate_salt()
        nonce = generate_nonce()
        key = derive_key(passphrase, salt, KDF_ITERATIONS)
        ciphertext, tag = encrypt(key, nonce, bytes(payload))
        now = self._clock()
        return StorageEnvelope(
            salt=salt,
            nonce=nonce,
            ciphertext=ciphertext,
            auth_tag=tag,
            created_at=now,
            expires_at=now + timedelta(days=self._config.retention_days),
        )

    def _open(self, envelope: StorageEnvelope, passphrase: str) -> bytes:
        key = derive_key(passphrase, envelope.salt, KDF_ITERATIONS)
        return decrypt(key, envelope.nonce, envelope.ciphertext, envelope.auth_tag)

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    async def _has_current(self) -> bool:
        return await self._store.exists(self._config.storage_key)

    async def _persist(self, payload: bytes, passphrase: str) -> None:
        """Seal and write a new envelope, replacing the current one.

        Nothing changes (envelope or session cache) unless the write succeeds.
        """
        envelope = await asyncio.to_thread(self._seal, payload, passphrase)
        text = envelope.to_text()
        try:
            await self._store.set(self._config.storage_key, text)
        except StorageWriteFailure as err:
            logger.warning(
                "Unable to persist envelope (%d characters): %s", len(text), err,
            )
            raise
        if self._migrator is not None:
            await self._migrator.discard()
        self._session.set(passphrase)
        logger.debug(
            "Envelope saved: key=%s size=%d expires=%s",
            self._config.storage_key, len(text), envelope.expires_at.isoformat(),
        )

    async def _read_envelope(self) -> Optional[StorageEnvelope]:
        text = await self._store.get(self._config.storage_key)
        if text is None:
            return None
        try:
            return StorageEnvelope.from_text(text)
        except EnvelopeFormatError as err:
            logger.warning("Stored envelope is unreadable: %s", err)
            raise AuthenticationFailure() from None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, payload: bytes, passphrase: str) -> None:
        """Encrypt payload under passphrase and persist it.

        Args:
            payload: Opaque, non-empty bytes.
            passphrase: At least ``min_passphrase_length`` characters.

        Raises:
            ValidationError: If payload or passphrase is invalid.
            StorageWriteFailure: If the store rejects the write; the previous
                envelope is left untouched.
        """
        self._validate_payload(payload)
        self._validate_passphrase(passphrase)
        async with self._lock:
            await self._persist(payload, passphrase)

    async def load(self, passphrase: str) -> bytes:
        """Decrypt and return the stored payload.

        Legacy data, when present, is migrated first.

        Raises:
            ValidationError: If the passphrase is empty.
            NotFound: If nothing is stored.
            Expired: If the envelope outlived its retention; it is deleted.
            AuthenticationFailure: Wrong passphrase or corrupted data; the
                envelope is kept so the caller can retry.
            StorageWriteFailure: If migrated legacy data cannot be re-saved.
            StorageReadFailure: If the store itself cannot be read.
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise ValidationError("Passphrase cannot be empty")
        async with self._lock:
            migration = MigrationResult.NOTHING
            if self._migrator is not None:
                migration = await self._migrator.migrate_if_needed(
                    passphrase,
                    resave=self._persist,
                    current_exists=self._has_current,
                )
            envelope = await self._read_envelope()
            if envelope is None:
                if migration is MigrationResult.DEFERRED:
                    raise AuthenticationFailure()
                raise NotFound("No saved data found")
            if envelope.is_expired(self._clock()):
                await self._store.delete(self._config.storage_key)
                logger.info(
                    "Envelope expired at %s, deleted", envelope.expires_at.isoformat(),
                )
                raise Expired(
                    f"Saved data expired on {envelope.expires_at.date().isoformat()}"
                )
            try:
                payload = await asyncio.to_thread(self._open, envelope, passphrase)
            except AuthenticationFailure:
                logger.warning("Envelope decryption failed")
                raise
            self._session.set(passphrase)
            logger.debug("Envelope loaded: %d bytes", len(payload))
            return payload

    async def update(self, payload: bytes) -> None:
        """Re-save payload with the passphrase cached for this session.

        A new salt and nonce are generated, exactly as in ``save()``.

        Raises:
            NoActivePassphrase: If no passphrase is cached.
            ValidationError: If the payload is empty.
            StorageWriteFailure: If the store rejects the write.
        """
        passphrase = self._session.get()
        if passphrase is None:
            raise NoActivePassphrase(
                "No passphrase cached for this session; use save()"
            )
        self._validate_payload(payload)
        async with self._lock:
            await self._persist(payload, passphrase)

    async def save_form(self, fields: Mapping[str, Any], passphrase: str) -> None:
        """``save()`` a form snapshot encoded with ``serialize_form``."""
        await self.save(serialize_form(fields), passphrase)

    async def load_form(self, passphrase: str) -> dict[str, Any]:
        """``load()`` and decode a form snapshot.

        Raises:
            ValidationError: If the decrypted payload is not a JSON object.
        """
        return deserialize_form(await self.load(passphrase))

    async def update_form(self, fields: Mapping[str, Any]) -> None:
        await self.update(serialize_form(fields))

    async def clear(self) -> None:
        """Delete the envelope, legacy entries and the cached passphrase."""
        async with self._lock:
            await self._store.delete(self._config.storage_key)
            if self._migrator is not None:
                await self._migrator.discard()
            self._session.invalidate()
        logger.debug("Stored data cleared: key=%s", self._config.storage_key)

    async def has_stored_data(self) -> bool:
        """Whether any saved data (current or legacy) exists. Never decrypts."""
        if await self._has_current():
            return True
        if self._migrator is not None:
            return await self._migrator.inspect() is not None
        return False

    async def remaining_days(self) -> Optional[int]:
        """Days until the saved data expires, or None when nothing is stored.

        Reads only clear metadata; never decrypts and never deletes.
        """
        now = self._clock()
        text = await self._store.get(self._config.storage_key)
        if text is not None:
            try:
                envelope = StorageEnvelope.from_text(text)
            except EnvelopeFormatError:
                return self._config.retention_days
            return envelope.remaining_days(now)
        if self._migrator is not None:
            record = await self._migrator.inspect()
            if record is not None:
                if record.expires_at is None:
                    return self._config.retention_days
                return remaining_days(record.expires_at, now)
        return None
