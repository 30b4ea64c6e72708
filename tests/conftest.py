"""Shared fixtures for form vault tests."""
import os
import base64
from datetime import datetime, timedelta, timezone

import pytest

from formvault.session import SessionCache
from formvault.vault.config import StorageConfig
from formvault.vault.crypto import derive_key, encrypt
from formvault.vault.manager import StorageManager
from formvault.vault.stores import CookieStore, MemoryStore


class FakeClock:
    """Settable clock handed to the manager in place of the wall clock."""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def pack_legacy(payload: bytes, passphrase: str) -> str:
    """Build a cookie value the way the legacy layout wrote it."""
    salt = os.urandom(16)
    nonce = os.urandom(12)
    key = derive_key(passphrase, salt)
    ciphertext, tag = encrypt(key, nonce, payload)
    return base64.b64encode(salt + nonce + ciphertext + tag).decode("ascii")


async def seed_legacy(
    jar: CookieStore,
    payload: bytes,
    passphrase: str,
    expires_at: datetime = None,
) -> None:
    """Write the three legacy cookies for payload."""
    await jar.set("userFormData", pack_legacy(payload, passphrase))
    await jar.set("hasStoredData", "true")
    if expires_at is not None:
        await jar.set("dataExpiration", str(int(expires_at.timestamp() * 1000)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cookie_jar(clock):
    return CookieStore(clock=clock)


@pytest.fixture
def config():
    return StorageConfig()


@pytest.fixture
def manager(store, config, clock):
    """Manager without a legacy store."""
    return StorageManager(store, config=config, clock=clock, session=SessionCache())


@pytest.fixture
def legacy_manager(store, cookie_jar, config, clock):
    """Manager that migrates data found in the cookie jar."""
    return StorageManager(
        store, config=config, legacy_store=cookie_jar, clock=clock,
    )
