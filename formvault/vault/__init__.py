"""Form Vault — Passphrase-encrypted form data kept on the user device.

Security Note (Threat Model):
    The passphrase and decrypted payload live in process memory while a
    session is active. Anyone able to read that memory, or to log the
    keystrokes used to type the passphrase, can recover the data.
    This is an accepted limitation; the vault only protects data at rest.
"""

from .manager import StorageManager
from .migration import LegacyMigrator, MigrationResult
from .config import StorageConfig
from .envelope import StorageEnvelope, FORMAT_VERSION
from .stores import KeyValueStore, MemoryStore, FileStore, CookieStore
from .errors import (
    FormVaultError,
    ValidationError,
    AuthenticationFailure,
    NotFound,
    Expired,
    NoActivePassphrase,
    StorageWriteFailure,
    StorageReadFailure,
    EnvelopeFormatError,
)

__all__ = [
    "StorageManager",
    "LegacyMigrator",
    "MigrationResult",
    "StorageConfig",
    "StorageEnvelope",
    "FORMAT_VERSION",
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    "CookieStore",
    "FormVaultError",
    "ValidationError",
    "AuthenticationFailure",
    "NotFound",
    "Expired",
    "NoActivePassphrase",
    "StorageWriteFailure",
    "StorageReadFailure",
    "EnvelopeFormatError",
]
