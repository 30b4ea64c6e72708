"""
Exception classes for the form vault.

Every failure a caller can observe is a subclass of ``FormVaultError``.
"""


class FormVaultError(Exception):
    """Base exception for all form vault operations."""


class ValidationError(FormVaultError):
    """Bad caller input: empty payload, empty or too short passphrase."""


class AuthenticationFailure(FormVaultError):
    """Wrong passphrase or tampered/corrupted data.

    Both causes share this type and message on purpose.
    """

    def __init__(self, message: str = "Failed to decrypt data. Invalid phrase or corrupted data."):
        super().__init__(message)


class NotFound(FormVaultError):
    """No envelope is stored in the slot."""


class Expired(FormVaultError):
    """The envelope outlived its retention window and has been deleted."""


class NoActivePassphrase(FormVaultError):
    """update() was called while no passphrase is cached for the session."""


class StorageWriteFailure(FormVaultError):
    """The underlying store rejected a write (quota exceeded, I/O error)."""


class StorageReadFailure(FormVaultError):
    """The underlying store could not be read (corrupt document, I/O error)."""


class EnvelopeFormatError(FormVaultError):
    """Stored envelope text could not be decoded."""
