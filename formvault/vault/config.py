"""
Vault Configuration — Retention and passphrase policy settings.

Reads optional overrides from environment variables:
    FORMVAULT_RETENTION_DAYS = <integer, days an envelope stays loadable>
    FORMVAULT_MIN_PASSPHRASE_LENGTH = <integer, validation floor for save()>
    FORMVAULT_STORAGE_KEY = <name of the storage slot>

Security Note:
    Never log passphrases. Only log policy values.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("formvault")

DEFAULT_RETENTION_DAYS = 30
DEFAULT_MIN_PASSPHRASE_LENGTH = 4
DEFAULT_STORAGE_KEY = "userFormData"


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable.

    Raises:
        ValueError: If the value is set but is not a valid integer.
    """
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"{name} must be an integer, got {raw!r}"
        ) from None


class StorageConfig(BaseModel):
    """Validated storage policy.

    ``retention_days`` is how long an envelope remains loadable after a
    save; ``min_passphrase_length`` is the floor enforced by ``save()``.
    """

    retention_days: int = Field(default=DEFAULT_RETENTION_DAYS, ge=1, le=3650)
    min_passphrase_length: int = Field(default=DEFAULT_MIN_PASSPHRASE_LENGTH, ge=1, le=1024)
    storage_key: str = Field(default=DEFAULT_STORAGE_KEY)

    model_config = {"frozen": True}

    @field_validator("storage_key")
    @classmethod
    def validate_storage_key(cls, v: str) -> str:
        """Validate the slot name is usable as a store key."""
        if not v:
            raise ValueError("storage_key cannot be empty")
        if any(c in v for c in ";=, \t\r\n"):
            raise ValueError(f"storage_key contains reserved characters: {v!r}")
        return v

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Create StorageConfig from environment overrides.

        Returns:
            Populated StorageConfig instance.
        """
        config = cls(
            retention_days=_env_int("FORMVAULT_RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
            min_passphrase_length=_env_int(
                "FORMVAULT_MIN_PASSPHRASE_LENGTH", DEFAULT_MIN_PASSPHRASE_LENGTH
            ),
            storage_key=os.environ.get("FORMVAULT_STORAGE_KEY", DEFAULT_STORAGE_KEY),
        )
        logger.debug(
            "Storage config loaded: retention=%d days, min_passphrase=%d",
            config.retention_days, config.min_passphrase_length,
        )
        return config
