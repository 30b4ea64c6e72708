"""
Storage Envelope — the versioned record written to the key-value store.

Wire format (a single JSON text value)::

    {"formatVersion": 2, "salt": "<b64>", "nonce": "<b64>",
     "ciphertext": "<b64>", "authTag": "<b64>",
     "createdAt": "<iso8601>", "expiresAt": "<iso8601>"}

``createdAt`` and ``expiresAt`` are stored in clear so callers can ask
whether data exists, and for how long, without a passphrase.
"""
import math
import base64
import binascii
from datetime import datetime, timedelta, timezone

import orjson
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .crypto import SALT_SIZE, NONCE_SIZE, TAG_SIZE
from .errors import EnvelopeFormatError

FORMAT_VERSION = 2

_BINARY_FIELDS = ("salt", "nonce", "ciphertext", "authTag")
_DAY = timedelta(days=1)


def remaining_days(expires_at: datetime, now: datetime) -> int:
    """Whole days left until ``expires_at``, rounded up, never negative."""
    seconds = (expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / _DAY.total_seconds()))


class StorageEnvelope(BaseModel):
    """Encrypted payload plus the metadata needed to decrypt it."""

    format_version: int = Field(default=FORMAT_VERSION, alias="formatVersion")
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes = Field(alias="authTag")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("format_version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v != FORMAT_VERSION:
            raise ValueError(f"Unsupported envelope format version: {v}")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if len(v) != SALT_SIZE:
            raise ValueError(f"salt must be {SALT_SIZE} bytes, got {len(v)}")
        return v

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: bytes) -> bytes:
        if len(v) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(v)}")
        return v

    @field_validator("auth_tag")
    @classmethod
    def validate_tag(cls, v: bytes) -> bytes:
        if len(v) != TAG_SIZE:
            raise ValueError(f"authTag must be {TAG_SIZE} bytes, got {len(v)}")
        return v

    @field_validator("created_at", "expires_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def __repr__(self) -> str:
        return (
            f'<StorageEnvelope v{self.format_version} '
            f'created={self.created_at.isoformat()} '
            f'expires={self.expires_at.isoformat()} '
            f'size={len(self.ciphertext)}>'
        )

    __str__ = __repr__

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_days(self, now: datetime) -> int:
        return remaining_days(self.expires_at, now)

    def to_text(self) -> str:
        """Serialize the envelope to a text value for a text-only store."""
        record = {
            "formatVersion": self.format_version,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "authTag": base64.b64encode(self.auth_tag).decode("ascii"),
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
        }
        return orjson.dumps(record).decode("utf-8")

    @classmethod
    def from_text(cls, text: str) -> "StorageEnvelope":
        """Parse an envelope previously produced by ``to_text``.

        Raises:
            EnvelopeFormatError: If the text is not a well-formed envelope.
        """
        try:
            record = orjson.loads(text)
        except orjson.JSONDecodeError as err:
            raise EnvelopeFormatError(f"Envelope is not valid JSON: {err}") from None
        if not isinstance(record, dict):
            raise EnvelopeFormatError("Envelope must be a JSON object")
        try:
            for name in _BINARY_FIELDS:
                value = record.get(name)
                if not isinstance(value, str):
                    raise EnvelopeFormatError(f"Envelope field {name} is missing")
                record[name] = base64.b64decode(value, validate=True)
        except binascii.Error as err:
            raise EnvelopeFormatError(f"Envelope field is not base64: {err}") from None
        try:
            return cls.model_validate(record)
        except PydanticValidationError as err:
            raise EnvelopeFormatError(
                f"Invalid envelope: {err.error_count()} error(s)"
            ) from None
