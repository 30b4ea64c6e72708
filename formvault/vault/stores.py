"""
Key-value stores that hold vault envelopes on the user device.

This module provides:
- KeyValueStore: Abstract protocol for text-only key-value backends
- MemoryStore: In-memory implementation with an optional quota
- FileStore: JSON document on disk, replaced atomically on every write
- CookieStore: Small-capacity cookie jar (legacy storage location)

Every backend offers atomic single-key replace; none of them understands
what the values mean.
"""
import os
import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from http.cookies import SimpleCookie, CookieError
from datetime import datetime, timezone
from typing import Callable, Optional, Union

import orjson

from .errors import StorageReadFailure, StorageWriteFailure

logger = logging.getLogger("formvault")

# Browsers cap a single cookie (name + value) around 4 KB.
COOKIE_MAX_SIZE = 4096


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueStore(ABC):
    """Abstract text-only key-value store.

    All methods are async so file-backed and in-memory stores share one
    interface.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None.

        Raises:
            StorageReadFailure: If the backend cannot be read.
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Replace the value under key.

        Raises:
            StorageWriteFailure: If the backend rejects the write. The
                previous value is left untouched.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. No-op if absent."""
        ...

    @abstractmethod
    async def keys(self) -> list[str]:
        """List stored keys."""
        ...

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None


class MemoryStore(KeyValueStore):
    """Dict-backed store for tests and single-process use.

    Args:
        quota: Optional capacity, in characters, over all stored values.
    """

    def __init__(self, quota: Optional[int] = None, data: Optional[dict[str, str]] = None):
        self._quota = quota
        self._data: dict[str, str] = dict(data or {})

    def __repr__(self) -> str:
        return f'<MemoryStore keys={sorted(self._data.keys())} quota={self._quota}>'

    def _check_quota(self, key: str, value: str) -> None:
        if self._quota is None:
            return
        used = sum(len(v) for k, v in self._data.items() if k != key)
        if used + len(value) > self._quota:
            raise StorageWriteFailure(
                f"Storage quota exceeded: {used + len(value)} > {self._quota} characters"
            )

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data.keys())


class FileStore(KeyValueStore):
    """Persist all keys as one JSON document on disk.

    Writes go to a temporary file in the same directory which then
    replaces the document, so a failed write never leaves a partial file.
    """

    def __init__(self, path: Union[str, Path], quota: Optional[int] = None):
        self._path = Path(path)
        self._quota = quota
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f'<FileStore path={str(self._path)!r}>'

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as err:
            raise StorageReadFailure(f"Unable to read {self._path}: {err}") from err
        if not raw.strip():
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Store document %s is corrupt (%d bytes)", self._path, len(raw))
            raise StorageReadFailure(f"{self._path} is not a valid store document") from None
        if not isinstance(data, dict):
            raise StorageReadFailure(f"{self._path} does not hold a JSON object")
        return data

    def _read_for_write(self) -> dict[str, str]:
        try:
            return self._read()
        except StorageReadFailure as err:
            raise StorageWriteFailure(str(err)) from err

    def _write(self, data: dict[str, str]) -> None:
        if self._quota is not None:
            used = sum(len(v) for v in data.values())
            if used > self._quota:
                raise StorageWriteFailure(
                    f"Storage quota exceeded: {used} > {self._quota} characters"
                )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as fp:
                    fp.write(orjson.dumps(data))
                    fp.flush()
                    os.fsync(fp.fileno())
                os.chmod(tmp, 0o600)
                os.replace(tmp, self._path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except FileNotFoundError:
                    pass
                raise
        except OSError as err:
            raise StorageWriteFailure(f"Unable to write {self._path}: {err}") from err

    async def get(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_for_write)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_for_write)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write, data)

    async def keys(self) -> list[str]:
        data = await asyncio.to_thread(self._read)
        return list(data.keys())


class CookieStore(KeyValueStore):
    """Cookie jar used by the legacy storage format.

    Values live in a ``SimpleCookie``; an optional per-cookie expiry is
    honored on read. Each cookie is capped at ``max_size`` characters,
    name included.

    Args:
        header: Initial ``Cookie`` header, e.g. ``"a=1; b=2"``.
        max_size: Capacity of a single cookie.
        clock: Returns the current time; used for expiry checks.
    """

    def __init__(
        self,
        header: str = "",
        max_size: int = COOKIE_MAX_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._jar: SimpleCookie = SimpleCookie()
        self._expires: dict[str, datetime] = {}
        self._max_size = max_size
        self._clock = clock or _utcnow
        if header:
            try:
                self._jar.load(header)
            except CookieError as err:
                raise ValueError(f"Invalid cookie header: {err}") from err

    def __repr__(self) -> str:
        return f'<CookieStore cookies={sorted(self._jar.keys())}>'

    def _expired(self, key: str) -> bool:
        expires = self._expires.get(key)
        return expires is not None and self._clock() >= expires

    def _drop(self, key: str) -> None:
        self._jar.pop(key, None)
        self._expires.pop(key, None)

    def to_header(self) -> str:
        """Render the live cookies as a ``Cookie`` header value."""
        return "; ".join(
            f"{key}={morsel.coded_value}"
            for key, morsel in self._jar.items()
            if not self._expired(key)
        )

    async def get(self, key: str) -> Optional[str]:
        if key not in self._jar:
            return None
        if self._expired(key):
            self._drop(key)
            return None
        return self._jar[key].value

    async def set(self, key: str, value: str, expires: Optional[datetime] = None) -> None:
        if len(key) + len(value) + 1 > self._max_size:
            raise StorageWriteFailure(
                f"Cookie {key} exceeds {self._max_size} characters"
            )
        try:
            self._jar[key] = value
        except CookieError as err:
            raise StorageWriteFailure(f"Cookie {key} rejected: {err}") from err
        self._jar[key]["path"] = "/"
        self._jar[key]["samesite"] = "Strict"
        if expires is not None:
            self._jar[key]["expires"] = expires.strftime("%a, %d %b %Y %H:%M:%S GMT")
            self._expires[key] = expires
        else:
            self._expires.pop(key, None)

    async def delete(self, key: str) -> None:
        self._drop(key)

    async def keys(self) -> list[str]:
        return [key for key in self._jar.keys() if not self._expired(key)]
