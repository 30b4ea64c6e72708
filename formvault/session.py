import time
from typing import Optional


class SessionCache:
    """Single-slot, in-memory passphrase cache for one active session.

    Set after a successful save or load so that later updates do not have
    to prompt the user again. Nothing here is ever persisted.

    An optional ``max_age`` (seconds) bounds how long a cached passphrase
    stays usable; an entry older than that reads as absent.
    """

    def __init__(self, max_age: Optional[int] = None) -> None:
        self._passphrase: Optional[str] = None
        self._created: Optional[float] = None
        self._max_age = max_age

    def __repr__(self) -> str:
        state = 'active' if self.active else 'empty'
        return f'<SessionCache [{state}] max_age={self._max_age}>'

    __str__ = __repr__

    def _stale(self) -> bool:
        if self._created is None or self._max_age is None:
            return False
        return (time.monotonic() - self._created) > self._max_age

    # --- Properties ---

    @property
    def active(self) -> bool:
        return self.get() is not None

    @property
    def created(self) -> Optional[float]:
        """Monotonic time the current entry was cached, if any."""
        return self._created

    # --- Slot access ---

    def set(self, passphrase: str) -> None:
        """Overwrite the cached passphrase."""
        self._passphrase = passphrase
        self._created = time.monotonic()

    def get(self) -> Optional[str]:
        """Return the cached passphrase, or None when empty or stale."""
        if self._passphrase is None:
            return None
        if self._stale():
            self.invalidate()
            return None
        return self._passphrase

    def invalidate(self) -> None:
        """Forget the cached passphrase."""
        self._passphrase = None
        self._created = None
