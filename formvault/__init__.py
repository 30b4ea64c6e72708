"""FormVault.

Keeps in-progress form data encrypted on the user's own device.
"""
from .version import __version__
from .session import SessionCache
from .vault import *  # noqa: F401,F403
from .vault import __all__ as _vault_all
from .vault.crypto import serialize_form, deserialize_form

__all__ = [
    "__version__",
    "SessionCache",
    "serialize_form",
    "deserialize_form",
    *_vault_all,
]
