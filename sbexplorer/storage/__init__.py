"""
Secret storage for saved connections.

The explorer shell keeps connection strings in a secret store (an OS
keychain in production) keyed by connection id.
"""

from .backend import ConnectionRecord, SecretStore, descriptor_for
from .exceptions import SecretNotFoundError, SecretStoreError
from .memory_store import InMemorySecretStore

__all__ = [
    "ConnectionRecord",
    "SecretStore",
    "descriptor_for",
    "InMemorySecretStore",
    "SecretStoreError",
    "SecretNotFoundError",
]
