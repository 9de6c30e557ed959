"""
In-Memory Secret Store Implementation.

Keeps connection strings in a dictionary. Ideal for tests and for shells
that manage their own persistence.
"""

import asyncio
from typing import Dict, List, Optional

from .backend import SecretStore


class InMemorySecretStore(SecretStore):
    """
    Dictionary-backed secret store.

    Limitations:
    - Data lost on process restart
    - Secrets held in plain process memory
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get_connection_string(self, connection_id: str) -> Optional[str]:
        async with self._lock:
            return self._secrets.get(connection_id)

    async def set_connection_string(self, connection_id: str, connection_string: str) -> None:
        if not connection_id:
            raise ValueError("Connection id cannot be empty")
        async with self._lock:
            self._secrets[connection_id] = connection_string

    async def delete_connection_string(self, connection_id: str) -> bool:
        async with self._lock:
            return self._secrets.pop(connection_id, None) is not None

    async def list_connection_ids(self) -> List[str]:
        async with self._lock:
            return sorted(self._secrets)

    def __repr__(self) -> str:
        return f"InMemorySecretStore(connections={len(self._secrets)})"
