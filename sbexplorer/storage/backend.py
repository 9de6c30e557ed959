"""
Abstract Secret Store Interface.

Defines the contract the explorer shell's credential storage (an OS
keychain, or an in-memory store in tests) must fulfill, and the
non-secret connection record kept alongside it.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sbexplorer.auth.connection import ConnectionDescriptor

from .exceptions import SecretNotFoundError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionRecord(BaseModel):
    """
    A saved connection, without its secret.

    Connection strings live in the SecretStore, keyed by ``id``; Azure AD
    connections need no secret at all.
    """
    model_config = ConfigDict(extra='forbid')

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    namespace: Optional[str] = None
    use_azure_ad: bool = False
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class SecretStore(ABC):
    """
    Abstract base class for connection string storage.

    Implementations must never log or otherwise expose stored values.
    """

    @abstractmethod
    async def get_connection_string(self, connection_id: str) -> Optional[str]:
        """
        Retrieve the connection string for a connection.

        Returns:
            The stored connection string, or None if nothing is stored
        """
        pass

    @abstractmethod
    async def set_connection_string(self, connection_id: str, connection_string: str) -> None:
        """Store (or replace) the connection string for a connection."""
        pass

    @abstractmethod
    async def delete_connection_string(self, connection_id: str) -> bool:
        """
        Delete the connection string for a connection.

        Returns:
            True if a value was deleted, False if none was stored
        """
        pass

    @abstractmethod
    async def list_connection_ids(self) -> List[str]:
        """List the ids that have a stored connection string."""
        pass


async def descriptor_for(record: ConnectionRecord, store: SecretStore) -> ConnectionDescriptor:
    """
    Build the ConnectionDescriptor for a saved connection.

    Raises:
        SecretNotFoundError: If a connection-string record has no stored secret
    """
    if record.use_azure_ad:
        return ConnectionDescriptor.for_azure_ad(
            namespace=record.namespace or "",
            tenant_id=record.tenant_id,
            client_id=record.client_id,
        )

    connection_string = await store.get_connection_string(record.id)
    if not connection_string:
        raise SecretNotFoundError(record.id)
    return ConnectionDescriptor.from_connection_string(connection_string)
