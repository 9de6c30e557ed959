"""
Tests for the secret store and saved connection records.
"""

import pytest
from pydantic import ValidationError

from sbexplorer.storage import (
    ConnectionRecord,
    InMemorySecretStore,
    SecretNotFoundError,
    descriptor_for,
)

CONNECTION_STRING = (
    "Endpoint=sb://myns.servicebus.windows.net/;"
    "SharedAccessKeyName=RootManageSharedAccessKey;"
    "SharedAccessKey=c2VjcmV0"
)


class TestInMemorySecretStore:
    """Test the dictionary-backed store."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        """Test the basic lifecycle of a stored secret."""
        store = InMemorySecretStore()

        await store.set_connection_string("conn-1", CONNECTION_STRING)
        assert await store.get_connection_string("conn-1") == CONNECTION_STRING

        assert await store.delete_connection_string("conn-1") is True
        assert await store.get_connection_string("conn-1") is None
        assert await store.delete_connection_string("conn-1") is False

    @pytest.mark.asyncio
    async def test_list_sorted(self):
        """Test ids are listed in sorted order."""
        store = InMemorySecretStore({"b": "x", "a": "y"})
        assert await store.list_connection_ids() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self):
        """Test secrets need an id."""
        with pytest.raises(ValueError):
            await InMemorySecretStore().set_connection_string("", CONNECTION_STRING)

    def test_repr_hides_secrets(self):
        """Test repr shows only a count."""
        store = InMemorySecretStore({"conn-1": CONNECTION_STRING})
        assert repr(store) == "InMemorySecretStore(connections=1)"


class TestConnectionRecord:
    """Test saved connection records."""

    def test_defaults(self):
        """Test timestamps are filled in."""
        record = ConnectionRecord(id="conn-1", name="Production")
        assert record.use_azure_ad is False
        assert record.created_at.tzinfo is not None

    def test_name_required(self):
        """Test empty names are rejected."""
        with pytest.raises(ValidationError):
            ConnectionRecord(id="conn-1", name="")


class TestDescriptorFor:
    """Test resolving a record into a connection descriptor."""

    @pytest.mark.asyncio
    async def test_connection_string(self):
        """Test the stored secret becomes the descriptor's connection string."""
        store = InMemorySecretStore({"conn-1": CONNECTION_STRING})

        descriptor = await descriptor_for(ConnectionRecord(id="conn-1", name="Prod"), store)

        assert descriptor.connection_string == CONNECTION_STRING
        assert descriptor.use_azure_ad is False

    @pytest.mark.asyncio
    async def test_azure_ad(self):
        """Test Azure AD records carry tenant and client ids."""
        record = ConnectionRecord(
            id="conn-2", name="Dev", namespace="devns", use_azure_ad=True,
            tenant_id="tenant", client_id="client",
        )

        descriptor = await descriptor_for(record, InMemorySecretStore())

        assert descriptor.use_azure_ad
        assert descriptor.namespace == "devns"
        assert descriptor.tenant_id == "tenant"
        assert descriptor.client_id == "client"

    @pytest.mark.asyncio
    async def test_missing_secret(self):
        """Test a record without a secret raises SecretNotFoundError."""
        with pytest.raises(SecretNotFoundError):
            await descriptor_for(ConnectionRecord(id="gone", name="Old"), InMemorySecretStore())
