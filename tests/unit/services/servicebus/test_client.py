"""
Tests for the explorer client facade.
"""

import httpx
import pytest
from azure.servicebus import ServiceBusSubQueue

from sbexplorer import ServiceBusExplorerClient
from sbexplorer.auth.connection import ConnectionDescriptor
from sbexplorer.core.config_manager import ExplorerConfig
from sbexplorer.servicebus.exceptions import (
    ConnectionStringError,
    MissingConnectionFieldError,
    UnsupportedEndpointError,
)
from sbexplorer.servicebus.models import ServiceBusMessage
from sbexplorer.storage import ConnectionRecord, InMemorySecretStore, SecretNotFoundError

CONNECTION_STRING = (
    "Endpoint=sb://myns.servicebus.windows.net/;"
    "SharedAccessKeyName=RootManageSharedAccessKey;"
    "SharedAccessKey=c2VjcmV0"
)

EMPTY_FEED = '<feed xmlns="http://www.w3.org/2005/Atom"><title type="text">Queues</title></feed>'


class RecordingAmqp:
    """Minimal AMQP client double that records receiver requests."""

    def __init__(self, peeked=None):
        self.peeked = list(peeked or [])
        self.receiver_kwargs = []
        self.sent = []
        self.peek_kwargs = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def get_queue_receiver(self, **kwargs):
        self.receiver_kwargs.append(kwargs)
        return self

    def get_subscription_receiver(self, **kwargs):
        self.receiver_kwargs.append(kwargs)
        return self

    def get_queue_sender(self, **kwargs):
        return self

    def get_topic_sender(self, **kwargs):
        return self

    async def peek_messages(self, **kwargs):
        self.peek_kwargs.append(kwargs)
        return self.peeked

    async def send_messages(self, message):
        self.sent.append(message)


class TestConstruction:
    """Test validation at construction time."""

    def test_from_connection_string(self):
        """Test the identity is resolved up front."""
        client = ServiceBusExplorerClient.from_connection_string(CONNECTION_STRING)

        assert client.identity.namespace == "myns"
        assert client.identity.base_url == "https://myns.servicebus.windows.net"

    def test_missing_field_fails_before_network(self):
        """Test a connection string without a key fails in the constructor."""
        with pytest.raises(MissingConnectionFieldError):
            ServiceBusExplorerClient.from_connection_string(
                "Endpoint=sb://myns.servicebus.windows.net/;SharedAccessKeyName=n"
            )

    def test_empty_connection_string(self):
        """Test an empty connection string is rejected."""
        with pytest.raises(ConnectionStringError):
            ServiceBusExplorerClient.from_connection_string("")

    def test_unknown_cloud(self):
        """Test hosts outside the known clouds are rejected."""
        with pytest.raises(UnsupportedEndpointError):
            ServiceBusExplorerClient.from_connection_string(
                "Endpoint=sb://myns.example.com/;SharedAccessKeyName=n;SharedAccessKey=k"
            )

    def test_azure_ad_descriptor(self):
        """Test an Azure AD descriptor resolves without key material."""
        client = ServiceBusExplorerClient(ConnectionDescriptor.for_azure_ad("myns"))
        assert client.identity.use_azure_ad

    def test_invalid_descriptor(self):
        """Test a descriptor without either mode cannot be built."""
        with pytest.raises(ConnectionStringError):
            ServiceBusExplorerClient(ConnectionDescriptor())


class TestFromSecretStore:
    """Test building clients for saved connections."""

    @pytest.mark.asyncio
    async def test_connection_string_record(self):
        """Test the stored connection string is used."""
        store = InMemorySecretStore({"conn-1": CONNECTION_STRING})
        record = ConnectionRecord(id="conn-1", name="Production")

        client = await ServiceBusExplorerClient.from_secret_store(record, store)

        assert client.identity.namespace == "myns"

    @pytest.mark.asyncio
    async def test_missing_secret(self):
        """Test a record without a stored secret fails."""
        record = ConnectionRecord(id="conn-1", name="Production")

        with pytest.raises(SecretNotFoundError) as exc_info:
            await ServiceBusExplorerClient.from_secret_store(record, InMemorySecretStore())

        assert exc_info.value.connection_id == "conn-1"

    @pytest.mark.asyncio
    async def test_azure_ad_record_needs_no_secret(self):
        """Test Azure AD records resolve from the record alone."""
        record = ConnectionRecord(id="conn-2", name="Dev", namespace="devns", use_azure_ad=True)

        client = await ServiceBusExplorerClient.from_secret_store(record, InMemorySecretStore())

        assert client.identity.fully_qualified_namespace == "devns.servicebus.windows.net"


class TestTestConnection:
    """Test the reachability check."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test an empty listing counts as reachable."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=EMPTY_FEED))
        client = ServiceBusExplorerClient.from_connection_string(CONNECTION_STRING, transport=transport)

        assert await client.test_connection() is True

    @pytest.mark.asyncio
    async def test_server_error_is_false(self):
        """Test a failing listing returns False instead of raising."""
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Unauthorized"))
        client = ServiceBusExplorerClient.from_connection_string(CONNECTION_STRING, transport=transport)

        assert await client.test_connection() is False

    @pytest.mark.asyncio
    async def test_azure_ad_is_false(self):
        """Test Azure AD management access reports False."""
        client = ServiceBusExplorerClient(ConnectionDescriptor.for_azure_ad("myns"))
        assert await client.test_connection() is False


class TestDelegation:
    """Test facade methods reach the right sub-client."""

    @pytest.mark.asyncio
    async def test_config_reaches_management_client(self):
        """Test the configured API version is used on the wire."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text=EMPTY_FEED)

        config = ExplorerConfig(management={"api_version": "2017-04"})
        client = ServiceBusExplorerClient.from_connection_string(
            CONNECTION_STRING, config=config, transport=httpx.MockTransport(handler)
        )

        await client.list_topics()

        assert seen[0].url.params["api-version"] == "2017-04"

    @pytest.mark.asyncio
    async def test_peek_dead_letter_messages(self):
        """Test dead-letter peeks select the dead-letter sub-queue."""
        amqp = RecordingAmqp()
        client = ServiceBusExplorerClient.from_connection_string(
            CONNECTION_STRING, amqp_client_factory=lambda identity: amqp
        )

        assert await client.peek_dead_letter_messages("orders", max_count=3) == []
        assert amqp.receiver_kwargs == [{"queue_name": "orders", "sub_queue": ServiceBusSubQueue.DEAD_LETTER}]
        assert amqp.peek_kwargs == [{"max_message_count": 3}]

    @pytest.mark.asyncio
    async def test_peek_subscription_messages(self):
        """Test subscription peeks address the subscription."""
        amqp = RecordingAmqp()
        client = ServiceBusExplorerClient.from_connection_string(
            CONNECTION_STRING, amqp_client_factory=lambda identity: amqp
        )

        await client.peek_subscription_messages("events", "audit", from_sequence_number=11)

        assert amqp.receiver_kwargs[0]["topic_name"] == "events"
        assert amqp.receiver_kwargs[0]["subscription_name"] == "audit"
        assert amqp.peek_kwargs == [{"max_message_count": 10, "sequence_number": 11}]

    @pytest.mark.asyncio
    async def test_send_to_topic(self):
        """Test is_topic routes a send to the topic."""
        amqp = RecordingAmqp()
        client = ServiceBusExplorerClient.from_connection_string(
            CONNECTION_STRING, amqp_client_factory=lambda identity: amqp
        )

        await client.send_message("events", ServiceBusMessage(body="hi"), is_topic=True)

        assert len(amqp.sent) == 1

