"""
Service Bus Explorer Client

Single entry point for the explorer shell. Entity management goes over
the management REST API; message operations go over AMQP. Each call
builds a fresh sub-client, so concurrent calls share nothing but the
resolved identity.
"""

from typing import Any, Dict, List, Optional, Union

import httpx

from sbexplorer.auth.connection import ConnectionDescriptor, ResolvedIdentity, resolve_identity
from sbexplorer.core.config_manager import ExplorerConfig
from sbexplorer.storage import ConnectionRecord, SecretStore, descriptor_for

from .logging_utils import StructuredLogger
from .management import ManagementClient
from .messaging import ClientFactory, DataPlaneClient
from .models import (
    MessageTarget,
    QueueProperties,
    ServiceBusMessage,
    SubscriptionProperties,
    TopicProperties,
)

logger = StructuredLogger(__name__)


class ServiceBusExplorerClient:
    """
    Explorer client for one Service Bus namespace.

    The connection descriptor is resolved once at construction, so a
    malformed connection string fails here, before any network call.

    Args:
        descriptor: Connection string or Azure AD descriptor
        config: Client settings (defaults apply when omitted)
        transport: Optional httpx transport for the management API
        amqp_client_factory: Optional factory for the AMQP client

    Example:
        >>> client = ServiceBusExplorerClient.from_connection_string(conn_str)
        >>> queues = await client.list_queues()
        >>> await client.send_message("orders", ServiceBusMessage(body={"id": 1}))
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        config: Optional[ExplorerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        amqp_client_factory: Optional[ClientFactory] = None,
    ):
        self.descriptor = descriptor
        self.config = config or ExplorerConfig()
        self.identity: ResolvedIdentity = resolve_identity(descriptor)
        self._transport = transport
        self._amqp_client_factory = amqp_client_factory

    @classmethod
    def from_connection_string(cls, connection_string: str, **kwargs: Any) -> "ServiceBusExplorerClient":
        return cls(ConnectionDescriptor.from_connection_string(connection_string), **kwargs)

    @classmethod
    async def from_secret_store(
        cls,
        record: ConnectionRecord,
        store: SecretStore,
        **kwargs: Any,
    ) -> "ServiceBusExplorerClient":
        """
        Build a client for a saved connection.

        Raises:
            SecretNotFoundError: If the record's connection string is missing
        """
        return cls(await descriptor_for(record, store), **kwargs)

    def _management(self) -> ManagementClient:
        settings = self.config.management
        return ManagementClient(
            self.identity,
            api_version=settings.api_version,
            token_validity_seconds=settings.token_validity_seconds,
            timeout=settings.request_timeout,
            transport=self._transport,
        )

    def _messaging(self) -> DataPlaneClient:
        return DataPlaneClient(
            self.identity,
            config=self.config.messaging,
            client_factory=self._amqp_client_factory,
        )

    # ========== Queues ==========

    async def list_queues(self) -> List[QueueProperties]:
        return await self._management().list_queues()

    async def get_queue(self, queue_name: str) -> QueueProperties:
        return await self._management().get_queue(queue_name)

    async def create_queue(
        self,
        queue_name: str,
        properties: Optional[Union[QueueProperties, Dict[str, Any]]] = None,
    ) -> None:
        await self._management().create_queue(queue_name, properties)

    async def update_queue(
        self,
        queue_name: str,
        properties: Union[QueueProperties, Dict[str, Any]],
    ) -> None:
        await self._management().update_queue(queue_name, properties)

    async def delete_queue(self, queue_name: str) -> None:
        await self._management().delete_queue(queue_name)

    # ========== Topics ==========

    async def list_topics(self) -> List[TopicProperties]:
        return await self._management().list_topics()

    async def get_topic(self, topic_name: str) -> TopicProperties:
        return await self._management().get_topic(topic_name)

    async def create_topic(
        self,
        topic_name: str,
        properties: Optional[Union[TopicProperties, Dict[str, Any]]] = None,
    ) -> None:
        await self._management().create_topic(topic_name, properties)

    async def update_topic(
        self,
        topic_name: str,
        properties: Union[TopicProperties, Dict[str, Any]],
    ) -> None:
        await self._management().update_topic(topic_name, properties)

    async def delete_topic(self, topic_name: str) -> None:
        await self._management().delete_topic(topic_name)

    # ========== Subscriptions ==========

    async def list_subscriptions(self, topic_name: str) -> List[SubscriptionProperties]:
        return await self._management().list_subscriptions(topic_name)

    async def get_subscription(self, topic_name: str, subscription_name: str) -> SubscriptionProperties:
        return await self._management().get_subscription(topic_name, subscription_name)

    async def create_subscription(
        self,
        topic_name: str,
        subscription_name: str,
        properties: Optional[Union[SubscriptionProperties, Dict[str, Any]]] = None,
    ) -> None:
        await self._management().create_subscription(topic_name, subscription_name, properties)

    async def update_subscription(
        self,
        topic_name: str,
        subscription_name: str,
        properties: Union[SubscriptionProperties, Dict[str, Any]],
    ) -> None:
        await self._management().update_subscription(topic_name, subscription_name, properties)

    async def delete_subscription(self, topic_name: str, subscription_name: str) -> None:
        await self._management().delete_subscription(topic_name, subscription_name)

    # ========== Messages ==========

    async def peek_messages(
        self,
        queue_name: str,
        max_count: Optional[int] = None,
        from_sequence_number: Optional[int] = None,
    ) -> List[ServiceBusMessage]:
        """Peek active messages on a queue."""
        return await self._messaging().peek(
            MessageTarget.queue(queue_name), max_count, from_sequence_number
        )

    async def peek_dead_letter_messages(
        self,
        queue_name: str,
        max_count: Optional[int] = None,
        from_sequence_number: Optional[int] = None,
    ) -> List[ServiceBusMessage]:
        """Peek a queue's dead-letter sub-queue."""
        return await self._messaging().peek(
            MessageTarget.queue(queue_name, dead_letter=True), max_count, from_sequence_number
        )

    async def peek_subscription_messages(
        self,
        topic_name: str,
        subscription_name: str,
        max_count: Optional[int] = None,
        dead_letter: bool = False,
        from_sequence_number: Optional[int] = None,
    ) -> List[ServiceBusMessage]:
        """Peek a subscription, or its dead-letter sub-queue."""
        target = MessageTarget.subscription(topic_name, subscription_name, dead_letter=dead_letter)
        return await self._messaging().peek(target, max_count, from_sequence_number)

    async def receive_messages(
        self,
        target: MessageTarget,
        max_count: Optional[int] = None,
        max_wait_time: Optional[float] = None,
    ) -> List[ServiceBusMessage]:
        """Receive and remove messages from a queue or subscription."""
        return await self._messaging().receive(target, max_count, max_wait_time)

    async def send_message(
        self,
        entity_name: str,
        message: Union[ServiceBusMessage, Dict[str, Any]],
        is_topic: bool = False,
    ) -> None:
        """Send one message to a queue, or to a topic when is_topic is set."""
        target = MessageTarget.topic(entity_name) if is_topic else MessageTarget.queue(entity_name)
        await self._messaging().send(target, message)

    async def purge_queue(self, queue_name: str, include_dead_letter: bool = False) -> int:
        """
        Remove every message from a queue or its dead-letter sub-queue.

        Best effort: see DataPlaneClient.purge for the limits.

        Returns:
            Number of messages removed
        """
        return await self._messaging().purge(queue_name, include_dead_letter)

    async def test_connection(self) -> bool:
        """
        Check that the namespace is reachable by listing its queues.

        Never raises: any failure is logged and reported as False.
        """
        try:
            await self._management().list_queues()
        except Exception as e:
            logger.warning(
                f"Connection test failed for {self.identity.fully_qualified_namespace}: {e}",
                operation="test_connection",
                error_type=type(e).__name__,
            )
            return False
        return True
