"""
Service Bus Data-Plane Client

Peek, receive, send and purge over AMQP using the azure-servicebus async
SDK. Every operation opens its own client inside an ``AsyncExitStack`` so
receivers, senders, the client and any token credential are closed on
every exit path, cancellation included.
"""

import json
from contextlib import AsyncExitStack, contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusMessage as AmqpMessage
from azure.servicebus import ServiceBusReceiveMode, ServiceBusSubQueue
from azure.servicebus.aio import ServiceBusClient
from azure.servicebus.amqp import AmqpMessageBodyType
from azure.servicebus import exceptions as sb_exceptions

from sbexplorer.auth.connection import ResolvedIdentity
from sbexplorer.auth.exceptions import AuthenticationError
from sbexplorer.core.config_manager import MessagingConfig

from .constants import DEAD_LETTER_DESCRIPTION_PROPERTY, DEAD_LETTER_REASON_PROPERTY
from .exceptions import (
    EntityNotFoundError,
    InvalidTargetError,
    OperationTimeoutError,
    ServerError,
    ServiceBusError,
    TransportError,
)
from .logging_utils import StructuredLogger, track_operation_time
from .models import MessageTarget, ServiceBusMessage

logger = StructuredLogger(__name__)

JSON_CONTENT_TYPE = "application/json"

ClientFactory = Callable[[ResolvedIdentity], ServiceBusClient]


# ========== Error translation ==========

@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Map azure-servicebus exceptions onto the client error hierarchy."""
    try:
        yield
    except ServiceBusError:
        raise
    except sb_exceptions.MessagingEntityNotFoundError as e:
        raise EntityNotFoundError(operation, None, str(e)) from e
    except sb_exceptions.OperationTimeoutError as e:
        raise OperationTimeoutError(operation, str(e)) from e
    except (sb_exceptions.ServiceBusConnectionError, sb_exceptions.ServiceBusCommunicationError) as e:
        raise TransportError(operation, str(e)) from e
    except (sb_exceptions.ServiceBusAuthenticationError, sb_exceptions.ServiceBusAuthorizationError) as e:
        raise AuthenticationError(
            f"Failed to {operation}: {e}",
            details={"operation": operation},
        ) from e
    except sb_exceptions.ServiceBusError as e:
        raise ServerError(operation, None, str(e)) from e


# ========== Wire message conversion ==========

def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def decode_body(raw: Any) -> Any:
    """
    Decode a message body for display.

    Bytes are tried as JSON, then as UTF-8 text, and otherwise replaced by
    a ``<binary data: N bytes>`` placeholder.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    if not isinstance(raw, (bytes, bytearray)):
        return raw

    try:
        text = bytes(raw).decode("utf-8")
    except UnicodeDecodeError:
        return f"<binary data: {len(raw)} bytes>"
    try:
        return json.loads(text)
    except ValueError:
        return text


def _message_body(message: Any) -> Any:
    body_type = getattr(message, "body_type", AmqpMessageBodyType.DATA)
    body = message.body

    if body_type == AmqpMessageBodyType.VALUE:
        return decode_body(body)
    if body_type == AmqpMessageBodyType.SEQUENCE:
        return [list(section) for section in body]
    if isinstance(body, (bytes, bytearray)):
        return decode_body(body)
    return decode_body(b"".join(body))


def _application_properties(message: Any) -> Optional[Dict[str, Any]]:
    properties = getattr(message, "application_properties", None)
    if not properties:
        return None
    return {
        _text(key): value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
        for key, value in properties.items()
    }


def to_message(message: Any) -> ServiceBusMessage:
    """Convert a received SDK message into a ServiceBusMessage."""
    properties = _application_properties(message)
    ttl = getattr(message, "time_to_live", None)

    reason = getattr(message, "dead_letter_reason", None)
    description = getattr(message, "dead_letter_error_description", None)
    if properties:
        reason = reason or _text(properties.get(DEAD_LETTER_REASON_PROPERTY))
        description = description or _text(properties.get(DEAD_LETTER_DESCRIPTION_PROPERTY))

    return ServiceBusMessage(
        body=_message_body(message),
        message_id=_text(getattr(message, "message_id", None)),
        correlation_id=_text(getattr(message, "correlation_id", None)),
        content_type=_text(getattr(message, "content_type", None)),
        session_id=_text(getattr(message, "session_id", None)),
        reply_to=_text(getattr(message, "reply_to", None)),
        reply_to_session_id=_text(getattr(message, "reply_to_session_id", None)),
        subject=_text(getattr(message, "subject", None)),
        time_to_live=int(ttl.total_seconds()) if ttl is not None else None,
        to=_text(getattr(message, "to", None)),
        application_properties=properties,
        delivery_count=getattr(message, "delivery_count", None),
        enqueued_time=getattr(message, "enqueued_time_utc", None),
        locked_until=getattr(message, "locked_until_utc", None),
        sequence_number=getattr(message, "sequence_number", None),
        dead_letter_reason=reason,
        dead_letter_error_description=description,
    )


def to_amqp_message(message: ServiceBusMessage) -> AmqpMessage:
    """
    Build the outbound SDK message.

    Dicts and lists are JSON encoded (content type defaults to
    application/json), strings are sent as-is and other scalars as their
    JSON text.
    """
    body = message.body
    content_type = message.content_type
    if isinstance(body, (dict, list)):
        payload = json.dumps(body)
        content_type = content_type or JSON_CONTENT_TYPE
    elif isinstance(body, (str, bytes)):
        payload = body
    elif body is None:
        payload = ""
    else:
        payload = json.dumps(body)

    return AmqpMessage(
        payload,
        application_properties=message.application_properties or None,
        session_id=message.session_id,
        message_id=message.message_id,
        time_to_live=timedelta(seconds=message.time_to_live) if message.time_to_live is not None else None,
        content_type=content_type,
        correlation_id=message.correlation_id,
        subject=message.subject,
        to=message.to,
        reply_to=message.reply_to,
        reply_to_session_id=message.reply_to_session_id,
    )


# ========== Client ==========

class DataPlaneClient:
    """
    AMQP operations on queues and topic subscriptions.

    Args:
        identity: Resolved namespace identity
        config: Messaging settings (purge limits, retry policy)
        client_factory: Optional callable returning an SDK client for an
            identity, used instead of the connection string or Azure AD
            credential (tests inject fakes here)
    """

    def __init__(
        self,
        identity: ResolvedIdentity,
        config: Optional[MessagingConfig] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.identity = identity
        self.config = config or MessagingConfig()
        self._client_factory = client_factory

    async def _open_client(self, stack: AsyncExitStack) -> ServiceBusClient:
        if self._client_factory is not None:
            client = self._client_factory(self.identity)
        elif self.identity.use_azure_ad:
            credential_kwargs = {}
            if self.identity.client_id:
                credential_kwargs["managed_identity_client_id"] = self.identity.client_id
            if self.identity.tenant_id:
                credential_kwargs["additionally_allowed_tenants"] = [self.identity.tenant_id]
            credential = await stack.enter_async_context(DefaultAzureCredential(**credential_kwargs))
            client = ServiceBusClient(
                fully_qualified_namespace=self.identity.fully_qualified_namespace,
                credential=credential,
                retry_total=self.config.retry_total,
                retry_backoff_max=self.config.retry_backoff_max,
            )
        else:
            client = ServiceBusClient.from_connection_string(
                self.identity.data_plane_connection_string,
                retry_total=self.config.retry_total,
                retry_backoff_max=self.config.retry_backoff_max,
            )
        return await stack.enter_async_context(client)

    @staticmethod
    def _receiver(client: ServiceBusClient, target: MessageTarget, **kwargs):
        sub_queue = ServiceBusSubQueue.DEAD_LETTER if target.dead_letter else None
        if target.is_queue:
            return client.get_queue_receiver(
                queue_name=target.queue_name, sub_queue=sub_queue, **kwargs
            )
        if target.is_subscription:
            return client.get_subscription_receiver(
                topic_name=target.topic_name,
                subscription_name=target.subscription_name,
                sub_queue=sub_queue,
                **kwargs
            )
        raise InvalidTargetError(
            f"Cannot receive from topic '{target.topic_name}' directly; name a subscription"
        )

    @track_operation_time(logger, "peek")
    async def peek(
        self,
        target: MessageTarget,
        max_count: Optional[int] = None,
        from_sequence_number: Optional[int] = None,
    ) -> List[ServiceBusMessage]:
        """
        Peek messages without locking or removing them.

        Args:
            target: Queue or subscription, optionally its dead-letter sub-queue
            max_count: Maximum number of messages to return
            from_sequence_number: Sequence number to start from; pass the
                last seen sequence number + 1 to page forward

        Returns:
            Up to max_count messages; an empty list for an empty entity
        """
        if max_count is None:
            max_count = self.config.default_peek_count
        peek_kwargs = {}
        if from_sequence_number is not None:
            peek_kwargs["sequence_number"] = from_sequence_number

        with translate_errors(f"peek messages from {target.entity_path}"):
            async with AsyncExitStack() as stack:
                client = await self._open_client(stack)
                receiver = await stack.enter_async_context(self._receiver(client, target))
                raw_messages = await receiver.peek_messages(max_message_count=max_count, **peek_kwargs)

        messages = [to_message(m) for m in raw_messages]
        logger.log_message_operation("peek", target.entity_path, len(messages))
        return messages

    @track_operation_time(logger, "receive")
    async def receive(
        self,
        target: MessageTarget,
        max_count: Optional[int] = None,
        max_wait_time: Optional[float] = None,
    ) -> List[ServiceBusMessage]:
        """
        Receive and complete messages (a destructive read).

        Messages are received in peek-lock mode and completed one by one,
        so a failure part-way leaves the rest to be redelivered.
        """
        if max_count is None:
            max_count = self.config.default_peek_count
        if max_wait_time is None:
            max_wait_time = self.config.purge_receive_timeout
        messages: List[ServiceBusMessage] = []

        with translate_errors(f"receive messages from {target.entity_path}"):
            async with AsyncExitStack() as stack:
                client = await self._open_client(stack)
                receiver = await stack.enter_async_context(self._receiver(
                    client, target, receive_mode=ServiceBusReceiveMode.PEEK_LOCK
                ))
                received = await receiver.receive_messages(
                    max_message_count=max_count, max_wait_time=max_wait_time
                )
                for raw in received:
                    messages.append(to_message(raw))
                    await receiver.complete_message(raw)

        logger.log_message_operation("receive", target.entity_path, len(messages))
        return messages

    @track_operation_time(logger, "send")
    async def send(
        self,
        target: MessageTarget,
        message: Union[ServiceBusMessage, Dict[str, Any]],
    ) -> None:
        """
        Send one message to a queue or topic.

        Raises:
            InvalidTargetError: For subscription or dead-letter targets
        """
        if isinstance(message, dict):
            message = ServiceBusMessage(**message)
        if target.dead_letter or target.is_subscription:
            raise InvalidTargetError(
                f"Messages can only be sent to a queue or topic, not {target.entity_path}"
            )

        outbound = to_amqp_message(message)

        with translate_errors(f"send message to {target.entity_path}"):
            async with AsyncExitStack() as stack:
                client = await self._open_client(stack)
                if target.is_queue:
                    sender = client.get_queue_sender(queue_name=target.queue_name)
                else:
                    sender = client.get_topic_sender(topic_name=target.topic_name)
                sender = await stack.enter_async_context(sender)
                await sender.send_messages(outbound)

        logger.log_message_operation("send", target.entity_path, 1, message_id=message.message_id)

    @track_operation_time(logger, "purge")
    async def purge(self, queue_name: str, include_dead_letter: bool = False) -> int:
        """
        Drain a queue, or its dead-letter sub-queue, in receive-and-delete mode.

        Stops after several consecutive empty or timed-out receives, or after
        a fixed number of iterations, whichever comes first. This is best effort and not
        transactional: messages sent while the drain runs may or may not be
        removed, and two concurrent purges of one queue race for the same
        messages.

        Args:
            queue_name: Queue to drain
            include_dead_letter: Drain the dead-letter sub-queue instead

        Returns:
            Number of messages removed
        """
        target = MessageTarget.queue(queue_name, dead_letter=include_dead_letter)
        operation = f"purge {target.entity_path}"
        config = self.config

        try:
            if not await self.peek(target, max_count=1):
                logger.info(f"Nothing to purge in {target.entity_path}", operation="purge")
                return 0
        except ServiceBusError as e:
            logger.warning(
                f"Pre-purge peek failed for {target.entity_path}, purging anyway: {e}",
                operation="purge",
                error_type=type(e).__name__,
            )

        removed = 0
        empty_receives = 0
        iterations = 0

        with translate_errors(operation):
            async with AsyncExitStack() as stack:
                client = await self._open_client(stack)
                receiver = await stack.enter_async_context(self._receiver(
                    client, target, receive_mode=ServiceBusReceiveMode.RECEIVE_AND_DELETE
                ))

                while empty_receives < config.purge_max_empty_receives:
                    if iterations >= config.purge_max_iterations:
                        logger.warning(
                            f"Purge of {target.entity_path} stopped at the iteration cap",
                            operation="purge",
                            iterations=iterations,
                            removed=removed,
                        )
                        break
                    iterations += 1

                    try:
                        batch = await receiver.receive_messages(
                            max_message_count=config.purge_batch_size,
                            max_wait_time=config.purge_receive_timeout,
                        )
                    except sb_exceptions.OperationTimeoutError as e:
                        logger.debug(
                            f"Receive timed out while purging {target.entity_path}: {e}",
                            operation="purge",
                        )
                        batch = []
                    if not batch:
                        empty_receives += 1
                        continue
                    empty_receives = 0
                    removed += len(batch)
                    logger.debug(
                        f"Purged {len(batch)} messages from {target.entity_path}",
                        operation="purge",
                        total=removed,
                    )

        logger.log_message_operation("purge", target.entity_path, removed, iterations=iterations)
        return removed
