"""
Service Bus Management Client

Queue, topic and subscription CRUD over the Atom/XML management REST API.
Every request carries a SAS token signed for the exact URL it hits.
"""

import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote, urljoin

import httpx

from sbexplorer.auth.connection import ResolvedIdentity
from sbexplorer.auth.sas import SasTokenProvider

from .atom import parse_entry, parse_feed
from .constants import (
    API_VERSION,
    ATOM_ENTRY_CONTENT_TYPE,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_VALIDITY,
    LIST_QUEUES_PATH,
    LIST_TOPICS_PATH,
    SUBSCRIPTIONS_SEGMENT,
)
from .exceptions import (
    EntityNotFoundError,
    OperationTimeoutError,
    ResponseParseError,
    ServerError,
    TransportError,
    ValidationError,
)
from .logging_utils import StructuredLogger, track_operation_time
from .models import QueueProperties, SubscriptionProperties, TopicProperties
from .serialization import (
    QUEUE_SCHEMA,
    SUBSCRIPTION_SCHEMA,
    TOPIC_SCHEMA,
    EntitySchema,
    build_entity_xml,
    coerce_properties,
    entry_to_properties,
    merge_for_update,
)

logger = StructuredLogger(__name__)

_ENCODED_DOLLAR_RE = re.compile(r'%24', re.IGNORECASE)


def _require_name(value: Optional[str], label: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} cannot be empty")
    return value.strip()


class ManagementClient:
    """
    Client for the Service Bus management REST API.

    Holds no state across calls beyond the resolved identity; every public
    method opens and closes its own HTTP client.

    Args:
        identity: Resolved namespace identity
        api_version: Management API version query parameter
        token_validity_seconds: Lifetime of each per-request SAS token
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (used to fake the service in tests)
    """

    def __init__(
        self,
        identity: ResolvedIdentity,
        api_version: str = API_VERSION,
        token_validity_seconds: int = DEFAULT_TOKEN_VALIDITY,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.identity = identity
        self.base_url = identity.base_url
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport
        self._tokens = SasTokenProvider(identity, token_validity_seconds)

    # ========== HTTP plumbing ==========

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}?api-version={self.api_version}"

    def _entity_url(self, *segments: str) -> str:
        return self._url("/".join(quote(segment, safe="/") for segment in segments))

    def _normalize_link(self, link: str) -> str:
        """Resolve a next link to an absolute URL comparable with the current one."""
        link = _ENCODED_DOLLAR_RE.sub("$", link.strip())
        if not link.lower().startswith(("http://", "https://")):
            link = urljoin(self.base_url + "/", link)
        if "api-version=" not in link:
            link += ("&" if "?" in link else "?") + f"api-version={self.api_version}"
        return link

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            yield client

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        operation: str,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send one signed request and translate failures.

        Raises:
            AuthModeNotImplementedError: For Azure AD identities
            OperationTimeoutError: If the request times out
            TransportError: If the connection fails
            EntityNotFoundError: On 404
            ServerError: On any other non-2xx status
        """
        request_headers = {"Authorization": self._tokens.authorization_header(url)}
        if headers:
            request_headers.update(headers)

        logger.debug(f"{method} {url}", operation=operation)
        try:
            response = await client.request(method, url, content=content, headers=request_headers)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError(operation, str(e) or "request timed out") from e
        except httpx.TransportError as e:
            raise TransportError(operation, str(e) or type(e).__name__) from e

        if response.status_code == 404:
            raise EntityNotFoundError(operation, 404, response.text)
        if not response.is_success:
            raise ServerError(operation, response.status_code, response.text)
        return response

    async def _list(self, path: str, operation: str, build) -> List[Any]:
        """
        Follow a paginated listing until it is exhausted.

        Stops on an empty page, a missing next link, or a next link that
        points back at any page already fetched.
        """
        results: List[Any] = []
        url = self._url(path)
        seen = {url}
        page = 0

        async with self._client() as client:
            while True:
                page += 1
                response = await self._send(client, "GET", url, operation)
                feed = parse_feed(response.text)
                logger.debug(
                    f"{operation}: page {page} returned {len(feed.entries)} entries",
                    operation=operation,
                    page=page,
                )

                if not feed.entries:
                    break
                results.extend(build(entry) for entry in feed.entries)

                if not feed.next_link:
                    break
                next_url = self._normalize_link(feed.next_link)
                if next_url in seen:
                    logger.debug(f"{operation}: next link points at a page already fetched, stopping")
                    break
                seen.add(next_url)
                url = next_url

        return results

    async def _get(self, url: str, operation: str, label: str):
        async with self._client() as client:
            response = await self._send(client, "GET", url, operation)

        entry = parse_entry(response.text)
        if entry is None:
            if "feed" in response.text:
                # The service answers an empty feed for some missing entities
                raise EntityNotFoundError(
                    operation, response.status_code, response.text,
                    message=f"Failed to {operation}: {label} not found",
                )
            raise ResponseParseError(operation, "response holds no entry")
        return entry

    async def _put(
        self,
        url: str,
        operation: str,
        body: str,
        if_match: bool = False,
    ) -> None:
        headers = {"Content-Type": ATOM_ENTRY_CONTENT_TYPE}
        if if_match:
            headers["If-Match"] = "*"
        async with self._client() as client:
            await self._send(client, "PUT", url, operation, content=body, headers=headers)

    async def _delete(self, url: str, operation: str) -> None:
        async with self._client() as client:
            await self._send(client, "DELETE", url, operation)

    async def _update(
        self,
        schema: EntitySchema,
        url: str,
        operation: str,
        existing: Any,
        properties: Any,
    ) -> None:
        update = coerce_properties(schema, properties)
        merged = merge_for_update(schema, existing, update) if update is not None else existing
        await self._put(url, operation, build_entity_xml(schema, merged, for_update=True), if_match=True)

    # ========== Queue operations ==========

    @track_operation_time(logger, "list_queues")
    async def list_queues(self) -> List[QueueProperties]:
        """List every queue in the namespace, following pagination."""
        queues = await self._list(
            LIST_QUEUES_PATH,
            "list queues",
            lambda entry: entry_to_properties(QUEUE_SCHEMA, entry, name=entry.title),
        )
        logger.info(f"Listed {len(queues)} queues", operation="list_queues", count=len(queues))
        return queues

    @track_operation_time(logger, "get_queue")
    async def get_queue(self, queue_name: str) -> QueueProperties:
        """
        Get a queue's settings and counters.

        Raises:
            EntityNotFoundError: If the queue does not exist
        """
        queue_name = _require_name(queue_name, "Queue name")
        entry = await self._get(self._entity_url(queue_name), "get queue", f"queue '{queue_name}'")
        return entry_to_properties(QUEUE_SCHEMA, entry, name=queue_name)

    @track_operation_time(logger, "create_queue")
    async def create_queue(
        self,
        queue_name: str,
        properties: Optional[QueueProperties] = None,
    ) -> None:
        """Create a queue; unset properties are left to the server defaults."""
        queue_name = _require_name(queue_name, "Queue name")
        props = coerce_properties(QUEUE_SCHEMA, properties)
        await self._put(self._entity_url(queue_name), "create queue", build_entity_xml(QUEUE_SCHEMA, props))
        logger.log_operation("create", "queue", queue_name)

    @track_operation_time(logger, "update_queue")
    async def update_queue(self, queue_name: str, properties: QueueProperties) -> None:
        """
        Update a queue by read-modify-write.

        Fields fixed at creation time (partitioning, sessions, duplicate
        detection) are kept from the existing queue and not sent.
        """
        existing = await self.get_queue(queue_name)
        await self._update(QUEUE_SCHEMA, self._entity_url(existing.name), "update queue", existing, properties)
        logger.log_operation("update", "queue", existing.name)

    @track_operation_time(logger, "delete_queue")
    async def delete_queue(self, queue_name: str) -> None:
        queue_name = _require_name(queue_name, "Queue name")
        await self._delete(self._entity_url(queue_name), "delete queue")
        logger.log_operation("delete", "queue", queue_name)

    # ========== Topic operations ==========

    @track_operation_time(logger, "list_topics")
    async def list_topics(self) -> List[TopicProperties]:
        """List every topic in the namespace, following pagination."""
        topics = await self._list(
            LIST_TOPICS_PATH,
            "list topics",
            lambda entry: entry_to_properties(TOPIC_SCHEMA, entry, name=entry.title),
        )
        logger.info(f"Listed {len(topics)} topics", operation="list_topics", count=len(topics))
        return topics

    @track_operation_time(logger, "get_topic")
    async def get_topic(self, topic_name: str) -> TopicProperties:
        topic_name = _require_name(topic_name, "Topic name")
        entry = await self._get(self._entity_url(topic_name), "get topic", f"topic '{topic_name}'")
        return entry_to_properties(TOPIC_SCHEMA, entry, name=topic_name)

    @track_operation_time(logger, "create_topic")
    async def create_topic(
        self,
        topic_name: str,
        properties: Optional[TopicProperties] = None,
    ) -> None:
        topic_name = _require_name(topic_name, "Topic name")
        props = coerce_properties(TOPIC_SCHEMA, properties)
        await self._put(self._entity_url(topic_name), "create topic", build_entity_xml(TOPIC_SCHEMA, props))
        logger.log_operation("create", "topic", topic_name)

    @track_operation_time(logger, "update_topic")
    async def update_topic(self, topic_name: str, properties: TopicProperties) -> None:
        existing = await self.get_topic(topic_name)
        await self._update(TOPIC_SCHEMA, self._entity_url(existing.name), "update topic", existing, properties)
        logger.log_operation("update", "topic", existing.name)

    @track_operation_time(logger, "delete_topic")
    async def delete_topic(self, topic_name: str) -> None:
        topic_name = _require_name(topic_name, "Topic name")
        await self._delete(self._entity_url(topic_name), "delete topic")
        logger.log_operation("delete", "topic", topic_name)

    # ========== Subscription operations ==========

    def _subscription_url(self, topic_name: str, subscription_name: str) -> str:
        return self._entity_url(topic_name, SUBSCRIPTIONS_SEGMENT, subscription_name)

    @track_operation_time(logger, "list_subscriptions")
    async def list_subscriptions(self, topic_name: str) -> List[SubscriptionProperties]:
        """List a topic's subscriptions, following pagination."""
        topic_name = _require_name(topic_name, "Topic name")
        path = "/".join((quote(topic_name, safe="/"), SUBSCRIPTIONS_SEGMENT))
        subscriptions = await self._list(
            path,
            "list subscriptions",
            lambda entry: entry_to_properties(
                SUBSCRIPTION_SCHEMA, entry,
                topic_name=topic_name,
                subscription_name=entry.title,
            ),
        )
        logger.info(
            f"Listed {len(subscriptions)} subscriptions for topic {topic_name}",
            operation="list_subscriptions",
            count=len(subscriptions),
        )
        return subscriptions

    @track_operation_time(logger, "get_subscription")
    async def get_subscription(self, topic_name: str, subscription_name: str) -> SubscriptionProperties:
        topic_name = _require_name(topic_name, "Topic name")
        subscription_name = _require_name(subscription_name, "Subscription name")
        entry = await self._get(
            self._subscription_url(topic_name, subscription_name),
            "get subscription",
            f"subscription '{topic_name}/{subscription_name}'",
        )
        return entry_to_properties(
            SUBSCRIPTION_SCHEMA, entry,
            topic_name=topic_name,
            subscription_name=subscription_name,
        )

    @track_operation_time(logger, "create_subscription")
    async def create_subscription(
        self,
        topic_name: str,
        subscription_name: str,
        properties: Optional[SubscriptionProperties] = None,
    ) -> None:
        topic_name = _require_name(topic_name, "Topic name")
        subscription_name = _require_name(subscription_name, "Subscription name")
        props = coerce_properties(SUBSCRIPTION_SCHEMA, properties)
        await self._put(
            self._subscription_url(topic_name, subscription_name),
            "create subscription",
            build_entity_xml(SUBSCRIPTION_SCHEMA, props),
        )
        logger.log_operation("create", "subscription", f"{topic_name}/{subscription_name}")

    @track_operation_time(logger, "update_subscription")
    async def update_subscription(
        self,
        topic_name: str,
        subscription_name: str,
        properties: SubscriptionProperties,
    ) -> None:
        existing = await self.get_subscription(topic_name, subscription_name)
        await self._update(
            SUBSCRIPTION_SCHEMA,
            self._subscription_url(existing.topic_name, existing.subscription_name),
            "update subscription",
            existing,
            properties,
        )
        logger.log_operation("update", "subscription", f"{existing.topic_name}/{existing.subscription_name}")

    @track_operation_time(logger, "delete_subscription")
    async def delete_subscription(self, topic_name: str, subscription_name: str) -> None:
        topic_name = _require_name(topic_name, "Topic name")
        subscription_name = _require_name(subscription_name, "Subscription name")
        await self._delete(self._subscription_url(topic_name, subscription_name), "delete subscription")
        logger.log_operation("delete", "subscription", f"{topic_name}/{subscription_name}")
