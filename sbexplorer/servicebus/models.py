"""
Service Bus Models

Pydantic models for queue, topic, subscription and message data returned
to (and accepted from) the explorer shell.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import DEAD_LETTER_SUFFIX, SUBSCRIPTIONS_SEGMENT


class QueueProperties(BaseModel):
    """
    Queue settings and runtime counters.

    Every field is optional: ``None`` means "not reported" on reads and
    "let the server decide" on writes. Counters and timestamps are
    populated by the service and never written back.
    """
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = None

    max_size_in_megabytes: Optional[int] = Field(default=None, ge=1)
    lock_duration_in_seconds: Optional[int] = Field(default=None, ge=0)
    max_delivery_count: Optional[int] = Field(default=None, ge=1)
    default_message_time_to_live_in_seconds: Optional[int] = Field(default=None, ge=0)
    dead_lettering_on_message_expiration: Optional[bool] = None
    duplicate_detection_history_time_window_in_seconds: Optional[int] = Field(default=None, ge=0)
    enable_batched_operations: Optional[bool] = None
    auto_delete_on_idle_in_seconds: Optional[int] = Field(default=None, ge=0)
    forward_to: Optional[str] = None
    forward_dead_lettered_messages_to: Optional[str] = None
    status: Optional[str] = None

    # Fixed at creation time
    enable_partitioning: Optional[bool] = None
    requires_session: Optional[bool] = None
    requires_duplicate_detection: Optional[bool] = None

    # Runtime information
    message_count: Optional[int] = None
    active_message_count: Optional[int] = None
    dead_letter_message_count: Optional[int] = None
    scheduled_message_count: Optional[int] = None
    transfer_message_count: Optional[int] = None
    transfer_dead_letter_message_count: Optional[int] = None
    size_in_bytes: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accessed_at: Optional[datetime] = None


class TopicProperties(BaseModel):
    """Topic settings and runtime counters."""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = None

    max_size_in_megabytes: Optional[int] = Field(default=None, ge=1)
    default_message_time_to_live_in_seconds: Optional[int] = Field(default=None, ge=0)
    duplicate_detection_history_time_window_in_seconds: Optional[int] = Field(default=None, ge=0)
    enable_batched_operations: Optional[bool] = None
    auto_delete_on_idle_in_seconds: Optional[int] = Field(default=None, ge=0)
    support_ordering: Optional[bool] = None
    status: Optional[str] = None

    # Fixed at creation time
    enable_partitioning: Optional[bool] = None
    requires_duplicate_detection: Optional[bool] = None

    # Runtime information
    size_in_bytes: Optional[int] = None
    subscription_count: Optional[int] = None
    scheduled_message_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accessed_at: Optional[datetime] = None


class SubscriptionProperties(BaseModel):
    """Subscription settings and runtime counters."""
    model_config = ConfigDict(extra='forbid')

    topic_name: Optional[str] = None
    subscription_name: Optional[str] = None

    lock_duration_in_seconds: Optional[int] = Field(default=None, ge=0)
    max_delivery_count: Optional[int] = Field(default=None, ge=1)
    default_message_time_to_live_in_seconds: Optional[int] = Field(default=None, ge=0)
    dead_lettering_on_message_expiration: Optional[bool] = None
    dead_lettering_on_filter_evaluation_exceptions: Optional[bool] = None
    enable_batched_operations: Optional[bool] = None
    auto_delete_on_idle_in_seconds: Optional[int] = Field(default=None, ge=0)
    forward_to: Optional[str] = None
    forward_dead_lettered_messages_to: Optional[str] = None
    status: Optional[str] = None

    # Fixed at creation time
    requires_session: Optional[bool] = None

    # Runtime information
    message_count: Optional[int] = None
    active_message_count: Optional[int] = None
    dead_letter_message_count: Optional[int] = None
    transfer_message_count: Optional[int] = None
    transfer_dead_letter_message_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accessed_at: Optional[datetime] = None


class ServiceBusMessage(BaseModel):
    """
    Service Bus Message model.

    Built by the caller for send, or by the client from a received wire
    message. Instances are immutable; every peek returns new ones.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    body: Any = None
    message_id: Optional[str] = None
    correlation_id: Optional[str] = None
    content_type: Optional[str] = None
    session_id: Optional[str] = None
    reply_to: Optional[str] = None
    reply_to_session_id: Optional[str] = None
    subject: Optional[str] = None
    time_to_live: Optional[int] = Field(default=None, ge=0)  # seconds
    to: Optional[str] = None
    application_properties: Optional[Dict[str, Any]] = None

    # System properties (set by the service)
    delivery_count: Optional[int] = None
    enqueued_time: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    sequence_number: Optional[int] = None

    # Dead-letter properties
    dead_letter_reason: Optional[str] = None
    dead_letter_error_description: Optional[str] = None


class MessageTarget(BaseModel):
    """
    Entity a message operation addresses.

    Either a queue, or a topic (send) / topic subscription (receive), with
    an optional dead-letter sub-queue selector.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    queue_name: Optional[str] = None
    topic_name: Optional[str] = None
    subscription_name: Optional[str] = None
    dead_letter: bool = False

    @field_validator('queue_name', 'topic_name', 'subscription_name')
    @classmethod
    def validate_segment(cls, v: Optional[str]) -> Optional[str]:
        """Reject blank entity names."""
        if v is not None and not v.strip():
            raise ValueError("Entity names cannot be blank")
        return v

    @model_validator(mode='after')
    def validate_entity(self) -> "MessageTarget":
        """Ensure the target names exactly one entity."""
        if self.queue_name and (self.topic_name or self.subscription_name):
            raise ValueError("A target is either a queue or a topic, not both")
        if not self.queue_name and not self.topic_name:
            raise ValueError(
                "Either queue_name or (topic_name and subscription_name) must be provided"
            )
        if self.subscription_name and not self.topic_name:
            raise ValueError("subscription_name requires topic_name")
        return self

    @classmethod
    def queue(cls, name: str, dead_letter: bool = False) -> "MessageTarget":
        return cls(queue_name=name, dead_letter=dead_letter)

    @classmethod
    def topic(cls, name: str) -> "MessageTarget":
        return cls(topic_name=name)

    @classmethod
    def subscription(cls, topic: str, subscription: str, dead_letter: bool = False) -> "MessageTarget":
        return cls(topic_name=topic, subscription_name=subscription, dead_letter=dead_letter)

    @property
    def is_queue(self) -> bool:
        return self.queue_name is not None

    @property
    def is_subscription(self) -> bool:
        return self.subscription_name is not None

    @property
    def entity_path(self) -> str:
        """Entity path, including the dead-letter suffix when selected."""
        if self.queue_name:
            path = self.queue_name
        elif self.subscription_name:
            path = f"{self.topic_name}/{SUBSCRIPTIONS_SEGMENT}/{self.subscription_name}"
        else:
            path = self.topic_name or ""
        if self.dead_letter:
            path = f"{path}/{DEAD_LETTER_SUFFIX}"
        return path
