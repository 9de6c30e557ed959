"""
Entity Serialization

Maps queue, topic and subscription models to and from the XML payloads of
the management API, converts ISO 8601 durations, and merges partial
updates against the entity last read from the server.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel

from .atom import AtomEntry
from .constants import (
    ATOM_NAMESPACE,
    SERVICEBUS_NAMESPACE,
    XML_CONTENT_TYPE,
    XML_DECLARATION,
    XML_SCHEMA_INSTANCE_NAMESPACE,
)
from .models import QueueProperties, SubscriptionProperties, TopicProperties

logger = logging.getLogger(__name__)


# ========== ISO 8601 durations ==========

_DURATION_RE = re.compile(
    r'^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$'
)


def duration_to_seconds(duration: str) -> int:
    """
    Parse an ISO 8601 duration into whole seconds.

    Supports formats like:
    - PT60S (60 seconds)
    - PT1M (60 seconds)
    - PT1H30M (5400 seconds)
    - P14D (1209600 seconds)
    - PT (0 seconds)

    Fractional seconds are truncated.

    Raises:
        ValueError: If the string is not a supported duration
    """
    text = (duration or "").strip().upper()
    match = _DURATION_RE.match(text)
    if not match or text == "P":
        raise ValueError(f"Invalid ISO 8601 duration: {duration!r}")

    days, hours, minutes, seconds = match.groups()
    total = int(days or 0) * 86400 + int(hours or 0) * 3600 + int(minutes or 0) * 60
    if seconds:
        total += int(float(seconds))
    return total


def seconds_to_duration(seconds: int) -> str:
    """
    Format whole seconds as an ISO 8601 ``PT`` duration.

    Zero is rendered as ``PT0S``, never a bare ``PT``.
    """
    seconds = int(seconds)
    if seconds < 0:
        raise ValueError(f"Duration cannot be negative: {seconds}")

    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    duration = "PT"
    if hours:
        duration += f"{hours}H"
    if minutes:
        duration += f"{minutes}M"
    if secs or duration == "PT":
        duration += f"{secs}S"
    return duration


# ========== Field tables ==========

class EntityKind(str, Enum):
    """Management API entity kinds."""
    QUEUE = "queue"
    TOPIC = "topic"
    SUBSCRIPTION = "subscription"


class FieldKind(str, Enum):
    INT = "int"
    BOOL = "bool"
    DURATION = "duration"
    STRING = "string"
    DATETIME = "datetime"


@dataclass(frozen=True)
class FieldSpec:
    """How one model attribute maps to an XML element."""

    attr: str
    xml_name: str
    kind: FieldKind
    aliases: Tuple[str, ...] = ()
    writable: bool = True
    immutable: bool = False

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.xml_name,) + self.aliases


@dataclass(frozen=True)
class EntitySchema:
    """Description element and field table for one entity kind."""

    kind: EntityKind
    description_tag: str
    model: Type[BaseModel]
    fields: Tuple[FieldSpec, ...]

    @property
    def immutable_attrs(self) -> Tuple[str, ...]:
        return tuple(spec.attr for spec in self.fields if spec.immutable)


def _ro(attr: str, xml_name: str, kind: FieldKind = FieldKind.INT, *aliases: str) -> FieldSpec:
    return FieldSpec(attr, xml_name, kind, aliases, writable=False)


_DEAD_LETTER_ALIASES = ("EnableDeadLetteringOnMessageExpiration",)

# Writable fields are listed in the order the service's data contract expects
QUEUE_SCHEMA = EntitySchema(
    kind=EntityKind.QUEUE,
    description_tag="QueueDescription",
    model=QueueProperties,
    fields=(
        FieldSpec("lock_duration_in_seconds", "LockDuration", FieldKind.DURATION),
        FieldSpec("max_size_in_megabytes", "MaxSizeInMegabytes", FieldKind.INT, ("MaxSizeInMB",)),
        FieldSpec("requires_duplicate_detection", "RequiresDuplicateDetection", FieldKind.BOOL, immutable=True),
        FieldSpec("requires_session", "RequiresSession", FieldKind.BOOL, immutable=True),
        FieldSpec("default_message_time_to_live_in_seconds", "DefaultMessageTimeToLive", FieldKind.DURATION),
        FieldSpec("dead_lettering_on_message_expiration", "DeadLetteringOnMessageExpiration",
                  FieldKind.BOOL, _DEAD_LETTER_ALIASES),
        FieldSpec("duplicate_detection_history_time_window_in_seconds",
                  "DuplicateDetectionHistoryTimeWindow", FieldKind.DURATION),
        FieldSpec("max_delivery_count", "MaxDeliveryCount", FieldKind.INT),
        FieldSpec("enable_batched_operations", "EnableBatchedOperations", FieldKind.BOOL),
        _ro("size_in_bytes", "SizeInBytes"),
        _ro("message_count", "MessageCount"),
        FieldSpec("status", "Status", FieldKind.STRING),
        FieldSpec("forward_to", "ForwardTo", FieldKind.STRING),
        _ro("created_at", "CreatedAt", FieldKind.DATETIME),
        _ro("updated_at", "UpdatedAt", FieldKind.DATETIME),
        _ro("accessed_at", "AccessedAt", FieldKind.DATETIME),
        _ro("active_message_count", "ActiveMessageCount"),
        _ro("dead_letter_message_count", "DeadLetterMessageCount"),
        _ro("scheduled_message_count", "ScheduledMessageCount"),
        _ro("transfer_message_count", "TransferMessageCount"),
        _ro("transfer_dead_letter_message_count", "TransferDeadLetterMessageCount"),
        FieldSpec("auto_delete_on_idle_in_seconds", "AutoDeleteOnIdle", FieldKind.DURATION),
        FieldSpec("enable_partitioning", "EnablePartitioning", FieldKind.BOOL, immutable=True),
        FieldSpec("forward_dead_lettered_messages_to", "ForwardDeadLetteredMessagesTo", FieldKind.STRING),
    ),
)

TOPIC_SCHEMA = EntitySchema(
    kind=EntityKind.TOPIC,
    description_tag="TopicDescription",
    model=TopicProperties,
    fields=(
        FieldSpec("default_message_time_to_live_in_seconds", "DefaultMessageTimeToLive", FieldKind.DURATION),
        FieldSpec("max_size_in_megabytes", "MaxSizeInMegabytes", FieldKind.INT, ("MaxSizeInMB",)),
        FieldSpec("requires_duplicate_detection", "RequiresDuplicateDetection", FieldKind.BOOL, immutable=True),
        FieldSpec("duplicate_detection_history_time_window_in_seconds",
                  "DuplicateDetectionHistoryTimeWindow", FieldKind.DURATION),
        FieldSpec("enable_batched_operations", "EnableBatchedOperations", FieldKind.BOOL),
        _ro("size_in_bytes", "SizeInBytes"),
        FieldSpec("status", "Status", FieldKind.STRING),
        _ro("created_at", "CreatedAt", FieldKind.DATETIME),
        _ro("updated_at", "UpdatedAt", FieldKind.DATETIME),
        _ro("accessed_at", "AccessedAt", FieldKind.DATETIME),
        FieldSpec("support_ordering", "SupportOrdering", FieldKind.BOOL),
        _ro("scheduled_message_count", "ScheduledMessageCount"),
        _ro("subscription_count", "SubscriptionCount"),
        FieldSpec("auto_delete_on_idle_in_seconds", "AutoDeleteOnIdle", FieldKind.DURATION),
        FieldSpec("enable_partitioning", "EnablePartitioning", FieldKind.BOOL, immutable=True),
    ),
)

SUBSCRIPTION_SCHEMA = EntitySchema(
    kind=EntityKind.SUBSCRIPTION,
    description_tag="SubscriptionDescription",
    model=SubscriptionProperties,
    fields=(
        FieldSpec("lock_duration_in_seconds", "LockDuration", FieldKind.DURATION),
        FieldSpec("requires_session", "RequiresSession", FieldKind.BOOL, immutable=True),
        FieldSpec("default_message_time_to_live_in_seconds", "DefaultMessageTimeToLive", FieldKind.DURATION),
        FieldSpec("dead_lettering_on_filter_evaluation_exceptions",
                  "DeadLetteringOnFilterEvaluationExceptions", FieldKind.BOOL),
        FieldSpec("dead_lettering_on_message_expiration", "DeadLetteringOnMessageExpiration",
                  FieldKind.BOOL, _DEAD_LETTER_ALIASES),
        _ro("message_count", "MessageCount"),
        FieldSpec("max_delivery_count", "MaxDeliveryCount", FieldKind.INT),
        FieldSpec("enable_batched_operations", "EnableBatchedOperations", FieldKind.BOOL),
        FieldSpec("status", "Status", FieldKind.STRING),
        FieldSpec("forward_to", "ForwardTo", FieldKind.STRING),
        _ro("created_at", "CreatedAt", FieldKind.DATETIME),
        _ro("updated_at", "UpdatedAt", FieldKind.DATETIME),
        _ro("accessed_at", "AccessedAt", FieldKind.DATETIME),
        _ro("active_message_count", "ActiveMessageCount"),
        _ro("dead_letter_message_count", "DeadLetterMessageCount"),
        _ro("transfer_message_count", "TransferMessageCount"),
        _ro("transfer_dead_letter_message_count", "TransferDeadLetterMessageCount"),
        FieldSpec("forward_dead_lettered_messages_to", "ForwardDeadLetteredMessagesTo", FieldKind.STRING),
        FieldSpec("auto_delete_on_idle_in_seconds", "AutoDeleteOnIdle", FieldKind.DURATION),
    ),
)

SCHEMAS: Dict[EntityKind, EntitySchema] = {
    EntityKind.QUEUE: QUEUE_SCHEMA,
    EntityKind.TOPIC: TOPIC_SCHEMA,
    EntityKind.SUBSCRIPTION: SUBSCRIPTION_SCHEMA,
}


# ========== Value conversion ==========

_FRACTION_RE = re.compile(r'(\.\d{6})\d+')


def _parse_datetime(text: str) -> datetime:
    text = _FRACTION_RE.sub(r'\1', text.strip())
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in ('true', '1'):
        return True
    if lowered in ('false', '0'):
        return False
    raise ValueError(f"Invalid boolean: {text!r}")


def parse_value(kind: FieldKind, text: str) -> Any:
    """Convert XML text to a Python value."""
    if kind == FieldKind.INT:
        return int(text.strip())
    if kind == FieldKind.BOOL:
        return _parse_bool(text)
    if kind == FieldKind.DURATION:
        return duration_to_seconds(text)
    if kind == FieldKind.DATETIME:
        return _parse_datetime(text)
    return text


def format_value(kind: FieldKind, value: Any) -> str:
    """Convert a Python value to XML text."""
    if kind == FieldKind.BOOL:
        return "true" if value else "false"
    if kind == FieldKind.DURATION:
        return seconds_to_duration(value)
    if kind == FieldKind.DATETIME:
        return value.isoformat()
    return str(value)


# ========== XML -> model ==========

def entry_to_properties(
    schema: EntitySchema,
    entry: AtomEntry,
    **identity: Any,
) -> BaseModel:
    """
    Build a properties model from an extracted Atom entry.

    Values that cannot be parsed are dropped (logged at debug level)
    instead of failing the whole response.

    Args:
        schema: Entity schema
        entry: Extracted entry
        **identity: Name fields (name, or topic_name/subscription_name)
    """
    data: Dict[str, Any] = dict(identity)

    for spec in schema.fields:
        raw = next((entry.fields[name] for name in spec.names if name in entry.fields), None)
        if raw is None or raw == "":
            continue
        try:
            data[spec.attr] = parse_value(spec.kind, raw)
        except ValueError as e:
            logger.debug(f"Ignoring unparseable {spec.xml_name} on '{entry.title}': {e}")

    if schema.kind == EntityKind.QUEUE and data.get("message_count") is None:
        details = [data.get(k) for k in (
            "active_message_count", "dead_letter_message_count", "scheduled_message_count")]
        if any(v is not None for v in details):
            data["message_count"] = sum(v or 0 for v in details)

    return schema.model(**data)


# ========== model -> XML ==========

def build_entity_xml(
    schema: EntitySchema,
    properties: Optional[BaseModel],
    for_update: bool = False,
) -> str:
    """
    Build the Atom entry body for a create or update PUT.

    Only fields that are set are emitted. Read-only fields are never
    emitted; immutable fields are omitted on update.
    """
    entry = ET.Element("entry", {"xmlns": ATOM_NAMESPACE})
    content = ET.SubElement(entry, "content", {"type": XML_CONTENT_TYPE})
    description = ET.SubElement(content, schema.description_tag, {
        "xmlns": SERVICEBUS_NAMESPACE,
        "xmlns:i": XML_SCHEMA_INSTANCE_NAMESPACE,
    })

    if properties is not None:
        for spec in schema.fields:
            if not spec.writable or (for_update and spec.immutable):
                continue
            value = getattr(properties, spec.attr)
            if value is None:
                continue
            ET.SubElement(description, spec.xml_name).text = format_value(spec.kind, value)

    return XML_DECLARATION + ET.tostring(entry, encoding="unicode")


# ========== Update merge ==========

def merge_for_update(
    schema: EntitySchema,
    existing: BaseModel,
    update: BaseModel,
) -> BaseModel:
    """
    Merge a partial update onto the entity last read from the server.

    Writable fields take the caller's value when set, else the existing
    value. Immutable fields always keep the existing value. Read-only
    fields are carried from the existing entity for reference only.
    """
    merged: Dict[str, Any] = existing.model_dump()

    for spec in schema.fields:
        if not spec.writable or spec.immutable:
            continue
        value = getattr(update, spec.attr)
        if value is not None:
            merged[spec.attr] = value

    ignored = [
        attr for attr in schema.immutable_attrs
        if getattr(update, attr) is not None and getattr(update, attr) != getattr(existing, attr)
    ]
    if ignored:
        logger.warning(
            f"Ignoring changes to fields fixed at creation time: {', '.join(ignored)}"
        )

    return schema.model(**merged)


def coerce_properties(schema: EntitySchema, properties: Any) -> Optional[BaseModel]:
    """Accept a model instance, a plain dict, or None."""
    if properties is None or isinstance(properties, schema.model):
        return properties
    if isinstance(properties, dict):
        return schema.model.model_validate(properties)
    raise TypeError(
        f"Expected {schema.model.__name__} or dict, got {type(properties).__name__}"
    )
