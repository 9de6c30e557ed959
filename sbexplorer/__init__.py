"""
sbexplorer: Azure Service Bus explorer client

Async client behind a Service Bus explorer: entity management over the
Atom/XML REST API and message peek/send/purge over AMQP.
"""

__version__ = "0.1.0"

from .auth.connection import ConnectionDescriptor
from .core.config_manager import ConfigManager, ExplorerConfig
from .servicebus.client import ServiceBusExplorerClient
from .servicebus.models import (
    MessageTarget,
    QueueProperties,
    ServiceBusMessage,
    SubscriptionProperties,
    TopicProperties,
)

__all__ = [
    "ServiceBusExplorerClient",
    "ConnectionDescriptor",
    "ConfigManager",
    "ExplorerConfig",
    "MessageTarget",
    "QueueProperties",
    "ServiceBusMessage",
    "SubscriptionProperties",
    "TopicProperties",
    "__version__",
]
