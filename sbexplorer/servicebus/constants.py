"""
Service Bus Constants

Centralized constants for the management REST API, XML namespaces,
cloud endpoints and data-plane limits.
"""

# Management REST API
API_VERSION = "2021-05"
ATOM_ENTRY_CONTENT_TYPE = "application/atom+xml;type=entry;charset=utf-8"
XML_CONTENT_TYPE = "application/xml"
LIST_QUEUES_PATH = "$Resources/Queues"
LIST_TOPICS_PATH = "$Resources/Topics"
SUBSCRIPTIONS_SEGMENT = "Subscriptions"
DEAD_LETTER_SUFFIX = "$deadletterqueue"

# XML constants
XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
ATOM_NAMESPACE = "http://www.w3.org/2005/Atom"
SERVICEBUS_NAMESPACE = "http://schemas.microsoft.com/netservices/2010/10/servicebus/connect"
XML_SCHEMA_INSTANCE_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"

# Cloud endpoint suffixes, keyed by cloud name
CLOUD_DOMAIN_SUFFIXES = {
    "public": ".servicebus.windows.net",
    "us_gov": ".servicebus.usgovcloudapi.net",
    "china": ".servicebus.chinacloudapi.cn",
    "germany": ".servicebus.cloudapi.de",
}
SUPPORTED_DOMAIN_SUFFIXES = tuple(CLOUD_DOMAIN_SUFFIXES.values())
DEFAULT_DOMAIN_SUFFIX = CLOUD_DOMAIN_SUFFIXES["public"]

# SAS token defaults (seconds)
DEFAULT_TOKEN_VALIDITY = 3600

# Timeout defaults (seconds)
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_RETRY_BACKOFF_MAX = 30.0

# Peek defaults
DEFAULT_PEEK_COUNT = 10

# Purge limits
PURGE_BATCH_SIZE = 100
PURGE_RECEIVE_TIMEOUT = 5
PURGE_MAX_EMPTY_RECEIVES = 3
PURGE_MAX_ITERATIONS = 100

# Dead-letter application property names
DEAD_LETTER_REASON_PROPERTY = "DeadLetterReason"
DEAD_LETTER_DESCRIPTION_PROPERTY = "DeadLetterErrorDescription"
