"""
Connection resolution for Azure Service Bus namespaces.

Parses connection strings and Azure AD descriptors into the namespace,
cloud domain suffix and signing key material used by the management and
data-plane clients.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, model_validator

from sbexplorer.servicebus.constants import (
    CLOUD_DOMAIN_SUFFIXES,
    DEFAULT_DOMAIN_SUFFIX,
    SUPPORTED_DOMAIN_SUFFIXES,
)
from sbexplorer.servicebus.exceptions import (
    ConnectionStringError,
    MissingConnectionFieldError,
    UnsupportedEndpointError,
)

logger = logging.getLogger(__name__)


class CloudEnvironment(str, Enum):
    """Azure clouds hosting Service Bus."""

    PUBLIC = "public"
    US_GOV = "us_gov"
    CHINA = "china"
    GERMANY = "germany"

    @property
    def domain_suffix(self) -> str:
        return CLOUD_DOMAIN_SUFFIXES[self.value]

    @classmethod
    def from_suffix(cls, suffix: str) -> "CloudEnvironment":
        for cloud in cls:
            if cloud.domain_suffix == suffix:
                return cloud
        raise ValueError(f"Unknown Service Bus domain suffix: {suffix}")


class ConnectionDescriptor(BaseModel):
    """
    How to reach a namespace: a connection string, or an Azure AD identity.

    Exactly one mode is active and the descriptor cannot be changed after
    construction.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    connection_string: Optional[str] = None
    use_azure_ad: bool = False
    namespace: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_mode(self) -> "ConnectionDescriptor":
        """Ensure exactly one authentication mode is configured."""
        if self.use_azure_ad:
            if self.connection_string:
                raise ConnectionStringError("Azure AD descriptor cannot also carry a connection string")
            if not self.namespace or not self.namespace.strip():
                raise ConnectionStringError("Namespace is required for Azure AD authentication")
        elif self.connection_string is None:
            raise ConnectionStringError("Either connection string or namespace with Azure AD must be provided")
        return self

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "ConnectionDescriptor":
        return cls(connection_string=connection_string)

    @classmethod
    def for_azure_ad(
        cls,
        namespace: str,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> "ConnectionDescriptor":
        return cls(
            use_azure_ad=True,
            namespace=namespace,
            tenant_id=tenant_id,
            client_id=client_id,
        )


@dataclass(frozen=True)
class ParsedConnection:
    """Fields extracted from a Service Bus connection string."""

    endpoint: str
    shared_access_key_name: str
    shared_access_key: str
    entity_path: Optional[str] = None


@dataclass(frozen=True)
class ResolvedIdentity:
    """Namespace, cloud and key material derived once per client."""

    namespace: str
    cloud: CloudEnvironment
    signing_key_name: Optional[str] = None
    signing_key: Optional[str] = None
    use_azure_ad: bool = False
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None

    @property
    def domain_suffix(self) -> str:
        return self.cloud.domain_suffix

    @property
    def fully_qualified_namespace(self) -> str:
        return f"{self.namespace}{self.domain_suffix}"

    @property
    def base_url(self) -> str:
        """Management REST base URL."""
        return f"https://{self.fully_qualified_namespace}"

    @property
    def data_plane_connection_string(self) -> str:
        """Namespace-scoped connection string for the AMQP client."""
        if self.use_azure_ad:
            raise ConnectionStringError(
                "Azure AD identities have no connection string; use a token credential"
            )
        return (
            f"Endpoint=sb://{self.fully_qualified_namespace}/;"
            f"SharedAccessKeyName={self.signing_key_name};"
            f"SharedAccessKey={self.signing_key}"
        )

    def __repr__(self) -> str:
        # Keep key material out of logs and tracebacks
        return (
            f"ResolvedIdentity(namespace={self.namespace!r}, cloud={self.cloud.value!r}, "
            f"use_azure_ad={self.use_azure_ad})"
        )


_REQUIRED_FIELDS = (
    ("endpoint", "Endpoint"),
    ("sharedaccesskeyname", "SharedAccessKeyName"),
    ("sharedaccesskey", "SharedAccessKey"),
)


def parse_connection_string(connection_string: str) -> ParsedConnection:
    """
    Parse a Service Bus connection string.

    Segments are split on ``;`` and each segment on its first ``=``. Keys
    are matched case-insensitively; unknown keys are ignored.

    Args:
        connection_string: Raw connection string

    Returns:
        ParsedConnection

    Raises:
        ConnectionStringError: If the input is empty
        MissingConnectionFieldError: If a required field is absent
    """
    connection_string = (connection_string or "").strip()
    if not connection_string:
        raise ConnectionStringError("Connection string cannot be empty")

    values = {}
    for part in connection_string.split(';'):
        part = part.strip()
        if not part or '=' not in part:
            continue
        key, value = part.split('=', 1)
        key = key.strip().lower()
        if key in ("endpoint", "sharedaccesskeyname", "sharedaccesskey", "entitypath"):
            values[key] = value.strip()

    for key, field in _REQUIRED_FIELDS:
        if not values.get(key):
            if field == "Endpoint":
                raise MissingConnectionFieldError(
                    field,
                    "Missing Endpoint in connection string. "
                    "Expected format: Endpoint=sb://...;SharedAccessKeyName=...;SharedAccessKey=...",
                )
            raise MissingConnectionFieldError(field)

    return ParsedConnection(
        endpoint=values["endpoint"],
        shared_access_key_name=values["sharedaccesskeyname"],
        shared_access_key=values["sharedaccesskey"],
        entity_path=values.get("entitypath") or None,
    )


def normalize_endpoint(endpoint: str) -> str:
    """
    Normalize an endpoint to an absolute https/http URL without trailing slashes.

    ``sb://`` is rewritten to ``https://``; a bare host gets ``https://``.
    """
    endpoint = (endpoint or "").strip()
    lowered = endpoint.lower()
    if lowered.startswith("sb://"):
        url = "https://" + endpoint[5:].rstrip('/')
    elif lowered.startswith("http://") or lowered.startswith("https://"):
        url = endpoint.rstrip('/')
    else:
        url = "https://" + endpoint.rstrip('/')

    if not urlparse(url).hostname:
        raise ConnectionStringError(f"Invalid endpoint URL: {endpoint!r} (missing host)")
    return url


def derive_namespace_and_domain(endpoint: str) -> Tuple[str, str]:
    """
    Split an endpoint host into namespace and cloud domain suffix.

    Args:
        endpoint: Endpoint in any form accepted by normalize_endpoint

    Returns:
        Tuple of (namespace, domain_suffix)

    Raises:
        UnsupportedEndpointError: If the host is not a known Service Bus cloud
    """
    host = urlparse(normalize_endpoint(endpoint)).hostname or ""

    for suffix in SUPPORTED_DOMAIN_SUFFIXES:
        if host.endswith(suffix) and len(host) > len(suffix):
            return host[:-len(suffix)], suffix

    raise UnsupportedEndpointError(host, SUPPORTED_DOMAIN_SUFFIXES)


def _azure_ad_namespace(namespace: str) -> Tuple[str, str]:
    namespace = namespace.strip()
    if "." in namespace or "://" in namespace:
        return derive_namespace_and_domain(namespace)
    # Cross-cloud Azure AD is not supported; bare labels resolve to the public cloud
    return namespace, DEFAULT_DOMAIN_SUFFIX


def resolve_identity(descriptor: ConnectionDescriptor) -> ResolvedIdentity:
    """
    Resolve a descriptor into the identity used by the sub-clients.

    Raises:
        ConnectionStringError: For malformed connection strings
        UnsupportedEndpointError: For unknown endpoint hosts
    """
    if descriptor.use_azure_ad:
        namespace, suffix = _azure_ad_namespace(descriptor.namespace or "")
        logger.debug(f"Resolved Azure AD identity for namespace {namespace}")
        return ResolvedIdentity(
            namespace=namespace,
            cloud=CloudEnvironment.from_suffix(suffix),
            use_azure_ad=True,
            tenant_id=descriptor.tenant_id,
            client_id=descriptor.client_id,
        )

    parsed = parse_connection_string(descriptor.connection_string or "")
    namespace, suffix = derive_namespace_and_domain(parsed.endpoint)
    logger.debug(f"Resolved connection string identity for namespace {namespace}")
    return ResolvedIdentity(
        namespace=namespace,
        cloud=CloudEnvironment.from_suffix(suffix),
        signing_key_name=parsed.shared_access_key_name,
        signing_key=parsed.shared_access_key,
    )
