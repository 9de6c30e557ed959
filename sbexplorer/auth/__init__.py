"""
Authentication Module.

Connection string resolution and SAS token signing for Azure Service Bus.
"""

from sbexplorer.auth.exceptions import (
    AuthenticationError,
    AuthModeNotImplementedError,
    InvalidSasTokenError,
)
from sbexplorer.auth.connection import (
    CloudEnvironment,
    ConnectionDescriptor,
    ParsedConnection,
    ResolvedIdentity,
    derive_namespace_and_domain,
    normalize_endpoint,
    parse_connection_string,
    resolve_identity,
)
from sbexplorer.auth.sas import (
    SasToken,
    SasTokenProvider,
    generate_sas_token,
    parse_sas_token,
)

__all__ = [
    # Exceptions
    "AuthenticationError",
    "AuthModeNotImplementedError",
    "InvalidSasTokenError",
    # Connection resolution
    "CloudEnvironment",
    "ConnectionDescriptor",
    "ParsedConnection",
    "ResolvedIdentity",
    "derive_namespace_and_domain",
    "normalize_endpoint",
    "parse_connection_string",
    "resolve_identity",
    # SAS tokens
    "SasToken",
    "SasTokenProvider",
    "generate_sas_token",
    "parse_sas_token",
]
