"""
Shared Access Signature token generation for Azure Service Bus.

Implements the Service Bus SAS scheme:

    StringToSign = url-encode(resource_uri) + "\\n" + expiry
    Signature    = base64(HMAC-SHA256(key, StringToSign))

Reference: https://learn.microsoft.com/azure/service-bus-messaging/service-bus-sas
"""

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote

from sbexplorer.auth.connection import ResolvedIdentity
from sbexplorer.auth.exceptions import AuthModeNotImplementedError, InvalidSasTokenError
from sbexplorer.servicebus.constants import DEFAULT_TOKEN_VALIDITY

logger = logging.getLogger(__name__)

SAS_SCHEME = "SharedAccessSignature"


@dataclass
class SasToken:
    """Parsed SAS token representation."""

    resource_uri: str  # sr
    signature: str  # sig
    expiry: int  # se
    key_name: str  # skn


def _encode(value: str) -> str:
    return quote(value, safe='')


def build_string_to_sign(resource_uri: str, expiry: int) -> str:
    """Build the string to sign for a resource URI and expiry."""
    return f"{_encode(resource_uri)}\n{expiry}"


def compute_signature(key: str, string_to_sign: str) -> str:
    """
    Compute the base64 HMAC-SHA256 signature.

    The key is used as-is (its UTF-8 bytes), not base64-decoded.
    """
    digest = hmac.new(
        key.encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


def generate_sas_token(
    resource_uri: str,
    key_name: str,
    key: str,
    validity_seconds: int = DEFAULT_TOKEN_VALIDITY,
    now: Optional[float] = None,
) -> str:
    """
    Generate a time-boxed SAS token for a resource URI.

    Args:
        resource_uri: Exact URI the token authorizes
        key_name: Shared access key name (skn)
        key: Shared access key
        validity_seconds: Lifetime of the token
        now: Current UTC epoch seconds (defaults to time.time())

    Returns:
        Token string suitable for the Authorization header
    """
    issued_at = time.time() if now is None else now
    expiry = int(issued_at) + int(validity_seconds)

    signature = compute_signature(key, build_string_to_sign(resource_uri, expiry))

    return (
        f"{SAS_SCHEME} sr={_encode(resource_uri)}&sig={_encode(signature)}"
        f"&se={expiry}&skn={_encode(key_name)}"
    )


def parse_sas_token(token: str) -> SasToken:
    """
    Parse a SAS token back into its fields.

    Raises:
        InvalidSasTokenError: If the token is malformed
    """
    token = token.strip()
    if token.startswith(SAS_SCHEME):
        token = token[len(SAS_SCHEME):].strip()

    fields = {}
    for part in token.split('&'):
        if '=' not in part:
            raise InvalidSasTokenError(f"Malformed SAS token segment: {part!r}")
        key, value = part.split('=', 1)
        fields[key] = value

    missing = [name for name in ("sr", "sig", "se", "skn") if name not in fields]
    if missing:
        raise InvalidSasTokenError(f"Missing SAS token fields: {', '.join(missing)}")

    try:
        expiry = int(fields["se"])
    except ValueError as exc:
        raise InvalidSasTokenError(f"Invalid SAS expiry: {fields['se']!r}") from exc

    return SasToken(
        resource_uri=unquote(fields["sr"]),
        signature=unquote(fields["sig"]),
        expiry=expiry,
        key_name=unquote(fields["skn"]),
    )


class SasTokenProvider:
    """
    Produces a fresh Authorization header for every management request.

    Each request is signed for the exact URL it hits rather than with a
    namespace-wide token.
    """

    def __init__(
        self,
        identity: ResolvedIdentity,
        validity_seconds: int = DEFAULT_TOKEN_VALIDITY,
    ):
        self.identity = identity
        self.validity_seconds = validity_seconds

    def authorization_header(self, resource_uri: str) -> str:
        """
        Sign a resource URI.

        Raises:
            AuthModeNotImplementedError: For Azure AD identities
        """
        if self.identity.use_azure_ad:
            raise AuthModeNotImplementedError()

        return generate_sas_token(
            resource_uri,
            self.identity.signing_key_name or "",
            self.identity.signing_key or "",
            self.validity_seconds,
        )
