"""
Tests for connection string parsing and identity resolution.
"""

import pytest
from pydantic import ValidationError

from sbexplorer.auth.connection import (
    CloudEnvironment,
    ConnectionDescriptor,
    derive_namespace_and_domain,
    normalize_endpoint,
    parse_connection_string,
    resolve_identity,
)
from sbexplorer.servicebus.constants import SUPPORTED_DOMAIN_SUFFIXES
from sbexplorer.servicebus.exceptions import (
    ConnectionStringError,
    MissingConnectionFieldError,
    ServiceBusError,
    UnsupportedEndpointError,
)

VALID_CONNECTION_STRING = (
    "Endpoint=sb://myns.servicebus.windows.net/;"
    "SharedAccessKeyName=RootManageSharedAccessKey;"
    "SharedAccessKey=c2VjcmV0S2V5MTIz="
)


class TestParseConnectionString:
    """Test connection string parsing."""

    def test_parse_valid(self):
        """Test all required fields are extracted."""
        parsed = parse_connection_string(VALID_CONNECTION_STRING)

        assert parsed.endpoint == "sb://myns.servicebus.windows.net/"
        assert parsed.shared_access_key_name == "RootManageSharedAccessKey"
        assert parsed.shared_access_key == "c2VjcmV0S2V5MTIz="
        assert parsed.entity_path is None

    def test_keys_are_case_insensitive_and_trimmed(self):
        """Test keys match regardless of case and surrounding whitespace."""
        parsed = parse_connection_string(
            "  endpoint = sb://myns.servicebus.windows.net/ ; "
            "SHAREDACCESSKEYNAME=reader;sharedaccesskey= abc= ;EntityPath=orders"
        )

        assert parsed.endpoint == "sb://myns.servicebus.windows.net/"
        assert parsed.shared_access_key_name == "reader"
        assert parsed.shared_access_key == "abc="
        assert parsed.entity_path == "orders"

    def test_unknown_keys_and_bare_segments_ignored(self):
        """Test unrelated segments do not break parsing."""
        parsed = parse_connection_string(
            VALID_CONNECTION_STRING + ";TransportType=AmqpWebSockets;garbage;"
        )
        assert parsed.shared_access_key_name == "RootManageSharedAccessKey"

    def test_value_split_on_first_equals(self):
        """Test base64 padding in the key survives."""
        parsed = parse_connection_string(
            "Endpoint=sb://x.servicebus.windows.net/;SharedAccessKeyName=n;SharedAccessKey=a==b=="
        )
        assert parsed.shared_access_key == "a==b=="

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_rejected(self, raw):
        """Test empty input is a validation error."""
        with pytest.raises(ConnectionStringError):
            parse_connection_string(raw)

    def test_missing_key_name_named(self):
        """Test a missing SharedAccessKeyName is reported by name."""
        with pytest.raises(MissingConnectionFieldError) as exc_info:
            parse_connection_string("Endpoint=sb://x;SharedAccessKey=abc")

        assert exc_info.value.field == "SharedAccessKeyName"
        assert "SharedAccessKeyName" in str(exc_info.value)

    def test_missing_endpoint_reported_first(self):
        """Test fields are checked in Endpoint, key name, key order."""
        with pytest.raises(MissingConnectionFieldError) as exc_info:
            parse_connection_string("SharedAccessKey=abc")

        assert exc_info.value.field == "Endpoint"
        assert "Expected format" in str(exc_info.value)

    def test_missing_key(self):
        """Test a missing SharedAccessKey is reported by name."""
        with pytest.raises(MissingConnectionFieldError) as exc_info:
            parse_connection_string("Endpoint=sb://x.servicebus.windows.net/;SharedAccessKeyName=n")

        assert exc_info.value.field == "SharedAccessKey"


class TestNormalizeEndpoint:
    """Test endpoint normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("sb://myns.servicebus.windows.net/", "https://myns.servicebus.windows.net"),
        ("https://myns.servicebus.windows.net//", "https://myns.servicebus.windows.net"),
        ("http://localhost:5672", "http://localhost:5672"),
        ("myns.servicebus.windows.net", "https://myns.servicebus.windows.net"),
        ("SB://MyNs.servicebus.windows.net", "https://MyNs.servicebus.windows.net"),
    ])
    def test_normalize(self, raw, expected):
        """Test scheme rewriting and trailing slash removal."""
        assert normalize_endpoint(raw) == expected

    def test_missing_host_rejected(self):
        """Test an endpoint without a host is rejected."""
        with pytest.raises(ConnectionStringError):
            normalize_endpoint("sb:///")


class TestDeriveNamespaceAndDomain:
    """Test namespace and cloud suffix derivation."""

    @pytest.mark.parametrize("suffix", SUPPORTED_DOMAIN_SUFFIXES)
    def test_round_trip_for_every_cloud(self, suffix):
        """Test namespace + suffix reproduces the host."""
        host = f"contoso-prod{suffix}"
        namespace, domain = derive_namespace_and_domain(f"sb://{host}/")

        assert namespace == "contoso-prod"
        assert domain == suffix
        assert namespace + domain == host

    def test_unsupported_host_lists_all_suffixes(self):
        """Test the error names every supported cloud."""
        with pytest.raises(UnsupportedEndpointError) as exc_info:
            derive_namespace_and_domain("sb://myns.example.com/")

        message = str(exc_info.value)
        assert "myns.example.com" in message
        for suffix in SUPPORTED_DOMAIN_SUFFIXES:
            assert f"*{suffix}" in message
        assert exc_info.value.details["supported_suffixes"] == list(SUPPORTED_DOMAIN_SUFFIXES)

    def test_bare_suffix_rejected(self):
        """Test a host with an empty namespace is rejected."""
        with pytest.raises(UnsupportedEndpointError):
            derive_namespace_and_domain("https://servicebus.windows.net")


class TestConnectionDescriptor:
    """Test descriptor validation."""

    def test_requires_a_mode(self):
        """Test a descriptor with neither mode is invalid."""
        with pytest.raises(ConnectionStringError) as exc_info:
            ConnectionDescriptor()

        assert isinstance(exc_info.value, ServiceBusError)
        assert exc_info.value.error_code == "InvalidConnectionString"

    def test_azure_ad_requires_namespace(self):
        """Test Azure AD mode needs a namespace."""
        with pytest.raises(ConnectionStringError):
            ConnectionDescriptor(use_azure_ad=True)

    def test_modes_are_exclusive(self):
        """Test both modes at once are rejected."""
        with pytest.raises(ConnectionStringError):
            ConnectionDescriptor(
                connection_string=VALID_CONNECTION_STRING,
                use_azure_ad=True,
                namespace="myns",
            )

    def test_descriptor_is_frozen(self):
        """Test descriptors cannot be mutated."""
        descriptor = ConnectionDescriptor.from_connection_string(VALID_CONNECTION_STRING)
        with pytest.raises(ValidationError):
            descriptor.connection_string = "other"


class TestResolveIdentity:
    """Test identity resolution."""

    def test_connection_string_identity(self):
        """Test key material and URLs derived from a connection string."""
        identity = resolve_identity(
            ConnectionDescriptor.from_connection_string(VALID_CONNECTION_STRING)
        )

        assert identity.namespace == "myns"
        assert identity.cloud == CloudEnvironment.PUBLIC
        assert identity.base_url == "https://myns.servicebus.windows.net"
        assert identity.signing_key_name == "RootManageSharedAccessKey"
        assert identity.data_plane_connection_string == (
            "Endpoint=sb://myns.servicebus.windows.net/;"
            "SharedAccessKeyName=RootManageSharedAccessKey;"
            "SharedAccessKey=c2VjcmV0S2V5MTIz="
        )

    def test_sovereign_cloud(self):
        """Test a China cloud endpoint resolves to that cloud."""
        identity = resolve_identity(ConnectionDescriptor.from_connection_string(
            "Endpoint=sb://cnns.servicebus.chinacloudapi.cn/;SharedAccessKeyName=n;SharedAccessKey=k"
        ))

        assert identity.cloud == CloudEnvironment.CHINA
        assert identity.fully_qualified_namespace == "cnns.servicebus.chinacloudapi.cn"

    def test_azure_ad_bare_label_defaults_to_public_cloud(self):
        """Test a bare namespace label uses the public cloud."""
        identity = resolve_identity(ConnectionDescriptor.for_azure_ad("myns", tenant_id="t1"))

        assert identity.use_azure_ad is True
        assert identity.fully_qualified_namespace == "myns.servicebus.windows.net"
        assert identity.tenant_id == "t1"
        assert identity.signing_key is None

    def test_azure_ad_full_host(self):
        """Test a fully qualified namespace keeps its cloud."""
        identity = resolve_identity(
            ConnectionDescriptor.for_azure_ad("govns.servicebus.usgovcloudapi.net")
        )

        assert identity.namespace == "govns"
        assert identity.cloud == CloudEnvironment.US_GOV

    def test_azure_ad_has_no_connection_string(self):
        """Test Azure AD identities cannot build a data-plane connection string."""
        identity = resolve_identity(ConnectionDescriptor.for_azure_ad("myns"))
        with pytest.raises(ConnectionStringError):
            identity.data_plane_connection_string

    def test_repr_hides_key(self):
        """Test the signing key never appears in repr."""
        identity = resolve_identity(
            ConnectionDescriptor.from_connection_string(VALID_CONNECTION_STRING)
        )
        assert "c2VjcmV0S2V5MTIz" not in repr(identity)
