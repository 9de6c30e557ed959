"""
Unit Tests for Service Bus Exceptions

Tests for the client exception hierarchy and error classification.
"""

import pytest

from sbexplorer.auth.exceptions import AuthenticationError, AuthModeNotImplementedError
from sbexplorer.servicebus.exceptions import (
    ConnectionStringError,
    EntityNotFoundError,
    InvalidTargetError,
    MissingConnectionFieldError,
    OperationTimeoutError,
    ResponseParseError,
    ServerError,
    ServiceBusError,
    TransportError,
    UnsupportedEndpointError,
    ValidationError,
    is_transient_error,
)
from sbexplorer.storage import SecretNotFoundError


class TestServiceBusError:
    """Tests for base ServiceBusError class."""

    def test_basic_error(self):
        """Test basic error creation."""
        error = ServiceBusError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.error_code == "ServiceBusError"
        assert error.details == {}

    def test_to_dict(self):
        """Test conversion to the shell's error payload."""
        error = ServiceBusError("Bad", error_code="Custom", details={"key": "value"})
        assert error.to_dict() == {
            "error": {"code": "Custom", "message": "Bad", "details": {"key": "value"}}
        }


class TestValidationErrors:
    """Tests for errors raised before any network call."""

    def test_missing_field(self):
        """Test the missing field is named."""
        error = MissingConnectionFieldError("SharedAccessKey")
        assert isinstance(error, ConnectionStringError)
        assert isinstance(error, ValidationError)
        assert error.error_code == "MissingConnectionField"
        assert str(error) == "Missing SharedAccessKey in connection string"

    def test_unsupported_endpoint(self):
        """Test the message lists the supported host patterns."""
        error = UnsupportedEndpointError("ns.example.com", (".servicebus.windows.net",))
        assert str(error) == (
            "Invalid Service Bus endpoint: ns.example.com. "
            "Supported formats: *.servicebus.windows.net"
        )
        assert error.host == "ns.example.com"

    def test_invalid_target(self):
        """Test invalid targets are validation errors."""
        assert InvalidTargetError("x").error_code == "InvalidTarget"
        assert not InvalidTargetError("x").is_transient


class TestServerErrors:
    """Tests for errors carrying a service response."""

    def test_status_and_body(self):
        """Test status and body are kept verbatim."""
        error = ServerError("list queues", 401, "<Error>Unauthorized</Error>")
        assert str(error) == "Failed to list queues: 401 - <Error>Unauthorized</Error>"
        assert error.status_code == 401
        assert error.body == "<Error>Unauthorized</Error>"
        assert error.details["operation"] == "list queues"

    def test_without_status(self):
        """Test data-plane errors without an HTTP status."""
        error = EntityNotFoundError("peek messages from orders", None, "entity not found")
        assert isinstance(error, ServerError)
        assert error.status_code is None
        assert str(error) == "Failed to peek messages from orders: error - entity not found"

    def test_parse_error(self):
        """Test parse errors name the operation."""
        error = ResponseParseError("get queue", "response holds no entry")
        assert str(error) == "Failed to parse response for get queue: response holds no entry"


class TestAuthErrors:
    """Tests for authentication errors."""

    def test_not_implemented(self):
        """Test the Azure AD management error is an authentication error."""
        error = AuthModeNotImplementedError()
        assert isinstance(error, AuthenticationError)
        assert isinstance(error, ServiceBusError)
        assert "not yet implemented" in str(error)
        assert error.details == {"surface": "management REST API"}

    def test_secret_not_found(self):
        """Test secret store errors share the base class."""
        error = SecretNotFoundError("conn-1")
        assert isinstance(error, ServiceBusError)
        assert error.to_dict()["error"]["code"] == "SecretNotFound"


class TestTransientErrors:
    """Tests for transient error classification."""

    @pytest.mark.parametrize("error,expected", [
        (TransportError("list queues", "connection reset"), True),
        (OperationTimeoutError("peek", "timed out"), True),
        (ConnectionResetError(), True),
        (ServerError("get queue", 500, "busy"), False),
        (EntityNotFoundError("get queue", 404, ""), False),
        (ConnectionStringError("empty"), False),
        (ValueError("other"), False),
    ])
    def test_is_transient(self, error, expected):
        """Test which errors a caller may retry."""
        assert is_transient_error(error) is expected
