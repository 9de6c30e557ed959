"""
Service Bus Exception Hierarchy

Error types raised by the management and data-plane clients, grouped by
kind: validation, transport, server/protocol, parse and unimplemented.
"""

from typing import Any, Dict, Optional


class ServiceBusError(Exception):
    """
    Base exception for all explorer client errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'EntityNotFound')
        details: Additional context (operation, status_code, entity_name, etc.)
    """

    error_code: str = "ServiceBusError"
    is_transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for the calling shell."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# ========== Validation Errors ==========

class ValidationError(ServiceBusError):
    """Base class for errors detected before any network call."""
    error_code = "ValidationError"


class ConnectionStringError(ValidationError):
    """Raised when a connection string or descriptor is empty or malformed."""
    error_code = "InvalidConnectionString"


class MissingConnectionFieldError(ConnectionStringError):
    """Raised when a required connection string field is absent."""
    error_code = "MissingConnectionField"

    def __init__(self, field: str, message: Optional[str] = None):
        message = message or f"Missing {field} in connection string"
        super().__init__(message, details={"field": field})
        self.field = field


class UnsupportedEndpointError(ValidationError):
    """Raised when the endpoint host is not a known Service Bus cloud."""
    error_code = "UnsupportedEndpoint"

    def __init__(self, host: str, supported_suffixes: tuple):
        supported = ", ".join(f"*{suffix}" for suffix in supported_suffixes)
        message = (
            f"Invalid Service Bus endpoint: {host}. "
            f"Supported formats: {supported}"
        )
        super().__init__(
            message,
            details={"host": host, "supported_suffixes": list(supported_suffixes)}
        )
        self.host = host


class InvalidTargetError(ValidationError):
    """Raised when a message target does not name a usable entity."""
    error_code = "InvalidTarget"


# ========== Transport Errors ==========

class TransportError(ServiceBusError):
    """Raised when the network call itself fails (connect, TLS, reset)."""
    error_code = "TransportError"
    is_transient = True

    def __init__(
        self,
        operation: str,
        reason: str,
        message: Optional[str] = None
    ):
        message = message or f"Failed to {operation}: {reason}"
        super().__init__(message, details={"operation": operation, "reason": reason})
        self.operation = operation


class OperationTimeoutError(TransportError):
    """Raised when a request does not complete within its timeout."""
    error_code = "OperationTimeout"


# ========== Server / Protocol Errors ==========

class ServerError(ServiceBusError):
    """
    Raised when the service answers with a non-success status.

    The status code and response body are carried verbatim so callers can
    discriminate on them.
    """
    error_code = "ServerError"

    def __init__(
        self,
        operation: str,
        status_code: Optional[int],
        body: str = "",
        message: Optional[str] = None
    ):
        if message is None:
            status = status_code if status_code is not None else "error"
            message = f"Failed to {operation}: {status} - {body}"
        super().__init__(
            message,
            details={"operation": operation, "status_code": status_code, "body": body}
        )
        self.operation = operation
        self.status_code = status_code
        self.body = body


class EntityNotFoundError(ServerError):
    """Raised when a queue, topic, subscription or sub-queue does not exist."""
    error_code = "EntityNotFound"


# ========== Parse Errors ==========

class ResponseParseError(ServiceBusError):
    """Raised when a response body cannot be mapped to the expected shape."""
    error_code = "ResponseParseError"

    def __init__(
        self,
        operation: str,
        reason: str,
        message: Optional[str] = None
    ):
        message = message or f"Failed to parse response for {operation}: {reason}"
        super().__init__(message, details={"operation": operation, "reason": reason})
        self.operation = operation


# ========== Utility Functions ==========

def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and the caller may retry.

    Args:
        error: Exception to check

    Returns:
        True if error is transient
    """
    if isinstance(error, ServiceBusError):
        return error.is_transient

    if isinstance(error, (
        ConnectionError,
        ConnectionRefusedError,
        ConnectionResetError,
    )):
        return True

    return False
