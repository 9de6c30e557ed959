"""
Secret Store Exceptions.

Custom exceptions for secret store operations.
"""

from sbexplorer.servicebus.exceptions import ServiceBusError


class SecretStoreError(ServiceBusError):
    """Base exception for all secret store errors."""
    error_code = "SecretStoreError"


class SecretNotFoundError(SecretStoreError):
    """Raised when no connection string is stored for a connection id."""
    error_code = "SecretNotFound"

    def __init__(self, connection_id: str):
        super().__init__(
            f"No connection string stored for connection '{connection_id}'",
            details={"connection_id": connection_id},
        )
        self.connection_id = connection_id
