"""
Authentication exceptions for the explorer client.
"""

from sbexplorer.servicebus.exceptions import ServiceBusError


class AuthenticationError(ServiceBusError):
    """Base exception for authentication errors."""
    error_code = "AuthenticationFailed"


class AuthModeNotImplementedError(AuthenticationError):
    """
    Raised when an authentication mode is not available on a surface.

    Azure AD tokens are not exchanged for the management REST API; callers
    should switch to a connection string instead of retrying.
    """
    error_code = "AuthModeNotImplemented"

    def __init__(self, surface: str = "management REST API"):
        super().__init__(
            f"Azure AD authentication via the {surface} requires an OAuth token - not yet implemented",
            details={"surface": surface},
        )
        self.surface = surface


class InvalidSasTokenError(AuthenticationError):
    """Raised when a SAS token string cannot be parsed."""
    error_code = "InvalidSasToken"
