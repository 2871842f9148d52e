"""
Exception types for the MCP bridge.

These are raised inside a component and converted at its boundary, either
into a skipped backend (discovery) or into structured tool content (calls).
Only configuration errors are allowed to reach the process entry point.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class AuthenticationError(BridgeError):
    """Raised when a bearer token cannot be acquired."""


class GatewayError(BridgeError):
    """Raised when the gateway server lookup returns a non-success status."""

    def __init__(self, status_code: int, message: str = ""):
        """
        Initialize GatewayError.

        Args:
            status_code: HTTP status returned by the gateway
            message: Reason phrase or response detail
        """
        super().__init__(f"Gateway discovery failed: {status_code} {message}".rstrip())
        self.status_code = status_code
        self.message = message


class BackendConnectionError(BridgeError):
    """Raised when a backend MCP server cannot be reached or initialized."""

    def __init__(self, message: str, server_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.server_name = server_name

    def __str__(self) -> str:
        if self.server_name:
            return f"{self.message} (server: {self.server_name})"
        return self.message
