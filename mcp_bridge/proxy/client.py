"""
Connection to a single remote MCP backend.

BackendConnection wraps the official MCP streamable HTTP client and
ClientSession. A connection must be opened and closed by the same task,
so callers use it as an async context manager around a single operation.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult, Implementation

from .config import AGENT_ID_HEADER, USER_AGENT, BridgeConfig
from .errors import BackendConnectionError

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="mcp-bridge", version="1.0.0")


def build_headers(config: BridgeConfig, token: Optional[str]) -> Dict[str, str]:
    """
    Build the request headers sent to a backend.

    Args:
        config: Bridge configuration
        token: Bearer token, or None when no authentication is used

    Returns:
        Header dictionary
    """
    headers = {"User-Agent": USER_AGENT}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    if config.app_id:
        headers[AGENT_ID_HEADER] = config.app_id
    return headers


@dataclass
class RemoteTool:
    """A tool as listed by a backend."""

    name: str
    description: Optional[str]
    input_schema: Dict[str, Any] = field(default_factory=dict)


class ConnectionState(Enum):
    """Connection states for a backend."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class BackendConnection:
    """Short-lived MCP client session against one backend URL."""

    def __init__(
        self,
        server_name: str,
        url: str,
        headers: Dict[str, str],
        timeout: float = 30.0,
    ):
        """
        Initialize the connection.

        Args:
            server_name: Backend name, used for logging and errors
            url: Streamable HTTP endpoint of the backend
            headers: Headers sent with every request
            timeout: HTTP and per-request read timeout in seconds
        """
        self.server_name = server_name
        self.url = url
        self.headers = headers
        self.timeout = timeout
        self.state = ConnectionState.DISCONNECTED
        self.session: Optional[ClientSession] = None
        self._stack: Optional[AsyncExitStack] = None

    async def connect(self) -> None:
        """
        Open the transport and initialize the MCP session.

        Raises:
            BackendConnectionError: If the backend cannot be reached or initialized
        """
        if self.state in [ConnectionState.CONNECTED, ConnectionState.CONNECTING]:
            return

        self.state = ConnectionState.CONNECTING
        logger.debug(f"Connecting to backend {self.server_name} at {self.url}")

        stack = AsyncExitStack()
        try:
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(self.url, headers=self.headers)
            )
            session = await stack.enter_async_context(
                ClientSession(
                    read,
                    write,
                    read_timeout_seconds=timedelta(seconds=self.timeout),
                    client_info=CLIENT_INFO,
                )
            )
            await session.initialize()
        except Exception as e:
            self.state = ConnectionState.FAILED
            try:
                await stack.aclose()
            except Exception as close_error:
                logger.debug(f"Error cleaning up failed connection to {self.server_name}: {close_error}")
            raise BackendConnectionError(
                f"Failed to connect: {type(e).__name__}: {e}", self.server_name
            ) from e

        self._stack = stack
        self.session = session
        self.state = ConnectionState.CONNECTED
        logger.debug(f"Connected to backend {self.server_name}")

    async def disconnect(self) -> None:
        """Close the session and transport. Close errors are logged, not raised."""
        if self.state == ConnectionState.DISCONNECTED:
            return

        stack, self._stack = self._stack, None
        self.session = None
        self.state = ConnectionState.DISCONNECTED
        if stack is not None:
            try:
                await stack.aclose()
            except Exception as e:
                logger.warning(f"Error closing connection to {self.server_name}: {e}")

    async def list_tools(self) -> List[RemoteTool]:
        """
        List the tools exposed by the backend.

        Raises:
            BackendConnectionError: If not connected
        """
        session = self._require_session()
        result = await session.list_tools()
        return [
            RemoteTool(
                name=tool.name,
                description=tool.description,
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> CallToolResult:
        """
        Invoke a tool on the backend.

        Args:
            tool_name: Name of the tool as the backend knows it
            arguments: Tool arguments

        Returns:
            The backend's CallToolResult, including backend-reported errors
        """
        session = self._require_session()
        return await session.call_tool(tool_name, arguments)

    def _require_session(self) -> ClientSession:
        if self.session is None or self.state != ConnectionState.CONNECTED:
            raise BackendConnectionError("Not connected", self.server_name)
        return self.session

    @property
    def is_connected(self) -> bool:
        """Check if the session is open."""
        return self.state == ConnectionState.CONNECTED

    async def __aenter__(self) -> "BackendConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def __repr__(self) -> str:
        return f"BackendConnection(server={self.server_name}, url={self.url}, state={self.state.value})"
