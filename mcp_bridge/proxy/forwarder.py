"""
Forwards tool calls to the backend that owns the tool.

Every call opens a new connection with a freshly fetched token, because
the platform rejects stale sessions and stale tokens. Failures of any kind
come back as text content so the host always gets a well-formed result.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from mcp.types import CallToolResult, TextContent

from .auth import TokenProvider
from .client import BackendConnection, build_headers
from .config import BackendDescriptor, BridgeConfig
from .discovery import ConnectionFactory
from .resolver import build_server_url

logger = logging.getLogger(__name__)


def text_content(message: str) -> List[TextContent]:
    """Wrap a message as a single text content block."""
    return [TextContent(type="text", text=message)]


class ToolForwarder:
    """Relays tools/call requests to backends."""

    def __init__(
        self,
        config: BridgeConfig,
        token_provider: TokenProvider,
        connection_factory: ConnectionFactory = BackendConnection,
    ):
        self.config = config
        self.token_provider = token_provider
        self.connection_factory = connection_factory
        # Connection currently in use per backend, so shutdown can close it
        self._connections: Dict[str, BackendConnection] = {}

    async def call_tool(
        self,
        backend: BackendDescriptor,
        original_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> Sequence[Any]:
        """
        Call a tool on its origin backend.

        Args:
            backend: The backend that owns the tool
            original_name: The tool name as the backend knows it
            arguments: Tool arguments

        Returns:
            The backend's content blocks, or a single text block describing
            the failure. Never raises.
        """
        arguments = arguments or {}
        try:
            result = await self._forward(backend, original_name, arguments)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Tool call failed for {original_name} on {backend.name}: {message}")
            return text_content(
                f'Error calling tool "{original_name}" on {backend.name}: {message}'
            )

        if result.isError:
            logger.warning(f"Backend {backend.name} reported an error for {original_name}")
        if not result.content:
            return text_content(result.model_dump_json(exclude_none=True))
        return list(result.content)

    async def _forward(
        self, backend: BackendDescriptor, original_name: str, arguments: Dict[str, Any]
    ) -> CallToolResult:
        url = build_server_url(self.config, backend)
        token = await self.token_provider.get_token()
        headers = build_headers(self.config, token)

        connection = self.connection_factory(
            backend.name, url, headers, self.config.request_timeout
        )
        self._connections[backend.name] = connection
        try:
            async with connection:
                logger.debug(f"Calling tool {original_name} on {backend.name}")
                return await connection.call_tool(original_name, arguments)
        finally:
            # A concurrent call may have replaced the slot already
            if self._connections.get(backend.name) is connection:
                del self._connections[backend.name]

    @property
    def active_connections(self) -> List[str]:
        """Names of backends with a call in flight."""
        return list(self._connections.keys())

    async def close_all(self) -> None:
        """Close every connection still held. Errors are logged."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            try:
                await connection.disconnect()
            except Exception as e:
                logger.warning(f"Error closing connection to {connection.server_name}: {e}")
        if connections:
            logger.info(f"Closed {len(connections)} backend connections")
