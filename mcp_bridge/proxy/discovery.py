"""
Tool Discovery Service for the MCP bridge.

This module connects to every resolved backend in turn, lists its tools,
and returns the per-backend results. A backend that fails is logged and
skipped; discovery of the remaining backends always continues.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .auth import TokenProvider
from .client import BackendConnection, build_headers
from .config import BackendDescriptor, BridgeConfig
from .resolver import build_server_url

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[str, str, Dict[str, str], float], BackendConnection]


@dataclass
class DiscoveredTool:
    """A tool reported by a backend, before deduplication."""

    name: str
    description: Optional[str]
    input_schema: Dict[str, Any]
    server_name: str

    def __post_init__(self):
        """Validate tool after initialization."""
        if not self.name:
            raise ValueError("Tool name cannot be empty")
        if not isinstance(self.input_schema, dict):
            raise ValueError("Tool input_schema must be a dictionary")

    def __str__(self) -> str:
        return f"DiscoveredTool({self.name} from {self.server_name})"


@dataclass
class DiscoveryResult:
    """Tools discovered from one backend."""

    descriptor: BackendDescriptor
    url: str
    tools: List[DiscoveredTool] = field(default_factory=list)
    discovery_time: float = 0.0

    @property
    def server_name(self) -> str:
        return self.descriptor.name

    def __str__(self) -> str:
        return f"DiscoveryResult({self.server_name}: {len(self.tools)} tools in {self.discovery_time:.2f}s)"


class DiscoveryService:
    """
    Discovers tools across a list of backends.

    Backends are contacted sequentially: connection setup and token
    acquisition are expensive, and the platform may rate-limit bursts.
    """

    def __init__(
        self,
        config: BridgeConfig,
        token_provider: TokenProvider,
        connection_factory: ConnectionFactory = BackendConnection,
    ):
        """
        Initialize the discovery service.

        Args:
            config: Bridge configuration
            token_provider: Source of bearer tokens
            connection_factory: Builds a connection from (name, url, headers, timeout)
        """
        self.config = config
        self.token_provider = token_provider
        self.connection_factory = connection_factory

    async def discover_all(self, descriptors: List[BackendDescriptor]) -> List[DiscoveryResult]:
        """
        Discover tools from every backend.

        Args:
            descriptors: Backends to contact

        Returns:
            One result per backend that answered. Failed backends are absent.
        """
        logger.info(f"Starting tool discovery across {len(descriptors)} servers")

        results: List[DiscoveryResult] = []
        for descriptor in descriptors:
            try:
                result = await self.discover_server(descriptor)
            except Exception as e:
                logger.error(f"Failed to discover tools from {descriptor.name}: {e}")
                continue
            results.append(result)
            logger.info(f"Discovered {len(result.tools)} tools from {descriptor.name}")

        total_tools = sum(len(r.tools) for r in results)
        logger.info(
            f"Tool discovery completed: {len(results)}/{len(descriptors)} servers, {total_tools} tools total"
        )
        return results

    async def discover_server(self, descriptor: BackendDescriptor) -> DiscoveryResult:
        """
        Discover tools from a single backend.

        Raises:
            AuthenticationError: If no token could be obtained
            BackendConnectionError: If the backend could not be reached
            asyncio.TimeoutError: If the backend did not answer in time
        """
        start_time = time.time()
        url = build_server_url(self.config, descriptor)
        token = await self.token_provider.get_token()
        headers = build_headers(self.config, token)

        connection = self.connection_factory(
            descriptor.name, url, headers, self.config.request_timeout
        )
        async with connection:
            remote_tools = await asyncio.wait_for(
                connection.list_tools(), timeout=self.config.request_timeout
            )

        tools = []
        for remote in remote_tools:
            try:
                tools.append(
                    DiscoveredTool(
                        name=remote.name,
                        description=remote.description,
                        input_schema=remote.input_schema,
                        server_name=descriptor.name,
                    )
                )
            except ValueError as e:
                logger.warning(f"Skipping invalid tool from {descriptor.name}: {e}")

        return DiscoveryResult(
            descriptor=descriptor,
            url=url,
            tools=tools,
            discovery_time=time.time() - start_time,
        )


def flatten_tools(results: List[DiscoveryResult]) -> List[DiscoveredTool]:
    """Concatenate the tools of all results in backend order."""
    return [tool for result in results for tool in result.tools]


def discovery_summary(results: List[DiscoveryResult]) -> Dict[str, List[str]]:
    """Map each backend name to the names of the tools it reported."""
    return {result.server_name: [tool.name for tool in result.tools] for result in results}
