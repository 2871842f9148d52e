"""
Server resolution: turns configuration into backend descriptors.

Two sources are supported. In development, or when no app id is set, the
static manifest is used. Otherwise the platform gateway is queried for
the servers registered to the app. Gateway failures are not retried.
"""

import logging
from typing import List, Optional

import httpx

from .auth import TokenProvider
from .config import BackendDescriptor, BridgeConfig
from .errors import GatewayError

logger = logging.getLogger(__name__)


def build_server_url(config: BridgeConfig, descriptor: BackendDescriptor) -> str:
    """
    Construct the MCP endpoint URL for a backend.

    An explicit url on the descriptor wins; otherwise the pattern
    ``{endpoint}/agents/servers/{name}/`` is used.
    """
    if descriptor.url:
        return descriptor.url
    base = config.endpoint.rstrip("/")
    return f"{base}/agents/servers/{descriptor.name}/"


class ServerResolver:
    """Resolves the list of backends from the manifest or the gateway."""

    def __init__(
        self,
        config: BridgeConfig,
        token_provider: TokenProvider,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.token_provider = token_provider
        self._http_client = http_client

    async def resolve(self) -> List[BackendDescriptor]:
        """
        Resolve backend descriptors.

        Returns:
            Backends to discover. May be empty.

        Raises:
            GatewayError: If the gateway returns a non-success status
            AuthenticationError: If the gateway token cannot be obtained
        """
        if self.config.uses_gateway:
            return await self._resolve_from_gateway()
        return self._resolve_from_manifest()

    def _resolve_from_manifest(self) -> List[BackendDescriptor]:
        servers = list(self.config.manifest_servers)
        if not servers:
            logger.warning("Server manifest contains no MCP servers")
        else:
            logger.info(f"Resolved {len(servers)} servers from manifest")
        return servers

    async def _resolve_from_gateway(self) -> List[BackendDescriptor]:
        url = f"{self.config.endpoint.rstrip('/')}/agents/{self.config.app_id}/mcpServers"
        token = await self.token_provider.get_token()

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        client = self._http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        try:
            logger.info(f"Querying gateway for MCP servers: {url}")
            response = await client.get(url, headers=headers)
        finally:
            if self._http_client is None:
                await client.aclose()

        if not response.is_success:
            raise GatewayError(response.status_code, response.reason_phrase)

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(response.status_code, f"invalid JSON body: {e}")

        servers = []
        for entry in (data.get("mcpServers") or []) if isinstance(data, dict) else []:
            try:
                servers.append(BackendDescriptor.from_dict(entry))
            except ValueError as e:
                logger.warning(f"Ignoring invalid gateway server entry: {e}")

        logger.info(f"Resolved {len(servers)} servers from gateway")
        return servers
