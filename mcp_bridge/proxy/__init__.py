"""
MCP Bridge Proxy

Discovers tools on remote MCP servers, merges them into a single
deduplicated registry, and routes tool calls back to their origin server.
"""

from .errors import BridgeError, AuthenticationError, GatewayError, BackendConnectionError
from .config import BridgeConfig, BackendDescriptor, load_bridge_config, load_manifest
from .auth import TokenCache, TokenProvider
from .client import BackendConnection, ConnectionState, RemoteTool, build_headers
from .resolver import ServerResolver, build_server_url
from .discovery import DiscoveryService, DiscoveryResult, DiscoveredTool, flatten_tools
from .schema import SchemaNodeKind, sanitize_schema
from .cache import ToolsCache, CachedToolRecord
from .registry import RegistryEntry, RegistrySnapshot, ToolConflict, build_registry
from .forwarder import ToolForwarder
from .engine import BridgeEngine, BridgeStats, DiscoveryState

__all__ = [
    "BridgeError",
    "AuthenticationError",
    "GatewayError",
    "BackendConnectionError",
    "BridgeConfig",
    "BackendDescriptor",
    "load_bridge_config",
    "load_manifest",
    "TokenCache",
    "TokenProvider",
    "BackendConnection",
    "ConnectionState",
    "RemoteTool",
    "build_headers",
    "ServerResolver",
    "build_server_url",
    "DiscoveryService",
    "DiscoveryResult",
    "DiscoveredTool",
    "flatten_tools",
    "SchemaNodeKind",
    "sanitize_schema",
    "ToolsCache",
    "CachedToolRecord",
    "RegistryEntry",
    "RegistrySnapshot",
    "ToolConflict",
    "build_registry",
    "ToolForwarder",
    "BridgeEngine",
    "BridgeStats",
    "DiscoveryState",
]
