"""
Configuration management for the MCP bridge.

This module loads the bridge settings from environment variables and the
static server declaration file (ToolingManifest.json), and validates them
into plain dataclasses consumed by every other component.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://agent365.svc.cloud.microsoft"
DEFAULT_AUTH_SCOPE = "ea9ffc3e-8a23-4a7d-836d-234d7c7565c1/.default"
DEFAULT_MANIFEST_NAME = "ToolingManifest.json"
DEFAULT_CACHE_PATH = Path.home() / ".mcp-bridge" / "tools-cache.json"

USER_AGENT = "Agent365SDK/1.0.0 (ClaudeCodeBridge; Python)"
AGENT_ID_HEADER = "x-ms-agentid"

AUTH_MODES = ["device_code", "client_credentials"]


@dataclass(frozen=True)
class BackendDescriptor:
    """Identifies one remote MCP tool server."""

    name: str
    unique_name: Optional[str] = None
    url: Optional[str] = None
    scope: Optional[str] = None
    audience: Optional[str] = None

    def __post_init__(self):
        """Validate descriptor after initialization."""
        if not self.name:
            raise ValueError("Server name cannot be empty")
        if self.url is not None and not urlparse(self.url).scheme:
            raise ValueError(f"Server url must be absolute: {self.url}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackendDescriptor":
        """Create a descriptor from a manifest or gateway entry."""
        if not isinstance(data, dict):
            raise ValueError(f"Server entry must be an object, got {type(data).__name__}")
        return cls(
            name=data.get("mcpServerName", ""),
            unique_name=data.get("mcpServerUniqueName"),
            url=data.get("url"),
            scope=data.get("scope"),
            audience=data.get("audience"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the manifest entry format."""
        data: Dict[str, Any] = {"mcpServerName": self.name}
        if self.unique_name is not None:
            data["mcpServerUniqueName"] = self.unique_name
        if self.url is not None:
            data["url"] = self.url
        if self.scope is not None:
            data["scope"] = self.scope
        if self.audience is not None:
            data["audience"] = self.audience
        return data


@dataclass
class BridgeConfig:
    """Resolved bridge configuration."""

    # Platform
    endpoint: str = DEFAULT_ENDPOINT
    auth_scope: str = DEFAULT_AUTH_SCOPE
    app_id: Optional[str] = None
    environment: str = "development"

    # Authentication
    bearer_token: Optional[str] = None
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    auth_mode: str = "device_code"

    # Static server declaration
    manifest_servers: List[BackendDescriptor] = field(default_factory=list)
    manifest_path: Optional[Path] = None

    # Runtime
    cache_path: Path = DEFAULT_CACHE_PATH
    request_timeout: float = 30.0
    discovery_wait: float = 30.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.endpoint:
            raise ValueError("endpoint cannot be empty")
        if not urlparse(self.endpoint).scheme:
            raise ValueError(f"endpoint must be an absolute URL: {self.endpoint}")
        if self.auth_mode not in AUTH_MODES:
            raise ValueError(f"Unsupported auth mode: {self.auth_mode}")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.discovery_wait <= 0:
            raise ValueError("discovery_wait must be positive")
        self.cache_path = Path(self.cache_path)

    @property
    def is_mock_endpoint(self) -> bool:
        """Check whether the endpoint points at a local mock tooling server."""
        host = urlparse(self.endpoint).hostname or ""
        return host in ("localhost", "127.0.0.1", "::1")

    @property
    def uses_gateway(self) -> bool:
        """Check whether servers are resolved through the gateway instead of the manifest."""
        return self.environment != "development" and bool(self.app_id)

    def __str__(self) -> str:
        mode = "gateway" if self.uses_gateway else "manifest"
        return (
            f"BridgeConfig(endpoint={self.endpoint}, mode={mode}, "
            f"servers={len(self.manifest_servers)})"
        )


def load_manifest(manifest_path: Union[str, Path]) -> List[BackendDescriptor]:
    """
    Load server descriptors from a ToolingManifest.json file.

    Args:
        manifest_path: Path to the manifest file

    Returns:
        List of descriptors. Empty if the file does not exist.

    Raises:
        ValueError: If the file is not valid JSON or an entry is invalid
    """
    path = Path(manifest_path)
    if not path.exists():
        logger.info(f"No server manifest at {path}, using empty server list")
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in manifest file {path}: {e}")

    servers_data = data.get("mcpServers", []) if isinstance(data, dict) else None
    if not isinstance(servers_data, list):
        raise ValueError("mcpServers must be a list")

    servers = []
    for index, entry in enumerate(servers_data):
        try:
            servers.append(BackendDescriptor.from_dict(entry))
        except ValueError as e:
            raise ValueError(f"Invalid server entry {index} in {path}: {e}")

    logger.info(f"Loaded {len(servers)} servers from manifest {path}")
    return servers


def _get(env: Mapping[str, str], key: str) -> Optional[str]:
    """Read an environment value, treating empty strings as unset."""
    value = env.get(key)
    return value if value else None


def load_bridge_config(
    env: Optional[Mapping[str, str]] = None,
    manifest_path: Optional[Union[str, Path]] = None,
) -> BridgeConfig:
    """
    Build the bridge configuration from environment variables.

    Args:
        env: Environment mapping. Defaults to os.environ.
        manifest_path: Manifest override. Defaults to MCP_BRIDGE_MANIFEST,
            then ToolingManifest.json in the working directory.

    Returns:
        Validated BridgeConfig

    Raises:
        ValueError: If any setting or the manifest is invalid
    """
    if env is None:
        env = os.environ

    if manifest_path is None:
        manifest_path = _get(env, "MCP_BRIDGE_MANIFEST") or Path.cwd() / DEFAULT_MANIFEST_NAME
    manifest_path = Path(manifest_path)

    try:
        request_timeout = float(env.get("MCP_BRIDGE_CALL_TIMEOUT", "30"))
        discovery_wait = float(env.get("MCP_BRIDGE_DISCOVERY_WAIT", "30"))
    except ValueError as e:
        raise ValueError(f"Invalid timeout setting: {e}")

    config = BridgeConfig(
        endpoint=_get(env, "MCP_PLATFORM_ENDPOINT") or DEFAULT_ENDPOINT,
        auth_scope=_get(env, "MCP_PLATFORM_AUTHENTICATION_SCOPE") or DEFAULT_AUTH_SCOPE,
        app_id=_get(env, "AGENTIC_APP_ID"),
        environment=_get(env, "MCP_BRIDGE_ENV") or _get(env, "NODE_ENV") or "development",
        bearer_token=_get(env, "BEARER_TOKEN"),
        tenant_id=_get(env, "AZURE_TENANT_ID"),
        client_id=_get(env, "AZURE_CLIENT_ID"),
        client_secret=_get(env, "AZURE_CLIENT_SECRET"),
        auth_mode=_get(env, "AUTH_MODE") or "device_code",
        manifest_servers=load_manifest(manifest_path),
        manifest_path=manifest_path,
        cache_path=_get(env, "MCP_BRIDGE_CACHE_PATH") or DEFAULT_CACHE_PATH,
        request_timeout=request_timeout,
        discovery_wait=discovery_wait,
    )

    logger.info(f"Loaded configuration: {config}")
    return config
