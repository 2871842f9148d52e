import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest

from mcp.types import CallToolResult, TextContent

from mcp_bridge.proxy.auth import TokenProvider
from mcp_bridge.proxy.client import RemoteTool
from mcp_bridge.proxy.config import BackendDescriptor, BridgeConfig
from mcp_bridge.proxy.errors import BackendConnectionError

# Loggers that drown the bridge's own output at DEBUG
NOISY_LOGGERS = ["httpx", "httpcore", "mcp.client.streamable_http"]


@pytest.fixture(scope="session", autouse=True)
def bridge_test_logging():
    """Apply LOG_LEVEL to the bridge loggers for the whole test session."""
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.getLogger("mcp_bridge").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


_DEFAULT = object()


def remote_tool(name: str, description: Any = _DEFAULT, schema: Optional[Dict[str, Any]] = None) -> RemoteTool:
    """Build a RemoteTool as a backend would list it. Pass description=None for an undescribed tool."""
    return RemoteTool(
        name=name,
        description=f"{name} tool" if description is _DEFAULT else description,
        input_schema=schema if schema is not None else {"type": "object", "properties": {}},
    )


def ok_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=False)


@dataclass
class FakeBackend:
    """Scripted behaviour of one backend."""

    tools: List[RemoteTool] = field(default_factory=list)
    connect_error: Optional[Exception] = None
    call_error: Optional[Exception] = None
    call_result: Optional[CallToolResult] = None
    calls: List[Dict[str, Any]] = field(default_factory=list)


class FakeConnection:
    """Stands in for BackendConnection, driven by a FakeBackend."""

    def __init__(self, backend: FakeBackend, server_name: str, url: str, headers: Dict[str, str], timeout: float):
        self.backend = backend
        self.server_name = server_name
        self.url = url
        self.headers = headers
        self.timeout = timeout
        self.connected = False
        self.disconnect_count = 0

    async def connect(self):
        if self.backend.connect_error is not None:
            raise self.backend.connect_error
        self.connected = True

    async def disconnect(self):
        self.connected = False
        self.disconnect_count += 1

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

    async def list_tools(self) -> List[RemoteTool]:
        return list(self.backend.tools)

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> CallToolResult:
        self.backend.calls.append({"tool": tool_name, "arguments": arguments, "headers": self.headers})
        if self.backend.call_error is not None:
            raise self.backend.call_error
        if self.backend.call_result is not None:
            return self.backend.call_result
        return ok_result(f"{self.server_name}:{tool_name}")


class FakeConnectionFactory:
    """Connection factory handing out FakeConnections per backend name."""

    def __init__(self):
        self.backends: Dict[str, FakeBackend] = {}
        self.opened: List[FakeConnection] = []

    def add(self, name: str, **kwargs) -> FakeBackend:
        backend = FakeBackend(**kwargs)
        self.backends[name] = backend
        return backend

    def __call__(self, server_name: str, url: str, headers: Dict[str, str], timeout: float) -> FakeConnection:
        backend = self.backends.get(server_name)
        if backend is None:
            backend = FakeBackend(
                connect_error=BackendConnectionError("Failed to connect: ConnectError", server_name)
            )
        connection = FakeConnection(backend, server_name, url, headers, timeout)
        self.opened.append(connection)
        return connection


@pytest.fixture
def bridge_config(tmp_path):
    """Provides a manifest-mode configuration with a static bearer token."""
    return BridgeConfig(
        endpoint="https://platform.example.com",
        bearer_token="test-token",
        manifest_servers=[BackendDescriptor(name="mail"), BackendDescriptor(name="calendar")],
        cache_path=tmp_path / "tools-cache.json",
        request_timeout=5.0,
        discovery_wait=0.5,
    )


@pytest.fixture
def token_provider(bridge_config):
    return TokenProvider(bridge_config)


@pytest.fixture
def connection_factory():
    return FakeConnectionFactory()
