"""
MCP Bridge Engine - orchestrator of the bridge.

This module owns the discovery state machine and answers the two inbound
requests. tools/list never waits: it answers from the live registry, the
disk-cached registry, or a placeholder, whichever is available. tools/call
may wait a bounded time for discovery, since by the time a tool is
actually invoked a short startup delay is acceptable.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from mcp.server import Server
from mcp.types import Tool

from .cache import ToolsCache
from .config import BackendDescriptor, BridgeConfig
from .discovery import DiscoveryService, flatten_tools
from .forwarder import ToolForwarder, text_content
from .registry import SOURCE_CACHE, SOURCE_LIVE, RegistrySnapshot, build_registry
from .resolver import ServerResolver

logger = logging.getLogger(__name__)

SETUP_PLACEHOLDER = "bridge_sign_in_status"
STATUS_PLACEHOLDER = "bridge_connection_status"
PLACEHOLDER_NAMES = (SETUP_PLACEHOLDER, STATUS_PLACEHOLDER)

# Upper bound on tool names listed in an unknown-tool error
MAX_LISTED_TOOL_NAMES = 50

EMPTY_INPUT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class DiscoveryState(Enum):
    """Lifecycle of the single background discovery run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (DiscoveryState.COMPLETE, DiscoveryState.FAILED)


_TRANSITIONS = {
    DiscoveryState.NOT_STARTED: {DiscoveryState.RUNNING},
    DiscoveryState.RUNNING: {DiscoveryState.COMPLETE, DiscoveryState.FAILED},
    DiscoveryState.COMPLETE: set(),
    DiscoveryState.FAILED: set(),
}


@dataclass
class BridgeStats:
    """Statistics for the bridge engine."""

    state: str
    tools_available: int
    tools_source: Optional[str]
    servers_connected: int
    conflicts_detected: int
    uptime_seconds: float
    last_discovery: Optional[float] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "state": self.state,
            "tools_available": self.tools_available,
            "tools_source": self.tools_source,
            "servers_connected": self.servers_connected,
            "conflicts_detected": self.conflicts_detected,
            "uptime_seconds": self.uptime_seconds,
            "last_discovery": self.last_discovery,
            "failure_reason": self.failure_reason,
        }


class BridgeEngine:
    """
    Main orchestrator of the MCP bridge.

    Holds exactly one discovery state and at most two registry snapshots
    (disk-cached and live). The discovery task is the only writer; the
    request handlers only read the current snapshot reference.
    """

    def __init__(
        self,
        config: BridgeConfig,
        resolver: ServerResolver,
        discovery: DiscoveryService,
        forwarder: ToolForwarder,
        cache: ToolsCache,
    ):
        """
        Initialize the engine and load the disk cache.

        Args:
            config: Bridge configuration
            resolver: Resolves backend descriptors
            discovery: Lists tools from backends
            forwarder: Relays tool calls
            cache: Disk cache of the last discovered tool list
        """
        self.config = config
        self.resolver = resolver
        self.discovery = discovery
        self.forwarder = forwarder
        self.cache = cache
        self.discovery_wait = config.discovery_wait

        self._state = DiscoveryState.NOT_STARTED
        self.failure_reason: Optional[str] = None
        self.last_discovery: Optional[float] = None

        self._cache_snapshot: Optional[RegistrySnapshot] = None
        self._live_snapshot: Optional[RegistrySnapshot] = None
        self._backends: Dict[str, BackendDescriptor] = {}

        self._discovery_done = asyncio.Event()
        self._discovery_task: Optional[asyncio.Task] = None
        self._start_time: Optional[float] = None
        self._session: Optional[Any] = None
        self.notifier: Optional[Callable[[], Awaitable[None]]] = None

        self._load_cache()

    def _load_cache(self) -> None:
        records = self.cache.load()
        if not records:
            return
        self._cache_snapshot = build_registry(
            (record.to_discovered_tool() for record in records), source=SOURCE_CACHE
        )
        logger.info(f"Serving {len(self._cache_snapshot)} cached tools until discovery completes")

    # State

    @property
    def state(self) -> DiscoveryState:
        return self._state

    def _transition(self, new_state: DiscoveryState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid discovery state transition: {self._state.value} -> {new_state.value}"
            )
        logger.debug(f"Discovery state {self._state.value} -> {new_state.value}")
        self._state = new_state

    @property
    def snapshot(self) -> Optional[RegistrySnapshot]:
        """The authoritative registry: live once discovery completed, else the cached one."""
        if self._state is DiscoveryState.COMPLETE:
            return self._live_snapshot
        return self._cache_snapshot

    # Lifecycle

    async def start(self) -> None:
        """Launch the background discovery run. Later calls do nothing."""
        if self._discovery_task is not None:
            logger.warning("Discovery already started")
            return

        self._start_time = time.time()
        self._transition(DiscoveryState.RUNNING)
        self._discovery_task = asyncio.create_task(self._run_discovery(), name="bridge_discovery")
        logger.info("Tool discovery running in background")

    async def stop(self) -> None:
        """Cancel discovery if still running and close backend connections."""
        task, self._discovery_task = self._discovery_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.forwarder.close_all()
        logger.info("Bridge engine stopped")

    async def _run_discovery(self) -> None:
        try:
            descriptors = await self.resolver.resolve()
            results = await self.discovery.discover_all(descriptors)
        except Exception as e:
            self.failure_reason = str(e) or type(e).__name__
            self._transition(DiscoveryState.FAILED)
            self._discovery_done.set()
            logger.error(f"Discovery failed: {self.failure_reason}")
            return

        snapshot = build_registry(flatten_tools(results), source=SOURCE_LIVE)
        self._backends = {result.descriptor.name: result.descriptor for result in results}
        self._live_snapshot = snapshot
        self.last_discovery = time.time()
        self._transition(DiscoveryState.COMPLETE)
        self._discovery_done.set()
        logger.info(f"Discovery complete: {len(snapshot)} tools available")

        if len(snapshot) > 0 or not descriptors:
            self.cache.save(snapshot.to_cache_records(), timestamp=self.last_discovery)
        else:
            logger.warning("No backend returned tools, keeping the previous tool cache")

        await self._notify_tool_list_changed()

    async def _notify_tool_list_changed(self) -> None:
        """Tell the host the tool list changed. Not every host supports it."""
        try:
            if self.notifier is not None:
                await self.notifier()
            elif self._session is not None:
                await self._session.send_tool_list_changed()
        except Exception as e:
            logger.debug(f"Could not send tool list change notification: {e}")

    async def wait_for_discovery(self, timeout: float) -> bool:
        """
        Wait until discovery has finished.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if discovery completed or failed within the timeout
        """
        if self._state.is_finished:
            return True
        if self._discovery_task is None:
            return False
        try:
            await asyncio.wait_for(self._discovery_done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # Request handlers

    def list_tools(self) -> List[Tool]:
        """
        Answer tools/list without waiting for discovery.

        Returns:
            The registry's tools, or a single placeholder tool
        """
        snapshot = self.snapshot
        if snapshot is not None and len(snapshot) > 0:
            if snapshot.source == SOURCE_CACHE:
                logger.info(f"Serving {len(snapshot)} cached tools (discovery {self._state.value})")
            return snapshot.tools()

        if self._state is DiscoveryState.FAILED:
            return [
                Tool(
                    name=STATUS_PLACEHOLDER,
                    description=f"MCP bridge connection failed: {self.failure_reason}",
                    inputSchema=dict(EMPTY_INPUT_SCHEMA),
                )
            ]

        if self._state is DiscoveryState.COMPLETE:
            return [
                Tool(
                    name=STATUS_PLACEHOLDER,
                    description=(
                        "MCP bridge is connected but no tools were discovered. "
                        "Check the server manifest or gateway registration."
                    ),
                    inputSchema=dict(EMPTY_INPUT_SCHEMA),
                )
            ]

        logger.info("No cached tools, returning setup placeholder")
        return [
            Tool(
                name=SETUP_PLACEHOLDER,
                description=(
                    "MCP bridge setup required. Configure credentials and run "
                    "'mcp-bridge discover' to set up."
                ),
                inputSchema=dict(EMPTY_INPUT_SCHEMA),
            )
        ]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Sequence[Any]:
        """
        Answer tools/call by routing to the tool's origin backend.

        Never raises: unknown tools, missing backends, timeouts and backend
        failures all come back as text content.
        """
        if name in PLACEHOLDER_NAMES:
            return text_content(self.status_message())

        snapshot = self.snapshot
        entry = snapshot.get(name) if snapshot is not None else None
        if entry is None:
            return self._unknown_tool(name, snapshot)

        if self._state is not DiscoveryState.COMPLETE:
            logger.info(f"Tool call '{name}' waiting for discovery...")
            finished = await self.wait_for_discovery(self.discovery_wait)
            if not finished:
                return text_content(
                    "Still connecting to backend servers. Tool discovery has not "
                    f"finished after {self.discovery_wait:.0f}s; try again shortly."
                )
            if self._state is DiscoveryState.FAILED:
                return text_content(f"Error: backend connection failed: {self.failure_reason}")

            # Live names may differ from the cached ones
            entry = self._live_snapshot.get(name) if self._live_snapshot is not None else None
            if entry is None:
                return self._unknown_tool(name, self._live_snapshot)

        backend = self._backends.get(entry.server_name)
        if backend is None:
            return text_content(f"Error: Server '{entry.server_name}' not found.")

        return await self.forwarder.call_tool(backend, entry.original_name, arguments or {})

    def _unknown_tool(self, name: str, snapshot: Optional[RegistrySnapshot]) -> List[Any]:
        message = f"Error: Tool '{name}' not found."
        names = snapshot.names() if snapshot is not None else []
        if names:
            listed = ", ".join(names[:MAX_LISTED_TOOL_NAMES])
            if len(names) > MAX_LISTED_TOOL_NAMES:
                listed += f", ... ({len(names) - MAX_LISTED_TOOL_NAMES} more)"
            message += f" Available tools: {listed}"
        logger.warning(f"Call for unknown tool '{name}'")
        return text_content(message)

    def status_message(self) -> str:
        """Human-readable status for the placeholder tools."""
        if self._state is DiscoveryState.FAILED:
            return (
                f"Tool discovery failed: {self.failure_reason}. Check the bridge "
                "credentials and run 'mcp-bridge discover' to diagnose, then restart."
            )
        if self._state is DiscoveryState.COMPLETE:
            snapshot = self._live_snapshot
            count = len(snapshot) if snapshot is not None else 0
            if count == 0:
                return "Connected, but no tools were discovered on any backend server."
            return f"Connected: {count} tools available from {len(self._backends)} servers."
        if self._state is DiscoveryState.RUNNING:
            return "Connecting to backend servers; tool discovery is in progress. Try again shortly."
        return (
            "The MCP bridge is not set up yet. Configure credentials and run "
            "'mcp-bridge discover' in a terminal."
        )

    # Server wiring

    def register_handlers(self, server: Server) -> None:
        """
        Register the tools/list and tools/call handlers on an MCP server.

        The session of the latest request is kept so discovery can send a
        tools/list_changed notification when it finishes.
        """

        @server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            self._capture_session(server)
            return self.list_tools()

        @server.call_tool()
        async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> Sequence[Any]:
            self._capture_session(server)
            return await self.call_tool(name, arguments)

        logger.info("Registered bridge request handlers")

    def _capture_session(self, server: Server) -> None:
        try:
            self._session = server.request_context.session
        except LookupError:
            pass

    # Introspection

    @property
    def backends(self) -> List[BackendDescriptor]:
        return list(self._backends.values())

    def get_stats(self) -> BridgeStats:
        """Get current engine statistics."""
        snapshot = self.snapshot
        uptime = time.time() - self._start_time if self._start_time else 0.0
        return BridgeStats(
            state=self._state.value,
            tools_available=len(snapshot) if snapshot is not None else 0,
            tools_source=snapshot.source if snapshot is not None else None,
            servers_connected=len(self._backends),
            conflicts_detected=len(snapshot.conflicts) if snapshot is not None else 0,
            uptime_seconds=uptime,
            last_discovery=self.last_discovery,
            failure_reason=self.failure_reason,
        )

    def __str__(self) -> str:
        return f"BridgeEngine({self._state.value}, {self.get_stats().tools_available} tools)"
