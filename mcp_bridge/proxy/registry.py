"""
Tool registry for the MCP bridge.

A registry snapshot maps externally visible tool names to the backend and
original name that serve them. Snapshots are immutable: the engine swaps
in a whole new snapshot when fresh data arrives, so readers never see a
half-built registry.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from mcp.types import Tool

from .cache import CachedToolRecord
from .discovery import DiscoveredTool
from .schema import sanitize_schema

logger = logging.getLogger(__name__)

SOURCE_CACHE = "cache"
SOURCE_LIVE = "live"


@dataclass(frozen=True)
class RegistryEntry:
    """One externally addressable tool."""

    external_name: str
    original_name: str
    server_name: str
    description: str
    input_schema: Mapping[str, Any]

    @property
    def is_renamed(self) -> bool:
        return self.external_name != self.original_name

    def to_tool(self) -> Tool:
        """Convert to the MCP tool definition returned by tools/list."""
        return Tool(
            name=self.external_name,
            description=self.description,
            inputSchema=dict(self.input_schema),
        )

    def to_cache_record(self) -> CachedToolRecord:
        """Convert to the persisted form, keyed by the backend's own name."""
        return CachedToolRecord(
            name=self.original_name,
            description=self.description,
            server_name=self.server_name,
            input_schema=dict(self.input_schema),
        )


@dataclass(frozen=True)
class ToolConflict:
    """A tool name reported by more than one backend."""

    tool_name: str
    servers: Tuple[str, ...]
    resolution: str = "server_suffix"

    def __str__(self) -> str:
        return f"ToolConflict({self.tool_name} in {len(self.servers)} servers)"


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable point-in-time registry."""

    entries_by_name: Mapping[str, RegistryEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    conflicts: Tuple[ToolConflict, ...] = ()
    source: str = SOURCE_LIVE

    def get(self, name: str) -> Optional[RegistryEntry]:
        """Get an entry by external name."""
        return self.entries_by_name.get(name)

    def names(self) -> List[str]:
        return list(self.entries_by_name.keys())

    def tools(self) -> List[Tool]:
        """Tool definitions in registry order."""
        return [entry.to_tool() for entry in self.entries_by_name.values()]

    def server_names(self) -> Set[str]:
        return {entry.server_name for entry in self.entries_by_name.values()}

    def to_cache_records(self) -> List[CachedToolRecord]:
        return [entry.to_cache_record() for entry in self.entries_by_name.values()]

    def __contains__(self, name: object) -> bool:
        return name in self.entries_by_name

    def __len__(self) -> int:
        return len(self.entries_by_name)

    def __str__(self) -> str:
        return f"RegistrySnapshot({len(self)} tools from {self.source})"


def _unique_suffixed_name(
    tool: DiscoveredTool, taken: Set[str], reserved: Set[str]
) -> str:
    """
    Name a colliding tool ``name_server``.

    If that name is itself a literal tool name or already assigned, the
    server suffix is appended again until the name is free.
    """
    candidate = f"{tool.name}_{tool.server_name}"
    while candidate in taken or candidate in reserved:
        logger.warning(
            f"Suffixed tool name {candidate} collides with another tool, suffixing again"
        )
        candidate = f"{candidate}_{tool.server_name}"
    return candidate


def build_registry(tools: Iterable[DiscoveredTool], source: str = SOURCE_LIVE) -> RegistrySnapshot:
    """
    Build a deduplicated registry snapshot.

    Names reported by a single backend are kept as-is. Every tool whose
    name is reported more than once gets the ``_<server>`` suffix, not
    just the second one seen. A backend reporting the same name twice
    keeps the last definition.

    Args:
        tools: Discovered tools, in backend order
        source: Where the tools came from, "cache" or "live"

    Returns:
        An immutable RegistrySnapshot
    """
    tools = list(tools)
    # Count each name once per backend
    origins = dict.fromkeys((tool.name, tool.server_name) for tool in tools)
    counts = Counter(name for name, _ in origins)
    reserved = {tool.name for tool in tools if counts[tool.name] == 1}

    entries: Dict[str, RegistryEntry] = {}
    assigned: Dict[Tuple[str, str], str] = {}
    servers_by_name: Dict[str, List[str]] = {}

    for tool in tools:
        origin = (tool.name, tool.server_name)
        if origin in assigned:
            logger.warning(
                f"Server {tool.server_name} reported tool {tool.name} more than once, keeping the last"
            )
            external_name = assigned[origin]
        elif counts[tool.name] > 1:
            external_name = _unique_suffixed_name(tool, set(entries), reserved)
        else:
            external_name = tool.name

        if counts[tool.name] > 1:
            servers = servers_by_name.setdefault(tool.name, [])
            if tool.server_name not in servers:
                servers.append(tool.server_name)

        assigned[origin] = external_name
        entries[external_name] = RegistryEntry(
            external_name=external_name,
            original_name=tool.name,
            server_name=tool.server_name,
            description=tool.description or f"Tool from {tool.server_name}",
            input_schema=MappingProxyType(sanitize_schema(tool.input_schema)),
        )

    conflicts = tuple(
        ToolConflict(tool_name=name, servers=tuple(servers))
        for name, servers in servers_by_name.items()
        if len(servers) > 1
    )
    for conflict in conflicts:
        logger.info(f"Tool name conflict: {conflict.tool_name} exists in {list(conflict.servers)}")

    snapshot = RegistrySnapshot(
        entries_by_name=MappingProxyType(entries),
        conflicts=conflicts,
        source=source,
    )
    logger.debug(f"Built {snapshot}")
    return snapshot
