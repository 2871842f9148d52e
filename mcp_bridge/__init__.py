"""
MCP Bridge

Serves tools/list and tools/call over stdio and forwards calls to remote
streamable HTTP MCP servers.
"""

__version__ = "1.0.0"
