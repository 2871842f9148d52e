"""
Command line entry point for the MCP bridge.

Usage:
    mcp-bridge                      # Serve over stdio (default)
    mcp-bridge serve                # Same as above
    mcp-bridge discover             # Discover tools once and refresh the cache
    mcp-bridge dump-schemas -o tools.json
    mcp-bridge clear-cache
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional, Tuple

from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server

from . import __version__
from .logging_config import setup_logging
from .proxy.auth import TokenProvider
from .proxy.cache import ToolsCache
from .proxy.config import BridgeConfig, load_bridge_config
from .proxy.discovery import DiscoveryResult, DiscoveryService, discovery_summary, flatten_tools
from .proxy.engine import BridgeEngine
from .proxy.forwarder import ToolForwarder
from .proxy.registry import SOURCE_CACHE, SOURCE_LIVE, build_registry
from .proxy.resolver import ServerResolver

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-bridge"


def build_engine(config: BridgeConfig) -> BridgeEngine:
    """Wire the bridge components together."""
    token_provider = TokenProvider(config)
    return BridgeEngine(
        config=config,
        resolver=ServerResolver(config, token_provider),
        discovery=DiscoveryService(config, token_provider),
        forwarder=ToolForwarder(config, token_provider),
        cache=ToolsCache(config.cache_path),
    )


async def serve(config: BridgeConfig) -> None:
    """Run the stdio MCP server until the host closes the stream."""
    engine = build_engine(config)
    server = Server(SERVER_NAME, version=__version__)
    engine.register_handlers(server)

    _install_signal_handlers()
    await engine.start()
    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("MCP bridge serving over stdio")
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(
                    notification_options=NotificationOptions(tools_changed=True)
                ),
            )
    finally:
        await engine.stop()
        logger.info("MCP bridge stopped")


def _install_signal_handlers() -> None:
    """Cancel the running task on SIGTERM so shutdown closes backend connections."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    if task is None:
        return
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform
        pass


async def discover_once(config: BridgeConfig) -> Tuple[List[DiscoveryResult], List[str]]:
    """
    Run one discovery pass.

    Returns:
        Results of the backends that answered, and names of those that did not
    """
    token_provider = TokenProvider(config)
    resolver = ServerResolver(config, token_provider)
    discovery = DiscoveryService(config, token_provider)

    descriptors = await resolver.resolve()
    results = await discovery.discover_all(descriptors)
    answered = {result.server_name for result in results}
    failed = [d.name for d in descriptors if d.name not in answered]
    return results, failed


def cmd_serve(args, config: BridgeConfig) -> int:
    """Serve tools over stdio."""
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except asyncio.CancelledError:
        logger.info("Terminated, shutting down")
    return 0


def cmd_discover(args, config: BridgeConfig) -> int:
    """Discover tools once and refresh the disk cache."""
    print(f"=== Discovering tools ({'gateway' if config.uses_gateway else 'manifest'}) ===")
    try:
        results, failed = asyncio.run(discover_once(config))
    except Exception as e:
        print(f"Discovery failed: {e}")
        return 1

    for server_name, tool_names in discovery_summary(results).items():
        print(f"  {server_name}: {len(tool_names)} tools")
    for server_name in failed:
        print(f"  {server_name}: FAILED")

    if failed and not results:
        print("No server could be reached; the tool cache was not updated.")
        return 1

    snapshot = build_registry(flatten_tools(results), source=SOURCE_LIVE)
    if len(snapshot) == 0 and (results or failed):
        print("No server returned any tools; the tool cache was not updated.")
        return 1
    ToolsCache(config.cache_path).save(snapshot.to_cache_records())

    print(f"\nCached {len(snapshot)} tools to {config.cache_path}")
    for conflict in snapshot.conflicts:
        print(f"  Renamed '{conflict.tool_name}' (found in {', '.join(conflict.servers)})")
    return 0


def cmd_dump_schemas(args, config: BridgeConfig) -> int:
    """Write the sanitized tool list as JSON."""
    if args.from_cache:
        records = ToolsCache(config.cache_path).load()
        if records is None:
            print("No usable tool cache; run 'mcp-bridge discover' first.", file=sys.stderr)
            return 1
        snapshot = build_registry(
            (record.to_discovered_tool() for record in records), source=SOURCE_CACHE
        )
    else:
        try:
            results, failed = asyncio.run(discover_once(config))
        except Exception as e:
            print(f"Discovery failed: {e}", file=sys.stderr)
            return 1
        for server_name in failed:
            print(f"Skipping unreachable server {server_name}", file=sys.stderr)
        snapshot = build_registry(flatten_tools(results), source=SOURCE_LIVE)

    payload = [tool.model_dump(exclude_none=True) for tool in snapshot.tools()]
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Wrote {len(payload)} tool schemas to {args.output}")
    else:
        print(text)
    return 0


def cmd_clear_cache(args, config: BridgeConfig) -> int:
    """Remove the disk cache."""
    if ToolsCache(config.cache_path).clear():
        print(f"Removed {config.cache_path}")
    else:
        print(f"No tool cache at {config.cache_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-bridge",
        description="Expose remote streamable HTTP MCP servers to a stdio MCP host",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-bridge                                  # Serve over stdio
  mcp-bridge discover                         # Discover tools and refresh the cache
  mcp-bridge dump-schemas --output tools.json # Write the sanitized tool list
  mcp-bridge clear-cache                      # Remove the tool cache
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--manifest", help="Path to ToolingManifest.json")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Serve tools over stdio (default)")
    subparsers.add_parser("discover", help="Discover tools once and refresh the cache")

    dump_parser = subparsers.add_parser("dump-schemas", help="Write the sanitized tool list as JSON")
    dump_parser.add_argument("-o", "--output", help="Output file (default: stdout)")
    dump_parser.add_argument(
        "--from-cache", action="store_true", help="Read tools from the disk cache instead of discovering"
    )

    subparsers.add_parser("clear-cache", help="Remove the tool cache")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"

    # stdout carries the protocol or the JSON output
    setup_logging(stdio_mode=command in ("serve", "dump-schemas"))

    try:
        config = load_bridge_config(manifest_path=args.manifest)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    commands = {
        "serve": cmd_serve,
        "discover": cmd_discover,
        "dump-schemas": cmd_dump_schemas,
        "clear-cache": cmd_clear_cache,
    }
    return commands[command](args, config)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
