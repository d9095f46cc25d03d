"""MCP Time Machine Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

# MCP imports are optional - only needed when running the server
try:
    from mcp.server import Server  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from mcp.types import Tool, TextContent  # pragma: no cover
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    Tool = None  # type: ignore
    TextContent = None  # type: ignore

from .config import ProjectConfig, load_config
from .engine import TimeMachineError
from .logging_config import setup_logging
from .session import TimeMachine
from .tools import execute_tool, make_tools
from .watcher import DocumentWatcher

logger = logging.getLogger(__name__)


def create_server(config: ProjectConfig, machine: TimeMachine | None = None) -> "Server":
    """Create and configure the MCP server.

    Args:
        config: Project configuration
        machine: Session to serve (default: a new one for config)

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install mcp-timemachine[mcp]"
        )

    server = Server("mcp-timemachine")
    machine = machine or TimeMachine(config)
    tool_defs = make_tools(machine)

    for tool_name, tool_func in config.custom_tools.items():
        doc = tool_func.__doc__ or f"Custom tool: {tool_name}"
        tool_defs[tool_name] = {
            "name": tool_name,
            "description": doc.strip().split("\n")[0],
            "inputSchema": {
                "type": "object",
                "properties": {
                    "params": {
                        "type": "object",
                        "description": "Parameters for the custom tool",
                    }
                },
            },
        }

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        if name in config.custom_tools:
            try:
                result = config.custom_tools[name](machine, arguments.get("params", arguments))
                if asyncio.iscoroutine(result):
                    result = await result
                return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]
            except Exception as e:
                logger.exception("Custom tool %s failed", name)
                error_result = {
                    "success": False,
                    "error": str(e),
                    "error_type": "custom_tool_error",
                }
                return [TextContent(type="text", text=json.dumps(error_result, indent=2))]

        result = await execute_tool(machine, name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


async def run_server(config: ProjectConfig) -> None:
    """Run the MCP server with stdio transport, watching documents if enabled."""
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install mcp-timemachine[mcp]"
        )

    machine = TimeMachine(config)  # pragma: no cover
    server = create_server(config, machine)  # pragma: no cover
    watcher = DocumentWatcher(machine) if config.watch_enabled else None  # pragma: no cover
    if watcher:  # pragma: no cover
        watcher.start()

    try:  # pragma: no cover
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:  # pragma: no cover
        if watcher:
            watcher.stop()


def init_project(config: ProjectConfig) -> Path:
    """Create the log store directory."""
    store = config.get_store_path()
    store.mkdir(parents=True, exist_ok=True)
    return store


def watch_forever(machine: TimeMachine, max_polls: int | None = None) -> int:
    """Poll documents in the foreground until interrupted.

    Returns:
        Number of recorded batches
    """
    watcher = DocumentWatcher(machine)
    recorded = 0
    polls = 0
    try:
        while max_polls is None or polls < max_polls:
            for result in watcher.poll():
                recorded += 1
                print(f"{result.identity.path}: {result.total} operation(s)")
            polls += 1
            if max_polls is None or polls < max_polls:
                time.sleep(watcher.poll_interval)
    except KeyboardInterrupt:
        pass
    return recorded


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="MCP Time Machine Server - Replayable edit history for text documents"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Create the log store directory in project root",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Record on-disk edits in the foreground instead of serving MCP",
    )

    replay_group = parser.add_argument_group("replay", "Print a document's text from its history")
    replay_group.add_argument(
        "--replay",
        type=Path,
        metavar="DOCUMENT",
        help="Document whose history to replay",
    )
    replay_group.add_argument(
        "--position",
        type=int,
        help="Number of operations to replay (default: all)",
    )

    args = parser.parse_args()
    project_root = args.project_root.resolve()

    try:
        config = load_config(project_root, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_format)

    if args.init:
        store = init_project(config)
        print(f"Initialized log store in {store}")
        return

    if args.replay is not None:
        machine = TimeMachine(config)
        try:
            replayed = machine.replay_at(args.replay, args.position)
        except (TimeMachineError, ValueError) as e:
            print(f"Error replaying {args.replay}: {e}", file=sys.stderr)
            sys.exit(1)
        sys.stdout.write(replayed.text)
        return

    if args.watch:
        watch_forever(TimeMachine(config))
        return

    if not HAS_MCP:
        print("Error: MCP package not installed.", file=sys.stderr)
        print("Install with: pip install mcp-timemachine[mcp]", file=sys.stderr)
        print("Note: MCP requires Python 3.10+", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
