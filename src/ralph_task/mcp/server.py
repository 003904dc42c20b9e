"""MCP server for ralph-task using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents reconcile PRD stories with a Trello board.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP

Configuration is loaded per tool call, so edits to the config file or
the PRD are picked up without restarting the server.
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from dotenv import load_dotenv
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from .tools import SYNC_TOOLS, build_error_response, handle_sync_tool

logger = logging.getLogger(__name__)

SERVER_NAME = "ralph-task"

# Initialize server instance
server = Server(SERVER_NAME)

# Config file path from --config (None means discovery per call)
_config_path: str | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_config_path() -> str | None:
    """Get the config file path the server was started with."""
    return _config_path


def set_config_path(path: str | None) -> None:
    """Set the config file path used when a tool call names none.

    Args:
        path: Config file path, or None to fall back to discovery
    """
    global _config_path
    _config_path = path


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available sync tools."""
    return list(SYNC_TOOLS)


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    if name not in {tool.name for tool in SYNC_TOOLS}:
        return build_error_response(
            "unknown_tool",
            f"Unknown tool: {name}",
            "Use list_tools to see available tools.",
        )
    return await handle_sync_tool(name, arguments, get_config_path())


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(
    log_file: str | None = None, config_path: str | None = None
) -> None:
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), loads ``.env``
    and serves JSON-RPC over stdio until the client disconnects.

    Args:
        log_file: Log file path (default: LOG_FILE env var or
            /tmp/ralph-task-mcp.log)
        config_path: Default config file for tool calls
    """
    # Must run before stdio_server so nothing reaches stdout
    setup_logging(mode="mcp", log_file=log_file)
    load_dotenv()

    set_config_path(config_path)
    logger.info(
        "MCP server starting (version %s, %d tools, config: %s)",
        __version__,
        len(SYNC_TOOLS),
        config_path or "discovered per call",
    )
    print("ralph-task MCP server starting...", file=sys.stderr, flush=True)

    try:
        async with mcp.server.stdio.stdio_server() as (
            read_stream,
            write_stream,
        ):
            init_options = InitializationOptions(
                server_name=SERVER_NAME,
                server_version=__version__,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            )
            await server.run(read_stream, write_stream, init_options)
    finally:
        set_config_path(None)
        logger.info("MCP server shutting down")


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="ralph-task MCP server - sync PRD stories with Trello over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with the discovered config (.ralphtask.json in the working directory)
  ralph-task-mcp

  # Use an explicit config file
  ralph-task-mcp --config /path/to/.ralphtask.yml

  # Custom log file location
  ralph-task-mcp --log-file /var/log/ralph-task-mcp.log

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--config",
        help="Config file used when a tool call does not pass one",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: /tmp/ralph-task-mcp.log)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ralph-task-mcp version {__version__}",
    )

    args = parser.parse_args()

    try:
        asyncio.run(main(log_file=args.log_file, config_path=args.config))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
