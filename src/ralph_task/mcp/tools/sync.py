"""MCP tool handlers for PRD/Trello story sync.

Defines two tools:

- ``story_sync`` -- reconcile the PRD with the board (with optional dry-run).
- ``story_sync_status`` -- summarise the incremental state file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import mcp.types as types

from ...config_loader import load_config
from ...config_schema import ConfigError
from ...core.async_utils import run_sync
from ...core.client import TrelloApiError
from ...service import load_state, run_story_sync
from ...sync.adapters import BoardStore, DocumentStore
from ...sync.prd import PrdFormatError
from ...sync.reporter import format_sync_plan, plan_to_json, state_summary
from ...sync.story_id import StoryIdFormatError
from .errors import build_error_response, translate_sync_error

logger = logging.getLogger(__name__)

PREFER_CHOICES = ("trello", "prd", "none")

_CONFIG_PROPERTY = {
    "type": "string",
    "description": (
        "Path to the ralph-task config file. Defaults to the server's "
        "--config, then RALPH_TASK_CONFIG, then .ralphtask.json in the "
        "working directory."
    ),
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="story_sync",
        description=(
            "Reconcile PRD user stories with Trello cards. Creates and "
            "updates cards or stories on whichever side is behind and "
            "reports conflicts."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview the plan without applying it",
                },
                "prefer": {
                    "type": "string",
                    "enum": list(PREFER_CHOICES),
                    "description": (
                        "Side that wins when both changed at the same time. "
                        "Overrides conflict.defaultPrefer."
                    ),
                },
                "config": _CONFIG_PROPERTY,
            },
            "required": [],
        },
    ),
    types.Tool(
        name="story_sync_status",
        description=(
            "Show the recorded sync state -- last run time, board, number "
            "of tracked stories and cards."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"config": _CONFIG_PROPERTY},
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_sync_tool(
    name: str,
    arguments: dict[str, Any] | None,
    config_path: str | None = None,
    board: BoardStore | None = None,
    document: DocumentStore | None = None,
) -> types.CallToolResult:
    """Dispatch and execute a sync tool.

    Args:
        name: Tool name (``story_sync`` or ``story_sync_status``).
        arguments: Tool arguments dict.
        config_path: Config file used when the call names none.
        board: Board store override; a Trello client is built otherwise.
        document: Document store override.

    Returns:
        ``CallToolResult`` with tool output or error details.
    """
    args = arguments or {}

    try:
        match name:
            case "story_sync":
                return await _handle_story_sync(
                    args, config_path, board, document
                )
            case "story_sync_status":
                return await _handle_story_sync_status(args, config_path)
            case _:
                raise ValueError(f"Unknown sync tool: {name}")

    except (
        ConfigError,
        PrdFormatError,
        StoryIdFormatError,
        TrelloApiError,
    ) as exc:
        logger.warning("Sync tool %s failed: %s", name, exc)
        return translate_sync_error(exc)
    except ValueError as exc:
        return build_error_response(
            "validation_error",
            str(exc),
            "Check parameter values and retry.",
        )
    except Exception as exc:
        logger.exception("Sync tool error: %s", exc)
        return build_error_response(
            "server_error",
            str(exc),
            "Check the ralph-task configuration and Trello connectivity.",
        )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _config_argument(args: dict[str, Any], default: str | None) -> Path | None:
    value = args.get("config") or default
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("config must be a string path")
    return Path(value)


async def _handle_story_sync(
    args: dict[str, Any],
    config_path: str | None,
    board: BoardStore | None,
    document: DocumentStore | None,
) -> types.CallToolResult:
    """Handle the ``story_sync`` tool."""
    prefer = args.get("prefer")
    if prefer is not None and prefer not in PREFER_CHOICES:
        return build_error_response(
            "validation_error",
            f"prefer must be one of: {', '.join(PREFER_CHOICES)}",
            "Pass prefer='trello', 'prd' or 'none', or omit it.",
        )
    dry_run = args.get("dry_run")
    if dry_run is not None and not isinstance(dry_run, bool):
        raise ValueError("dry_run must be a boolean")

    config = await run_sync(load_config, _config_argument(args, config_path))
    plan, state = await run_sync(
        run_story_sync,
        config,
        prefer=prefer,
        dry_run=dry_run,
        board=board,
        document=document,
    )

    text = format_sync_plan(plan)
    if config.sync.dry_run if dry_run is None else dry_run:
        text += "\nDry run: no changes applied.\n"

    structured = {"plan": plan_to_json(plan), "state": state_summary(state)}

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


async def _handle_story_sync_status(
    args: dict[str, Any],
    config_path: str | None,
) -> types.CallToolResult:
    """Handle the ``story_sync_status`` tool."""
    config = await run_sync(load_config, _config_argument(args, config_path))
    state = await run_sync(load_state, config)
    summary = state_summary(state)

    if not summary["exists"]:
        text = (
            f"No sync state recorded at {config.paths.state_file}.\n"
            "Run story_sync to create it."
        )
    else:
        lines = [
            "Sync status",
            f"  Board:           {summary['boardId']}",
            f"  PRD:             {summary['prdPath']}",
            f"  Last run:        {summary['lastRunAt']}",
            f"  Trello activity: {summary['lastSeenTrelloActivity'] or 'none'}",
            f"  Tracked stories: {summary['trackedStories']}",
            f"  Tracked cards:   {summary['trackedCards']}",
        ]
        text = "\n".join(lines)

    structured = {"stateFile": config.paths.state_file, **summary}

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )
