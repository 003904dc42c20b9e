"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
so agents can recover from configuration, PRD and Trello failures without
human intervention.
"""

import mcp.types as types

from ...config_schema import ConfigError
from ...core.client import TrelloApiError
from ...sync.prd import PrdFormatError
from ...sync.story_id import StoryIdFormatError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied,
            validation_error, config_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("config_error", "Config file not found: /x", "Create .ralphtask.json.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: Exception) -> types.CallToolResult:
    """Translate a known sync failure into a structured error response.

    Args:
        error: ConfigError, PrdFormatError, StoryIdFormatError or
            TrelloApiError raised by a sync run.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case ConfigError():
            return build_error_response(
                "config_error",
                str(error),
                "Fix the config file (.ralphtask.json) or pass 'config' "
                "with the path to a valid one.",
            )
        case PrdFormatError():
            return build_error_response(
                "validation_error",
                str(error),
                "Fix the PRD file so every story has id, title and a valid status.",
            )
        case StoryIdFormatError():
            return build_error_response(
                "validation_error",
                str(error),
                "Check mapping.idPattern and mapping.cardTitleFormat in the config.",
            )
        case TrelloApiError(status=401 | 403):
            return build_error_response(
                "permission_denied",
                str(error),
                "Check TRELLO_API_KEY and TRELLO_TOKEN.",
            )
        case TrelloApiError(status=404):
            return build_error_response(
                "not_found",
                str(error),
                "Check trello.boardId (or TRELLO_BOARD_ID) names a board the token can see.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Retry later; Trello may be rate limiting or unavailable.",
            )
