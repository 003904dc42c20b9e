"""Trello client and async helpers shared between the CLI and MCP server."""

from .async_utils import run_sync
from .client import TrelloApiError, TrelloClient

__all__ = ["TrelloApiError", "TrelloClient", "run_sync"]
