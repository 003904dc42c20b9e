"""Wiring shared by the CLI and the MCP server.

Builds the Trello client, PRD store and engine from a loaded config and
runs one state-backed sync.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .config_schema import RalphTaskConfig
from .core.client import TrelloClient
from .sync.adapters import BoardStore, DocumentStore
from .sync.engine import SyncEngine, sync_with_state_file
from .sync.models import SyncPlan
from .sync.planner import SyncOptions
from .sync.prd import PrdDocumentStore
from .sync.state import SyncStateData, SyncStateStore, mapping_signature

logger = logging.getLogger(__name__)


def build_engine(
    config: RalphTaskConfig,
    board: BoardStore | None = None,
    document: DocumentStore | None = None,
) -> SyncEngine:
    """Build an engine for *config*; stores default to Trello and JSON."""
    if board is None:
        board = TrelloClient(config.trello, retry=config.sync.retry)
    if document is None:
        document = PrdDocumentStore()
    return SyncEngine(board, document, max_concurrency=config.sync.max_concurrency)


def run_story_sync(
    config: RalphTaskConfig,
    *,
    prefer: str | None = None,
    dry_run: bool | None = None,
    board: BoardStore | None = None,
    document: DocumentStore | None = None,
) -> tuple[SyncPlan, SyncStateData]:
    """Run one sync as configured.

    Args:
        config: Loaded configuration.
        prefer: Overrides ``conflict.defaultPrefer``.
        dry_run: Overrides ``sync.dryRun``.
        board: Board store override (tests).
        document: Document store override (tests).

    Returns:
        ``(plan, state)`` as returned by ``sync_with_state_file()``.
    """
    options = SyncOptions.from_config(config, prefer=prefer, dry_run=dry_run)
    engine = build_engine(config, board, document)
    logger.info(
        "Syncing %s with board %s (%s%s)",
        config.paths.prd_file,
        config.trello.board_id,
        options.direction,
        ", dry run" if options.dry_run else "",
    )
    return sync_with_state_file(
        engine,
        options,
        state_path=config.paths.state_file,
        board_id=config.trello.board_id,
    )


def load_state(config: RalphTaskConfig) -> SyncStateData | None:
    """Load the state file recorded for *config*, if it is still valid."""
    store = SyncStateStore(Path(config.paths.state_file))
    return store.load(
        board_id=config.trello.board_id,
        prd_path=config.paths.prd_file,
        signature=mapping_signature(config.mapping),
    )


__all__ = ["build_engine", "load_state", "run_story_sync"]
