"""Command line entry point for ralph-task.

Usage:
    ralph-task sync [--config PATH] [--prefer trello|prd|none] [--dry-run]
                    [--json] [--include-noop]
    ralph-task status [--config PATH] [--json]
    ralph-task --version

Exit codes: 0 on success, 1 on configuration, PRD or Trello errors, 2 on
usage errors.
"""

import argparse
import json
import logging
import sys

from . import __version__
from .config_loader import load_config
from .config_schema import ConfigError, RalphTaskConfig
from .core.client import TrelloApiError
from .logger import setup_logging
from .service import load_state, run_story_sync
from .sync.prd import PrdFormatError
from .sync.reporter import format_sync_plan, plan_to_json, state_summary
from .sync.story_id import StoryIdFormatError

logger = logging.getLogger(__name__)

# Failures reported as a one-line message instead of a traceback
_EXPECTED_ERRORS = (
    ConfigError,
    PrdFormatError,
    StoryIdFormatError,
    TrelloApiError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph-task",
        description="Keep PRD user stories and Trello cards in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what a sync would change
  ralph-task sync --dry-run

  # Sync, letting the PRD win when both sides changed at the same time
  ralph-task sync --prefer prd

  # Machine-readable plan including unchanged pairs
  ralph-task sync --json --include-noop

Credentials are read from the config file, or from TRELLO_API_KEY,
TRELLO_TOKEN and TRELLO_BOARD_ID (a .env file in the working directory
is loaded first).
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ralph-task version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync_parser = commands.add_parser(
        "sync", help="Reconcile the PRD with the Trello board"
    )
    sync_parser.add_argument(
        "--config", help="Config file (default: discovered .ralphtask.*)"
    )
    sync_parser.add_argument(
        "--prefer",
        choices=("trello", "prd", "none"),
        help="Side that wins when both changed at the same time",
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Print the plan without applying it",
    )
    sync_parser.add_argument(
        "--json", action="store_true", help="Print the plan as JSON"
    )
    sync_parser.add_argument(
        "--include-noop",
        action="store_true",
        help="List unchanged pairs in text output",
    )

    status_parser = commands.add_parser(
        "status", help="Show the recorded sync state"
    )
    status_parser.add_argument(
        "--config", help="Config file (default: discovered .ralphtask.*)"
    )
    status_parser.add_argument(
        "--json", action="store_true", help="Print the state summary as JSON"
    )

    return parser


def _wants_json(args: argparse.Namespace, config: RalphTaskConfig) -> bool:
    return bool(args.json) or config.logging.format == "json"


def _run_sync(args: argparse.Namespace, config: RalphTaskConfig) -> None:
    plan, _state = run_story_sync(
        config, prefer=args.prefer, dry_run=args.dry_run
    )
    if _wants_json(args, config):
        print(json.dumps({"plan": plan_to_json(plan)}, indent=2))
        return
    sys.stdout.write(format_sync_plan(plan, include_noop=args.include_noop))


def _run_status(args: argparse.Namespace, config: RalphTaskConfig) -> None:
    summary = state_summary(load_state(config))
    if _wants_json(args, config):
        print(json.dumps(summary, indent=2))
        return
    if not summary["exists"]:
        print(f"No sync state recorded at {config.paths.state_file}")
        return
    print(f"Board:           {summary['boardId']}")
    print(f"PRD:             {summary['prdPath']}")
    print(f"Last run:        {summary['lastRunAt']}")
    print(f"Tracked stories: {summary['trackedStories']}")
    print(f"Tracked cards:   {summary['trackedCards']}")


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    setup_logging(
        mode="cli",
        level=config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.file,
    )

    try:
        if args.command == "status":
            _run_status(args, config)
        else:
            _run_sync(args, config)
    except _EXPECTED_ERRORS as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
