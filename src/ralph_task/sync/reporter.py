"""Sync plan formatting functions.

Provides human-readable and machine-readable output for sync plans:

- ``format_sync_plan`` -- text summary, one line per entry.
- ``plan_to_json`` -- structured dict for ``--json`` and MCP tool output.
- ``state_summary`` -- short description of a stored sync state.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from .models import (
    Conflict,
    CreateCard,
    CreateStory,
    ListMove,
    Noop,
    UpdateCard,
    UpdateStory,
)

if TYPE_CHECKING:
    from .models import SyncPlan
    from .state import SyncStateData

_WHITESPACE = re.compile(r"\s+")

# ------------------------------------------------------------------
# Entry descriptions
# ------------------------------------------------------------------


def _quote(value: str) -> str:
    return '"' + _WHITESPACE.sub(" ", value).strip() + '"'


def _describe_list_move(move: ListMove | None) -> str | None:
    if move is None:
        return None
    source = move.from_name or move.from_id
    target = move.to_name or move.to_id
    return f"list move: {source} -> {target}"


def _describe_label_change(
    before: list[str], after: list[str] | None
) -> str | None:
    if after is None:
        return None
    added = sorted(set(after) - set(before))
    removed = sorted(set(before) - set(after))
    if not added and not removed:
        return "labels: updated"
    parts = []
    if added:
        parts.append(f"added {', '.join(added)}")
    if removed:
        parts.append(f"removed {', '.join(removed)}")
    return f"labels: {'; '.join(parts)}"


def describe_create(entry: CreateCard | CreateStory) -> str:
    if isinstance(entry, CreateStory):
        return (
            f"[{entry.id}] PRD create: {_quote(entry.story.title)} "
            f"(status: {entry.story.status}) ({entry.reason})"
        )
    details = [
        f"card: {_quote(entry.card_input.name)}",
        f"list: {entry.card_input.list_id}",
    ]
    if entry.checklist.items:
        details.append(f"checklist: {len(entry.checklist.items)} items")
    return f"[{entry.id}] Trello create: {'; '.join(details)} ({entry.reason})"


def describe_update(entry: UpdateCard | UpdateStory) -> str:
    if isinstance(entry, UpdateStory):
        return (
            f"[{entry.id}] PRD update: {_quote(entry.story.title)} "
            f"(status: {entry.story.status}) ({entry.reason})"
        )
    update = entry.card_update
    parts = []
    if update.name is not None:
        parts.append(f"name: {_quote(entry.card.name)} -> {_quote(update.name)}")
    if update.description is not None:
        parts.append(
            f"description: {_quote(entry.card.description)} -> "
            f"{_quote(update.description)}"
        )
    for part in (
        _describe_list_move(entry.list_move),
        _describe_label_change(entry.card.label_ids, update.label_ids),
    ):
        if part:
            parts.append(part)
    if entry.checklist_needs_update:
        parts.append(f"checklist update: {len(entry.checklist.items)} items")
    details = "; ".join(parts) if parts else "card update"
    return f"[{entry.id}] Trello update: {details} ({entry.reason})"


def describe_conflict(entry: Conflict) -> str:
    if entry.id is not None:
        return f"[{entry.id}] Conflict: {entry.reason}"
    return f"Conflict: {entry.reason}"


def describe_noop(entry: Noop) -> str:
    return f"[{entry.id}] No-op: {entry.reason}"


# ------------------------------------------------------------------
# Human-readable plan
# ------------------------------------------------------------------


def format_sync_plan(
    plan: SyncPlan,
    include_conflicts: bool = True,
    include_noop: bool = False,
) -> str:
    """Format a sync plan as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        plan: The plan to format.
        include_conflicts: Include the "Conflicts" section.
        include_noop: Include the "No-op" section.

    Returns:
        Multi-line string ending with a newline.
    """
    lines = ["Sync plan", plan.summary()]

    sections = [
        ("Creates", [describe_create(e) for e in plan.creates]),
        ("Updates", [describe_update(e) for e in plan.updates]),
    ]
    if include_conflicts:
        sections.append(
            ("Conflicts", [describe_conflict(e) for e in plan.conflicts])
        )
    if include_noop:
        sections.append(("No-op", [describe_noop(e) for e in plan.noop]))

    for title, entries in sections:
        if not entries:
            continue
        lines.append("")
        lines.append(title)
        lines.extend(f"- {entry}" for entry in entries)

    return "\n".join(lines) + "\n"


# ------------------------------------------------------------------
# Machine-readable output
# ------------------------------------------------------------------


def plan_to_json(plan: SyncPlan) -> dict:
    """Convert a plan to a JSON-serialisable dict (camelCase keys)."""
    return plan.model_dump(mode="json", by_alias=True)


def state_summary(state: SyncStateData | None) -> dict:
    """Summarise a stored sync state for status output."""
    if state is None:
        return {"exists": False}
    return {
        "exists": True,
        "lastRunAt": state.last_run_at,
        "boardId": state.board_id,
        "prdPath": state.prd_path,
        "lastSeenTrelloActivity": state.last_seen_trello_activity,
        "trackedStories": len(state.story_index),
        "trackedCards": len(state.card_index),
    }
