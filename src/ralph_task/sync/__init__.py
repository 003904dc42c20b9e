"""PRD/Trello story reconciliation.

Public API for keeping the user stories of a PRD JSON document and the
cards of a Trello board in sync.

Architecture
------------
Each run reads both sides, pairs stories with cards by the story ID in
the card title, and classifies every pair by comparing the PRD file's
modification time with the card's last activity.  The result is a
``SyncPlan`` of creates, updates, conflicts and no-ops that is applied
(or only printed, for a dry run) afterwards.  An optional incremental
state file records fingerprints of the last synced pairs so unchanged
pairs skip checklist reads.

Modules:

- ``engine``    -- ``SyncEngine``: reads, plans, applies and snapshots.
- ``planner``   -- ``ReconciliationPlanner``: pure classification.
- ``applier``   -- ``PlanApplier``: executes a plan against the stores.
- ``mapper``    -- status/list, dependency/label and checklist mapping.
- ``story_id``  -- ``StoryIdCodec``: story IDs and card titles.
- ``state``     -- ``SyncStateStore``: incremental state file.
- ``prd``       -- ``PrdDocumentStore``: PRD JSON reads and writes.
- ``models``    -- stories, cards and plan entries.
- ``reporter``  -- text and JSON plan output.

Usage example
-------------
::

    from ralph_task.config_loader import load_config
    from ralph_task.core.client import TrelloClient
    from ralph_task.sync import (
        PrdDocumentStore, SyncEngine, SyncOptions, format_sync_plan,
    )

    config = load_config()
    engine = SyncEngine(TrelloClient(config.trello), PrdDocumentStore())

    # Preview first
    plan = engine.create_plan(SyncOptions.from_config(config))
    print(format_sync_plan(plan))

    # Then apply
    engine.sync(SyncOptions.from_config(config))
"""

from .engine import SyncEngine, SyncRun, sync_with_state_file
from .models import (
    Conflict,
    CreateCard,
    CreateStory,
    Noop,
    Story,
    SyncPlan,
    UpdateCard,
    UpdateStory,
)
from .planner import ReconciliationPlanner, SyncOptions, plan_sync
from .prd import PrdDocumentStore, PrdFormatError
from .reporter import format_sync_plan, plan_to_json
from .state import SyncStateStore
from .story_id import StoryIdCodec, StoryIdFormatError

__all__ = [
    "Conflict",
    "CreateCard",
    "CreateStory",
    "Noop",
    "PrdDocumentStore",
    "PrdFormatError",
    "ReconciliationPlanner",
    "Story",
    "StoryIdCodec",
    "StoryIdFormatError",
    "SyncEngine",
    "SyncOptions",
    "SyncPlan",
    "SyncRun",
    "SyncStateStore",
    "UpdateCard",
    "UpdateStory",
    "format_sync_plan",
    "plan_to_json",
    "plan_sync",
    "sync_with_state_file",
]
