"""Sync engine that runs one full reconciliation cycle.

The ``SyncEngine`` ties together the stores, the planner and the applier.
A run:

1. Reads stories, lists, cards and labels concurrently.
2. Indexes both sides and fetches checklists for every card whose pair
   is not unchanged since the recorded state (concurrently).
3. Builds the plan.
4. Applies it, unless this is a dry run or conflicts block writes.
5. Builds a post-write snapshot, re-reading cards when checklists were
   written (checklist writes bump card activity timestamps).

``sync_with_state_file()`` wraps a run with loading and saving of the
incremental state file.  State is only saved after writes were actually
applied.

Reads use a thread pool bounded by ``max_concurrency``.  Writes are
sequential.  Errors propagate; a failed run saves no state.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from ralph_task.sync.adapters import BoardStore, DocumentStore
from ralph_task.sync.applier import ApplyResult, PlanApplier
from ralph_task.sync.models import Card, CardRecord, SyncPlan, SyncSnapshot
from ralph_task.sync.planner import (
    PlanningContext,
    ReconciliationPlanner,
    SyncOptions,
)
from ralph_task.sync.state import (
    SyncStateData,
    SyncStateStore,
    build_sync_state,
    compare_timestamps,
    mapping_signature,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncRun:
    """Outcome of ``SyncEngine.sync_with_state()``.

    Attributes:
        plan: The plan that was built.
        snapshot: Both sides after the run.
        applied: Whether writes were executed.
        conflict_ids: IDs of keyed conflicts in the plan.
    """

    plan: SyncPlan
    snapshot: SyncSnapshot
    applied: bool

    @property
    def conflict_ids(self) -> frozenset[str]:
        return frozenset(c.id for c in self.plan.conflicts if c.id is not None)


class SyncEngine:
    """Reconcile one PRD document with one board.

    Args:
        board: Board store (``TrelloClient`` in production).
        document: Document store (``PrdDocumentStore`` in production).
        max_concurrency: Worker count for concurrent reads.
    """

    def __init__(
        self,
        board: BoardStore,
        document: DocumentStore,
        max_concurrency: int = 4,
    ) -> None:
        self.board = board
        self.document = document
        self.max_concurrency = max(1, max_concurrency)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create_plan(self, options: SyncOptions) -> SyncPlan:
        """Build the plan without writing anything."""
        plan, _context = self._build_plan(options)
        return plan

    def sync(self, options: SyncOptions) -> SyncPlan:
        """Build the plan and apply it (unless skipped)."""
        plan, context = self._build_plan(options)
        if not self._should_skip_apply(plan, options):
            self._apply(plan, context, options)
        return plan

    def sync_with_state(self, options: SyncOptions) -> SyncRun:
        """Build, apply and snapshot.

        When apply is skipped the snapshot reflects both sides as read.
        """
        plan, context = self._build_plan(options)
        if self._should_skip_apply(plan, options):
            result = ApplyResult(stories=list(context.document.stories))
            return SyncRun(plan, self._build_snapshot(context, result), False)
        result = self._apply(plan, context, options)
        return SyncRun(plan, self._build_snapshot(context, result), True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_plan(
        self, options: SyncOptions
    ) -> tuple[SyncPlan, PlanningContext]:
        planner = ReconciliationPlanner(options)

        with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
            document_future = pool.submit(self.document.read, options.prd_path)
            lists_future = pool.submit(self.board.get_lists)
            cards_future = pool.submit(self.board.get_cards)
            labels_future = pool.submit(self.board.get_labels)
            document = document_future.result()
            lists = lists_future.result()
            cards = cards_future.result()
            labels = labels_future.result()

        context = planner.index(document, lists, cards, labels)
        card_ids = planner.checklist_card_ids(context)
        checklists = {}
        if card_ids:
            logger.debug("Fetching checklists for %d card(s)", len(card_ids))
            with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
                fetched = pool.map(self.board.get_card_checklists, card_ids)
                checklists = dict(zip(card_ids, fetched))

        return planner.plan(context, checklists), context

    @staticmethod
    def _should_skip_apply(plan: SyncPlan, options: SyncOptions) -> bool:
        if options.dry_run:
            logger.info("Dry run: no changes applied")
            return True
        if options.block_writes and plan.conflicts:
            logger.warning(
                "Writes blocked: plan has %d conflict(s)", len(plan.conflicts)
            )
            return True
        return False

    def _apply(
        self, plan: SyncPlan, context: PlanningContext, options: SyncOptions
    ) -> ApplyResult:
        applier = PlanApplier(
            self.board,
            self.document,
            label_prefix=options.mapping.depends_on_label_prefix,
            create_missing_labels=options.create_missing_labels,
        )
        return applier.apply(plan, context.document.stories, options.prd_path)

    def _build_snapshot(
        self, context: PlanningContext, result: ApplyResult
    ) -> SyncSnapshot:
        written = result.cards_by_story_id
        records = [
            CardRecord(
                story_id=record.story_id,
                card=written.get(record.story_id, record.card),
            )
            for record in context.card_records
        ]
        known = {record.story_id for record in records}
        records.extend(
            CardRecord(story_id=story_id, card=card)
            for story_id, card in written.items()
            if story_id not in known
        )

        if result.checklist_card_ids:
            refreshed = {card.id: card for card in self.board.get_cards()}
            records = [
                CardRecord(
                    story_id=record.story_id,
                    card=refreshed.get(record.card.id, record.card),
                )
                for record in records
            ]

        return SyncSnapshot(
            stories=result.stories,
            cards=records,
            last_seen_trello_activity=_latest_activity(
                [record.card for record in records]
            ),
        )


def _latest_activity(cards: list[Card]) -> str:
    latest: str | None = None
    for card in cards:
        if latest is None or compare_timestamps(card.last_activity_at, latest) > 0:
            latest = card.last_activity_at
    return latest or utc_now_iso()


# ------------------------------------------------------------------
# State-file wrapper
# ------------------------------------------------------------------


def sync_with_state_file(
    engine: SyncEngine,
    options: SyncOptions,
    *,
    state_path: str | Path,
    board_id: str,
) -> tuple[SyncPlan, SyncStateData]:
    """Run a sync backed by the incremental state file.

    Loads prior state when incremental (ignored with a warning when it was
    recorded for another board, document or mapping), runs, rebuilds the
    state from the snapshot and saves it when writes were applied.  Keyed
    conflicts are left out of the saved state so the next run classifies
    them again.

    Args:
        engine: The engine to run.
        options: Run options; ``options.state`` is replaced.
        state_path: State file location.
        board_id: Board the run targets.

    Returns:
        ``(plan, state)``.  *state* is what was (or, when nothing was
        saved, would have been) persisted.
    """
    store = SyncStateStore(Path(state_path))
    signature = mapping_signature(options.mapping)
    previous = None
    if options.incremental:
        previous = store.load(
            board_id=board_id, prd_path=options.prd_path, signature=signature
        )
        if previous is not None:
            logger.debug(
                "Loaded sync state from %s (%d stories, %d cards)",
                store.path,
                len(previous.story_index),
                len(previous.card_index),
            )

    run = engine.sync_with_state(options.with_state(previous))
    state = build_sync_state(
        board_id=board_id,
        prd_path=options.prd_path,
        mapping=options.mapping,
        stories=run.snapshot.stories,
        cards=run.snapshot.cards,
        previous=previous,
        exclude_ids=run.conflict_ids,
    )
    if run.applied:
        store.save(state)
    return run.plan, state
