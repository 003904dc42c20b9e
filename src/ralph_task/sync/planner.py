"""Reconciliation planner.

Classifies every story ID seen on either side into exactly one plan
bucket: create, update, conflict or no-op.  The planner does no I/O; the
engine feeds it fetched snapshots in two steps:

1. ``index()`` -- resolves status and label mappings, drops duplicate
   and unparseable records into conflicts, pairs stories with cards, and
   marks pairs unchanged since the recorded state.
2. ``plan()`` -- given the checklists of every card ``checklist_card_ids()``
   asked for, classifies each remaining ID and returns a ``SyncPlan``.

Decision order for a story/card pair:

1. **Unchanged** since the recorded state -- no-op.
2. **In sync** -- neither side differs from the other's mapping.
3. **Direction** -- one-way runs only ever write one side.
4. **One side differs** -- that side is written to the other.
5. **Both differ** -- the newer side wins; equal timestamps fall back to
   the configured preference, and ``none`` records a conflict.

Mapping issues on the side that would be written turn the write into a
conflict.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace

from ralph_task.config_schema import MappingConfig, RalphTaskConfig
from ralph_task.sync.mapper import (
    CardMapping,
    LabelMapping,
    StatusMapping,
    StoryMapping,
    build_card_mapping,
    build_story_mapping,
    stories_equivalent,
)
from ralph_task.sync.models import (
    BoardLabel,
    BoardList,
    Card,
    CardRecord,
    Checklist,
    ConflictPrefer,
    Conflict,
    CreateCard,
    CreateStory,
    DocumentSnapshot,
    ListMove,
    Noop,
    PlanEntry,
    Story,
    SyncDirection,
    SyncPlan,
    UpdateCard,
    UpdateStory,
)
from ralph_task.sync.state import (
    SyncStateData,
    compare_timestamps,
    is_pair_unchanged,
    story_fingerprint,
)
from ralph_task.sync.story_id import StoryIdCodec

logger = logging.getLogger(__name__)

DUPLICATE_STORY_REASON = "Duplicate story ID in PRD stories"
DUPLICATE_CARD_REASON = "Duplicate story ID across Trello cards"
UNCHANGED_REASON = "Unchanged since last sync"
IN_SYNC_REASON = "Story and card in sync"
EQUAL_TIMESTAMPS_REASON = "PRD and Trello updates conflict (equal timestamps)"


@dataclass(frozen=True)
class SyncOptions:
    """Options for one run.

    Attributes:
        prd_path: PRD document path.
        mapping: Mapping section.
        direction: ``two-way``, ``trello-to-prd`` or ``prd-to-trello``.
        incremental: Use ``state`` to skip unchanged pairs.
        dry_run: Plan only.
        state: Previously recorded state, or ``None``.
        prefer: Tie-break for equal timestamps.
        block_writes: Skip all writes when the plan has conflicts.
        create_missing_labels: Create absent dependency labels.
    """

    prd_path: str
    mapping: MappingConfig = field(default_factory=MappingConfig)
    direction: SyncDirection = "two-way"
    incremental: bool = True
    dry_run: bool = False
    state: SyncStateData | None = None
    prefer: ConflictPrefer = "none"
    block_writes: bool = False
    create_missing_labels: bool = True

    @classmethod
    def from_config(
        cls,
        config: RalphTaskConfig,
        *,
        prefer: ConflictPrefer | None = None,
        dry_run: bool | None = None,
    ) -> SyncOptions:
        """Build options from a loaded config, with optional overrides."""
        return cls(
            prd_path=config.paths.prd_file,
            mapping=config.mapping,
            direction=config.sync.direction,
            incremental=config.sync.incremental,
            dry_run=config.sync.dry_run if dry_run is None else dry_run,
            prefer=prefer or config.conflict.default_prefer,
            block_writes=config.conflict.block_writes,
            create_missing_labels=config.conflict.create_missing_labels,
        )

    def with_state(self, state: SyncStateData | None) -> SyncOptions:
        return replace(self, state=state)


@dataclass
class PlanningContext:
    """Indexed snapshot of both sides, produced by ``index()``."""

    document: DocumentSnapshot
    status_mapping: StatusMapping
    label_mapping: LabelMapping
    list_names: dict[str, str]
    stories: dict[str, Story]
    records: dict[str, CardRecord]
    titles: dict[str, str]
    conflicts: list[Conflict] = field(default_factory=list)
    excluded: set[str] = field(default_factory=set)
    unchanged: set[str] = field(default_factory=set)

    @property
    def card_records(self) -> list[CardRecord]:
        return list(self.records.values())


class ReconciliationPlanner:
    """Build a ``SyncPlan`` from fetched snapshots.

    Args:
        options: Options for the run.

    Raises:
        StoryIdFormatError: If the mapping templates are malformed.
    """

    def __init__(self, options: SyncOptions) -> None:
        self.options = options
        self.mapping = options.mapping
        self.codec = StoryIdCodec.from_mapping(options.mapping)
        self.state = options.state if options.incremental else None

    # ------------------------------------------------------------------
    # Step 1: index
    # ------------------------------------------------------------------

    def index(
        self,
        document: DocumentSnapshot,
        lists: Iterable[BoardList],
        cards: Iterable[Card],
        labels: Iterable[BoardLabel],
    ) -> PlanningContext:
        """Pair stories with cards and collect structural conflicts."""
        lists = list(lists)
        status_mapping = StatusMapping.build(lists, self.mapping.status_to_list)
        conflicts: list[Conflict] = []
        for issue in status_mapping.issues:
            logger.warning("Status mapping issue: %s", issue)
            conflicts.append(Conflict(reason=issue))

        context = PlanningContext(
            document=document,
            status_mapping=status_mapping,
            label_mapping=LabelMapping.build(
                labels, self.mapping.depends_on_label_prefix
            ),
            list_names={item.id: item.name for item in lists},
            stories={},
            records={},
            titles={},
            conflicts=conflicts,
        )

        duplicates: list[str] = []
        for story in document.stories:
            if story.id in context.stories:
                if story.id not in duplicates:
                    duplicates.append(story.id)
                continue
            context.stories[story.id] = story
        for story_id in duplicates:
            self._conflict(
                context.conflicts,
                Conflict(
                    id=story_id,
                    reason=DUPLICATE_STORY_REASON,
                    story=context.stories[story_id],
                ),
            )
            context.excluded.add(story_id)

        by_id: dict[str, list[Card]] = {}
        for card in cards:
            parsed = self.codec.parse_card_title(card.name)
            if not parsed.ok:
                logger.debug(
                    "Card title skipped",
                    extra={"data": {"cardId": card.id, "reason": parsed.reason}},
                )
                context.conflicts.append(
                    Conflict(reason=parsed.reason, cards=[card])
                )
                continue
            by_id.setdefault(parsed.id, []).append(card)
            context.titles.setdefault(parsed.id, parsed.title)

        for story_id, matched in by_id.items():
            if len(matched) > 1:
                self._conflict(
                    context.conflicts,
                    Conflict(
                        id=story_id, reason=DUPLICATE_CARD_REASON, cards=matched
                    ),
                )
                context.excluded.add(story_id)
                continue
            context.records[story_id] = CardRecord(
                story_id=story_id, card=matched[0]
            )

        if self.state is not None:
            for story_id, record in context.records.items():
                story = context.stories.get(story_id)
                if story is not None and is_pair_unchanged(
                    self.state,
                    story_id,
                    story_fingerprint(story),
                    record.card.id,
                    record.card.last_activity_at,
                ):
                    context.unchanged.add(story_id)

        return context

    def checklist_card_ids(self, context: PlanningContext) -> list[str]:
        """IDs of the cards whose checklists ``plan()`` needs."""
        card_ids = []
        for story_id, record in context.records.items():
            if story_id in context.excluded or story_id in context.unchanged:
                continue
            if (
                story_id not in context.stories
                and self.options.direction == "prd-to-trello"
            ):
                continue
            card_ids.append(record.card.id)
        return card_ids

    # ------------------------------------------------------------------
    # Step 2: classify
    # ------------------------------------------------------------------

    def plan(
        self,
        context: PlanningContext,
        checklists: Mapping[str, Sequence[Checklist]] | None = None,
    ) -> SyncPlan:
        """Classify every ID and return the plan.

        Args:
            context: Result of ``index()``.
            checklists: Checklists by card ID.
        """
        checklists = checklists or {}
        entries: list[PlanEntry] = list(context.conflicts)

        ids = sorted(set(context.stories) | set(context.records))
        for story_id in ids:
            if story_id in context.excluded:
                continue
            entry = self._classify(
                context,
                story_id,
                context.stories.get(story_id),
                context.records.get(story_id),
                checklists,
            )
            self._log_decision(entry)
            entries.append(entry)

        plan = SyncPlan(
            creates=tuple(
                sorted(
                    (e for e in entries if isinstance(e, (CreateCard, CreateStory))),
                    key=lambda e: e.id,
                )
            ),
            updates=tuple(
                sorted(
                    (e for e in entries if isinstance(e, (UpdateCard, UpdateStory))),
                    key=lambda e: e.id,
                )
            ),
            conflicts=tuple(
                sorted(
                    (e for e in entries if isinstance(e, Conflict)),
                    key=lambda e: e.id if e.id is not None else e.reason,
                )
            ),
            noop=tuple(
                sorted(
                    (e for e in entries if isinstance(e, Noop)),
                    key=lambda e: e.id,
                )
            ),
        )
        logger.info(
            "Sync plan built: %s",
            plan.summary(),
            extra={
                "data": {
                    "creates": len(plan.creates),
                    "updates": len(plan.updates),
                    "conflicts": len(plan.conflicts),
                    "noop": len(plan.noop),
                }
            },
        )
        return plan

    def _classify(
        self,
        context: PlanningContext,
        story_id: str,
        story: Story | None,
        record: CardRecord | None,
        checklists: Mapping[str, Sequence[Checklist]],
    ) -> PlanEntry:
        direction = self.options.direction

        if record is None:
            if direction == "trello-to-prd":
                return Noop(id=story_id, reason="PRD-only story ignored")
            card_mapping = self._card_mapping(context, story)
            if card_mapping.issues:
                return Conflict(
                    id=story_id,
                    reason="; ".join(card_mapping.issues),
                    story=story,
                )
            return CreateCard(
                id=story_id,
                reason="PRD story missing in Trello",
                story=story,
                card_input=card_mapping.card_input,
                checklist=card_mapping.checklist,
            )

        card = record.card
        card_checklists = checklists.get(card.id)

        if story is None:
            if direction == "prd-to-trello":
                return Noop(id=story_id, reason="Trello-only card ignored")
            story_mapping = self._story_mapping(
                context, story_id, card, card_checklists
            )
            if story_mapping.issues:
                return Conflict(
                    id=story_id,
                    reason="; ".join(story_mapping.issues),
                    cards=[card],
                )
            return CreateStory(
                id=story_id,
                reason="Trello card missing in PRD",
                story=story_mapping.story,
                card=card,
            )

        if story_id in context.unchanged:
            return Noop(id=story_id, reason=UNCHANGED_REASON)

        card_mapping = self._card_mapping(context, story, card, card_checklists)
        story_mapping = self._story_mapping(
            context, story_id, card, card_checklists
        )
        can_update_card = not card_mapping.issues
        can_update_story = not story_mapping.issues
        needs_card_update = can_update_card and (
            card_mapping.card_update.has_changes()
            or card_mapping.checklist_needs_update
        )
        needs_story_update = can_update_story and not stories_equivalent(
            story, story_mapping.story
        )

        if not needs_card_update and not needs_story_update:
            return Noop(id=story_id, reason=IN_SYNC_REASON)

        def card_conflict() -> Conflict:
            return Conflict(
                id=story_id, reason="; ".join(card_mapping.issues), story=story
            )

        def story_conflict() -> Conflict:
            return Conflict(
                id=story_id,
                reason="; ".join(story_mapping.issues),
                cards=[card],
            )

        def card_update(reason: str) -> UpdateCard:
            return self._update_card(context, story, card, card_mapping, reason)

        def story_update(reason: str) -> UpdateStory:
            return UpdateStory(
                id=story_id, reason=reason, story=story_mapping.story, card=card
            )

        if direction == "prd-to-trello":
            if not can_update_card:
                return card_conflict()
            if needs_card_update:
                return card_update("PRD update required")
            return Noop(id=story_id, reason="No PRD-to-Trello change needed")

        if direction == "trello-to-prd":
            if not can_update_story:
                return story_conflict()
            if needs_story_update:
                return story_update("Trello update required")
            return Noop(id=story_id, reason="No Trello-to-PRD change needed")

        if needs_card_update and not needs_story_update:
            return card_update("PRD update required")
        if needs_story_update and not needs_card_update:
            return story_update("Trello update required")

        comparison = compare_timestamps(
            context.document.last_modified_at, card.last_activity_at
        )
        resolved = comparison or {"prd": 1, "trello": -1}.get(
            self.options.prefer, 0
        )
        if resolved == 0:
            return Conflict(
                id=story_id,
                reason=EQUAL_TIMESTAMPS_REASON,
                cards=[card],
                story=story,
            )

        if resolved > 0:
            reason = (
                "PRD newer than Trello"
                if comparison
                else "PRD preferred over Trello (equal timestamps)"
            )
            return card_update(reason) if can_update_card else card_conflict()

        reason = (
            "Trello newer than PRD"
            if comparison
            else "Trello preferred over PRD (equal timestamps)"
        )
        return story_update(reason) if can_update_story else story_conflict()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _card_mapping(
        self,
        context: PlanningContext,
        story: Story,
        card: Card | None = None,
        checklists: Sequence[Checklist] | None = None,
    ) -> CardMapping:
        return build_card_mapping(
            story,
            codec=self.codec,
            status_mapping=context.status_mapping,
            label_mapping=context.label_mapping,
            checklist_name=self.mapping.acceptance_criteria_checklist_name,
            create_missing_labels=self.options.create_missing_labels,
            card=card,
            checklists=checklists,
        )

    def _story_mapping(
        self,
        context: PlanningContext,
        story_id: str,
        card: Card,
        checklists: Sequence[Checklist] | None,
    ) -> StoryMapping:
        return build_story_mapping(
            card,
            story_id=story_id,
            title=context.titles[story_id],
            status_mapping=context.status_mapping,
            label_mapping=context.label_mapping,
            checklist_name=self.mapping.acceptance_criteria_checklist_name,
            checklists=checklists,
        )

    def _update_card(
        self,
        context: PlanningContext,
        story: Story,
        card: Card,
        card_mapping: CardMapping,
        reason: str,
    ) -> UpdateCard:
        target_list = card_mapping.card_update.list_id
        list_move = None
        if target_list:
            list_move = ListMove(
                from_id=card.list_id,
                to_id=target_list,
                from_name=context.list_names.get(card.list_id),
                to_name=context.list_names.get(target_list),
            )
        return UpdateCard(
            id=story.id,
            reason=reason,
            story=story,
            card=card,
            card_update=card_mapping.card_update,
            checklist=card_mapping.checklist,
            checklist_needs_update=card_mapping.checklist_needs_update,
            list_move=list_move,
        )

    def _conflict(self, conflicts: list[Conflict], conflict: Conflict) -> None:
        self._log_decision(conflict)
        conflicts.append(conflict)

    @staticmethod
    def _log_decision(entry: PlanEntry) -> None:
        if isinstance(entry, Noop):
            action = "noop"
        elif isinstance(entry, Conflict):
            action = "conflict"
        elif isinstance(entry, (CreateCard, CreateStory)):
            action = "create"
        else:
            action = "update"
        data = {"storyId": entry.id, "action": action, "reason": entry.reason}
        target = getattr(entry, "target", None)
        if target is not None:
            data["target"] = target
        logger.debug("Sync decision", extra={"data": data})


def plan_sync(
    document: DocumentSnapshot,
    lists: Iterable[BoardList],
    cards: Iterable[Card],
    labels: Iterable[BoardLabel],
    options: SyncOptions,
    checklists: Mapping[str, Sequence[Checklist]] | None = None,
) -> SyncPlan:
    """Plan in one call from already-fetched snapshots.

    *checklists* should cover at least the cards returned by
    ``ReconciliationPlanner.checklist_card_ids()``.
    """
    planner = ReconciliationPlanner(options)
    context = planner.index(document, lists, cards, labels)
    return planner.plan(context, checklists)
