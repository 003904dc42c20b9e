"""Plan applier.

Executes a ``SyncPlan`` against the board and the PRD document, in a fixed
order:

1. **Labels** -- when missing-label creation is on and board writes are
   pending, the board's labels are re-read, absent dependency labels are
   created (sorted by name) and pending label sets are recomputed.
2. **Card creates**, each followed by a checklist upsert when the story
   has acceptance criteria.
3. **Card updates** -- field update when the delta is non-empty, then a
   checklist upsert when the checklist differs.
4. **Document** -- every PRD create/update in one rewrite.  Updated
   stories replace in place; created stories are appended sorted by ID.

Writes are sequential.  An error aborts the run and propagates; nothing
is rolled back, and the state file is not saved.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ralph_task.sync.adapters import BoardStore, DocumentStore
from ralph_task.sync.mapper import LabelMapping
from ralph_task.sync.models import (
    Card,
    CreateCard,
    CreateStory,
    Story,
    SyncPlan,
    UpdateCard,
    UpdateStory,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """What the applier wrote.

    Attributes:
        stories: Document stories after the run.
        cards_by_story_id: Cards returned by create/update calls.
        checklist_card_ids: Cards whose checklist was written.
        created_labels: Names of labels created on the board.
    """

    stories: list[Story]
    cards_by_story_id: dict[str, Card] = field(default_factory=dict)
    checklist_card_ids: set[str] = field(default_factory=set)
    created_labels: list[str] = field(default_factory=list)


def apply_story_changes(
    stories: Sequence[Story], changes: Sequence[CreateStory | UpdateStory]
) -> list[Story]:
    """Return *stories* with *changes* merged in.

    Stories whose ID already exists are replaced in place; the rest are
    appended sorted by ID.
    """
    changed = {change.story.id: change.story for change in changes}
    existing = {story.id for story in stories}
    merged = [changed.get(story.id, story) for story in stories]
    merged.extend(
        changed[story_id] for story_id in sorted(set(changed) - existing)
    )
    return merged


class PlanApplier:
    """Apply plans to one board and one document.

    Args:
        board: Board store.
        document: Document store.
        label_prefix: ``dependsOnLabelPrefix``.
        create_missing_labels: Create absent dependency labels first.
    """

    def __init__(
        self,
        board: BoardStore,
        document: DocumentStore,
        *,
        label_prefix: str = "",
        create_missing_labels: bool = True,
    ) -> None:
        self.board = board
        self.document = document
        self.label_prefix = label_prefix
        self.create_missing_labels = create_missing_labels

    def apply(
        self, plan: SyncPlan, stories: Sequence[Story], prd_path: str
    ) -> ApplyResult:
        """Execute *plan*.

        Args:
            plan: The plan to apply.
            stories: Document stories as read at the start of the run.
            prd_path: Document path to rewrite.

        Returns:
            An ``ApplyResult`` describing what was written.
        """
        card_creates = plan.card_creates
        card_updates = plan.card_updates
        result = ApplyResult(stories=list(stories))

        if card_creates or card_updates:
            # Resolve the board before the first write; a missing board fails here.
            board = self.board.get_board_info()
            logger.info(
                "Applying %d card change(s) to board %r (%s)",
                len(card_creates) + len(card_updates),
                board.name,
                board.id,
            )

        if self.create_missing_labels and (card_creates or card_updates):
            card_creates, card_updates = self._complete_labels(
                card_creates, card_updates, result
            )

        for create in card_creates:
            card = self.board.create_card(create.card_input)
            logger.info("Created card %s for %s", card.id, create.id)
            result.cards_by_story_id[create.id] = card
            if create.checklist.items:
                self.board.upsert_checklist(card.id, create.checklist)
                result.checklist_card_ids.add(card.id)

        for update in card_updates:
            if update.card_update.has_changes():
                card = self.board.update_card(update.card.id, update.card_update)
                logger.info("Updated card %s for %s", card.id, update.id)
                result.cards_by_story_id[update.id] = card
            if update.checklist_needs_update:
                self.board.upsert_checklist(update.card.id, update.checklist)
                result.checklist_card_ids.add(update.card.id)

        story_changes = [*plan.story_creates, *plan.story_updates]
        if story_changes:
            result.stories = apply_story_changes(stories, story_changes)
            self.document.write(prd_path, result.stories)
            logger.info(
                "Wrote %d story change(s) to %s", len(story_changes), prd_path
            )

        return result

    def _complete_labels(
        self,
        creates: list[CreateCard],
        updates: list[UpdateCard],
        result: ApplyResult,
    ) -> tuple[list[CreateCard], list[UpdateCard]]:
        labels = LabelMapping.build(self.board.get_labels(), self.label_prefix)

        wanted = {
            labels.label_name(dependency)
            for entry in [*creates, *updates]
            for dependency in entry.story.depends_on
        }
        for name in sorted(wanted):
            if name in labels.name_to_id:
                continue
            created = self.board.create_label(name, None)
            logger.info("Created label %r (%s)", created.name, created.id)
            labels = labels.with_label(created)
            result.created_labels.append(created.name)

        completed_creates = []
        for create in creates:
            label_ids, _ = labels.resolve_label_ids(create.story.depends_on)
            completed_creates.append(
                create.model_copy(
                    update={
                        "card_input": create.card_input.model_copy(
                            update={"label_ids": label_ids}
                        )
                    }
                )
            )

        completed_updates = []
        for update in updates:
            label_ids, _ = labels.resolve_label_ids(
                update.story.depends_on, update.card.label_ids
            )
            if set(label_ids) != set(update.card.label_ids):
                update = update.model_copy(
                    update={
                        "card_update": update.card_update.model_copy(
                            update={"label_ids": label_ids}
                        )
                    }
                )
            completed_updates.append(update)

        return completed_creates, completed_updates
