"""Tests for sync/planner.py -- classification of story/card pairs."""

from __future__ import annotations

import logging

import pytest
from conftest import CARD_TIME, PRD_TIME, default_lists, make_card, make_story

from ralph_task.config_schema import MappingConfig
from ralph_task.sync.models import (
    BoardLabel,
    BoardList,
    CardRecord,
    Checklist,
    ChecklistItem,
    CreateCard,
    CreateStory,
    DocumentSnapshot,
    Noop,
    UpdateCard,
    UpdateStory,
)
from ralph_task.sync.planner import (
    DUPLICATE_CARD_REASON,
    DUPLICATE_STORY_REASON,
    EQUAL_TIMESTAMPS_REASON,
    IN_SYNC_REASON,
    UNCHANGED_REASON,
    ReconciliationPlanner,
    SyncOptions,
    plan_sync,
)
from ralph_task.sync.state import build_sync_state

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _options(**overrides) -> SyncOptions:
    overrides.setdefault("prd_path", "/work/prd.json")
    return SyncOptions(**overrides)


def _plan(
    stories,
    cards,
    *,
    labels=(),
    lists=None,
    checklists=None,
    last_modified_at=PRD_TIME,
    **options,
):
    document = DocumentSnapshot(stories=stories, last_modified_at=last_modified_at)
    return plan_sync(
        document,
        default_lists() if lists is None else lists,
        cards,
        labels,
        _options(**options),
        checklists,
    )


def _ac(*items, name="Acceptance Criteria"):
    return Checklist(
        id="cl",
        name=name,
        items=[
            ChecklistItem(id=f"i{i}", name=text, checked=False)
            for i, text in enumerate(items)
        ],
    )


# ---------------------------------------------------------------------------
# Creates
# ---------------------------------------------------------------------------


class TestCreates:
    def test_prd_only_story_creates_card(self):
        """A story without a card becomes a CreateCard."""
        plan = _plan([make_story(acceptance_criteria=["a"])], [])
        assert len(plan.creates) == 1
        create = plan.creates[0]
        assert isinstance(create, CreateCard)
        assert create.reason == "PRD story missing in Trello"
        assert create.card_input.name == "[US-001] Login"
        assert [item.name for item in create.checklist.items] == ["a"]

    def test_trello_only_card_creates_story(self):
        """A card without a story becomes a CreateStory."""
        card = make_card("US-004", "Export", list_id="list-done")
        plan = _plan([], [card], checklists={card.id: [_ac("x")]})
        create = plan.creates[0]
        assert isinstance(create, CreateStory)
        assert create.story.id == "US-004"
        assert create.story.status == "done"
        assert create.story.acceptance_criteria == ["x"]

    def test_direction_filters_creates(self):
        """One-way runs ignore records that would write the other side."""
        card = make_card("US-002")
        plan = _plan([make_story()], [card], direction="prd-to-trello")
        assert [type(e) for e in plan.creates] == [CreateCard]
        assert plan.noop[0] == Noop(id="US-002", reason="Trello-only card ignored")

        plan = _plan([make_story()], [card], direction="trello-to-prd")
        assert [type(e) for e in plan.creates] == [CreateStory]
        assert plan.noop[0] == Noop(id="US-001", reason="PRD-only story ignored")

    def test_create_blocked_by_unmapped_status(self):
        """A story whose status has no list is a conflict, not a create."""
        lists = [BoardList(id="list-todo", name="To Do")]
        plan = _plan([make_story(status="done")], [], lists=lists)
        assert plan.creates == ()
        keyed = [c for c in plan.conflicts if c.id == "US-001"]
        assert keyed[0].reason == "No Trello list mapped for status 'done'"

    def test_creates_sorted_by_id(self):
        stories = [make_story("US-003"), make_story("US-001"), make_story("US-002")]
        plan = _plan(stories, [])
        assert [c.id for c in plan.creates] == ["US-001", "US-002", "US-003"]


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


class TestUpdates:
    def test_prd_newer_updates_card(self):
        """A newer PRD story rewrites name, description and checklist."""
        story = make_story(
            "US-007",
            "New Title",
            description="Updated description",
            acceptance_criteria=["First criterion"],
        )
        card = make_card("US-007", "Old Title")
        plan = _plan([story], [card], checklists={card.id: []})

        assert plan.creates == () and plan.conflicts == ()
        assert len(plan.updates) == 1
        update = plan.updates[0]
        assert isinstance(update, UpdateCard)
        assert update.card_update.name == "[US-007] New Title"
        assert update.card_update.description == "Updated description"
        assert update.checklist_needs_update is True
        assert update.list_move is None

    def test_list_move_named(self):
        """A status change records the list move with list names."""
        story = make_story(status="done")
        card = make_card()
        plan = _plan([story], [card], checklists={card.id: []})
        move = plan.updates[0].list_move
        assert (move.from_id, move.to_id) == ("list-todo", "list-done")
        assert (move.from_name, move.to_name) == ("To Do", "Done")

    def test_trello_newer_updates_story(self):
        """When the card is newer, both-differ pairs update the PRD."""
        story = make_story(status="done")
        card = make_card(description="Card text", last_activity_at="2026-02-01T00:00:00Z")
        plan = _plan([story], [card], checklists={card.id: []})
        update = plan.updates[0]
        assert isinstance(update, UpdateStory)
        assert update.reason == "Trello newer than PRD"
        assert update.story.status == "open"
        assert update.story.description == "Card text"

    def test_both_differ_prd_newer(self):
        plan = _plan(
            [make_story(status="done")],
            [make_card(description="Card text")],
            checklists={"card-US-001": []},
        )
        assert isinstance(plan.updates[0], UpdateCard)
        assert plan.updates[0].reason == "PRD newer than Trello"

    def test_dependency_labels_merged(self):
        """Dependency labels are rewritten while other labels stay."""
        labels = [
            BoardLabel(id="label-001", name="dep:US-001"),
            BoardLabel(id="label-002", name="dep:US-002"),
            BoardLabel(id="label-old-dep", name="dep:US-099"),
            BoardLabel(id="label-keep", name="needs-design"),
        ]
        story = make_story("US-010", depends_on=["US-001", "US-002"])
        card = make_card("US-010", label_ids=["label-keep", "label-old-dep"])
        plan = _plan(
            [story],
            [card],
            labels=labels,
            checklists={card.id: []},
            mapping=MappingConfig(depends_on_label_prefix="dep:"),
        )
        update = plan.updates[0]
        assert update.card_update.label_ids == ["label-001", "label-002", "label-keep"]


# ---------------------------------------------------------------------------
# Tie-break
# ---------------------------------------------------------------------------


class TestTieBreak:
    def _equal(self, prefer):
        story = make_story(status="done")
        card = make_card(description="Card text", last_activity_at=PRD_TIME)
        return _plan([story], [card], checklists={card.id: []}, prefer=prefer)

    def test_prefer_prd(self):
        """Equal timestamps with prefer=prd always update the card."""
        plan = self._equal("prd")
        assert plan.conflicts == ()
        assert isinstance(plan.updates[0], UpdateCard)
        assert plan.updates[0].reason == "PRD preferred over Trello (equal timestamps)"

    def test_prefer_trello(self):
        plan = self._equal("trello")
        assert isinstance(plan.updates[0], UpdateStory)
        assert plan.updates[0].reason == "Trello preferred over PRD (equal timestamps)"

    def test_prefer_none(self):
        """Equal timestamps with prefer=none are a conflict."""
        plan = self._equal("none")
        assert plan.updates == ()
        assert plan.conflicts[0].id == "US-001"
        assert plan.conflicts[0].reason == EQUAL_TIMESTAMPS_REASON

    def test_unparseable_timestamp_is_a_tie(self):
        story = make_story(status="done")
        card = make_card(description="x", last_activity_at="not a date")
        plan = _plan([story], [card], checklists={card.id: []})
        assert plan.conflicts[0].reason == EQUAL_TIMESTAMPS_REASON


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestConflicts:
    def test_duplicate_cards(self):
        """Two cards for one ID: one keyed conflict, no writes for it."""
        cards = [
            make_card("US-001", "Login", card_id="card-a"),
            make_card("US-001", "Login again", card_id="card-b"),
        ]
        plan = _plan([make_story()], cards)
        assert len(plan.conflicts) == 1
        conflict = plan.conflicts[0]
        assert conflict.id == "US-001"
        assert conflict.reason == DUPLICATE_CARD_REASON
        assert [card.id for card in conflict.cards] == ["card-a", "card-b"]
        assert plan.creates == () and plan.updates == () and plan.noop == ()

    def test_duplicate_stories(self):
        """A repeated story ID in the PRD is a keyed conflict."""
        plan = _plan([make_story(), make_story(title="Other")], [])
        assert plan.conflicts[0].id == "US-001"
        assert plan.conflicts[0].reason == DUPLICATE_STORY_REASON
        assert plan.creates == ()

    def test_unparseable_card_titles(self):
        """Cards without a usable ID are unkeyed conflicts."""
        cards = [
            make_card(card_id="c1").model_copy(update={"name": "No id here"}),
            make_card(card_id="c2").model_copy(
                update={"name": "[US-001] Title with US-002"}
            ),
        ]
        plan = _plan([], cards)
        assert {c.reason for c in plan.conflicts} == {
            "No story ID found in card title",
            "Multiple story IDs found in card title",
        }
        assert all(c.id is None for c in plan.conflicts)

    def test_status_mapping_issue_is_unkeyed_conflict(self):
        lists = [BoardList(id="list-todo", name="To Do")]
        plan = _plan([], [], lists=lists)
        assert [c.reason for c in plan.conflicts] == [
            "No Trello list found for status 'done' (Done)",
            "No Trello list found for status 'in_progress' (In Progress)",
        ]

    def test_card_on_unmapped_list_blocks_story_update(self):
        """A card on an unknown list cannot write the PRD."""
        story = make_story(description="PRD text")
        card = make_card(list_id="list-other", last_activity_at="2026-02-01T00:00:00Z")
        plan = _plan(
            [story], [card], checklists={card.id: []}, direction="trello-to-prd"
        )
        conflict = plan.conflicts[0]
        assert conflict.id == "US-001"
        assert conflict.reason == "No PRD status mapped for Trello list 'list-other'"
        assert plan.updates == ()

    def test_card_on_unmapped_list_moved_back(self):
        """Two-way runs write the story onto a card on an unknown list."""
        story = make_story(description="PRD text")
        card = make_card(list_id="list-other", last_activity_at="2026-02-01T00:00:00Z")
        plan = _plan([story], [card], checklists={card.id: []})
        update = plan.updates[0]
        assert isinstance(update, UpdateCard)
        assert update.reason == "PRD update required"
        assert update.card_update.list_id == "list-todo"
        assert update.list_move.from_name is None

    def test_issues_joined(self):
        """Several card issues are joined with '; '."""
        lists = [BoardList(id="list-todo", name="To Do")]
        story = make_story("story-9", status="done")
        plan = _plan([story], [], lists=lists)
        keyed = next(c for c in plan.conflicts if c.id == "story-9")
        assert keyed.reason.startswith("No Trello list mapped for status 'done'; ")

    def test_conflicts_sorted(self):
        cards = [
            make_card("US-002", card_id="a"),
            make_card("US-002", card_id="b"),
            make_card("US-001", card_id="c"),
            make_card("US-001", card_id="d"),
        ]
        plan = _plan([], cards)
        assert [c.id for c in plan.conflicts] == ["US-001", "US-002"]


# ---------------------------------------------------------------------------
# No-op and incremental state
# ---------------------------------------------------------------------------


class TestNoop:
    def test_in_sync(self):
        story = make_story(acceptance_criteria=["a"])
        card = make_card()
        plan = _plan([story], [card], checklists={card.id: [_ac("a")]})
        assert plan.noop == (Noop(id="US-001", reason=IN_SYNC_REASON),)
        assert not plan.has_writes

    def test_idempotent(self):
        """Planning twice against identical snapshots yields only no-ops."""
        stories = [make_story("US-001"), make_story("US-002", "Export", status="done")]
        cards = [make_card("US-001"), make_card("US-002", "Export", list_id="list-done")]
        checklists = {card.id: [] for card in cards}
        first = _plan(stories, cards, checklists=checklists)
        second = _plan(stories, cards, checklists=checklists)
        assert first == second
        assert [n.id for n in second.noop] == ["US-001", "US-002"]
        assert second.creates == () and second.updates == ()

    def _state(self, story, card):
        return build_sync_state(
            board_id="board-1",
            prd_path="/work/prd.json",
            mapping=MappingConfig(),
            stories=[story],
            cards=[CardRecord(story_id=story.id, card=card)],
        )

    def test_unchanged_pair_skipped(self):
        """A pair matching the recorded state is a no-op without checklists."""
        story = make_story(description="changed locally but recorded")
        card = make_card()
        options = _options(state=self._state(story, card))
        planner = ReconciliationPlanner(options)
        context = planner.index(
            DocumentSnapshot(stories=[story], last_modified_at=PRD_TIME),
            default_lists(),
            [card],
            [],
        )
        assert planner.checklist_card_ids(context) == []
        plan = planner.plan(context, {})
        assert plan.noop == (Noop(id="US-001", reason=UNCHANGED_REASON),)

    def test_state_ignored_when_not_incremental(self):
        story = make_story(description="PRD text")
        card = make_card()
        plan = _plan(
            [story],
            [card],
            checklists={card.id: []},
            state=self._state(story, card),
            incremental=False,
        )
        assert isinstance(plan.updates[0], UpdateCard)

    def test_changed_card_reclassified(self):
        story = make_story(description="PRD text")
        card = make_card()
        state = self._state(story, card)
        touched = card.model_copy(update={"last_activity_at": "2026-01-01T12:00:00Z"})
        plan = _plan([story], [touched], checklists={card.id: []}, state=state)
        assert plan.updates[0].id == "US-001"


class TestChecklistTargets:
    def test_targets(self):
        """Checklists are needed for paired and card-only records."""
        stories = [make_story("US-001"), make_story("US-003")]
        cards = [make_card("US-001"), make_card("US-002")]
        planner = ReconciliationPlanner(_options())
        context = planner.index(
            DocumentSnapshot(stories=stories, last_modified_at=PRD_TIME),
            default_lists(),
            cards,
            [],
        )
        assert sorted(planner.checklist_card_ids(context)) == [
            "card-US-001",
            "card-US-002",
        ]

    def test_prd_to_trello_skips_card_only(self):
        planner = ReconciliationPlanner(_options(direction="prd-to-trello"))
        context = planner.index(
            DocumentSnapshot(stories=[], last_modified_at=PRD_TIME),
            default_lists(),
            [make_card("US-002")],
            [],
        )
        assert planner.checklist_card_ids(context) == []


class TestLogging:
    def test_decisions_logged_at_debug(self, caplog):
        """Every decision is logged with structured data."""
        with caplog.at_level(logging.DEBUG, logger="ralph_task.sync.planner"):
            _plan([make_story()], [])
        decisions = [r for r in caplog.records if r.getMessage() == "Sync decision"]
        assert decisions[0].data == {
            "storyId": "US-001",
            "action": "create",
            "reason": "PRD story missing in Trello",
            "target": "trello",
        }
        summary = [r for r in caplog.records if r.getMessage().startswith("Sync plan built")]
        assert summary[0].data["creates"] == 1


@pytest.mark.parametrize("direction", ["two-way", "prd-to-trello", "trello-to-prd"])
def test_in_sync_pair_is_noop_in_every_direction(direction):
    story = make_story()
    card = make_card(last_activity_at=CARD_TIME)
    plan = _plan([story], [card], checklists={card.id: []}, direction=direction)
    assert [n.id for n in plan.noop] == ["US-001"]
