"""Pydantic models for the PRD <-> Trello reconciliation engine.

Defines the data contracts shared by every sync module:

- Document side: ``Story``, ``DocumentSnapshot``.
- Board side: ``BoardInfo``, ``BoardList``, ``BoardLabel``, ``Card``,
  ``Checklist``, ``ChecklistItem``.
- Write instructions: ``CardInput``, ``CardUpdate``, ``ChecklistInput``.
- Plan entries: ``CreateCard``, ``CreateStory``, ``UpdateCard``,
  ``UpdateStory``, ``Conflict``, ``Noop`` and the ``SyncPlan`` holding them.
- ``CardRecord`` / ``SyncSnapshot``: post-run view used to rebuild the
  incremental state.

All models are frozen (immutable).  Field names are snake_case in Python
and camelCase when serialised with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

StoryStatus = Literal["open", "in_progress", "done"]
SyncDirection = Literal["two-way", "trello-to-prd", "prd-to-trello"]
ConflictPrefer = Literal["none", "trello", "prd"]

STORY_STATUSES: tuple[StoryStatus, ...] = ("open", "in_progress", "done")


class SyncModel(BaseModel):
    """Base model: frozen, camelCase aliases, populated by field name."""

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


# ---------------------------------------------------------------------------
# Document side
# ---------------------------------------------------------------------------


class Story(SyncModel):
    """A PRD story.

    Attributes:
        id: Story identifier, unique within the document (e.g. ``US-007``).
        title: Human title without the identifier.
        status: One of ``open``, ``in_progress``, ``done``.
        depends_on: Identifiers of stories this one depends on.
        description: Free-text description.
        acceptance_criteria: Ordered acceptance-criterion strings.
    """

    id: str
    title: str
    status: StoryStatus
    depends_on: list[str] = Field(default_factory=list)
    description: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)


class DocumentSnapshot(SyncModel):
    """Stories read from the PRD plus the document's modification time."""

    stories: list[Story] = Field(default_factory=list)
    last_modified_at: str


# ---------------------------------------------------------------------------
# Board side
# ---------------------------------------------------------------------------


class BoardInfo(SyncModel):
    id: str
    name: str
    last_activity_at: str


class BoardList(SyncModel):
    id: str
    name: str
    closed: bool = False


class BoardLabel(SyncModel):
    id: str
    name: str
    color: str | None = None


class Card(SyncModel):
    """A Trello card as seen by the engine.

    ``last_activity_at`` is the board's own activity timestamp and is used
    for conflict resolution, so adapters must pass it through unchanged.
    """

    id: str
    name: str
    description: str = ""
    list_id: str
    label_ids: list[str] = Field(default_factory=list)
    closed: bool = False
    last_activity_at: str


class ChecklistItem(SyncModel):
    id: str
    name: str
    checked: bool = False


class Checklist(SyncModel):
    id: str
    name: str
    items: list[ChecklistItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Write instructions
# ---------------------------------------------------------------------------


class CardInput(SyncModel):
    """Fields for a new card."""

    name: str
    description: str
    list_id: str
    label_ids: list[str] = Field(default_factory=list)


class CardUpdate(SyncModel):
    """Partial card update; ``None`` fields are left untouched."""

    name: str | None = None
    description: str | None = None
    list_id: str | None = None
    label_ids: list[str] | None = None
    closed: bool | None = None

    def has_changes(self) -> bool:
        """Return ``True`` when at least one field is set."""
        return bool(self.model_dump(exclude_none=True))


class ChecklistItemInput(SyncModel):
    name: str
    checked: bool = False


class ChecklistInput(SyncModel):
    name: str
    items: list[ChecklistItemInput] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Plan entries
# ---------------------------------------------------------------------------


class ListMove(SyncModel):
    """A card moving between lists, with names for display."""

    from_id: str
    to_id: str
    from_name: str | None = None
    to_name: str | None = None


class CreateCard(SyncModel):
    """Create a Trello card for a PRD-only story."""

    target: Literal["trello"] = "trello"
    id: str
    reason: str
    story: Story
    card_input: CardInput
    checklist: ChecklistInput


class CreateStory(SyncModel):
    """Create a PRD story for a Trello-only card."""

    target: Literal["prd"] = "prd"
    id: str
    reason: str
    story: Story
    card: Card


class UpdateCard(SyncModel):
    """Write the PRD story's state onto its Trello card."""

    target: Literal["trello"] = "trello"
    id: str
    reason: str
    story: Story
    card: Card
    card_update: CardUpdate
    checklist: ChecklistInput
    checklist_needs_update: bool = False
    list_move: ListMove | None = None


class UpdateStory(SyncModel):
    """Replace the PRD story with the state mapped from its card."""

    target: Literal["prd"] = "prd"
    id: str
    reason: str
    story: Story
    card: Card


class Conflict(SyncModel):
    """A case that needs a human decision.

    ``id`` is ``None`` for board-level issues such as an unmapped status
    list or a card title without a parseable story ID.
    """

    id: str | None = None
    reason: str
    cards: list[Card] = Field(default_factory=list)
    story: Story | None = None


class Noop(SyncModel):
    id: str
    reason: str


SyncCreate = Annotated[CreateCard | CreateStory, Field(discriminator="target")]
SyncUpdate = Annotated[UpdateCard | UpdateStory, Field(discriminator="target")]
PlanEntry = CreateCard | CreateStory | UpdateCard | UpdateStory | Conflict | Noop


class SyncPlan(SyncModel):
    """Immutable result of one reconciliation run.

    The four buckets are disjoint.  Creates, updates and no-ops are sorted
    by story ID; conflicts by story ID, with unkeyed conflicts ordered by
    reason.
    """

    creates: tuple[SyncCreate, ...] = ()
    updates: tuple[SyncUpdate, ...] = ()
    conflicts: tuple[Conflict, ...] = ()
    noop: tuple[Noop, ...] = ()

    @property
    def card_creates(self) -> list[CreateCard]:
        """Creates targeting Trello."""
        return [c for c in self.creates if isinstance(c, CreateCard)]

    @property
    def story_creates(self) -> list[CreateStory]:
        """Creates targeting the PRD."""
        return [c for c in self.creates if isinstance(c, CreateStory)]

    @property
    def card_updates(self) -> list[UpdateCard]:
        """Updates targeting Trello."""
        return [u for u in self.updates if isinstance(u, UpdateCard)]

    @property
    def story_updates(self) -> list[UpdateStory]:
        """Updates targeting the PRD."""
        return [u for u in self.updates if isinstance(u, UpdateStory)]

    @property
    def has_writes(self) -> bool:
        return bool(self.creates or self.updates)

    def summary(self) -> str:
        """One-line count summary."""
        return (
            f"Creates: {len(self.creates)}, Updates: {len(self.updates)}, "
            f"Conflicts: {len(self.conflicts)}, No-op: {len(self.noop)}"
        )


# ---------------------------------------------------------------------------
# Post-run snapshot
# ---------------------------------------------------------------------------


class CardRecord(SyncModel):
    """A card paired with the story ID parsed from its title."""

    story_id: str
    card: Card


class SyncSnapshot(SyncModel):
    """Both sides as they stand after a run (or as read, when nothing ran)."""

    stories: list[Story] = Field(default_factory=list)
    cards: list[CardRecord] = Field(default_factory=list)
    last_seen_trello_activity: str
