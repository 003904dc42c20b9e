"""Bidirectional mapping between PRD stories and Trello cards.

Two per-run value objects translate the parts of a story that live in
board structures rather than card text:

* ``StatusMapping`` -- story status <-> list ID, resolved from the
  configured list names.
* ``LabelMapping`` -- dependency ID <-> label ID, via
  ``dependsOnLabelPrefix + dependency``.

On top of them, ``build_card_mapping()`` renders a story as the card it
should be (and the delta against an existing card), and
``build_story_mapping()`` renders a card as the story it implies.  Neither
raises for a mapping gap: gaps are returned as ``issues`` and become plan
conflicts.

List resolution for each status:

1. **Open lists** with the configured name.
2. **Archived lists** with that name, when no open list matches.
3. **Smallest ID** wins among several candidates, recorded as an issue.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ralph_task.config_schema import StatusToListConfig
from ralph_task.sync.models import (
    STORY_STATUSES,
    BoardLabel,
    BoardList,
    Card,
    CardInput,
    CardUpdate,
    Checklist,
    ChecklistInput,
    ChecklistItemInput,
    Story,
)
from ralph_task.sync.story_id import StoryIdCodec, StoryIdFormatError


@dataclass(frozen=True)
class StatusMapping:
    """Story status <-> Trello list ID for one board.

    Attributes:
        status_to_list_id: List chosen for each mappable status.
        list_id_to_status: Inverse of ``status_to_list_id``.
        issues: Problems found while resolving lists.
    """

    status_to_list_id: dict[str, str]
    list_id_to_status: dict[str, str]
    issues: tuple[str, ...] = ()

    @classmethod
    def build(
        cls, lists: Iterable[BoardList], status_to_list: StatusToListConfig
    ) -> StatusMapping:
        """Resolve the configured list names against *lists*."""
        lists = list(lists)
        status_to_list_id: dict[str, str] = {}
        list_id_to_status: dict[str, str] = {}
        issues: list[str] = []

        for status in STORY_STATUSES:
            list_name = getattr(status_to_list, status)
            named = [item for item in lists if item.name == list_name]
            candidates = [item for item in named if not item.closed] or named
            if not candidates:
                issues.append(
                    f"No Trello list found for status '{status}' ({list_name})"
                )
                continue
            if len(candidates) > 1:
                issues.append(
                    f"Multiple Trello lists found for status '{status}' "
                    f"({list_name})"
                )
            chosen = min(item.id for item in candidates)
            status_to_list_id[status] = chosen
            list_id_to_status[chosen] = status

        return cls(status_to_list_id, list_id_to_status, tuple(issues))


@dataclass(frozen=True)
class LabelMapping:
    """Dependency ID <-> Trello label for one board.

    Attributes:
        prefix: ``dependsOnLabelPrefix``.  With an empty prefix every
            label name is read as a dependency.
        name_to_id: Label name to label ID (last label wins on duplicate
            names).
        id_to_name: Label ID to label name.
    """

    prefix: str
    name_to_id: dict[str, str] = field(default_factory=dict)
    id_to_name: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(cls, labels: Iterable[BoardLabel], prefix: str) -> LabelMapping:
        name_to_id: dict[str, str] = {}
        id_to_name: dict[str, str] = {}
        for label in labels:
            name_to_id[label.name] = label.id
            id_to_name[label.id] = label.name
        return cls(prefix, name_to_id, id_to_name)

    def with_label(self, label: BoardLabel) -> LabelMapping:
        """Return a copy that also knows *label*."""
        return LabelMapping(
            self.prefix,
            {**self.name_to_id, label.name: label.id},
            {**self.id_to_name, label.id: label.name},
        )

    def label_name(self, dependency: str) -> str:
        return f"{self.prefix}{dependency}"

    def dependency_for(self, label_name: str) -> str | None:
        """Return the dependency a label name encodes, or ``None``."""
        if not label_name.startswith(self.prefix):
            return None
        dependency = label_name[len(self.prefix) :].strip()
        return dependency or None

    def resolve_label_ids(
        self, depends_on: Iterable[str], existing_label_ids: Iterable[str] = ()
    ) -> tuple[list[str], list[str]]:
        """Compute the label set a card should carry.

        Existing labels that are not dependency labels (including labels
        the board index does not know) are kept; dependency labels are
        replaced by those for *depends_on*.

        Returns:
            ``(label_ids, missing_label_names)``, both sorted.
        """
        keep = {
            label_id
            for label_id in existing_label_ids
            if (name := self.id_to_name.get(label_id)) is None
            or not name.startswith(self.prefix)
        }
        missing: set[str] = set()
        for dependency in depends_on:
            name = self.label_name(dependency)
            label_id = self.name_to_id.get(name)
            if label_id is None:
                missing.add(name)
            else:
                keep.add(label_id)
        return sorted(keep), sorted(missing)

    def depends_on_for(self, label_ids: Iterable[str]) -> list[str]:
        """Dependencies encoded by *label_ids*, de-duplicated and sorted."""
        dependencies = set()
        for label_id in label_ids:
            name = self.id_to_name.get(label_id)
            if name is None:
                continue
            dependency = self.dependency_for(name)
            if dependency is not None:
                dependencies.add(dependency)
        return sorted(dependencies)


# ------------------------------------------------------------------
# Checklists
# ------------------------------------------------------------------


def select_checklist(
    checklists: Sequence[Checklist] | None, name: str
) -> tuple[Checklist | None, str | None]:
    """Find the acceptance checklist on a card.

    Returns:
        ``(checklist, issue)``.  Several checklists with *name* yield no
        checklist and an issue.
    """
    if not checklists:
        return None, None
    matches = [checklist for checklist in checklists if checklist.name == name]
    if len(matches) > 1:
        return None, f"Multiple checklists named '{name}' found"
    return (matches[0] if matches else None), None


def desired_checklist(story: Story, name: str) -> ChecklistInput:
    """Acceptance criteria as checklist items, checked when the story is done."""
    checked = story.status == "done"
    return ChecklistInput(
        name=name,
        items=[
            ChecklistItemInput(name=criterion, checked=checked)
            for criterion in story.acceptance_criteria
        ],
    )


def checklist_differs(
    desired: ChecklistInput, existing: Checklist | None
) -> bool:
    if existing is None:
        return bool(desired.items)
    if len(existing.items) != len(desired.items):
        return True
    return any(
        item.name != wanted.name or item.checked != wanted.checked
        for item, wanted in zip(existing.items, desired.items)
    )


# ------------------------------------------------------------------
# Story -> card
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CardMapping:
    """A story rendered as a card.

    Attributes:
        card_input: Fields for creating the card.
        card_update: Delta against the existing card (empty when there is
            no card).
        checklist: Desired acceptance checklist.
        checklist_needs_update: Whether the board checklist must change.
        missing_labels: Dependency label names absent from the board.
        issues: Problems that block writing this card.
    """

    card_input: CardInput
    card_update: CardUpdate
    checklist: ChecklistInput
    checklist_needs_update: bool
    missing_labels: tuple[str, ...] = ()
    issues: tuple[str, ...] = ()


def build_card_mapping(
    story: Story,
    *,
    codec: StoryIdCodec,
    status_mapping: StatusMapping,
    label_mapping: LabelMapping,
    checklist_name: str,
    create_missing_labels: bool,
    card: Card | None = None,
    checklists: Sequence[Checklist] | None = None,
) -> CardMapping:
    """Render *story* as a card and diff it against *card*.

    Args:
        story: PRD story.
        codec: Identifier codec for card titles.
        status_mapping: Status <-> list mapping for the board.
        label_mapping: Dependency <-> label mapping for the board.
        checklist_name: Name of the acceptance checklist.
        create_missing_labels: When ``False`` missing dependency labels
            are an issue; when ``True`` the update always carries the
            desired label IDs so the applier can complete them.
        card: Existing card, if any.
        checklists: Checklists fetched for *card*.  ``None`` means none
            were fetched.
    """
    issues: list[str] = []

    list_id = status_mapping.status_to_list_id.get(story.status)
    if list_id is None:
        issues.append(f"No Trello list mapped for status '{story.status}'")

    try:
        name = codec.format_card_title(story.id, story.title)
    except StoryIdFormatError as exc:
        issues.append(str(exc))
        name = story.title

    label_ids, missing = label_mapping.resolve_label_ids(
        story.depends_on, card.label_ids if card is not None else ()
    )
    if missing and not create_missing_labels:
        issues.append(f"Missing Trello labels: {', '.join(missing)}")

    card_input = CardInput(
        name=name,
        description=story.description,
        list_id=list_id or "",
        label_ids=label_ids,
    )
    checklist = desired_checklist(story, checklist_name)

    if card is None:
        return CardMapping(
            card_input=card_input,
            card_update=CardUpdate(),
            checklist=checklist,
            checklist_needs_update=bool(checklist.items),
            missing_labels=tuple(missing),
            issues=tuple(issues),
        )

    update: dict = {}
    if card.name != name:
        update["name"] = name
    if card.description != story.description:
        update["description"] = story.description
    if list_id is not None and card.list_id != list_id:
        update["list_id"] = list_id
    if sorted(card.label_ids) != label_ids or (missing and create_missing_labels):
        update["label_ids"] = label_ids

    existing, checklist_issue = select_checklist(checklists, checklist_name)
    if checklist_issue is not None:
        issues.append(checklist_issue)
        needs_update = False
    elif checklists is None:
        needs_update = bool(checklist.items)
    else:
        needs_update = checklist_differs(checklist, existing)

    return CardMapping(
        card_input=card_input,
        card_update=CardUpdate(**update),
        checklist=checklist,
        checklist_needs_update=needs_update,
        missing_labels=tuple(missing),
        issues=tuple(issues),
    )


# ------------------------------------------------------------------
# Card -> story
# ------------------------------------------------------------------


@dataclass(frozen=True)
class StoryMapping:
    story: Story
    issues: tuple[str, ...] = ()


def build_story_mapping(
    card: Card,
    *,
    story_id: str,
    title: str,
    status_mapping: StatusMapping,
    label_mapping: LabelMapping,
    checklist_name: str,
    checklists: Sequence[Checklist] | None = None,
) -> StoryMapping:
    """Render *card* as the story it implies.

    An unmapped list records an issue and falls back to ``open``.
    """
    issues: list[str] = []
    status = status_mapping.list_id_to_status.get(card.list_id)
    if status is None:
        issues.append(f"No PRD status mapped for Trello list '{card.list_id}'")
        status = "open"

    checklist, checklist_issue = select_checklist(checklists, checklist_name)
    if checklist_issue is not None:
        issues.append(checklist_issue)

    story = Story(
        id=story_id,
        title=title,
        status=status,
        depends_on=label_mapping.depends_on_for(card.label_ids),
        description=card.description,
        acceptance_criteria=(
            [item.name for item in checklist.items] if checklist else []
        ),
    )
    return StoryMapping(story=story, issues=tuple(issues))


def stories_equivalent(left: Story, right: Story) -> bool:
    """Compare stories field by field; ``depends_on`` as a set."""
    return (
        left.id == right.id
        and left.title == right.title
        and left.status == right.status
        and left.description == right.description
        and set(left.depends_on) == set(right.depends_on)
        and list(left.acceptance_criteria) == list(right.acceptance_criteria)
    )
