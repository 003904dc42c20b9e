"""Shared pytest fixtures for ralph-task tests."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

import pytest
from dotenv import load_dotenv

from ralph_task.sync.models import (
    BoardInfo,
    BoardLabel,
    BoardList,
    Card,
    CardInput,
    CardUpdate,
    Checklist,
    ChecklistInput,
    ChecklistItem,
    DocumentSnapshot,
    Story,
)

load_dotenv()

CARD_TIME = "2026-01-01T00:00:00.000Z"
PRD_TIME = "2026-01-02T00:00:00+00:00"
WRITE_TIME = "2026-01-03T00:00:00.000Z"


def default_lists() -> list[BoardList]:
    return [
        BoardList(id="list-todo", name="To Do"),
        BoardList(id="list-doing", name="In Progress"),
        BoardList(id="list-done", name="Done"),
    ]


class FakeBoard:
    """In-memory board store.

    Every write bumps the touched card's activity to ``write_time`` and is
    recorded in ``calls`` as ``(method, *args)``.
    """

    def __init__(
        self,
        lists: list[BoardList] | None = None,
        cards: list[Card] | None = None,
        labels: list[BoardLabel] | None = None,
        checklists: dict[str, list[Checklist]] | None = None,
        write_time: str = WRITE_TIME,
    ) -> None:
        self.lists = default_lists() if lists is None else list(lists)
        self.cards: dict[str, Card] = {card.id: card for card in cards or []}
        self.labels = list(labels or [])
        self.checklists: dict[str, list[Checklist]] = dict(checklists or {})
        self.write_time = write_time
        self.calls: list[tuple] = []
        self._next_id = 1

    def _new_id(self, kind: str) -> str:
        value = f"{kind}-new-{self._next_id}"
        self._next_id += 1
        return value

    def _touch(self, card_id: str) -> None:
        card = self.cards[card_id]
        self.cards[card_id] = card.model_copy(
            update={"last_activity_at": self.write_time}
        )

    def writes(self) -> list[tuple]:
        return [call for call in self.calls if not call[0].startswith("get_")]

    # Reads

    def get_board_info(self) -> BoardInfo:
        self.calls.append(("get_board_info",))
        return BoardInfo(id="board-1", name="Board", last_activity_at=CARD_TIME)

    def get_lists(self) -> list[BoardList]:
        self.calls.append(("get_lists",))
        return list(self.lists)

    def get_cards(self) -> list[Card]:
        self.calls.append(("get_cards",))
        return list(self.cards.values())

    def get_labels(self) -> list[BoardLabel]:
        self.calls.append(("get_labels",))
        return list(self.labels)

    def get_card_checklists(self, card_id: str) -> list[Checklist]:
        self.calls.append(("get_card_checklists", card_id))
        return list(self.checklists.get(card_id, []))

    # Writes

    def create_label(self, name: str, color: str | None = None) -> BoardLabel:
        self.calls.append(("create_label", name, color))
        label = BoardLabel(id=self._new_id("label"), name=name, color=color)
        self.labels.append(label)
        return label

    def create_card(self, card_input: CardInput) -> Card:
        self.calls.append(("create_card", card_input))
        card = Card(
            id=self._new_id("card"),
            name=card_input.name,
            description=card_input.description,
            list_id=card_input.list_id,
            label_ids=card_input.label_ids,
            last_activity_at=self.write_time,
        )
        self.cards[card.id] = card
        return card

    def update_card(self, card_id: str, card_update: CardUpdate) -> Card:
        self.calls.append(("update_card", card_id, card_update))
        self.cards[card_id] = self.cards[card_id].model_copy(
            update={
                **card_update.model_dump(exclude_none=True),
                "last_activity_at": self.write_time,
            }
        )
        return self.cards[card_id]

    def upsert_checklist(self, card_id: str, checklist: ChecklistInput) -> Checklist:
        self.calls.append(("upsert_checklist", card_id, checklist))
        result = Checklist(
            id=self._new_id("checklist"),
            name=checklist.name,
            items=[
                ChecklistItem(id=f"item-{i}", name=item.name, checked=item.checked)
                for i, item in enumerate(checklist.items)
            ],
        )
        others = [c for c in self.checklists.get(card_id, []) if c.name != checklist.name]
        self.checklists[card_id] = [*others, result]
        self._touch(card_id)
        return result

    def set_checklist_item_state(
        self, card_id: str, checklist_id: str, item_id: str, checked: bool
    ) -> None:
        self.calls.append(
            ("set_checklist_item_state", card_id, checklist_id, item_id, checked)
        )


class FakeDocument:
    """In-memory PRD document store."""

    def __init__(
        self, stories: list[Story] | None = None, last_modified_at: str = PRD_TIME
    ) -> None:
        self.stories = list(stories or [])
        self.last_modified_at = last_modified_at
        self.writes: list[list[Story]] = []

    def read(self, path: str) -> DocumentSnapshot:
        return DocumentSnapshot(
            stories=list(self.stories), last_modified_at=self.last_modified_at
        )

    def write(self, path: str, stories: Sequence[Story]) -> None:
        self.stories = list(stories)
        self.writes.append(list(stories))


def make_card(
    story_id: str = "US-001",
    title: str = "Login",
    *,
    card_id: str | None = None,
    list_id: str = "list-todo",
    description: str = "",
    label_ids: list[str] | None = None,
    last_activity_at: str = CARD_TIME,
) -> Card:
    return Card(
        id=card_id or f"card-{story_id}",
        name=f"[{story_id}] {title}",
        description=description,
        list_id=list_id,
        label_ids=label_ids or [],
        last_activity_at=last_activity_at,
    )


def make_story(story_id: str = "US-001", title: str = "Login", **fields) -> Story:
    fields.setdefault("status", "open")
    return Story(id=story_id, title=title, **fields)


@pytest.fixture
def board() -> FakeBoard:
    return FakeBoard()


@pytest.fixture
def document() -> FakeDocument:
    return FakeDocument()


@pytest.fixture
def write_config(tmp_path, monkeypatch):
    """Factory writing ``.ralphtask.json`` (and a PRD) into *tmp_path*.

    Trello environment variables are cleared so the file is the only
    source.  Returns the config path.
    """
    for name in ("TRELLO_API_KEY", "TRELLO_TOKEN", "TRELLO_BOARD_ID", "RALPH_TASK_CONFIG"):
        monkeypatch.delenv(name, raising=False)

    def _write(stories: list[dict] | None = None, **sections) -> Path:
        prd = tmp_path / "prd.json"
        if not prd.exists():
            prd.write_text(json.dumps({"stories": stories or []}, indent=2))
        data = {
            "version": 1,
            "paths": {"prdFile": "prd.json"},
            "trello": {"apiKey": "key", "token": "token", "boardId": "board-1"},
        }
        data.update(sections)
        path = tmp_path / ".ralphtask.json"
        path.write_text(json.dumps(data, indent=2))
        return path

    return _write
