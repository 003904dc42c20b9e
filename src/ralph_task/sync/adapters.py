"""Store protocols the sync engine talks to.

``TrelloClient`` and ``PrdDocumentStore`` are the shipped implementations;
tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from ralph_task.sync.models import (
    BoardInfo,
    BoardLabel,
    BoardList,
    Card,
    CardInput,
    CardUpdate,
    Checklist,
    ChecklistInput,
    DocumentSnapshot,
    Story,
)


class BoardStore(Protocol):
    def get_board_info(self) -> BoardInfo: ...

    def get_lists(self) -> list[BoardList]: ...

    def get_cards(self) -> list[Card]: ...

    def get_labels(self) -> list[BoardLabel]: ...

    def get_card_checklists(self, card_id: str) -> list[Checklist]: ...

    def create_label(self, name: str, color: str | None = None) -> BoardLabel: ...

    def create_card(self, card_input: CardInput) -> Card: ...

    def update_card(self, card_id: str, card_update: CardUpdate) -> Card: ...

    def upsert_checklist(
        self, card_id: str, checklist: ChecklistInput
    ) -> Checklist: ...

    def set_checklist_item_state(
        self, card_id: str, checklist_id: str, item_id: str, checked: bool
    ) -> None: ...


class DocumentStore(Protocol):
    def read(self, path: str) -> DocumentSnapshot: ...

    def write(self, path: str, stories: Sequence[Story]) -> None: ...
