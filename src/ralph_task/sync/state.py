"""Incremental sync state.

The state file lets a run skip every story/card pair that is unchanged
since the previous successful run.  It records:

* ``storyIndex`` -- ``{id: {fingerprint}}`` for each PRD story.
* ``cardIndex`` -- ``{id: {cardId, lastActivityAt}}`` for each card.
* ``boardId``, ``prdPath`` and ``mappingSignature`` -- the run context.
  State recorded for a different board, document or mapping is ignored.

Key design choices:

* **Disposable cache** -- a missing, unreadable, malformed or mismatched
  file only costs a full (non-incremental) run.  ``load()`` warns and
  returns ``None``; it never raises.
* **Atomic writes** -- ``save()`` goes through ``write_file_atomic()`` so
  readers never see partial data.
* **Canonical hashing** -- fingerprints hash a fixed-key-order JSON
  projection with ``dependsOn`` sorted, so reordering dependencies in the
  PRD is not a change.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, StrictStr, ValidationError
from pydantic.alias_generators import to_camel

from ralph_task.config_schema import MappingConfig
from ralph_task.file_handler import write_file_atomic
from ralph_task.sync.models import CardRecord, Story

logger = logging.getLogger(__name__)

STATE_VERSION = 1

_STATE_CONFIG = {
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class StoryIndexEntry(BaseModel):
    fingerprint: StrictStr

    model_config = _STATE_CONFIG


class CardIndexEntry(BaseModel):
    card_id: StrictStr
    last_activity_at: StrictStr

    model_config = _STATE_CONFIG


class SyncStateData(BaseModel):
    """Persisted incremental state (camelCase on disk)."""

    version: Literal[1]
    last_run_at: StrictStr
    board_id: StrictStr
    prd_path: StrictStr
    mapping_signature: StrictStr
    last_seen_trello_activity: StrictStr
    story_index: dict[str, StoryIndexEntry] = Field(default_factory=dict)
    card_index: dict[str, CardIndexEntry] = Field(default_factory=dict)

    model_config = _STATE_CONFIG


# ------------------------------------------------------------------
# Hashing
# ------------------------------------------------------------------


def _sha256_json(value: object) -> str:
    encoded = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def story_fingerprint(story: Story) -> str:
    """SHA-256 of the story's canonical JSON projection."""
    return _sha256_json(
        {
            "id": story.id,
            "title": story.title,
            "status": story.status,
            "description": story.description,
            "dependsOn": sorted(story.depends_on),
            "acceptanceCriteria": list(story.acceptance_criteria),
        }
    )


def mapping_signature(mapping: MappingConfig) -> str:
    """SHA-256 of the mapping section.

    Any change to how stories map onto cards changes the signature, which
    invalidates stored state.
    """
    return _sha256_json(
        {
            "storyPrefix": mapping.story_prefix,
            "idPattern": mapping.id_pattern,
            "cardTitleFormat": mapping.card_title_format,
            "dependsOnLabelPrefix": mapping.depends_on_label_prefix,
            "statusToList": {
                "open": mapping.status_to_list.open,
                "in_progress": mapping.status_to_list.in_progress,
                "done": mapping.status_to_list.done,
            },
            "acceptanceCriteriaChecklistName": (
                mapping.acceptance_criteria_checklist_name
            ),
        }
    )


# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Returns ``None`` when *value* is empty or unparseable.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compare_timestamps(left: str | None, right: str | None) -> int:
    """Return -1, 0 or 1.  An unparseable side makes the two compare equal."""
    left_dt = parse_timestamp(left)
    right_dt = parse_timestamp(right)
    if left_dt is None or right_dt is None:
        return 0
    if left_dt > right_dt:
        return 1
    if left_dt < right_dt:
        return -1
    return 0


# ------------------------------------------------------------------
# Change detection
# ------------------------------------------------------------------


def is_pair_unchanged(
    state: SyncStateData,
    story_id: str,
    fingerprint: str,
    card_id: str,
    last_activity_at: str,
) -> bool:
    """Return ``True`` when both sides match what *state* recorded."""
    story_entry = state.story_index.get(story_id)
    card_entry = state.card_index.get(story_id)
    if story_entry is None or card_entry is None:
        return False
    return (
        story_entry.fingerprint == fingerprint
        and card_entry.card_id == card_id
        and card_entry.last_activity_at == last_activity_at
    )


def build_sync_state(
    *,
    board_id: str,
    prd_path: str,
    mapping: MappingConfig,
    stories: list[Story],
    cards: list[CardRecord],
    previous: SyncStateData | None = None,
    exclude_ids: frozenset[str] = frozenset(),
    now: str | None = None,
) -> SyncStateData:
    """Build the state to persist after a run.

    Args:
        board_id: Board the run targeted.
        prd_path: PRD document path.
        mapping: Mapping section in effect.
        stories: Stories as they stand after the run.
        cards: Card records as they stand after the run.
        previous: State loaded at the start of the run, if any.
        exclude_ids: Story IDs left out of both indexes so that the next
            run classifies them again (unresolved conflicts).
        now: Override for the current time (tests).

    Returns:
        A new ``SyncStateData``.
    """
    now = now or utc_now_iso()
    story_index = {
        story.id: StoryIndexEntry(fingerprint=story_fingerprint(story))
        for story in stories
        if story.id not in exclude_ids
    }
    card_index = {
        record.story_id: CardIndexEntry(
            card_id=record.card.id,
            last_activity_at=record.card.last_activity_at,
        )
        for record in cards
        if record.story_id not in exclude_ids
    }

    latest: str | None = None
    for record in cards:
        candidate = record.card.last_activity_at
        if latest is None or compare_timestamps(candidate, latest) > 0:
            latest = candidate
    if latest is None:
        latest = previous.last_seen_trello_activity if previous else now

    return SyncStateData(
        version=STATE_VERSION,
        last_run_at=now,
        board_id=board_id,
        prd_path=prd_path,
        mapping_signature=mapping_signature(mapping),
        last_seen_trello_activity=latest,
        story_index=story_index,
        card_index=card_index,
    )


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------


class SyncStateStore:
    """Load and save the state file.

    Args:
        path: Location of the state file (parent directories are created
            on save).
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(
        self,
        *,
        board_id: str | None = None,
        prd_path: str | None = None,
        signature: str | None = None,
    ) -> SyncStateData | None:
        """Load state, or ``None`` when there is nothing usable.

        A missing file is silent.  Every other problem is logged as a
        warning naming the file and the reason.

        Args:
            board_id: Expected board ID, checked when given.
            prd_path: Expected PRD path, checked when given.
            signature: Expected mapping signature, checked when given.
        """
        if not self._path.exists():
            return None

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            return self._ignore(f"unable to read file ({exc})")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            return self._ignore(f"invalid JSON ({exc.msg})")

        try:
            state = SyncStateData.model_validate(data)
        except ValidationError as exc:
            error = exc.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            return self._ignore(f"invalid state ({location}: {error['msg']})")

        if board_id is not None and state.board_id != board_id:
            return self._ignore("board ID mismatch")
        if prd_path is not None and state.prd_path != prd_path:
            return self._ignore("PRD path mismatch")
        if signature is not None and state.mapping_signature != signature:
            return self._ignore("mapping signature mismatch")
        return state

    def save(self, state: SyncStateData) -> None:
        """Persist *state* atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.
        """
        payload = json.dumps(state.model_dump(by_alias=True), indent=2) + "\n"
        write_file_atomic(self._path, payload)
        logger.debug("Saved sync state to %s", self._path)

    def _ignore(self, reason: str) -> None:
        logger.warning("Ignoring sync state at %s: %s", self._path, reason)
        return None
