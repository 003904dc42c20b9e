"""PRD document store.

Reads and writes the ``stories`` array of a PRD JSON document:

* ``read()`` validates every story and reports the first problem with a
  path-qualified message (``stories[2].status must be one of: ...``).
* ``write()`` re-reads the document and replaces only the ``stories``
  array.  Other top-level keys, and unknown keys inside each story, are
  kept in place.  Output is 2-space indented JSON with a trailing newline,
  written atomically.

``dependsOn``, ``description`` and ``acceptanceCriteria`` may be omitted in
the document; they read as empty and are written back explicitly.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ralph_task.file_handler import read_file_with_encoding, write_file_atomic
from ralph_task.sync.models import STORY_STATUSES, DocumentSnapshot, Story

logger = logging.getLogger(__name__)


class PrdFormatError(Exception):
    """Raised when the PRD document cannot be read or is malformed."""


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def _require_object(value: Any, label: str) -> dict:
    if not isinstance(value, dict):
        raise PrdFormatError(f"{label} must be an object")
    return value


def _require_string(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise PrdFormatError(f"{label} must be a string")
    return value


def _require_string_list(value: Any, label: str) -> list[str]:
    if not isinstance(value, list):
        raise PrdFormatError(f"{label} must be an array of strings")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise PrdFormatError(f"{label}[{index}] must be a string")
    return list(value)


def _require_status(value: Any, label: str) -> str:
    if value not in STORY_STATUSES:
        allowed = ", ".join(f"'{status}'" for status in STORY_STATUSES)
        raise PrdFormatError(f"{label} must be one of: {allowed}")
    return value


def parse_story(value: Any, index: int) -> Story:
    """Validate one raw story object."""
    label = f"stories[{index}]"
    raw = _require_object(value, label)
    return Story(
        id=_require_string(raw.get("id"), f"{label}.id"),
        title=_require_string(raw.get("title"), f"{label}.title"),
        status=_require_status(raw.get("status"), f"{label}.status"),
        depends_on=_require_string_list(
            raw.get("dependsOn", []), f"{label}.dependsOn"
        ),
        description=_require_string(
            raw.get("description", ""), f"{label}.description"
        ),
        acceptance_criteria=_require_string_list(
            raw.get("acceptanceCriteria", []), f"{label}.acceptanceCriteria"
        ),
    )


def _stories_array(root: dict, source: Path) -> list:
    stories = root.get("stories")
    if not isinstance(stories, list):
        raise PrdFormatError(f"PRD stories in {source} must be an array")
    return stories


def _merge_story(existing: dict | None, story: Story) -> dict:
    merged = dict(existing) if existing else {}
    merged["id"] = story.id
    merged["title"] = story.title
    merged["status"] = story.status
    merged["dependsOn"] = list(story.depends_on)
    merged["description"] = story.description
    merged["acceptanceCriteria"] = list(story.acceptance_criteria)
    return merged


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class PrdDocumentStore:
    """JSON PRD document store."""

    def read(self, path: str | Path) -> DocumentSnapshot:
        """Read and validate the stories in *path*.

        Returns:
            The stories plus the file's modification time (UTC ISO-8601).

        Raises:
            PrdFormatError: If the file is unreadable or invalid.
        """
        path = Path(path)
        root = self._load_root(path)
        stories = [
            parse_story(value, index)
            for index, value in enumerate(_stories_array(root, path))
        ]
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            raise PrdFormatError(f"Failed to read PRD at {path}: {exc}") from exc
        last_modified = datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()
        logger.debug("Read %d stories from %s", len(stories), path)
        return DocumentSnapshot(stories=stories, last_modified_at=last_modified)

    def write(self, path: str | Path, stories: Sequence[Story]) -> None:
        """Replace the stories array in *path* with *stories*.

        Raises:
            PrdFormatError: If the current document is unreadable or
                invalid.
        """
        path = Path(path)
        root = self._load_root(path)
        existing: dict[str, dict] = {}
        for index, value in enumerate(_stories_array(root, path)):
            raw = _require_object(value, f"stories[{index}]")
            existing[_require_string(raw.get("id"), f"stories[{index}].id")] = raw

        root["stories"] = [
            _merge_story(existing.get(story.id), story) for story in stories
        ]
        serialized = json.dumps(root, indent=2, ensure_ascii=False) + "\n"
        write_file_atomic(path, serialized)
        logger.debug("Wrote %d stories to %s", len(stories), path)

    @staticmethod
    def _load_root(path: Path) -> dict:
        try:
            content, _encoding = read_file_with_encoding(path)
        except OSError as exc:
            raise PrdFormatError(f"Failed to read PRD at {path}: {exc}") from exc
        try:
            root = json.loads(content)
        except json.JSONDecodeError as exc:
            raise PrdFormatError(f"Invalid JSON in PRD at {path}: {exc}") from exc
        return _require_object(root, f"PRD ({path})")
