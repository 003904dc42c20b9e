"""Trello REST client.

Implements the board store the sync engine needs on top of the Trello
REST API (``https://api.trello.com/1``).

* Authentication is the ``key``/``token`` query pair on every request.
* GET/DELETE send parameters in the query string; POST/PUT send them
  form-encoded.  Lists are comma-joined, booleans are ``true``/``false``,
  ``None`` values are dropped.
* 401/403 fail at once.  408, 429 and 5xx gateway errors, and connection
  errors, are retried with exponential backoff; a 429 ``Retry-After``
  longer than the backoff is honoured.
* One ``requests.Session`` per thread, since the engine reads
  concurrently.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from ..config_schema import RetryConfig, TrelloConfig
from ..sync.models import (
    BoardInfo,
    BoardLabel,
    BoardList,
    Card,
    CardInput,
    CardUpdate,
    Checklist,
    ChecklistInput,
    ChecklistItem,
    ChecklistItemInput,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.trello.com/1"
DEFAULT_LABEL_COLOR = "orange"
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_CARD_FIELDS = "id,name,desc,idList,idLabels,closed,dateLastActivity"


class TrelloApiError(Exception):
    """A failed Trello request.

    Attributes:
        status: HTTP status, or ``0`` when no response was received.
    """

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


def _retries(count: int) -> str:
    return f"{count} {'retry' if count == 1 else 'retries'}"


def _encode_params(params: dict[str, Any]) -> dict[str, str]:
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            encoded[key] = ",".join(str(item) for item in value)
        else:
            encoded[key] = str(value)
    return encoded


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header (seconds or HTTP date) into seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


# ------------------------------------------------------------------
# Response mapping
# ------------------------------------------------------------------


def _map_card(data: dict) -> Card:
    return Card(
        id=data["id"],
        name=data.get("name", ""),
        description=data.get("desc") or "",
        list_id=data.get("idList", ""),
        label_ids=data.get("idLabels") or [],
        closed=bool(data.get("closed", False)),
        last_activity_at=data.get("dateLastActivity") or "",
    )


def _map_list(data: dict) -> BoardList:
    return BoardList(
        id=data["id"], name=data.get("name", ""), closed=bool(data.get("closed"))
    )


def _map_label(data: dict) -> BoardLabel:
    return BoardLabel(
        id=data["id"], name=data.get("name") or "", color=data.get("color")
    )


def _map_checklist_item(data: dict) -> ChecklistItem:
    return ChecklistItem(
        id=data["id"],
        name=data.get("name", ""),
        checked=data.get("state") == "complete",
    )


def _map_checklist(data: dict) -> Checklist:
    return Checklist(
        id=data["id"],
        name=data.get("name", ""),
        items=[_map_checklist_item(item) for item in data.get("checkItems") or []],
    )


class TrelloClient:
    """Board store backed by the Trello REST API.

    Args:
        config: Credentials and board ID.
        retry: Retry policy (defaults: 5 retries, 500 ms base delay).
        base_url: API root, overridable for tests.
        sleep: Sleep function, overridable for tests.
    """

    def __init__(
        self,
        config: TrelloConfig,
        retry: RetryConfig | None = None,
        base_url: str = DEFAULT_BASE_URL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.board_id = config.board_id
        self.retry = retry or RetryConfig()
        self.base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = requests.Session()
        return self._thread_local.session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self, method: str, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Issue one API call with retries.

        Returns:
            Decoded JSON, or ``None`` for 204 and non-JSON responses.

        Raises:
            TrelloApiError: On a non-retryable failure, or when retries
                are exhausted.
        """
        encoded = _encode_params(
            {**(params or {}), "key": self.config.api_key, "token": self.config.token}
        )
        url = f"{self.base_url}/{path}"
        in_query = method in ("GET", "DELETE")
        max_retries = self.retry.max_retries
        base_delay = self.retry.base_delay_ms / 1000
        attempts = 0

        while True:
            try:
                response = self._get_session().request(
                    method,
                    url,
                    params=encoded if in_query else None,
                    data=None if in_query else encoded,
                    timeout=(10, 60),
                )
            except requests.RequestException as exc:
                if attempts < max_retries:
                    delay = base_delay * 2**attempts
                    logger.debug(
                        "%s %s failed (%s); retrying in %.2fs",
                        method, path, exc, delay,
                    )
                    self._sleep(delay)
                    attempts += 1
                    continue
                suffix = f" after {_retries(attempts)}" if attempts else ""
                raise TrelloApiError(
                    f"Trello request failed{suffix}: {exc}", 0
                ) from exc

            status = response.status_code
            if status in (401, 403):
                raise TrelloApiError("Invalid Trello token", status)

            if not response.ok:
                detail = (response.text or "").strip()
                message = (
                    f"Trello API error ({status}): {detail}"
                    if detail
                    else f"Trello API error ({status})"
                )
                retryable = status in RETRYABLE_STATUSES
                if retryable and attempts < max_retries:
                    delay = base_delay * 2**attempts
                    if status == 429:
                        retry_after = parse_retry_after(
                            response.headers.get("Retry-After")
                        )
                        if retry_after:
                            delay = max(delay, retry_after)
                    logger.debug(
                        "%s %s returned %d; retrying in %.2fs",
                        method, path, status, delay,
                    )
                    self._sleep(delay)
                    attempts += 1
                    continue
                if retryable and attempts:
                    message = f"{message} after {_retries(attempts)}"
                raise TrelloApiError(message, status)

            if status == 204:
                return None
            content_type = response.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                return None
            return response.json()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_board_info(self) -> BoardInfo:
        data = self._request(
            "GET",
            f"boards/{self.board_id}",
            {"fields": "id,name,dateLastActivity"},
        )
        return BoardInfo(
            id=data["id"],
            name=data.get("name", ""),
            last_activity_at=data.get("dateLastActivity") or "",
        )

    def get_lists(self) -> list[BoardList]:
        """All lists on the board, archived ones included."""
        data = self._request(
            "GET",
            f"boards/{self.board_id}/lists",
            {"fields": "id,name,closed", "filter": "all"},
        )
        return [_map_list(item) for item in data or []]

    def get_cards(self) -> list[Card]:
        """All cards on the board, archived ones included."""
        data = self._request(
            "GET",
            f"boards/{self.board_id}/cards",
            {"fields": _CARD_FIELDS, "filter": "all"},
        )
        return [_map_card(item) for item in data or []]

    def get_labels(self) -> list[BoardLabel]:
        data = self._request(
            "GET", f"boards/{self.board_id}/labels", {"fields": "id,name,color"}
        )
        return [_map_label(item) for item in data or []]

    def get_card_checklists(self, card_id: str) -> list[Checklist]:
        data = self._request(
            "GET",
            f"cards/{card_id}/checklists",
            {
                "fields": "id,name",
                "checkItems": "all",
                "checkItem_fields": "id,name,state",
            },
        )
        return [_map_checklist(item) for item in data or []]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_label(self, name: str, color: str | None = None) -> BoardLabel:
        """Create a board label (orange unless *color* is given)."""
        data = self._request(
            "POST",
            "labels",
            {
                "idBoard": self.board_id,
                "name": name,
                "color": color or DEFAULT_LABEL_COLOR,
            },
        )
        return _map_label(data)

    def create_card(self, card_input: CardInput) -> Card:
        params: dict[str, Any] = {
            "name": card_input.name,
            "desc": card_input.description,
            "idList": card_input.list_id,
        }
        if card_input.label_ids:
            params["idLabels"] = card_input.label_ids
        return _map_card(self._request("POST", "cards", params))

    def update_card(self, card_id: str, card_update: CardUpdate) -> Card:
        params: dict[str, Any] = {}
        if card_update.name is not None:
            params["name"] = card_update.name
        if card_update.description is not None:
            params["desc"] = card_update.description
        if card_update.list_id is not None:
            params["idList"] = card_update.list_id
        if card_update.label_ids is not None:
            # An empty string clears every label.
            params["idLabels"] = ",".join(card_update.label_ids)
        if card_update.closed is not None:
            params["closed"] = card_update.closed
        return _map_card(self._request("PUT", f"cards/{card_id}", params))

    def upsert_checklist(
        self, card_id: str, checklist: ChecklistInput
    ) -> Checklist:
        """Make the card's checklist named ``checklist.name`` match *checklist*.

        Creates the checklist when absent.  Items are matched by name:
        matched items have their checked state corrected, missing items are
        created and leftover items are deleted.
        """
        existing = next(
            (
                item
                for item in self.get_card_checklists(card_id)
                if item.name == checklist.name
            ),
            None,
        )
        if existing is None:
            created = self._request(
                "POST", "checklists", {"idCard": card_id, "name": checklist.name}
            )
            existing = _map_checklist(created)

        items = self._sync_checklist_items(
            card_id, existing.id, existing.items, checklist.items
        )
        return existing.model_copy(update={"items": items})

    def set_checklist_item_state(
        self, card_id: str, checklist_id: str, item_id: str, checked: bool
    ) -> ChecklistItem:
        data = self._request(
            "PUT",
            f"cards/{card_id}/checkItem/{item_id}",
            {
                "state": "complete" if checked else "incomplete",
                "idChecklist": checklist_id,
            },
        )
        return _map_checklist_item(data)

    def _sync_checklist_items(
        self,
        card_id: str,
        checklist_id: str,
        existing: list[ChecklistItem],
        desired: list[ChecklistItemInput],
    ) -> list[ChecklistItem]:
        by_name: dict[str, list[ChecklistItem]] = {}
        for item in existing:
            by_name.setdefault(item.name, []).append(item)

        used: set[str] = set()
        result: list[ChecklistItem] = []
        for wanted in desired:
            bucket = by_name.get(wanted.name)
            current = bucket.pop(0) if bucket else None
            if current is None:
                created = self._request(
                    "POST",
                    f"checklists/{checklist_id}/checkItems",
                    {"name": wanted.name, "checked": wanted.checked},
                )
                created_item = _map_checklist_item(created)
                used.add(created_item.id)
                result.append(created_item)
                continue
            used.add(current.id)
            if current.checked != wanted.checked:
                result.append(
                    self.set_checklist_item_state(
                        card_id, checklist_id, current.id, wanted.checked
                    )
                )
            else:
                result.append(current)

        for item in existing:
            if item.id not in used:
                self._request(
                    "DELETE", f"checklists/{checklist_id}/checkItems/{item.id}"
                )
        return result
