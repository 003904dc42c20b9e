"""Story identifier codec.

Formats story IDs (``US-007``) and card titles (``[US-007] Login form``)
from the mapping configuration, and parses card titles back into an ID
plus title remainder.

Templates:

* ``idPattern`` -- must contain ``{prefix}`` and exactly one ``{number}``
  or ``{number:N}`` token.  ``N`` is the zero-padding width, and also
  fixes the digit count accepted when parsing.
* ``cardTitleFormat`` -- must contain exactly one ``{id}`` and one
  ``{title}`` token.

Parsing never raises: it returns a ``ParsedCardTitle`` whose ``status`` is
``ok``, ``missing`` or ``ambiguous``.  Only misconfigured templates and
bad input to the ``format_*`` helpers raise ``StoryIdFormatError``.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field

PREFIX_TOKEN = "{prefix}"
ID_TOKEN = "{id}"
TITLE_TOKEN = "{title}"

_NUMBER_TOKEN_RE = re.compile(r"\{number(?::([0-9]+))?\}")
_ID_PATTERN_PARTS_RE = re.compile(r"(\{prefix\}|\{number(?::[0-9]+)?\})")
_TITLE_FORMAT_PARTS_RE = re.compile(r"(\{id\}|\{title\})")

DEFAULT_PREFIX = "US"
DEFAULT_ID_PATTERN = "{prefix}-{number:3}"
DEFAULT_CARD_TITLE_FORMAT = "[{id}] {title}"

NO_ID_REASON = "No story ID found in card title"
MULTIPLE_IDS_REASON = "Multiple story IDs found in card title"
NON_CANONICAL_REASON = "Story ID not in canonical card title format"


class StoryIdFormatError(ValueError):
    """Raised for an invalid template or a value that cannot be formatted."""


class ParsedCardTitle(BaseModel):
    """Result of parsing a card title.

    Attributes:
        status: ``ok``, ``missing`` or ``ambiguous``.
        id: The story ID (``ok`` only).
        title: Title remainder, trimmed (``ok`` only).
        reason: Human-readable explanation (``missing``/``ambiguous``).
        matches: Every ID found, in order (``ambiguous`` only).
    """

    model_config = {"frozen": True}

    status: Literal["ok", "missing", "ambiguous"]
    id: str | None = None
    title: str | None = None
    reason: str | None = None
    matches: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class StoryIdCodec:
    """Compiled identifier grammar for one mapping configuration.

    Args:
        prefix: Story prefix substituted for ``{prefix}``.
        id_pattern: Identifier template.
        card_title_format: Card title template.

    Raises:
        StoryIdFormatError: If either template is malformed.
    """

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        id_pattern: str = DEFAULT_ID_PATTERN,
        card_title_format: str = DEFAULT_CARD_TITLE_FORMAT,
    ) -> None:
        self.prefix = prefix
        self.id_pattern = id_pattern
        self.card_title_format = card_title_format

        self._number_token, self._padding = _parse_number_token(id_pattern)
        if PREFIX_TOKEN not in id_pattern:
            raise StoryIdFormatError(
                "idPattern must include the {prefix} token"
            )
        if card_title_format.count(ID_TOKEN) != 1:
            raise StoryIdFormatError(
                "cardTitleFormat must include the {id} token exactly once"
            )
        if card_title_format.count(TITLE_TOKEN) != 1:
            raise StoryIdFormatError(
                "cardTitleFormat must include the {title} token exactly once"
            )

        self._id_source = self._build_id_source()
        self._id_re = re.compile(self._id_source)
        self._card_title_re = re.compile(self._build_card_title_source())

    @classmethod
    def from_mapping(cls, mapping) -> StoryIdCodec:
        """Build a codec from a ``MappingConfig``."""
        return cls(
            prefix=mapping.story_prefix,
            id_pattern=mapping.id_pattern,
            card_title_format=mapping.card_title_format,
        )

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def format_id(self, number: int) -> str:
        """Render the story ID for *number*.

        Raises:
            StoryIdFormatError: If *number* is not a non-negative integer
                or has more digits than the padding width allows.
        """
        if isinstance(number, bool) or not isinstance(number, int):
            raise StoryIdFormatError(
                f"Story number must be an integer, got {number!r}"
            )
        if number < 0:
            raise StoryIdFormatError(
                f"Story number must be non-negative, got {number}"
            )
        digits = str(number)
        if self._padding is not None:
            if len(digits) > self._padding:
                raise StoryIdFormatError(
                    f"Story number {number} exceeds {self._padding} digits"
                )
            digits = digits.zfill(self._padding)
        return self.id_pattern.replace(PREFIX_TOKEN, self.prefix).replace(
            self._number_token, digits
        )

    def format_card_title(self, story_id: str, title: str) -> str:
        """Render the card title for *story_id* and *title*.

        Raises:
            StoryIdFormatError: If *story_id* does not match the grammar.
        """
        if not self.is_story_id(story_id):
            raise StoryIdFormatError(
                f"Story ID '{story_id}' does not match idPattern "
                f"'{self.id_pattern}'"
            )
        return self.card_title_format.replace(ID_TOKEN, story_id).replace(
            TITLE_TOKEN, title
        )

    def is_story_id(self, value: str) -> bool:
        return self._id_re.fullmatch(value) is not None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_card_title(self, text: str) -> ParsedCardTitle:
        """Extract the story ID and title remainder from a card title."""
        matches = [m.group(0) for m in self._id_re.finditer(text)]
        if not matches:
            return ParsedCardTitle(status="missing", reason=NO_ID_REASON)
        if len(matches) > 1:
            return ParsedCardTitle(
                status="ambiguous",
                reason=MULTIPLE_IDS_REASON,
                matches=matches,
            )

        aligned = self._card_title_re.fullmatch(text)
        if aligned is None:
            return ParsedCardTitle(
                status="missing", reason=NON_CANONICAL_REASON
            )
        return ParsedCardTitle(
            status="ok",
            id=aligned.group("id"),
            title=aligned.group("title").strip(),
        )

    # ------------------------------------------------------------------
    # Regex construction
    # ------------------------------------------------------------------

    def _build_id_source(self) -> str:
        if self._padding is None:
            digits = "[0-9]+"
        else:
            digits = f"[0-9]{{{self._padding}}}"
        parts = []
        for piece in _ID_PATTERN_PARTS_RE.split(self.id_pattern):
            if piece == PREFIX_TOKEN:
                parts.append(re.escape(self.prefix))
            elif piece == self._number_token:
                parts.append(digits)
            else:
                parts.append(re.escape(piece))
        return "".join(parts)

    def _build_card_title_source(self) -> str:
        parts = []
        for piece in _TITLE_FORMAT_PARTS_RE.split(self.card_title_format):
            if piece == ID_TOKEN:
                parts.append(f"(?P<id>{self._id_source})")
            elif piece == TITLE_TOKEN:
                parts.append("(?P<title>.*?)")
            else:
                parts.append(re.escape(piece))
        return "".join(parts)


def _parse_number_token(id_pattern: str) -> tuple[str, int | None]:
    """Return the literal ``{number...}`` token and its padding width."""
    tokens = list(_NUMBER_TOKEN_RE.finditer(id_pattern))
    if len(tokens) != 1:
        raise StoryIdFormatError(
            "idPattern must include exactly one {number} token"
        )
    token = tokens[0]
    if token.group(1) is None:
        return token.group(0), None
    padding = int(token.group(1))
    if padding <= 0:
        raise StoryIdFormatError(
            "idPattern {number:N} padding must be a positive integer"
        )
    return token.group(0), padding


# ------------------------------------------------------------------
# Convenience helpers
# ------------------------------------------------------------------


def format_story_id(
    number: int,
    prefix: str = DEFAULT_PREFIX,
    id_pattern: str = DEFAULT_ID_PATTERN,
) -> str:
    """Format a story ID without keeping a codec around."""
    return StoryIdCodec(prefix, id_pattern).format_id(number)


def format_card_title(
    story_id: str,
    title: str,
    prefix: str = DEFAULT_PREFIX,
    id_pattern: str = DEFAULT_ID_PATTERN,
    card_title_format: str = DEFAULT_CARD_TITLE_FORMAT,
) -> str:
    return StoryIdCodec(prefix, id_pattern, card_title_format).format_card_title(
        story_id, title
    )


def parse_story_id_from_card_title(
    text: str,
    prefix: str = DEFAULT_PREFIX,
    id_pattern: str = DEFAULT_ID_PATTERN,
    card_title_format: str = DEFAULT_CARD_TITLE_FORMAT,
) -> ParsedCardTitle:
    return StoryIdCodec(prefix, id_pattern, card_title_format).parse_card_title(
        text
    )
