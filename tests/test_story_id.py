"""Tests for sync/story_id.py -- story ID and card title codec."""

import pytest

from ralph_task.config_schema import MappingConfig
from ralph_task.sync.story_id import (
    MULTIPLE_IDS_REASON,
    NO_ID_REASON,
    NON_CANONICAL_REASON,
    StoryIdCodec,
    StoryIdFormatError,
    format_card_title,
    format_story_id,
    parse_story_id_from_card_title,
)


# ---------------------------------------------------------------------------
# Template validation
# ---------------------------------------------------------------------------


class TestTemplates:
    def test_defaults(self):
        """Default codec formats US-NNN IDs in [ID] Title cards."""
        codec = StoryIdCodec()
        assert codec.format_id(7) == "US-007"
        assert codec.format_card_title("US-007", "Login") == "[US-007] Login"

    def test_from_mapping(self):
        """from_mapping() reads prefix and templates from MappingConfig."""
        mapping = MappingConfig(
            story_prefix="FEAT",
            id_pattern="{prefix}_{number:2}",
            card_title_format="{id}: {title}",
        )
        codec = StoryIdCodec.from_mapping(mapping)
        assert codec.format_id(3) == "FEAT_03"
        assert codec.format_card_title("FEAT_03", "Search") == "FEAT_03: Search"

    def test_missing_prefix_token(self):
        """idPattern without {prefix} is rejected."""
        with pytest.raises(StoryIdFormatError, match="prefix"):
            StoryIdCodec(id_pattern="ID-{number}")

    @pytest.mark.parametrize(
        "pattern", ["{prefix}-", "{prefix}-{number}-{number:2}"]
    )
    def test_number_token_count(self, pattern):
        """idPattern needs exactly one number token."""
        with pytest.raises(StoryIdFormatError, match="exactly one"):
            StoryIdCodec(id_pattern=pattern)

    def test_zero_padding_rejected(self):
        """{number:0} is not a valid padding width."""
        with pytest.raises(StoryIdFormatError, match="positive"):
            StoryIdCodec(id_pattern="{prefix}-{number:0}")

    @pytest.mark.parametrize(
        "title_format", ["{title}", "{id} {id} {title}", "{id}", "{id} {title} {title}"]
    )
    def test_card_title_format_tokens(self, title_format):
        """cardTitleFormat needs {id} and {title} exactly once each."""
        with pytest.raises(StoryIdFormatError, match="exactly once"):
            StoryIdCodec(card_title_format=title_format)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatId:
    def test_unpadded(self):
        """{number} renders the number as is."""
        assert StoryIdCodec(id_pattern="{prefix}-{number}").format_id(42) == "US-42"

    def test_too_many_digits(self):
        """A number wider than the padding is rejected."""
        with pytest.raises(StoryIdFormatError, match="exceeds 3 digits"):
            StoryIdCodec().format_id(1000)

    def test_negative(self):
        with pytest.raises(StoryIdFormatError, match="non-negative"):
            StoryIdCodec().format_id(-1)

    @pytest.mark.parametrize("value", ["7", 7.0, True])
    def test_non_integer(self, value):
        """Strings, floats and booleans are not story numbers."""
        with pytest.raises(StoryIdFormatError, match="integer"):
            StoryIdCodec().format_id(value)

    def test_prefix_with_regex_characters(self):
        """Prefixes are matched literally when parsing."""
        codec = StoryIdCodec(prefix="A.B")
        assert codec.is_story_id("A.B-001")
        assert not codec.is_story_id("AxB-001")


class TestFormatCardTitle:
    def test_rejects_foreign_id(self):
        """An ID that does not match the grammar cannot be formatted."""
        with pytest.raises(StoryIdFormatError, match="does not match idPattern"):
            StoryIdCodec().format_card_title("US-7", "Login")

    def test_non_ascii_digits_rejected(self):
        """Only ASCII digits form an ID."""
        with pytest.raises(StoryIdFormatError, match="does not match idPattern"):
            StoryIdCodec().format_card_title("US-١٢٣", "Login")

    def test_module_helpers(self):
        """Module-level helpers use the default templates."""
        assert format_story_id(12) == "US-012"
        assert format_card_title("US-012", "Export") == "[US-012] Export"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseCardTitle:
    def test_ok(self):
        """Canonical title yields the ID and trimmed title."""
        parsed = StoryIdCodec().parse_card_title("[US-001]   Login form  ")
        assert parsed.ok
        assert parsed.id == "US-001"
        assert parsed.title == "Login form"

    @pytest.mark.parametrize(
        "story_id,title",
        [("US-001", "Login"), ("US-999", "Export to CSV"), ("US-010", "")],
    )
    def test_round_trip(self, story_id, title):
        """Parsing a formatted title returns the original parts."""
        codec = StoryIdCodec()
        parsed = codec.parse_card_title(codec.format_card_title(story_id, title))
        assert (parsed.status, parsed.id, parsed.title) == ("ok", story_id, title)

    def test_missing(self):
        """A title without an ID is 'missing'."""
        parsed = StoryIdCodec().parse_card_title("Plain card")
        assert parsed.status == "missing"
        assert parsed.reason == NO_ID_REASON
        assert parsed.id is None

    def test_ambiguous(self):
        """Two IDs in one title are 'ambiguous' with every match listed."""
        parsed = StoryIdCodec().parse_card_title("[US-001] Title with US-002")
        assert parsed.status == "ambiguous"
        assert parsed.reason == MULTIPLE_IDS_REASON
        assert parsed.matches == ["US-001", "US-002"]

    def test_non_canonical(self):
        """An ID outside the title template is 'missing', not guessed."""
        parsed = StoryIdCodec().parse_card_title("Login (US-001)")
        assert parsed.status == "missing"
        assert parsed.reason == NON_CANONICAL_REASON

    def test_wrong_width_not_matched(self):
        """Padding fixes the digit count accepted."""
        parsed = StoryIdCodec().parse_card_title("[US-01] Login")
        assert parsed.status == "missing"

    def test_non_ascii_digits_not_matched(self):
        """Digits from other scripts do not count as a story number."""
        parsed = StoryIdCodec().parse_card_title("[US-١٢٣] Title")
        assert parsed.status == "missing"
        assert parsed.reason == NO_ID_REASON

    def test_custom_format(self):
        """Custom title formats parse with their own literals."""
        parsed = parse_story_id_from_card_title(
            "FEAT_03 :: Search",
            prefix="FEAT",
            id_pattern="{prefix}_{number:2}",
            card_title_format="{id} :: {title}",
        )
        assert parsed.ok
        assert (parsed.id, parsed.title) == ("FEAT_03", "Search")
