"""Tests for file_handler module: encoding-aware reads and atomic writes."""

import os
from unittest.mock import patch

import pytest

from ralph_task.file_handler import read_file_with_encoding, write_file_atomic

# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8(self, tmp_path):
        """UTF-8 content is decoded as utf-8."""
        f = tmp_path / "prd.json"
        f.write_bytes('{"title": "Déjà vu"}'.encode("utf-8"))
        content, encoding = read_file_with_encoding(f)
        assert content == '{"title": "Déjà vu"}'
        assert encoding == "utf-8"

    def test_ascii_reported_as_utf8(self, tmp_path):
        """Pure ASCII content reports utf-8."""
        f = tmp_path / "prd.json"
        f.write_bytes(b'{"stories": []}')
        _content, encoding = read_file_with_encoding(f)
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        """Empty file returns empty string and utf-8."""
        f = tmp_path / "empty.json"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_bom_stripped(self, tmp_path):
        """A UTF-8 byte order mark is removed from the content."""
        f = tmp_path / "bom.json"
        f.write_bytes(b"\xef\xbb\xbf{}")
        content, _encoding = read_file_with_encoding(f)
        assert content == "{}"

    def test_latin1(self, tmp_path):
        """Non-UTF-8 content is decoded with the detected encoding."""
        f = tmp_path / "latin.txt"
        text = "Le café est très chaud et la crème brûlée aussi, déjà prête."
        f.write_bytes(text.encode("latin-1"))
        content, encoding = read_file_with_encoding(f)
        assert content == text
        assert encoding != "utf-8"

    def test_missing_file_raises(self, tmp_path):
        """A missing file raises OSError."""
        with pytest.raises(OSError):
            read_file_with_encoding(tmp_path / "missing.json")


# =============================================================================
# write_file_atomic
# =============================================================================


class TestWriteFileAtomic:
    """Tests for write_file_atomic(path, content)."""

    def test_writes_and_returns_bytes(self, tmp_path):
        """Content is written and the encoded byte count returned."""
        f = tmp_path / "state.json"
        written = write_file_atomic(f, "héllo")
        assert f.read_text(encoding="utf-8") == "héllo"
        assert written == len("héllo".encode("utf-8"))

    def test_creates_parent_dirs(self, tmp_path):
        """Missing parent directories are created."""
        f = tmp_path / ".ralph-task" / "nested" / "state.json"
        write_file_atomic(f, "{}")
        assert f.read_text() == "{}"

    def test_replaces_existing(self, tmp_path):
        f = tmp_path / "prd.json"
        f.write_text("old")
        write_file_atomic(f, "new")
        assert f.read_text() == "new"
        assert os.listdir(tmp_path) == ["prd.json"]

    def test_failure_keeps_original(self, tmp_path):
        """A failed replace leaves the old file and no temp file."""
        f = tmp_path / "prd.json"
        f.write_text("old")
        with patch(
            "ralph_task.file_handler.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(OSError, match="disk full"):
                write_file_atomic(f, "new")
        assert f.read_text() == "old"
        assert os.listdir(tmp_path) == ["prd.json"]
