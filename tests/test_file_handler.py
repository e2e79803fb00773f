"""Tests for file_handler.py -- encoding-aware I/O and format detection."""

from pathlib import Path
from unittest.mock import patch

import pytest

from cms_sync.file_handler import (
    delete_file,
    detect_content_format,
    extension_for_format,
    read_file_with_encoding,
    read_text,
    write_bytes_atomic,
    write_file,
)


class TestReadFileWithEncoding:
    def test_utf8(self, tmp_path: Path):
        path = tmp_path / "a.mdx"
        path.write_bytes("Grüße".encode("utf-8"))

        assert read_file_with_encoding(path) == ("Grüße", "utf-8")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.mdx"
        path.write_bytes(b"")

        assert read_file_with_encoding(path) == ("", "utf-8")

    def test_non_utf8_detected(self, tmp_path: Path):
        path = tmp_path / "latin.mdx"
        text = "Le café est très chaud et la crème brûlée aussi. " * 5
        path.write_bytes(text.encode("latin-1"))

        content, encoding = read_file_with_encoding(path)

        assert encoding != "utf-8"
        assert "café" in content

    def test_read_text_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            read_text(tmp_path / "missing.mdx")


class TestWrite:
    def test_write_file_creates_parents(self, tmp_path: Path):
        path = tmp_path / "de" / "blog" / "post.mdx"

        written = write_file(path, "ü")

        assert written == 2
        assert path.read_text(encoding="utf-8") == "ü"

    def test_write_bytes_atomic(self, tmp_path: Path):
        path = tmp_path / "media" / "a.png"

        write_bytes_atomic(path, b"\x89PNG")

        assert path.read_bytes() == b"\x89PNG"
        assert list(path.parent.glob("*.tmp")) == []

    def test_write_bytes_atomic_cleans_up_on_failure(self, tmp_path: Path):
        path = tmp_path / "a.png"
        path.write_bytes(b"old")

        with patch(
            "cms_sync.file_handler.os.replace", side_effect=OSError("nope")
        ):
            with pytest.raises(OSError):
                write_bytes_atomic(path, b"new")

        assert path.read_bytes() == b"old"
        assert list(tmp_path.glob("*.tmp")) == []

    def test_delete_file(self, tmp_path: Path):
        path = tmp_path / "x.mdx"
        path.write_text("x")

        assert delete_file(path)
        assert not delete_file(path)


class TestFormats:
    def test_detect(self):
        assert detect_content_format(Path("a.mdx")) == "MDX"
        assert detect_content_format(Path("a.JSON")) == "JSON"
        assert detect_content_format(Path("a.md")) is None

    def test_extension_for_format(self):
        assert extension_for_format("JSON") == ".json"
        assert extension_for_format("json") == ".json"
        assert extension_for_format("MDX") == ".mdx"
        assert extension_for_format("") == ".mdx"
