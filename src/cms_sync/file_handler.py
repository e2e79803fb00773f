"""File handler module: encoding-aware read/write and content format detection.

Provides the file I/O used by the snapshot reader and the sync engine.
"""

import logging
import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # Normalize ascii to utf-8 (ascii is a strict subset of utf-8)
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_text(path: Path) -> str:
    """Return the decoded contents of *path*."""
    content, _encoding = read_file_with_encoding(path)
    return content


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


def write_bytes_atomic(path: Path, data: bytes) -> int:
    """Write *data* via a temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, str(path))
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return len(data)


def delete_file(path: Path) -> bool:
    """Remove *path* if it exists. Returns True when a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Deleted %s", path)
    return True


# =============================================================================
# Format Detection
# =============================================================================


_EXTENSION_FORMAT_MAP: dict[str, str] = {
    ".mdx": "MDX",
    ".json": "JSON",
}


def detect_content_format(path: Path) -> str | None:
    """Return "MDX" or "JSON" for a content file, or None for anything else."""
    return _EXTENSION_FORMAT_MAP.get(path.suffix.lower())


def extension_for_format(fmt: str) -> str:
    """Map a content-type format to its file extension (MDX is the default)."""
    return ".json" if (fmt or "").upper() == "JSON" else ".mdx"

