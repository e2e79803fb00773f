"""Sync token persistence layer.

Each store (``content``, ``media``) keeps one opaque continuation token in
``<store_dir>/.sync-token``.  A missing or empty file means "do a full
fetch".

Key design choices:

* **Atomic writes** -- ``write()`` writes to a temp file then calls
  ``os.replace()`` so readers never see a half-written token.
* **Legacy migration** -- older checkouts kept tokens in
  ``<legacy_dir>/sync-token.txt`` (content) and
  ``<legacy_dir>/media-sync-token.txt`` (media).  Such a token is honoured
  once by ``read()`` and the legacy file is removed by
  ``retire_legacy()`` after the engine commits a new token.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from .models import TokenRead

logger = logging.getLogger(__name__)

TOKEN_FILENAME = ".sync-token"

_LEGACY_FILENAMES = {
    "content": "sync-token.txt",
}


class SyncTokenStore:
    """Read and write per-store sync tokens.

    Args:
        store_dirs: Mapping of store kind to the directory the store syncs
            into (e.g. ``{"content": Path(".cms/content")}``).
        legacy_dir: Directory holding legacy token files, if any.
    """

    def __init__(
        self,
        store_dirs: dict[str, Path],
        legacy_dir: Path | None = None,
    ) -> None:
        self._store_dirs = store_dirs
        self._legacy_dir = legacy_dir

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def token_path(self, kind: str) -> Path:
        try:
            return self._store_dirs[kind] / TOKEN_FILENAME
        except KeyError:
            raise ValueError(f"Unknown sync store: {kind!r}") from None

    def legacy_path(self, kind: str) -> Path | None:
        if self._legacy_dir is None:
            return None
        name = _LEGACY_FILENAMES.get(kind, f"{kind}-sync-token.txt")
        return self._legacy_dir / name

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def read(self, kind: str) -> TokenRead:
        """Return the stored token for *kind*.

        Falls back to the legacy location when the primary file is absent
        or empty; ``migrated`` is then True.
        """
        token = _read_token_file(self.token_path(kind))
        if token:
            return TokenRead(token=token, migrated=False)

        legacy = self.legacy_path(kind)
        if legacy is not None:
            token = _read_token_file(legacy)
            if token:
                logger.info(
                    "Using %s sync token from legacy location %s",
                    kind,
                    legacy,
                )
                return TokenRead(token=token, migrated=True)

        return TokenRead()

    def write(self, kind: str, token: str) -> None:
        """Persist *token* for *kind* atomically."""
        target = self.token_path(kind)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(token)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug("Saved %s sync token to %s", kind, target)

    def retire_legacy(self, kind: str) -> bool:
        """Delete the legacy token file for *kind*.

        Returns True when a file was removed.
        """
        legacy = self.legacy_path(kind)
        if legacy is None or not legacy.exists():
            return False
        legacy.unlink()
        logger.info("Removed legacy %s sync token %s", kind, legacy)
        return True


def _read_token_file(path: Path) -> str | None:
    try:
        token = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return token or None
