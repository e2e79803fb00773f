"""Classify local items against the remote snapshot.

``classify()`` pairs every local item with at most one remote item and
decides what pushing it would mean.  Resolution order for a match:

1. ``metadata["id"]`` equals the remote id.
2. Path slug and locale equal the remote slug and language.
3. ``metadata["slug"]`` (when it differs from the path slug) and locale;
   this catches local renames.
4. ``metadata["title"]`` and locale.

A matched pair whose remote side was updated after the local copy is a
conflict.  Otherwise slug and type changes are reported before any
content comparison.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ..file_handler import read_text
from .models import (
    ContentFormat,
    ContentOperations,
    LocalItem,
    Operation,
    OperationKind,
    RemoteItem,
)
from .transform import (
    content_format,
    has_content_differences,
    render_json,
    render_mdx,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ``updatedAt`` style value; anything unusable is the epoch."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return EPOCH

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r, treating as epoch", value)
        return EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _conflict_reason(slug_changed: bool, type_changed: bool) -> str:
    if slug_changed and type_changed:
        return "Both slug and content type changed remotely"
    if slug_changed:
        return "Slug changed remotely after local changes"
    if type_changed:
        return "Content type changed remotely after local changes"
    return "Remote content was updated after local content"


def has_actual_content_changes(
    local: LocalItem,
    remote: RemoteItem,
    type_map: dict[str, str] | None = None,
) -> bool:
    """Render *remote* into its local file form and compare with *local*.

    The format comes from *type_map* when one is known, else from the
    local file extension.  A local file that cannot be read counts as
    changed.
    """
    try:
        local_text = read_text(Path(local.file_path))
    except OSError as e:
        logger.warning("Failed to compare content for %s: %s", local.slug, e)
        return True

    wire = remote.to_wire()
    fmt = content_format(remote.type, type_map) if type_map else local.format
    if fmt is ContentFormat.JSON:
        remote_text = render_json(wire)
    else:
        remote_text = render_mdx(wire)
    return has_content_differences(local_text, remote_text)


class _RemoteIndex:
    """First-match lookups over the remote snapshot, skipping claimed items."""

    def __init__(self, remotes: list[RemoteItem], default_language: str):
        self._remotes = remotes
        self._default_language = default_language
        self._claimed: set[int] = set()

    def language(self, remote: RemoteItem) -> str:
        return remote.language or self._default_language

    def find(self, predicate) -> RemoteItem | None:
        for pos, remote in enumerate(self._remotes):
            if pos not in self._claimed and predicate(remote):
                self._claimed.add(pos)
                return remote
        return None

    def match(self, local: LocalItem) -> RemoteItem | None:
        local_id = local.content_id
        if local_id is not None:
            found = self.find(lambda r: r.content_id == local_id)
            if found is not None:
                return found

        found = self.find(
            lambda r: r.slug == local.slug
            and self.language(r) == local.locale
        )
        if found is not None:
            return found

        meta_slug = local.metadata.get("slug")
        if meta_slug and meta_slug != local.slug:
            found = self.find(
                lambda r: r.slug == meta_slug
                and self.language(r) == local.locale
            )
            if found is not None:
                return found

        title = local.metadata.get("title")
        if title:
            return self.find(
                lambda r: r.title == title and self.language(r) == local.locale
            )
        return None


def classify(
    locals_: list[LocalItem],
    remotes: list[RemoteItem],
    type_map: dict[str, str] | None = None,
    allow_delete: bool = False,
    default_language: str = "en",
) -> ContentOperations:
    """Partition *locals_* and *remotes* into push operations.

    Args:
        locals_: The local snapshot.
        remotes: The full remote snapshot.
        type_map: ``{content_type: format}`` used to render remote items
            for comparison.
        allow_delete: Report remote items with no local counterpart as
            deletions.
        default_language: Language of items without an explicit one.

    Returns:
        The classified ``ContentOperations``.
    """
    operations = ContentOperations()
    index = _RemoteIndex(remotes, default_language)

    for local in locals_:
        match = index.match(local)
        if match is None:
            operations.add(Operation(kind=OperationKind.CREATE, local=local))
            continue

        slug_changed = match.slug != local.slug
        type_changed = match.type != local.type
        local_updated = parse_timestamp(local.metadata.get("updatedAt"))
        remote_updated = parse_timestamp(match.updated_at)

        if remote_updated > local_updated:
            operations.add(
                Operation(
                    kind=OperationKind.CONFLICT,
                    local=local,
                    remote=match,
                    reason=_conflict_reason(slug_changed, type_changed),
                )
            )
        elif slug_changed and type_changed:
            operations.add(
                Operation(
                    kind=OperationKind.TYPE_CHANGE,
                    local=local,
                    remote=match,
                    old_slug=match.slug,
                    old_type=match.type,
                    new_type=local.type,
                )
            )
        elif slug_changed:
            operations.add(
                Operation(
                    kind=OperationKind.RENAME,
                    local=local,
                    remote=match,
                    old_slug=match.slug,
                )
            )
        elif type_changed:
            operations.add(
                Operation(
                    kind=OperationKind.TYPE_CHANGE,
                    local=local,
                    remote=match,
                    old_type=match.type,
                    new_type=local.type,
                )
            )
        elif has_actual_content_changes(local, match, type_map):
            operations.add(
                Operation(kind=OperationKind.UPDATE, local=local, remote=match)
            )

    if allow_delete:
        local_ids = {item.content_id for item in locals_ if item.content_id}
        local_keys = {(item.slug, item.locale) for item in locals_}
        for remote in remotes:
            by_id = remote.content_id is not None and remote.content_id in local_ids
            by_slug = (remote.slug, index.language(remote)) in local_keys
            if not by_id and not by_slug:
                operations.add(
                    Operation(
                        kind=OperationKind.DELETE,
                        remote=remote,
                        reason="Content removed locally",
                    )
                )

    logger.debug(
        "Classified %d local / %d remote items: %d changes, %d conflicts",
        len(locals_),
        len(remotes),
        operations.count_changes(),
        len(operations.conflict),
    )
    return operations
