"""Three-way merge and diff utilities for the sync engine.

Uses the ``merge3`` library for line-based three-way merging (the same
algorithm used by Bazaar/Breezy) and ``difflib`` for unified diff
generation.

Key design choices:

* Text is split on ``\\n`` only, so ``merge(base, base, remote)`` returns
  *remote* byte for byte, trailing newline included.
* Conflict markers follow Git convention with lowercase labels:
  ``<<<<<<< local``, ``=======``, ``>>>>>>> remote``.
* Server-controlled fields (``updatedAt``, ``createdAt``) always take the
  remote value and never produce a conflict on their own.
* JSON documents are merged key by key; the result is re-serialised with
  two-space indentation.  A ``body`` string holding a JSON object is
  merged the same way, so edits to different fields inside it combine.
"""

from __future__ import annotations

import difflib
import json
import re
from typing import Any

from merge3 import Merge3

from .models import ContentFormat, MergeResult

LOCAL_MARKER = "<<<<<<< local"
MID_MARKER = "======="
REMOTE_MARKER = ">>>>>>> remote"

SERVER_CONTROLLED_FIELDS = frozenset({"updatedAt", "createdAt"})
_SERVER_CONTROLLED_LINE = re.compile(r"^\s*(updatedAt|createdAt)\s*:")

BODY_FIELD = "body"

_MISSING = object()


# ---------------------------------------------------------------------------
# Line-based merge
# ---------------------------------------------------------------------------


def _split_server_controlled(
    lines: list[str],
) -> tuple[list[str], list[str]]:
    server, other = [], []
    for line in lines:
        if _SERVER_CONTROLLED_LINE.match(line):
            server.append(line)
        else:
            other.append(line)
    return server, other


def three_way_merge(base: str, local: str, remote: str) -> MergeResult:
    """Perform a line-based three-way merge of local and remote edits.

    Regions changed by only one side take that side, identical edits are
    applied once, and differing edits to the same region are written
    between conflict markers.

    Args:
        base: The common ancestor content.
        local: The current local file content.
        remote: The current remote content.

    Returns:
        A ``MergeResult``; ``success`` is False when markers were written.
    """
    base_lines = base.split("\n")
    local_lines = local.split("\n")
    remote_lines = remote.split("\n")

    m3 = Merge3(base_lines, local_lines, remote_lines)

    merged: list[str] = []
    conflicts = 0
    for region in m3.merge_regions():
        what = region[0]
        if what == "unchanged":
            merged.extend(base_lines[region[1] : region[2]])
        elif what in ("same", "a"):
            merged.extend(local_lines[region[1] : region[2]])
        elif what == "b":
            merged.extend(remote_lines[region[1] : region[2]])
        elif what == "conflict":
            _zs, _ze, a_start, a_end, b_start, b_end = region[1:]
            local_server, local_other = _split_server_controlled(
                local_lines[a_start:a_end]
            )
            remote_server, remote_other = _split_server_controlled(
                remote_lines[b_start:b_end]
            )
            if local_other == remote_other:
                merged.extend(remote_lines[b_start:b_end])
                continue
            merged.extend(remote_server)
            conflicts += 1
            merged.append(LOCAL_MARKER)
            merged.extend(local_other)
            merged.append(MID_MARKER)
            merged.extend(remote_other)
            merged.append(REMOTE_MARKER)
        else:
            raise ValueError(f"Unexpected merge region: {what!r}")

    return MergeResult(
        merged="\n".join(merged),
        success=conflicts == 0,
        conflict_count=conflicts,
    )


# ---------------------------------------------------------------------------
# Structural JSON merge
# ---------------------------------------------------------------------------


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def _same(a: Any, b: Any) -> bool:
    if a is _MISSING or b is _MISSING:
        return a is b
    return _canonical(a) == _canonical(b)


def _conflict_wrapper(local: Any, remote: Any) -> dict[str, Any]:
    wrapper: dict[str, Any] = {}
    if local is not _MISSING:
        wrapper[LOCAL_MARKER] = local
    wrapper[MID_MARKER] = "---"
    if remote is not _MISSING:
        wrapper[REMOTE_MARKER] = remote
    return wrapper


def _merge_values(base: Any, local: Any, remote: Any) -> tuple[Any, int]:
    if _same(local, remote):
        return local, 0
    if _same(base, local):
        return remote, 0
    if _same(base, remote):
        return local, 0
    if (
        isinstance(local, dict)
        and isinstance(remote, dict)
        and (base is _MISSING or isinstance(base, dict))
    ):
        return _merge_objects(
            {} if base is _MISSING else base, local, remote, top_level=False
        )
    return _conflict_wrapper(local, remote), 1


def _merge_objects(
    base: dict[str, Any],
    local: dict[str, Any],
    remote: dict[str, Any],
    top_level: bool = True,
) -> tuple[dict[str, Any], int]:
    # Local key order first, then keys only the remote added, then base.
    keys = list(dict.fromkeys([*local, *remote, *base]))

    merged: dict[str, Any] = {}
    conflicts = 0
    for key in keys:
        b = base.get(key, _MISSING)
        loc = local.get(key, _MISSING)
        rem = remote.get(key, _MISSING)

        if key in SERVER_CONTROLLED_FIELDS:
            if rem is not _MISSING:
                merged[key] = rem
            continue

        if top_level and key == BODY_FIELD:
            value, count = _merge_body(b, loc, rem)
        else:
            value, count = _merge_values(b, loc, rem)
        conflicts += count
        if value is not _MISSING:
            merged[key] = value

    return merged, conflicts


def _parse_object(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _merge_body(base: Any, local: Any, remote: Any) -> tuple[Any, int]:
    """Merge a JSON payload stored as a string field by field."""
    value, count = _merge_values(base, local, remote)
    if not count:
        return value, 0
    parsed = [_parse_object(v) for v in (base, local, remote)]
    if any(p is None for p in parsed):
        return value, count
    merged, count = _merge_objects(*parsed, top_level=False)
    return json.dumps(merged, indent=2, ensure_ascii=False), count


def three_way_merge_json(base: str, local: str, remote: str) -> MergeResult:
    """Merge three JSON documents field by field.

    Falls back to :func:`three_way_merge` when any input is not valid
    JSON, or when the documents are not objects and cannot be reconciled
    as whole values.
    """
    try:
        base_obj = json.loads(base)
        local_obj = json.loads(local)
        remote_obj = json.loads(remote)
    except ValueError:
        return three_way_merge(base, local, remote)

    if all(isinstance(o, dict) for o in (base_obj, local_obj, remote_obj)):
        merged, conflicts = _merge_objects(base_obj, local_obj, remote_obj)
    elif _same(local_obj, remote_obj) or _same(base_obj, remote_obj):
        merged, conflicts = local_obj, 0
    elif _same(base_obj, local_obj):
        merged, conflicts = remote_obj, 0
    else:
        return three_way_merge(base, local, remote)

    return MergeResult(
        merged=json.dumps(merged, indent=2, ensure_ascii=False),
        success=conflicts == 0,
        conflict_count=conflicts,
    )


def merge_content(
    base: str, local: str, remote: str, fmt: ContentFormat | str
) -> MergeResult:
    """Merge with the strategy that suits the file format."""
    if str(getattr(fmt, "value", fmt)).upper() == ContentFormat.JSON.value:
        return three_way_merge_json(base, local, remote)
    return three_way_merge(base, local, remote)


# ---------------------------------------------------------------------------
# Pre-merge guard
# ---------------------------------------------------------------------------

_ISO_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)Z")


def _truncate_fraction(match: re.Match) -> str:
    fraction = match.group(2)[:6].rstrip("0")
    if not fraction:
        return f"{match.group(1)}Z"
    return f"{match.group(1)}.{fraction}Z"


def _normalize_for_merge(content: str) -> str:
    text = content.replace("\r\n", "\n")
    text = re.sub(r"\s+\n", "\n", text)
    text = _ISO_FRACTION.sub(_truncate_fraction, text)
    return text.rstrip()


def is_locally_modified(base: str, local: str) -> bool:
    """Return True when *local* differs meaningfully from *base*.

    Line endings, trailing whitespace and the precision of ISO timestamp
    fractions are ignored.  An unmodified file can simply be overwritten
    with the remote version instead of merged.
    """
    return _normalize_for_merge(base) != _normalize_for_merge(local)


# ---------------------------------------------------------------------------
# Conflict inspection
# ---------------------------------------------------------------------------


def has_conflict_markers(text: str) -> bool:
    """Return True when *text* still contains a line conflict block."""
    lines = text.split("\n")
    return LOCAL_MARKER in lines and REMOTE_MARKER in lines


def parse_conflict_blocks(text: str) -> list[tuple[str, str]]:
    """Extract ``(local, remote)`` text pairs from line conflict markers.

    Unterminated blocks are ignored.
    """
    blocks: list[tuple[str, str]] = []
    local: list[str] | None = None
    remote: list[str] | None = None

    for line in text.split("\n"):
        if line == LOCAL_MARKER:
            local, remote = [], None
        elif line == MID_MARKER and local is not None and remote is None:
            remote = []
        elif line == REMOTE_MARKER and local is not None and remote is not None:
            blocks.append(("\n".join(local), "\n".join(remote)))
            local, remote = None, None
        elif remote is not None:
            remote.append(line)
        elif local is not None:
            local.append(line)

    return blocks


def find_json_conflicts(
    obj: Any, path: str = ""
) -> list[tuple[str, Any, Any]]:
    """Find structural conflict wrappers in a parsed JSON document.

    Returns ``(dotted_path, local_value, remote_value)`` triples; a side
    that deleted the key is reported as ``None``.
    """
    found: list[tuple[str, Any, Any]] = []
    if isinstance(obj, dict):
        if MID_MARKER in obj and (LOCAL_MARKER in obj or REMOTE_MARKER in obj):
            found.append((path, obj.get(LOCAL_MARKER), obj.get(REMOTE_MARKER)))
            return found
        for key, value in obj.items():
            child = f"{path}.{key}" if path else str(key)
            found.extend(find_json_conflicts(value, child))
    elif isinstance(obj, list):
        for index, value in enumerate(obj):
            found.extend(find_json_conflicts(value, f"{path}[{index}]"))
    return found


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The original content.
        new_content: The modified content.
        label_old: Label for the old file in the diff header.
        label_new: Label for the new file in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    old_lines = old_content.splitlines(True)
    new_lines = new_content.splitlines(True)

    diff_lines = difflib.unified_diff(
        old_lines,
        new_lines,
        fromfile=label_old,
        tofile=label_new,
    )

    return "".join(diff_lines)
