"""Conversion between CMS items and their local file representation.

MDX files carry every metadata field as YAML front matter followed by the
document body.  JSON files carry every field at the top level, with the
reserved ``body`` key holding the embedded payload as a string.

Media references are rewritten on the way in (``/api/media/...`` becomes
``/media/...``) and back again when formatting an API payload.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any

import frontmatter
import yaml

from ..file_handler import extension_for_format
from .models import ContentFormat, LocalItem, RemoteItem

logger = logging.getLogger(__name__)

SYSTEM_FIELDS = frozenset({"body", "isLocal"})
READ_ONLY_FIELDS = ("id", "createdAt", "updatedAt")

STANDARD_API_FIELDS = frozenset(
    {
        "id",
        "slug",
        "type",
        "title",
        "body",
        "language",
        "createdAt",
        "updatedAt",
        "publishedAt",
        "description",
        "coverImageUrl",
        "coverImageAlt",
        "author",
        "category",
        "tags",
        "allowComments",
        "source",
        "translationKey",
        "translations",
    }
)

_API_MEDIA_PATH = re.compile(r"(^|[\s\"'()\[\]>])/api/media/")
_LOCAL_MEDIA_PATH = re.compile(r"(^|[\s\"'()\[\]>])/media/")
_BODY_FRONT_MATTER = re.compile(r"^---\n(.*?)\n---\n?", re.DOTALL)


# =============================================================================
# Media paths
# =============================================================================


def _rewrite(obj: Any, pattern: re.Pattern, replacement: str) -> Any:
    if isinstance(obj, str):
        return pattern.sub(replacement, obj)
    if isinstance(obj, list):
        return [_rewrite(v, pattern, replacement) for v in obj]
    if isinstance(obj, dict):
        return {k: _rewrite(v, pattern, replacement) for k, v in obj.items()}
    return obj


def replace_api_media_paths(obj: Any) -> Any:
    """Rewrite ``/api/media/`` references to local ``/media/`` paths.

    Only references at the start of a string or after whitespace, a quote,
    a bracket or ``>`` are touched, so external URLs that merely contain
    ``/api/media/`` survive.
    """
    return _rewrite(obj, _API_MEDIA_PATH, r"\1/media/")


def replace_local_media_paths(obj: Any) -> Any:
    """Inverse of :func:`replace_api_media_paths`, used before pushing."""
    return _rewrite(obj, _LOCAL_MEDIA_PATH, r"\1/api/media/")


# =============================================================================
# Normalisation
# =============================================================================


def normalize_for_comparison(content: str) -> str:
    text = content.strip().replace("\r\n", "\n")
    text = re.sub(r"\s+\n", "\n", text)
    return re.sub(r"\n\n+", "\n\n", text)


def has_content_differences(a: str, b: str) -> bool:
    return normalize_for_comparison(a) != normalize_for_comparison(b)


# =============================================================================
# Formats and paths
# =============================================================================


def content_format(
    content_type: str | None, type_map: dict[str, str] | None = None
) -> ContentFormat:
    """Return the file format for *content_type*; unknown types are MDX."""
    fmt = (type_map or {}).get(content_type or "", "MDX")
    if str(fmt).upper() == "JSON":
        return ContentFormat.JSON
    return ContentFormat.MDX


def target_path(
    content_dir: Path,
    item: dict[str, Any],
    type_map: dict[str, str] | None = None,
    default_language: str = "en",
    slug: str | None = None,
) -> Path:
    """Where the local file for a remote *item* lives.

    Items in the default language sit at the content root; every other
    language gets its own subdirectory.
    """
    language = item.get("language") or default_language
    base = content_dir if language == default_language else content_dir / language
    fmt = content_format(item.get("type"), type_map)
    return base / f"{slug or item['slug']}{extension_for_format(fmt.value)}"


# =============================================================================
# Rendering remote items
# =============================================================================


def _drop_nulls(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def split_body_front_matter(body: str) -> tuple[dict[str, Any], str]:
    """Separate a front matter block embedded at the top of *body*."""
    match = _BODY_FRONT_MATTER.match(body or "")
    if not match:
        return {}, body or ""
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning("Failed to parse front matter embedded in body: %s", e)
        data = {}
    if not isinstance(data, dict):
        data = {}
    return data, body[match.end() :]


def render_mdx(item: dict[str, Any]) -> str:
    body_meta, content = split_body_front_matter(item.get("body") or "")
    metadata = {**item, **body_meta}
    for field in SYSTEM_FIELDS:
        metadata.pop(field, None)
    metadata = replace_api_media_paths(_drop_nulls(metadata))

    post = frontmatter.Post(replace_api_media_paths(content).strip())
    post.metadata.update(metadata)
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def render_json(item: dict[str, Any]) -> str:
    data = {k: v for k, v in item.items() if k != "isLocal"}
    data = replace_api_media_paths(_drop_nulls(data))
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def render_remote(
    item: dict[str, Any] | RemoteItem,
    type_map: dict[str, str] | None = None,
) -> str:
    """Render a remote item exactly as the local file should look."""
    if isinstance(item, RemoteItem):
        item = item.to_wire()
    if content_format(item.get("type"), type_map) is ContentFormat.JSON:
        return render_json(item)
    return render_mdx(item)


# =============================================================================
# Formatting local items for the API
# =============================================================================


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        text = value.isoformat()
        return text[:-6] + "Z" if text.endswith("+00:00") else text
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def format_content_for_api(local: LocalItem) -> dict[str, Any]:
    """Build the create/update payload for *local*.

    Standard fields travel as top-level properties.  Custom fields are
    folded back into the body: as front matter for MDX, as keys of the
    embedded JSON document for JSON.  Server-managed fields are removed.
    """
    metadata = _jsonable(dict(local.metadata))
    standard = {k: v for k, v in metadata.items() if k in STANDARD_API_FIELDS}
    custom = {
        k: v for k, v in metadata.items() if k not in STANDARD_API_FIELDS
    }

    payload: dict[str, Any] = {
        "slug": local.slug,
        "type": local.type,
        "language": local.locale,
        **standard,
    }
    # The file path is authoritative for the slug.
    payload["slug"] = local.slug

    if local.format is ContentFormat.JSON:
        payload["body"] = _json_body_with(local.body, custom)
    elif custom:
        post = frontmatter.Post(local.body)
        post.metadata.update(custom)
        payload["body"] = frontmatter.dumps(post, sort_keys=False)
    else:
        payload["body"] = local.body

    for field in READ_ONLY_FIELDS:
        payload.pop(field, None)

    return replace_local_media_paths(payload)


def _json_body_with(body: str, custom: dict[str, Any]) -> str:
    if not custom:
        return body or ""
    try:
        embedded = json.loads(body) if body else {}
    except ValueError:
        embedded = None
    if not isinstance(embedded, dict):
        return json.dumps(custom, indent=2, ensure_ascii=False)
    return json.dumps({**embedded, **custom}, indent=2, ensure_ascii=False)


def apply_server_fields(
    text: str, fmt: ContentFormat, fields: dict[str, Any]
) -> str:
    """Rewrite server-managed fields (id, timestamps) inside a local file.

    Keys already present keep their position; new keys are appended.
    ``None`` values are ignored.
    """
    updates = {k: v for k, v in fields.items() if v is not None}
    if fmt is ContentFormat.JSON:
        data = json.loads(text)
        data.update(updates)
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    post = frontmatter.loads(text)
    post.metadata.update(updates)
    return frontmatter.dumps(post, sort_keys=False) + "\n"
