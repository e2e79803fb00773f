"""Read the local content tree into ``LocalItem`` objects.

Layout::

    <content_dir>/about.mdx            default language, slug "about"
    <content_dir>/blog/post-1.mdx      default language, slug "blog/post-1"
    <content_dir>/de/about.mdx         language "de", slug "about"
    <content_dir>/pt-BR/faq.json       language "pt-BR", slug "faq"

Only immediate children of the content root whose name looks like a
language code (``xx`` or ``xx-YY``) and which are not the default
language are locale roots.  Any other directory is part of the slug.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import frontmatter
import yaml

from ..core.errors import ContentParseError
from ..file_handler import detect_content_format, read_text
from .models import LocalItem

logger = logging.getLogger(__name__)

_LOCALE_DIR = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")


def is_locale_dir(name: str, default_language: str) -> bool:
    return name != default_language and bool(_LOCALE_DIR.match(name))


def parse_content_file(
    path: Path, locale: str, base_dir: Path
) -> LocalItem | None:
    """Parse one content file.

    Returns None for files that are not content (unknown extension).

    Raises:
        ContentParseError: If the file cannot be decoded or parsed.
    """
    fmt = detect_content_format(path)
    if fmt is None:
        return None

    try:
        text = read_text(path)
    except OSError as e:
        raise ContentParseError(str(path), str(e)) from e

    if fmt == "MDX":
        try:
            post = frontmatter.loads(text)
        except yaml.YAMLError as e:
            raise ContentParseError(str(path), f"invalid front matter: {e}") from e
        metadata = dict(post.metadata)
        body = post.content.strip()
    else:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ContentParseError(str(path), f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ContentParseError(str(path), "top-level value is not an object")
        body = data.pop("body", "")
        if body is None:
            body = ""
        elif not isinstance(body, str):
            body = json.dumps(body, indent=2, ensure_ascii=False)
        metadata = data

    relative = path.relative_to(base_dir).with_suffix("")
    slug = relative.as_posix()

    content_type = metadata.get("type")
    if not content_type:
        logger.warning(
            'Content file "%s" is missing a "type" property',
            path.relative_to(base_dir).as_posix(),
        )

    return LocalItem(
        file_path=str(path),
        slug=slug,
        locale=locale,
        type=content_type or None,
        metadata=metadata,
        body=body,
    )


def read_local_snapshot(
    content_dir: Path, default_language: str = "en"
) -> list[LocalItem]:
    """Walk *content_dir* and return every parseable content file.

    Files that fail to parse are logged and skipped.  A missing content
    directory yields an empty snapshot.
    """
    items: list[LocalItem] = []
    if not content_dir.is_dir():
        logger.debug("Content directory %s does not exist", content_dir)
        return items

    def walk(directory: Path, locale: str, base_dir: Path, top: bool) -> None:
        for entry in sorted(directory.iterdir()):
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if top and is_locale_dir(entry.name, default_language):
                    walk(entry, entry.name, entry, top=False)
                else:
                    walk(entry, locale, base_dir, top=False)
                continue
            try:
                item = parse_content_file(entry, locale, base_dir)
            except ContentParseError as e:
                logger.warning("Skipping %s", e)
                continue
            if item is not None:
                items.append(item)

    walk(content_dir, default_language, content_dir, top=True)
    logger.debug("Read %d local content items from %s", len(items), content_dir)
    return items


def index_by_id(items: list[LocalItem]) -> dict[str, list[LocalItem]]:
    """Group local items by their ``id`` metadata."""
    index: dict[str, list[LocalItem]] = {}
    for item in items:
        if item.content_id is not None:
            index.setdefault(item.content_id, []).append(item)
    return index
