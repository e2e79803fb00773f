"""Sync engine that wires fetch, classify, merge and write together.

``pull()`` runs one pass per store (content first, then media):

1. Read the stored sync token (honouring a legacy location once).
2. Fetch every change since that token.
3. Apply each item to the local tree; a locally edited item with a base
   version is three-way merged instead of overwritten.
4. Commit the new token, and retire a migrated legacy token.

A transport failure aborts only the store being pulled and keeps its
token.  An authentication failure aborts the whole run.  Per-item
failures are counted and prevent the token commit, so the next pass
redelivers them.

``status()`` and ``push()`` cover the other direction.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from ..config import Config
from ..core.errors import AuthenticationError, TransportError
from ..file_handler import (
    delete_file,
    read_text,
    write_bytes_atomic,
    write_file,
)
from .matcher import classify
from .merger import (
    find_json_conflicts,
    has_conflict_markers,
    is_locally_modified,
    merge_content,
)
from .models import (
    ContentFormat,
    ContentOperations,
    LocalItem,
    Operation,
    OperationKind,
    PullReport,
    PushReport,
    PushResult,
    RemoteItem,
    StoreResult,
    SyncBatch,
)
from .snapshot import read_local_snapshot
from .state import SyncTokenStore
from .transform import (
    apply_server_fields,
    content_format,
    format_content_for_api,
    render_remote,
    target_path,
)

if TYPE_CHECKING:
    from ..core.client import CMSClient

logger = logging.getLogger(__name__)

CONTENT = "content"
MEDIA = "media"


def media_relative_path(location: str) -> str:
    """Strip the ``/api/media/`` prefix from a media location."""
    rel = location
    if rel.startswith("/api/media/"):
        rel = rel[len("/api/media/") :]
    return rel.lstrip("/")


class SyncEngine:
    """Pull, inspect and push content for one checkout.

    Args:
        client: CMSClient for remote operations.
        config: Runtime configuration (paths, default language).
    """

    def __init__(self, client: CMSClient, config: Config) -> None:
        self.client = client
        self.config = config
        self.content_dir = Path(config.content_dir)
        self.media_dir = Path(config.media_dir)
        self.default_language = config.default_language
        self.tokens = SyncTokenStore(
            {CONTENT: self.content_dir, MEDIA: self.media_dir},
            legacy_dir=Path(config.state_dir),
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(self, force_overwrite: bool = False) -> PullReport:
        """Pull remote changes into the local tree.

        Args:
            force_overwrite: Overwrite local files with the remote version
                instead of merging local edits.

        Raises:
            AuthenticationError: If the CMS rejects our credentials.
        """
        report = PullReport(force_overwrite=force_overwrite)
        report.stores.append(
            self._pull_store(CONTENT, self._apply_content, force_overwrite)
        )
        report.stores.append(
            self._pull_store(MEDIA, self._apply_media, force_overwrite)
        )
        return report

    def _pull_store(
        self,
        kind: str,
        apply: Callable[[SyncBatch, StoreResult, bool], None],
        force_overwrite: bool,
    ) -> StoreResult:
        result = StoreResult(store=kind)
        stored = self.tokens.read(kind)
        if stored.token:
            logger.info("Syncing %s using sync token %s", kind, stored.token)
        else:
            logger.info("No %s sync token found, doing full fetch", kind)

        try:
            batch = self.client.fetch_incremental(kind, stored.token)
        except AuthenticationError:
            raise
        except TransportError as exc:
            logger.error("Failed to fetch %s: %s", kind, exc)
            result.error = str(exc)
            return result

        logger.info(
            "Fetched %d %s items, %d deleted",
            len(batch.items),
            kind,
            len(batch.deleted),
        )
        try:
            apply(batch, result, force_overwrite)
        except AuthenticationError:
            raise
        except TransportError as exc:
            logger.error("Failed to apply %s changes: %s", kind, exc)
            result.error = str(exc)
            return result

        if result.failed:
            logger.warning(
                "%d %s items failed; keeping previous sync token",
                len(result.failed),
                kind,
            )
            return result

        if batch.next_token and (
            batch.next_token != stored.token or stored.migrated
        ):
            self.tokens.write(kind, batch.next_token)
            result.token_committed = True
            logger.info("%s sync token updated: %s", kind, batch.next_token)
        if stored.migrated and result.token_committed:
            self.tokens.retire_legacy(kind)
        return result

    def _apply_content(
        self, batch: SyncBatch, result: StoreResult, force_overwrite: bool
    ) -> None:
        if not batch.items and not batch.deleted:
            return

        type_map = (
            self.client.fetch_content_types(strict=True) if batch.items else {}
        )
        locals_ = read_local_snapshot(self.content_dir, self.default_language)
        id_index: dict[str, list[Path]] = {}
        for item in locals_:
            if item.content_id is not None:
                id_index.setdefault(item.content_id, []).append(
                    Path(item.file_path)
                )

        for item in batch.items:
            label = f"{item.get('language') or self.default_language}/{item.get('slug')}"
            try:
                self._apply_content_item(
                    item,
                    batch.base_items.get(str(item.get("id"))),
                    id_index,
                    type_map,
                    result,
                    force_overwrite,
                )
            except AuthenticationError:
                raise
            except Exception as exc:
                logger.error("Failed to save %s: %s", label, exc)
                result.failed.append(label)

        for deleted_id in batch.deleted:
            key = str(deleted_id)
            try:
                for path in id_index.pop(key, []):
                    if delete_file(path):
                        logger.info("Deleted %s (id %s)", path, key)
                        result.deleted.append(self._content_label(path))
            except Exception as exc:
                logger.error("Failed to delete content %s: %s", key, exc)
                result.failed.append(key)

    def _apply_content_item(
        self,
        item: dict[str, Any],
        base: dict[str, Any] | None,
        id_index: dict[str, list[Path]],
        type_map: dict[str, str],
        result: StoreResult,
        force_overwrite: bool,
    ) -> None:
        if not item.get("slug"):
            raise ValueError("item has no slug")

        path = target_path(
            self.content_dir, item, type_map, self.default_language
        )
        content_id = None if item.get("id") is None else str(item["id"])
        known = id_index.get(content_id, []) if content_id else []

        local_path: Path | None = None
        if path.exists():
            local_path = path
        else:
            local_path = next((p for p in known if p.exists()), None)

        remote_text = render_remote(item, type_map)
        label = self._content_label(path)

        if base is not None and local_path is not None and not force_overwrite:
            local_text = read_text(local_path)
            base_text = render_remote(base, type_map)
            if not is_locally_modified(base_text, local_text):
                write_file(path, remote_text)
                result.overwritten.append(label)
            else:
                fmt = content_format(item.get("type"), type_map)
                merged = merge_content(base_text, local_text, remote_text, fmt)
                text = merged.merged
                if not text.endswith("\n"):
                    text += "\n"
                write_file(path, text)
                if merged.success:
                    logger.info("Merged local and remote changes: %s", label)
                    result.merged.append(label)
                else:
                    logger.warning(
                        "%d conflict(s) written to %s",
                        merged.conflict_count,
                        path,
                    )
                    result.conflicted.append(label)
        else:
            write_file(path, remote_text)
            if local_path is None:
                result.created.append(label)
            else:
                result.overwritten.append(label)

        for stale in known:
            if stale != path and delete_file(stale):
                logger.info("Removed stale copy %s", stale)
        if content_id:
            id_index[content_id] = [path]

    def _content_label(self, path: Path) -> str:
        try:
            return path.relative_to(self.content_dir).as_posix()
        except ValueError:
            return str(path)

    def _apply_media(
        self, batch: SyncBatch, result: StoreResult, force_overwrite: bool
    ) -> None:
        for item in batch.items:
            location = item.get("location")
            if not location:
                continue
            rel = media_relative_path(location)
            try:
                dest = self._media_path(rel)
                data = self.client.download_media(location)
                if data is None:
                    if delete_file(dest):
                        logger.info("Media gone remotely, deleted %s", dest)
                        result.deleted.append(rel)
                    continue
                write_bytes_atomic(dest, data)
                logger.debug("Downloaded %s -> %s", location, dest)
                result.downloaded.append(rel)
            except AuthenticationError:
                raise
            except Exception as exc:
                logger.error("Failed to download %s: %s", location, exc)
                result.failed.append(rel)

        for entry in batch.deleted:
            location = entry.get("location") if isinstance(entry, dict) else entry
            if not location:
                continue
            rel = media_relative_path(str(location))
            try:
                if delete_file(self._media_path(rel)):
                    result.deleted.append(rel)
            except Exception as exc:
                logger.error("Failed to delete media %s: %s", rel, exc)
                result.failed.append(rel)

    def _media_path(self, rel: str) -> Path:
        root = self.media_dir.resolve()
        dest = (root / rel).resolve()
        if not dest.is_relative_to(root):
            raise ValueError(f"Media path escapes media directory: {rel}")
        return dest

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def fetch_remote_content(self) -> list[RemoteItem]:
        """Full (token-less) fetch of every remote content item."""
        batch = self.client.fetch_incremental(CONTENT, None)
        return [RemoteItem.model_validate(item) for item in batch.items]

    def status(self, allow_delete: bool = False) -> ContentOperations:
        """Classify the local tree against the current remote content."""
        locals_ = read_local_snapshot(self.content_dir, self.default_language)
        remotes = self.fetch_remote_content()
        type_map = self.client.fetch_content_types(strict=True)
        return classify(
            locals_,
            remotes,
            type_map=type_map,
            allow_delete=allow_delete,
            default_language=self.default_language,
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(
        self,
        operations: ContentOperations,
        force: bool = False,
        dry_run: bool = False,
    ) -> PushReport:
        """Send classified operations to the CMS.

        Conflicts are only pushed with *force*; deletions only when they
        are present in *operations*.

        Raises:
            AuthenticationError: If the CMS rejects our credentials.
        """
        report = PushReport(dry_run=dry_run)
        pending: list[Operation] = [
            *operations.create,
            *operations.update,
            *operations.rename,
            *operations.type_change,
        ]
        if force:
            pending.extend(operations.conflict)
        else:
            report.skipped_conflicts = [op.slug for op in operations.conflict]
        pending.extend(operations.delete)

        for op in pending:
            if dry_run:
                report.results.append(
                    PushResult(
                        kind=op.kind,
                        slug=op.slug,
                        success=True,
                        content_id=_operation_id(op),
                    )
                )
                continue
            try:
                content_id = self._push_operation(op)
            except AuthenticationError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to %s %s: %s", op.kind.value, op.slug, exc
                )
                report.results.append(
                    PushResult(
                        kind=op.kind,
                        slug=op.slug,
                        success=False,
                        content_id=_operation_id(op),
                        error=str(exc),
                    )
                )
                continue
            report.results.append(
                PushResult(
                    kind=op.kind,
                    slug=op.slug,
                    success=True,
                    content_id=content_id,
                )
            )
        return report

    def _push_operation(self, op: Operation) -> str | None:
        if op.kind is OperationKind.DELETE:
            content_id = _operation_id(op)
            if content_id is None:
                raise ValueError("remote item has no id")
            self.client.delete_content(content_id)
            logger.info("Deleted remote content %s (id %s)", op.slug, content_id)
            return content_id

        local = op.local
        if local is None:
            raise ValueError("operation has no local item")
        _check_unresolved_conflicts(local)

        payload = format_content_for_api(local)
        if op.kind is OperationKind.CREATE:
            response = self.client.create_content(payload)
            logger.info("Created %s", local.slug)
        else:
            content_id = _operation_id(op)
            if content_id is None:
                raise ValueError("remote item has no id")
            response = self.client.update_content(content_id, payload)
            logger.info("Updated %s (%s)", local.slug, op.kind.value)

        self._update_local_identity(local, response or {})
        new_id = (response or {}).get("id")
        return None if new_id is None else str(new_id)

    def _update_local_identity(
        self, local: LocalItem, response: dict[str, Any]
    ) -> None:
        fields = {
            "id": response.get("id"),
            "createdAt": response.get("createdAt"),
            "updatedAt": response.get("updatedAt"),
        }
        if all(v is None for v in fields.values()):
            return
        path = Path(local.file_path)
        text = apply_server_fields(read_text(path), local.format, fields)
        write_file(path, text)


def _operation_id(op: Operation) -> str | None:
    if op.remote is not None and op.remote.content_id is not None:
        return op.remote.content_id
    if op.local is not None:
        return op.local.content_id
    return None


def _check_unresolved_conflicts(local: LocalItem) -> None:
    if has_conflict_markers(local.body):
        raise ValueError("file has unresolved conflict markers")
    if local.format is ContentFormat.JSON:
        conflicts = find_json_conflicts(local.metadata)
        try:
            embedded = json.loads(local.body) if local.body else None
        except ValueError:
            embedded = None
        conflicts += find_json_conflicts(embedded)
        if conflicts:
            paths = ", ".join(path for path, _l, _r in conflicts)
            raise ValueError(f"file has unresolved conflicts at {paths}")
