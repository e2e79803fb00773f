"""Pydantic models for the content sync engine.

Defines the data contracts shared by all sync modules:

- ``LocalItem`` / ``RemoteItem``: the two sides of a content item.
- ``OperationKind`` / ``Operation`` / ``ContentOperations``: the
  classifier's output.
- ``MergeResult``: outcome of a three-way merge.
- ``SyncBatch`` / ``TokenRead``: incremental fetch bookkeeping.
- ``StoreResult`` / ``PullReport`` / ``PushResult`` / ``PushReport``:
  per-run reports.
- ``ChangeEvent``: one parsed notification from the change stream.

Input models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentFormat(str, Enum):
    """On-disk representation of a content item."""

    MDX = "MDX"
    JSON = "JSON"


class LocalItem(BaseModel):
    """A content file parsed from the local tree.

    Attributes:
        file_path: Absolute path of the file.
        slug: Relative path below the locale root, without extension.
        locale: Language code derived from the directory layout.
        type: Content type uid from the metadata, if any.
        metadata: Front matter (MDX) or every non-body key (JSON).
        body: Document body.
    """

    file_path: str
    slug: str
    locale: str
    type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    body: str = ""

    model_config = {"frozen": True}

    @property
    def format(self) -> ContentFormat:
        if Path(self.file_path).suffix.lower() == ".json":
            return ContentFormat.JSON
        return ContentFormat.MDX

    @property
    def content_id(self) -> str | None:
        value = self.metadata.get("id")
        return None if value is None else str(value)


class RemoteItem(BaseModel):
    """A content item as returned by the CMS.

    Unknown wire fields are kept as extras so they round-trip untouched.
    """

    id: int | str | None = None
    slug: str
    type: str | None = None
    language: str | None = None
    title: str | None = None
    body: str = ""
    updated_at: str | None = Field(default=None, alias="updatedAt")
    created_at: str | None = Field(default=None, alias="createdAt")

    model_config = ConfigDict(
        frozen=True, extra="allow", populate_by_name=True
    )

    def to_wire(self) -> dict[str, Any]:
        """Return the item as a camelCase dict, as the CMS sent it."""
        return self.model_dump(by_alias=True, mode="json")

    @property
    def content_id(self) -> str | None:
        return None if self.id is None else str(self.id)


class OperationKind(str, Enum):
    """What pushing a local item would do to the CMS."""

    CREATE = "create"
    UPDATE = "update"
    RENAME = "rename"
    TYPE_CHANGE = "type_change"
    CONFLICT = "conflict"
    DELETE = "delete"


class Operation(BaseModel):
    """One classified change between a local and a remote item."""

    kind: OperationKind
    local: LocalItem | None = None
    remote: RemoteItem | None = None
    old_slug: str | None = None
    old_type: str | None = None
    new_type: str | None = None
    reason: str | None = None

    model_config = {"frozen": True}

    @property
    def slug(self) -> str:
        if self.local is not None:
            return self.local.slug
        return self.remote.slug if self.remote is not None else ""


class ContentOperations(BaseModel):
    """Operations partitioned by kind."""

    create: list[Operation] = Field(default_factory=list)
    update: list[Operation] = Field(default_factory=list)
    rename: list[Operation] = Field(default_factory=list)
    type_change: list[Operation] = Field(default_factory=list)
    conflict: list[Operation] = Field(default_factory=list)
    delete: list[Operation] = Field(default_factory=list)

    def add(self, op: Operation) -> None:
        getattr(self, op.kind.value).append(op)

    def all(self) -> list[Operation]:
        return [
            *self.create,
            *self.update,
            *self.rename,
            *self.type_change,
            *self.conflict,
            *self.delete,
        ]

    def count_changes(self, include_conflicts: bool = False) -> int:
        """Number of operations a push would send."""
        total = (
            len(self.create)
            + len(self.update)
            + len(self.rename)
            + len(self.type_change)
            + len(self.delete)
        )
        if include_conflicts:
            total += len(self.conflict)
        return total

    def filter(
        self, target_id: str | None = None, target_slug: str | None = None
    ) -> ContentOperations:
        """Keep only operations touching *target_id* or *target_slug*."""
        if not target_id and not target_slug:
            return self

        def matches(op: Operation) -> bool:
            if target_id:
                if op.local is not None and op.local.content_id == target_id:
                    return True
                if op.remote is not None and op.remote.content_id == target_id:
                    return True
            if target_slug:
                if op.local is not None and op.local.slug == target_slug:
                    return True
                if op.remote is not None and op.remote.slug == target_slug:
                    return True
                if op.old_slug == target_slug:
                    return True
            return False

        filtered = ContentOperations()
        for op in self.all():
            if matches(op):
                filtered.add(op)
        return filtered


class MergeResult(BaseModel):
    """Outcome of a three-way merge.

    Attributes:
        merged: Merged text; carries conflict markers when not successful.
        success: True when every region merged cleanly.
        conflict_count: Number of conflicting regions or keys.
    """

    merged: str
    success: bool
    conflict_count: int = 0

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return self.conflict_count > 0


class SyncBatch(BaseModel):
    """Everything one incremental fetch returned for a store."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    deleted: list[Any] = Field(default_factory=list)
    base_items: dict[str, dict[str, Any]] = Field(default_factory=dict)
    next_token: str | None = None

    model_config = {"frozen": True}


class TokenRead(BaseModel):
    """A stored sync token and whether it came from the legacy location."""

    token: str | None = None
    migrated: bool = False

    model_config = {"frozen": True}


class StoreResult(BaseModel):
    """Outcome of pulling one store (content or media)."""

    store: str
    created: list[str] = Field(default_factory=list)
    overwritten: list[str] = Field(default_factory=list)
    merged: list[str] = Field(default_factory=list)
    conflicted: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    downloaded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    error: str | None = None
    token_committed: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and not self.failed


class PullReport(BaseModel):
    """Aggregate outcome of a pull run."""

    stores: list[StoreResult] = Field(default_factory=list)
    force_overwrite: bool = False

    @property
    def success(self) -> bool:
        return all(store.success for store in self.stores)

    def store(self, name: str) -> StoreResult | None:
        for result in self.stores:
            if result.store == name:
                return result
        return None


class PushResult(BaseModel):
    """Outcome of pushing one operation."""

    kind: OperationKind
    slug: str
    success: bool
    content_id: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class PushReport(BaseModel):
    """Aggregate outcome of a push run."""

    results: list[PushResult] = Field(default_factory=list)
    skipped_conflicts: list[str] = Field(default_factory=list)
    dry_run: bool = False

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


class ChangeEvent(BaseModel):
    """One notification received from the change stream."""

    event: str
    entity_type: str | None = None
    operation: str | None = None
    created_by_id: str | int | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
