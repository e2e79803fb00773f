"""Bidirectional content sync engine.

Public API for keeping a local tree of MDX / JSON content files in step
with a headless CMS.

Architecture
------------
Pulls are **incremental**: each store (content, media) keeps an opaque
sync token, and only changes since that token are fetched.  Items edited
on both sides are reconciled with a three-way merge against the base
version the server supplies.  Pushes classify the local snapshot against
the full remote snapshot first.

Modules:

- ``models``    -- pydantic data contracts.
- ``snapshot``  -- read the local content tree.
- ``transform`` -- remote item <-> local file representation.
- ``state``     -- ``SyncTokenStore``: per-store token persistence.
- ``matcher``   -- ``classify()``: local vs remote operations.
- ``merger``    -- line-based (``merge3``) and structural JSON merge.
- ``engine``    -- ``SyncEngine``: pull, status and push.
- ``scheduler`` -- ``ChangeScheduler``: debounced single-flight runs.
- ``watcher``   -- ``ChangeWatcher``: change-stream listener.
- ``reporter``  -- human-readable and JSON report formatting.

Usage example
-------------
::

    from cms_sync.config import load_config
    from cms_sync.core.client import CMSClient
    from cms_sync.sync import SyncEngine, format_pull_report

    config = load_config(url="https://cms.example.com")
    engine = SyncEngine(CMSClient(config), config)

    report = engine.pull()
    print(format_pull_report(report))

    operations = engine.status()
    engine.push(operations, dry_run=True)
"""

from .models import (
    ChangeEvent,
    ContentOperations,
    LocalItem,
    MergeResult,
    Operation,
    OperationKind,
    PullReport,
    PushReport,
    RemoteItem,
    SyncBatch,
)
from .matcher import classify
from .merger import (
    is_locally_modified,
    merge_content,
    three_way_merge,
    three_way_merge_json,
)
from .state import SyncTokenStore
from .scheduler import ChangeScheduler
from .engine import SyncEngine
from .watcher import ChangeWatcher, DraftPreviewWriter
from .reporter import (
    format_pull_report,
    format_push_report,
    format_status,
)

__all__ = [
    "ChangeEvent",
    "ChangeScheduler",
    "ChangeWatcher",
    "ContentOperations",
    "DraftPreviewWriter",
    "LocalItem",
    "MergeResult",
    "Operation",
    "OperationKind",
    "PullReport",
    "PushReport",
    "RemoteItem",
    "SyncBatch",
    "SyncEngine",
    "SyncTokenStore",
    "classify",
    "format_pull_report",
    "format_push_report",
    "format_status",
    "is_locally_modified",
    "merge_content",
    "three_way_merge",
    "three_way_merge_json",
]
