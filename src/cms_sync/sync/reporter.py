"""Report formatting for pull, status and push runs.

Provides human-readable and machine-readable output:

- ``format_pull_report`` -- per-store summary after a pull.
- ``format_status`` -- git-status style listing of pending operations.
- ``format_operation_diff`` -- unified diff for one pending update.
- ``format_push_report`` -- outcome of a push (or dry-run preview).
- ``pull_report_to_json`` / ``operations_to_json`` /
  ``push_report_to_json`` -- structured dicts for ``--json`` output.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ..file_handler import read_text
from .merger import generate_diff
from .transform import render_remote

if TYPE_CHECKING:
    from .models import (
        ContentOperations,
        Operation,
        PullReport,
        PushReport,
    )

# ------------------------------------------------------------------
# Pull
# ------------------------------------------------------------------


def format_pull_report(report: PullReport) -> str:
    """Format a pull report as human-readable text.

    Sections are only included when they contain at least one entry.
    """
    lines: list[str] = []
    header = "Pull report"
    if report.force_overwrite:
        header += " (force overwrite)"
    lines.append(header)
    lines.append("")

    for store in report.stores:
        if store.error:
            lines.append(f"{store.store}: FAILED ({store.error})")
            lines.append("")
            continue

        lines.append(
            f"{store.store}: "
            f"{len(store.created)} created, "
            f"{len(store.overwritten)} updated, "
            f"{len(store.merged)} merged, "
            f"{len(store.conflicted)} conflicts, "
            f"{len(store.deleted)} deleted, "
            f"{len(store.downloaded)} downloaded, "
            f"{len(store.failed)} failed"
        )
        for label, entries in (
            ("Merged", store.merged),
            ("Conflicts (resolve the markers, then push)", store.conflicted),
            ("Deleted", store.deleted),
            ("Failed", store.failed),
        ):
            if entries:
                lines.append(f"  {label}:")
                for entry in entries:
                    lines.append(f"    {entry}")
        if not store.token_committed and store.failed:
            lines.append("  Sync token not advanced; failed items will be retried.")
        lines.append("")

    return "\n".join(lines).rstrip()


def pull_report_to_json(report: PullReport) -> dict:
    return {
        "force_overwrite": report.force_overwrite,
        "success": report.success,
        "stores": [store.model_dump() for store in report.stores],
    }


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


def _label(op: Operation) -> str:
    locale = op.local.locale if op.local is not None else (
        op.remote.language if op.remote is not None else None
    )
    content_type = (op.local.type if op.local is not None else None) or (
        op.remote.type if op.remote is not None else None
    )
    return f"{(content_type or 'unknown'):<12} [{locale or 'unknown'}] {op.slug}"


def _sorted(ops: list[Operation]) -> list[Operation]:
    def key(op: Operation) -> tuple[str, str]:
        locale = op.local.locale if op.local is not None else ""
        return (locale, op.slug)

    return sorted(ops, key=key)


def format_status(operations: ContentOperations) -> str:
    """Format pending operations like ``git status``."""
    if not operations.all():
        return "Nothing to push, local content is in sync."

    lines: list[str] = ["Changes to be pushed:", ""]
    for op in _sorted(operations.create):
        lines.append(f"  new file:    {_label(op)}")
    for op in _sorted(operations.update):
        lines.append(f"  modified:    {_label(op)}")
    for op in _sorted(operations.rename):
        lines.append(f"  renamed:     {_label(op)} (was {op.old_slug})")
    for op in _sorted(operations.type_change):
        change = f"{op.old_type} -> {op.new_type}"
        if op.old_slug:
            change += f", was {op.old_slug}"
        lines.append(f"  type change: {_label(op)} ({change})")
    for op in _sorted(operations.delete):
        lines.append(f"  deleted:     {_label(op)}")

    if operations.conflict:
        lines.append("")
        lines.append("Conflicts (pull first, or push with --force):")
        for op in _sorted(operations.conflict):
            lines.append(f"  conflict:    {_label(op)}: {op.reason}")

    lines.append("")
    lines.append(f"{operations.count_changes()} change(s) ready to push")
    return "\n".join(lines)


def format_operation_diff(
    op: Operation, type_map: dict[str, str] | None = None
) -> str:
    """Unified diff from the remote version to the local file."""
    if op.local is None or op.remote is None:
        return ""
    local_text = read_text(Path(op.local.file_path))
    remote_text = render_remote(op.remote, type_map)
    return generate_diff(
        remote_text,
        local_text,
        label_old=f"remote: {op.remote.slug}",
        label_new=f"local: {op.local.slug}",
    )


def operations_to_json(operations: ContentOperations) -> dict:
    def entry(op: Operation) -> dict:
        data: dict = {"kind": op.kind.value, "slug": op.slug}
        if op.local is not None:
            data["locale"] = op.local.locale
            data["file_path"] = op.local.file_path
        if op.remote is not None:
            data["id"] = op.remote.content_id
        for field in ("old_slug", "old_type", "new_type", "reason"):
            value = getattr(op, field)
            if value is not None:
                data[field] = value
        return data

    return {
        "changes": operations.count_changes(),
        "conflicts": len(operations.conflict),
        "operations": [entry(op) for op in operations.all()],
    }


# ------------------------------------------------------------------
# Push
# ------------------------------------------------------------------


def format_push_report(report: PushReport) -> str:
    lines: list[str] = []
    if report.dry_run:
        lines.append("DRY RUN -- No changes will be made")
        lines.append("")
        for r in report.results:
            lines.append(f"  would {r.kind.value:<12} {r.slug}")
    else:
        lines.append(
            f"Pushed {report.successful} item(s), {report.failed} failed"
        )
        for r in report.results:
            status = "ok" if r.success else f"FAILED: {r.error}"
            lines.append(f"  {r.kind.value:<12} {r.slug} {status}")

    if report.skipped_conflicts:
        lines.append("")
        lines.append(
            f"Skipped {len(report.skipped_conflicts)} conflict(s); "
            "use --force to overwrite remote changes:"
        )
        for slug in report.skipped_conflicts:
            lines.append(f"  {slug}")

    return "\n".join(lines).rstrip()


def push_report_to_json(report: PushReport) -> dict:
    return {
        "dry_run": report.dry_run,
        "successful": report.successful,
        "failed": report.failed,
        "skipped_conflicts": report.skipped_conflicts,
        "results": [r.model_dump(mode="json") for r in report.results],
    }
