"""Tests for cms_sync.sync.reporter."""

from cms_sync.sync.models import (
    ContentOperations,
    LocalItem,
    Operation,
    OperationKind,
    PullReport,
    PushReport,
    PushResult,
    RemoteItem,
    StoreResult,
)
from cms_sync.sync.reporter import (
    format_operation_diff,
    format_pull_report,
    format_push_report,
    format_status,
    operations_to_json,
    pull_report_to_json,
    push_report_to_json,
)


def _local(slug="about", locale="en", type_="page", path="/c/en/about.mdx", **meta):
    metadata = {"type": type_, **meta}
    return LocalItem(
        file_path=path, slug=slug, locale=locale, type=type_, metadata=metadata
    )


def _remote(slug="about", id_=1, type_="page", language="en", body=""):
    return RemoteItem(id=id_, slug=slug, type=type_, language=language, body=body)


# ---------------------------------------------------------------------------
# Pull
# ---------------------------------------------------------------------------


class TestFormatPullReport:
    def test_counts_and_sections(self):
        report = PullReport(
            stores=[
                StoreResult(
                    store="content",
                    created=["en/a"],
                    merged=["en/b"],
                    conflicted=["en/c"],
                    token_committed=True,
                ),
                StoreResult(store="media", downloaded=["img/x.png"]),
            ]
        )

        text = format_pull_report(report)

        assert text.startswith("Pull report\n")
        assert "content: 1 created, 0 updated, 1 merged, 1 conflicts" in text
        assert "  Merged:\n    en/b" in text
        assert "resolve the markers" in text
        assert "media: 0 created" in text
        assert "1 downloaded" in text
        assert "Sync token not advanced" not in text

    def test_failed_store(self):
        report = PullReport(
            stores=[StoreResult(store="media", error="HTTP 500")],
            force_overwrite=True,
        )

        text = format_pull_report(report)

        assert "(force overwrite)" in text
        assert "media: FAILED (HTTP 500)" in text

    def test_failed_items_note_token(self):
        report = PullReport(
            stores=[StoreResult(store="content", failed=["en/broken"])]
        )

        text = format_pull_report(report)

        assert "    en/broken" in text
        assert "Sync token not advanced" in text

    def test_to_json(self):
        report = PullReport(stores=[StoreResult(store="content", created=["en/a"])])

        data = pull_report_to_json(report)

        assert data["success"] is True
        assert data["stores"][0]["created"] == ["en/a"]


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestFormatStatus:
    def test_no_changes(self):
        assert (
            format_status(ContentOperations())
            == "Nothing to push, local content is in sync."
        )

    def test_listing(self):
        ops = ContentOperations()
        ops.add(Operation(kind=OperationKind.CREATE, local=_local(slug="new")))
        ops.add(
            Operation(
                kind=OperationKind.UPDATE, local=_local(), remote=_remote()
            )
        )
        ops.add(
            Operation(
                kind=OperationKind.RENAME,
                local=_local(slug="team"),
                remote=_remote(slug="people", id_=2),
                old_slug="people",
            )
        )
        ops.add(
            Operation(
                kind=OperationKind.CONFLICT,
                local=_local(slug="pricing"),
                remote=_remote(slug="pricing", id_=3),
                reason="remote changed since last pull",
            )
        )

        text = format_status(ops)

        assert "new file:" in text and "new" in text
        assert "modified:" in text
        assert "renamed:" in text and "(was people)" in text
        assert "conflict:" in text
        assert "remote changed since last pull" in text
        assert text.endswith("3 change(s) ready to push")

    def test_operations_to_json(self):
        ops = ContentOperations()
        ops.add(
            Operation(
                kind=OperationKind.TYPE_CHANGE,
                local=_local(type_="post"),
                remote=_remote(),
                old_type="page",
                new_type="post",
            )
        )
        ops.add(
            Operation(
                kind=OperationKind.CONFLICT,
                local=_local(slug="x"),
                remote=_remote(slug="x", id_=9),
                reason="r",
            )
        )

        data = operations_to_json(ops)

        assert data["changes"] == 1
        assert data["conflicts"] == 1
        first = data["operations"][0]
        assert first["kind"] == "type_change"
        assert first["id"] == "1"
        assert first["old_type"] == "page"
        assert first["new_type"] == "post"
        assert "reason" not in first


class TestFormatOperationDiff:
    def test_diff_remote_to_local(self, tmp_path):
        path = tmp_path / "about.mdx"
        path.write_text(
            "---\nid: 1\nslug: about\ntype: page\n---\nNew line\n",
            encoding="utf-8",
        )
        op = Operation(
            kind=OperationKind.UPDATE,
            local=_local(path=str(path)),
            remote=_remote(body="Old line"),
        )

        diff = format_operation_diff(op)

        assert "--- remote: about" in diff
        assert "+++ local: about" in diff
        assert "-Old line" in diff
        assert "+New line" in diff

    def test_no_remote(self):
        op = Operation(kind=OperationKind.CREATE, local=_local())
        assert format_operation_diff(op) == ""


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class TestFormatPushReport:
    def test_dry_run(self):
        report = PushReport(
            results=[
                PushResult(kind=OperationKind.CREATE, slug="new", success=True)
            ],
            dry_run=True,
        )

        text = format_push_report(report)

        assert text.startswith("DRY RUN")
        assert "would create" in text

    def test_results_and_skipped(self):
        report = PushReport(
            results=[
                PushResult(
                    kind=OperationKind.UPDATE, slug="a", success=True, content_id="1"
                ),
                PushResult(
                    kind=OperationKind.DELETE, slug="b", success=False, error="HTTP 404"
                ),
            ],
            skipped_conflicts=["pricing"],
        )

        text = format_push_report(report)

        assert "Pushed 1 item(s), 1 failed" in text
        assert "FAILED: HTTP 404" in text
        assert "Skipped 1 conflict(s)" in text
        assert "  pricing" in text

    def test_to_json(self):
        report = PushReport(
            results=[
                PushResult(kind=OperationKind.RENAME, slug="a", success=True)
            ]
        )

        data = push_report_to_json(report)

        assert data["successful"] == 1
        assert data["failed"] == 0
        assert data["results"][0]["kind"] == "rename"
