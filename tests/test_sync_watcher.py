"""Tests for sync/watcher.py -- change stream handling and draft previews."""

import json
from unittest.mock import MagicMock

import frontmatter
import pytest

from cms_sync.core.errors import AuthenticationError, TransportError
from cms_sync.sync.models import ChangeEvent
from cms_sync.sync.scheduler import ChangeScheduler
from cms_sync.sync.watcher import (
    ChangeWatcher,
    DraftPreviewWriter,
    draft_content,
    is_draft_event,
    triggers_sync,
)

DRAFT = {
    "slug": "about",
    "type": "page",
    "language": "en",
    "title": "Draft title",
    "body": "Work in progress",
}


def _event(name: str = "message", **data) -> ChangeEvent:
    return ChangeEvent(
        event=name,
        entity_type=data.get("entityType"),
        operation=data.get("operation"),
        created_by_id=data.get("createdById"),
        data=data,
    )


def _draft_event(payload=DRAFT, created_by=7) -> ChangeEvent:
    return _event(
        "message",
        entityType="Content",
        operation="DraftModified",
        createdById=created_by,
        data=payload,
    )


class TestEventClassification:
    def test_content_events_trigger_sync(self):
        assert triggers_sync(_event("content-updated"))
        assert triggers_sync(_event("content-deleted"))
        assert triggers_sync(_event("draft-updated"))
        assert triggers_sync(_event("message", entityType="Content"))

    def test_other_events_ignored(self):
        assert not triggers_sync(_event("connected"))
        assert not triggers_sync(_event("heartbeat"))
        assert not triggers_sync(_event("message", entityType="User"))

    def test_draft_events(self):
        assert is_draft_event(_event("draft-updated"))
        assert is_draft_event(_draft_event())
        assert not is_draft_event(_event("content-updated"))

    def test_draft_content_accepts_json_string(self):
        event = _draft_event(payload=json.dumps(DRAFT))
        assert draft_content(event) == DRAFT

    def test_draft_content_garbage(self):
        assert draft_content(_draft_event(payload="{nope")) is None
        assert draft_content(_event("draft-updated")) is None


class TestHandleEvent:
    """ChangeWatcher.handle_event() runs on the loop thread."""

    def _watcher(self):
        scheduler = MagicMock(spec=ChangeScheduler)
        return ChangeWatcher(MagicMock(), scheduler), scheduler

    def test_content_change_notifies(self):
        watcher, scheduler = self._watcher()

        assert watcher.handle_event(_event("content-updated"))
        scheduler.notify.assert_called_once_with()

    def test_connected_and_heartbeat_do_not_notify(self):
        watcher, scheduler = self._watcher()

        assert not watcher.handle_event(_event("connected", clientId="c1"))
        assert not watcher.handle_event(_event("heartbeat", timestamp=1))
        scheduler.notify.assert_not_called()


class _ScriptedClient:
    """Stream client that plays one script per connection."""

    def __init__(self, scripts):
        self.scripts = list(scripts)

    def stream_events(self):
        script = self.scripts.pop(0)
        for step in script:
            if isinstance(step, Exception):
                raise step
            yield step


class TestChangeWatcherRun:
    """ChangeWatcher.run() connection handling."""

    async def test_events_notify_scheduler_then_auth_error_is_fatal(self):
        scheduler = MagicMock(spec=ChangeScheduler)
        client = _ScriptedClient(
            [
                [
                    _event("connected", clientId="c1"),
                    _event("content-updated"),
                    AuthenticationError("rejected", status_code=401),
                ]
            ]
        )
        watcher = ChangeWatcher(client, scheduler, reconnect_delay=0.01)

        with pytest.raises(AuthenticationError):
            await watcher.run()

        scheduler.notify.assert_called_once_with()
        assert watcher.connections == 1

    async def test_transport_error_reconnects(self):
        scheduler = MagicMock(spec=ChangeScheduler)
        client = _ScriptedClient(
            [
                [TransportError("dropped")],
                [],
                [
                    _event("content-deleted"),
                    AuthenticationError("stop", status_code=401),
                ],
            ]
        )
        watcher = ChangeWatcher(client, scheduler, reconnect_delay=0.01)

        with pytest.raises(AuthenticationError):
            await watcher.run()

        assert watcher.connections == 3
        scheduler.notify.assert_called_once_with()

    async def test_stopped_watcher_does_not_connect(self):
        client = _ScriptedClient([])
        watcher = ChangeWatcher(client, MagicMock(spec=ChangeScheduler))
        watcher.stop()

        await watcher.run()

        assert watcher.connections == 0

    async def test_draft_callback_runs_for_draft_events(self):
        on_draft = MagicMock(side_effect=[OSError("disk"), None])
        client = _ScriptedClient(
            [
                [
                    _draft_event(),
                    _event("content-updated"),
                    _draft_event(),
                    AuthenticationError("stop", status_code=401),
                ]
            ]
        )
        watcher = ChangeWatcher(
            client, MagicMock(spec=ChangeScheduler), on_draft=on_draft
        )

        with pytest.raises(AuthenticationError):
            await watcher.run()

        assert on_draft.call_count == 2


class TestDraftPreviewWriter:
    """Draft previews are written next to the regular content."""

    def test_writes_preview_with_author_suffix(
        self, config, fake_client, tmp_path
    ):
        fake_client.content_types = {"page": "MDX"}
        writer = DraftPreviewWriter(fake_client, config)

        path = writer(_draft_event())

        assert path == tmp_path / "content" / "about-7.mdx"
        post = frontmatter.loads(path.read_text(encoding="utf-8"))
        assert post.metadata["draft"] is True
        assert post.metadata["title"] == "Draft title"
        assert post.content == "Work in progress"

    def test_json_preview(self, config, fake_client, tmp_path):
        fake_client.content_types = {"menu": "JSON"}
        writer = DraftPreviewWriter(fake_client, config)
        payload = {**DRAFT, "type": "menu", "language": "de", "body": "{}"}

        path = writer(_draft_event(payload=payload, created_by="u1"))

        assert path == tmp_path / "content" / "de" / "about-u1.json"
        assert json.loads(path.read_text(encoding="utf-8"))["draft"] is True

    def test_unknown_type_skipped(self, config, fake_client, tmp_path):
        writer = DraftPreviewWriter(fake_client, config)

        assert writer(_draft_event()) is None
        assert not (tmp_path / "content").exists()

    def test_missing_author_skipped(self, config, fake_client):
        fake_client.content_types = {"page": "MDX"}
        writer = DraftPreviewWriter(fake_client, config)

        assert writer(_draft_event(created_by=None)) is None
