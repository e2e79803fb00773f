"""Shared pytest fixtures for cms-sync tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cms_sync.config import Config
from cms_sync.core.errors import TransportError
from cms_sync.sync.models import ChangeEvent, SyncBatch


class FakeCMSClient:
    """Minimal CMSClient replacement for testing.

    Serves one ``SyncBatch`` per store and records every push call.
    """

    def __init__(
        self,
        batches: Optional[Dict[str, SyncBatch]] = None,
        content_types: Optional[Dict[str, str]] = None,
        media: Optional[Dict[str, bytes]] = None,
        events: Optional[List[ChangeEvent]] = None,
    ) -> None:
        self.batches: Dict[str, SyncBatch] = batches or {}
        self.content_types: Dict[str, str] = content_types or {}
        self.media: Dict[str, bytes] = media or {}
        self.events: List[ChangeEvent] = events or []
        self.errors: Dict[str, Exception] = {}
        self.fetch_calls: list[tuple[str, Optional[str]]] = []
        self.created: list[dict] = []
        self.updated: list[tuple[str, dict]] = []
        self.deleted: list[str] = []
        self._next_id = 100

    def fetch_content_types(self, strict: bool = False) -> Dict[str, str]:
        if "types" in self.errors:
            if strict:
                raise self.errors["types"]
            return {}
        return dict(self.content_types)

    def fetch_incremental(
        self, kind: str, token: Optional[str] = None
    ) -> SyncBatch:
        self.fetch_calls.append((kind, token))
        if kind in self.errors:
            raise self.errors[kind]
        return self.batches.get(kind, SyncBatch())

    def download_media(self, location: str) -> Optional[bytes]:
        if "download" in self.errors:
            raise self.errors["download"]
        return self.media.get(location)

    def create_content(self, payload: dict) -> dict:
        self.created.append(payload)
        self._next_id += 1
        return {
            "id": self._next_id,
            "slug": payload["slug"],
            "createdAt": "2026-02-01T00:00:00.000Z",
            "updatedAt": "2026-02-01T00:00:00.000Z",
        }

    def update_content(self, content_id: Any, payload: dict) -> dict:
        if "update" in self.errors:
            raise self.errors["update"]
        self.updated.append((str(content_id), payload))
        return {
            "id": content_id,
            "updatedAt": "2026-02-02T00:00:00.000Z",
        }

    def delete_content(self, content_id: Any) -> None:
        self.deleted.append(str(content_id))

    def stream_events(self):
        yield from self.events
        if "stream" in self.errors:
            raise self.errors["stream"]


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A Config whose content, media and state dirs live under tmp_path."""
    return Config(
        cms_url="https://cms.example.com",
        api_key="sk-test-1234567890",
        content_dir=str(tmp_path / "content"),
        media_dir=str(tmp_path / "media"),
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def fake_client() -> FakeCMSClient:
    return FakeCMSClient()


@pytest.fixture
def write_content(tmp_path: Path):
    """Factory fixture: write a file below ``tmp_path/content``."""

    def _write(rel_path: str, text: str) -> Path:
        path = tmp_path / "content" / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("GET /api/content/sync failed: boom", status_code=500)
