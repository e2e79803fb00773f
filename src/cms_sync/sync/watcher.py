"""Long-lived listener on the CMS change stream.

The blocking SSE reader runs in a worker thread.  Every event is handed
to the event loop with ``call_soon_threadsafe``; content events then
``notify()`` the ``ChangeScheduler``.  Draft events additionally write a
preview file next to the regular content.

A dropped connection is retried after ``reconnect_delay`` seconds.  An
authentication failure stops the watcher.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from ..config import Config
from ..core.async_utils import run_sync
from ..core.errors import AuthenticationError, TransportError
from ..file_handler import write_file
from .models import ChangeEvent, ContentFormat
from .scheduler import ChangeScheduler
from .transform import render_remote, target_path

if TYPE_CHECKING:
    from ..core.client import CMSClient

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0

CONTENT_EVENTS = frozenset({"content-updated", "content-deleted"})
DRAFT_EVENT = "draft-updated"
LEGACY_DRAFT_OPERATION = "DraftModified"


def is_draft_event(event: ChangeEvent) -> bool:
    if event.event == DRAFT_EVENT:
        return True
    return (
        event.event == "message"
        and event.entity_type == "Content"
        and event.operation == LEGACY_DRAFT_OPERATION
    )


def triggers_sync(event: ChangeEvent) -> bool:
    """Return True when *event* means remote content changed."""
    if event.event in CONTENT_EVENTS or event.event == DRAFT_EVENT:
        return True
    return event.event == "message" and event.entity_type == "Content"


def draft_content(event: ChangeEvent) -> dict[str, Any] | None:
    """Extract the draft item carried by a draft event, if any."""
    payload = event.data.get("data")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.debug("Draft event carries unparseable data")
            return None
    return payload if isinstance(payload, dict) else None


class DraftPreviewWriter:
    """Save draft previews as ``<slug>-<createdById>`` files.

    Only drafts whose content type is known to be MDX or JSON are saved.
    """

    def __init__(self, client: CMSClient, config: Config) -> None:
        self.client = client
        self.content_dir = Path(config.content_dir)
        self.default_language = config.default_language
        self._type_map: dict[str, str] | None = None

    @property
    def type_map(self) -> dict[str, str]:
        if self._type_map is None:
            self._type_map = self.client.fetch_content_types()
        return self._type_map

    def __call__(self, event: ChangeEvent) -> Path | None:
        content = draft_content(event)
        if not content or not event.created_by_id or not content.get("slug"):
            logger.debug("Draft event without content, nothing to save")
            return None

        fmt = self.type_map.get(content.get("type") or "")
        if str(fmt).upper() not in (ContentFormat.MDX.value, ContentFormat.JSON.value):
            logger.debug(
                "Draft type %s is not MDX or JSON, skipping preview",
                content.get("type"),
            )
            return None

        preview_slug = f"{content['slug']}-{event.created_by_id}"
        path = target_path(
            self.content_dir,
            content,
            self.type_map,
            self.default_language,
            slug=preview_slug,
        )
        write_file(path, render_remote({**content, "draft": True}, self.type_map))
        logger.info("Saved draft preview %s", path)
        return path


class ChangeWatcher:
    """Feed change-stream events into a ``ChangeScheduler``.

    Args:
        client: CMSClient providing ``stream_events()``.
        scheduler: Scheduler notified on content changes.
        on_draft: Optional blocking callback for draft events; it runs on
            the reader thread.
        reconnect_delay: Seconds to wait before reconnecting.
    """

    def __init__(
        self,
        client: CMSClient,
        scheduler: ChangeScheduler,
        on_draft: Callable[[ChangeEvent], Any] | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        self.client = client
        self.scheduler = scheduler
        self.on_draft = on_draft
        self.reconnect_delay = reconnect_delay
        self.connections = 0
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> None:
        """Listen until ``stop()`` is called.

        Raises:
            AuthenticationError: If the stream rejects our credentials.
        """
        loop = asyncio.get_running_loop()
        while not self._stopped:
            self.connections += 1
            try:
                await run_sync(self._consume, loop)
            except AuthenticationError as exc:
                logger.error("Change stream authentication failed: %s", exc)
                raise
            except TransportError as exc:
                logger.warning("Change stream error: %s", exc)
            else:
                logger.info("Change stream closed by server")

            if self._stopped:
                break
            logger.info("Reconnecting in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    def _consume(self, loop: asyncio.AbstractEventLoop) -> None:
        for event in self.client.stream_events():
            if self._stopped:
                return
            if self.on_draft is not None and is_draft_event(event):
                try:
                    self.on_draft(event)
                except AuthenticationError:
                    raise
                except Exception as exc:
                    logger.warning("Failed to save draft preview: %s", exc)
            loop.call_soon_threadsafe(self.handle_event, event)

    def handle_event(self, event: ChangeEvent) -> bool:
        """Log *event* and notify the scheduler if content changed.

        Runs on the event loop thread.  Returns True when the scheduler
        was notified.
        """
        if event.event == "connected":
            logger.info(
                "Change stream connected (client %s)",
                event.data.get("clientId"),
            )
            return False
        if event.event == "heartbeat":
            logger.debug("Heartbeat at %s", event.data.get("timestamp"))
            return False
        if triggers_sync(event):
            logger.info(
                "Content change (%s %s), scheduling sync",
                event.event,
                event.operation or "",
            )
            self.scheduler.notify()
            return True
        logger.debug(
            "Ignoring %s event for %s", event.event, event.entity_type
        )
        return False
