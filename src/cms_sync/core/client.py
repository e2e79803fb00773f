import json
import logging
import threading
from typing import Any, Iterator

import requests

from ..config import Config, mask_secret
from ..sync.models import ChangeEvent, SyncBatch
from .errors import AuthenticationError, TransportError

logger = logging.getLogger(__name__)

TIMEOUT = (10, 60)
SYNC_TOKEN_HEADER = "x-next-sync-token"
SSE_PATH = (
    "/api/sse/stream?entities=Content&includeContent=true"
    "&includeLiveDrafts=true"
)


class CMSClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.cms_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        session.headers["Accept"] = "application/json"
        return session

    def _auth_headers(self) -> dict[str, str]:
        if not self.config.api_key:
            return {}
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = False,
        expected: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> requests.Response:
        """
        Issue a request against the CMS and map failures onto our errors.

        Status codes listed in *expected* are returned to the caller even
        when they are not 2xx.
        """
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {})
        if authenticated:
            headers.update(self._auth_headers())
        kwargs.setdefault("timeout", TIMEOUT)

        try:
            response = self._get_session().request(
                method, url, headers=headers, **kwargs
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code in expected:
            return response
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{method} {path} rejected with HTTP {response.status_code} "
                f"(api key {mask_secret(self.config.api_key)})",
                status_code=response.status_code,
            )
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise TransportError(
                f"{method} {path} failed: {e}",
                status_code=response.status_code,
            ) from e
        return response

    # ------------------------------------------------------------------
    # Pull side
    # ------------------------------------------------------------------

    def fetch_content_types(self, strict: bool = False) -> dict[str, str]:
        """
        Return ``{uid: format}`` for every content type.

        A failure is logged and yields an empty map; callers then treat
        every type as MDX.  With *strict* the failure is raised as
        ``TransportError`` instead, for callers that write files by format.
        """
        try:
            response = self._request("GET", "/api/content-types")
            types = response.json()
        except (TransportError, ValueError) as e:
            if isinstance(e, AuthenticationError):
                raise
            if strict:
                if isinstance(e, TransportError):
                    raise
                raise TransportError(f"Invalid content types response: {e}") from e
            logger.warning("Failed to fetch content types: %s", e)
            return {}

        type_map: dict[str, str] = {}
        for entry in types or []:
            uid = entry.get("uid")
            if uid:
                type_map[uid] = entry.get("format") or "MDX"
        logger.debug("Fetched %d content types", len(type_map))
        return type_map

    def fetch_incremental(
        self, kind: str, token: str | None = None
    ) -> SyncBatch:
        """
        Page through ``/api/{kind}/sync`` starting at *token*.

        Pages are accumulated until the server answers 204, omits the
        continuation header, or repeats the current token.  Any failing
        page raises, so a caller never sees a partial batch.
        """
        items: list[dict] = []
        deleted: list[Any] = []
        base_items: dict[str, dict] = {}
        current = token or ""
        page = 0

        while True:
            params = {
                "filter[limit]": self.config.page_size,
                "syncToken": current,
            }
            if token:
                params["includeBase"] = "true"

            response = self._request(
                "GET",
                f"/api/{kind}/sync",
                params=params,
                expected=(204,),
            )
            page += 1
            if response.status_code == 204:
                logger.debug("%s sync page %d: no content", kind, page)
                break

            try:
                data = response.json()
            except ValueError as e:
                raise TransportError(
                    f"Invalid JSON from /api/{kind}/sync: {e}"
                ) from e

            items.extend(data.get("items") or [])
            deleted.extend(data.get("deleted") or [])
            base_items.update(data.get("baseItems") or {})

            next_token = response.headers.get(SYNC_TOKEN_HEADER)
            logger.debug(
                "%s sync page %d: %d items, next token %s",
                kind,
                page,
                len(data.get("items") or []),
                next_token,
            )
            if not next_token or next_token == current:
                break
            current = next_token

        return SyncBatch(
            items=items,
            deleted=deleted,
            base_items=base_items,
            next_token=current or None,
        )

    def download_media(self, location: str) -> bytes | None:
        """
        Download a media file by its server path.

        Returns ``None`` when the server reports 404; the caller treats
        that as a deletion.
        """
        path = location if location.startswith("/") else f"/{location}"
        response = self._request(
            "GET", path, authenticated=True, expected=(404,)
        )
        if response.status_code == 404:
            return None
        return response.content

    # ------------------------------------------------------------------
    # Push side
    # ------------------------------------------------------------------

    def create_content(self, payload: dict) -> dict:
        response = self._request(
            "POST", "/api/content", authenticated=True, json=payload
        )
        return response.json()

    def update_content(self, content_id: Any, payload: dict) -> dict:
        response = self._request(
            "PUT",
            f"/api/content/{content_id}",
            authenticated=True,
            json=payload,
        )
        return response.json()

    def delete_content(self, content_id: Any) -> None:
        self._request(
            "DELETE", f"/api/content/{content_id}", authenticated=True
        )

    # ------------------------------------------------------------------
    # Change stream
    # ------------------------------------------------------------------

    def stream_events(self) -> Iterator[ChangeEvent]:
        """
        Yield events from the server-sent event stream until it closes.

        Blocking; run it in a worker thread.
        """
        response = self._request(
            "GET",
            SSE_PATH,
            authenticated=True,
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(10, None),
        )
        logger.info("Connected to change stream at %s", self.base_url)
        try:
            yield from parse_sse_lines(
                response.iter_lines(decode_unicode=True)
            )
        except requests.RequestException as e:
            raise TransportError(f"Change stream interrupted: {e}") from e
        finally:
            response.close()


def parse_sse_lines(lines) -> Iterator[ChangeEvent]:
    """
    Turn raw SSE lines into ``ChangeEvent`` objects.

    ``event:`` names the next event (default ``message``), ``data:`` lines
    accumulate, and a blank line dispatches.  Data that is not a JSON
    object is kept under the ``raw`` key.
    """
    event_name = "message"
    data_lines: list[str] = []

    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if line == "":
            if data_lines or event_name != "message":
                yield _build_event(event_name, "\n".join(data_lines))
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event_name = value or "message"
        elif field == "data":
            data_lines.append(value)

    if data_lines:
        yield _build_event(event_name, "\n".join(data_lines))


def _build_event(name: str, raw: str) -> ChangeEvent:
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        data = {"raw": raw}
    if not isinstance(data, dict):
        data = {"raw": data}
    return ChangeEvent(
        event=name,
        entity_type=data.get("entityType"),
        operation=data.get("operation"),
        created_by_id=data.get("createdById"),
        data=data,
    )
