"""Exception taxonomy for the sync pipeline.

* ``TransportError`` -- network failure or a non-2xx response.  Aborts the
  pass for the store being synced; the stored sync token is kept.
* ``AuthenticationError`` -- HTTP 401/403.  Fatal for the whole run and
  never retried.
* ``ContentParseError`` -- one local file could not be parsed.  The
  snapshot reader logs and skips the file.

Media "not found" and merge conflicts are regular outcomes, not errors.
"""

from __future__ import annotations


class CMSSyncError(Exception):
    """Base class for all cms-sync errors."""


class TransportError(CMSSyncError):
    """A request to the CMS failed (network error or bad status)."""

    def __init__(
        self, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TransportError):
    """The CMS rejected our credentials."""


class ContentParseError(CMSSyncError):
    """A local content file could not be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason
