"""Core CMS client functionality shared between the CLI and the watcher."""

from .async_utils import run_sync
from .errors import AuthenticationError, CMSSyncError, TransportError
from .client import CMSClient

__all__ = [
    "AuthenticationError",
    "CMSClient",
    "CMSSyncError",
    "TransportError",
    "run_sync",
]
