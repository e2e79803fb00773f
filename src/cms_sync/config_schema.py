"""Unified configuration schema for cms_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the CMS connection, local sync paths, the change watcher and
logging.

Usage:
    from cms_sync.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class CMSConnectionConfig(BaseModel):
    """CMS server connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="CMS base URL")
    api_key: str | None = Field(
        default=None, description="API key used for push and the stream"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Items requested per sync page (1-1000)",
    )

    model_config = {"frozen": True}


class SyncPathsConfig(BaseModel):
    """Where synchronised content, media and legacy state live locally."""

    default_language: str = Field(
        default="en",
        description="Language whose files live at the content root",
    )
    content_dir: str = Field(default=".cms/content")
    media_dir: str = Field(default="public/media")
    state_dir: str = Field(
        default=".cms",
        description="Directory that held sync tokens in older layouts",
    )

    model_config = {"frozen": True}


class WatchConfig(BaseModel):
    """Settings for the change-stream watcher."""

    debounce: float = Field(
        default=0.3,
        gt=0,
        description="Seconds to wait after the last notification",
    )
    reconnect_delay: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait before reconnecting the stream",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    cms: CMSConnectionConfig = Field(default_factory=CMSConnectionConfig)
    sync: SyncPathsConfig = Field(default_factory=SyncPathsConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the ``cms`` and ``sync`` sections into ``load_config`` fallbacks.

    ``None`` values are dropped so they never shadow built-in defaults.
    """
    merged = {
        **unified.cms.model_dump(),
        **unified.sync.model_dump(),
    }
    return {k: v for k, v in merged.items() if v is not None}
