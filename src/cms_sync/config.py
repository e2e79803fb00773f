"""Runtime configuration for cms-sync.

Reads CMS connection settings and local paths from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CMS_URL: CMS instance URL (required)
    CMS_API_KEY: API key, needed for push and the change stream (optional)
    CMS_DEFAULT_LANGUAGE: Language stored at the content root (default: en)
    CMS_CONTENT_DIR: Local content directory (default: .cms/content)
    CMS_MEDIA_DIR: Local media directory (default: public/media)
    CMS_STATE_DIR: Directory holding legacy sync tokens (default: .cms)
    CMS_PAGE_SIZE: Items per sync page (optional, default: 100)
    CMS_INSECURE: Skip SSL verification (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
DEFAULT_CONTENT_DIR = ".cms/content"
DEFAULT_MEDIA_DIR = "public/media"
DEFAULT_STATE_DIR = ".cms"
DEFAULT_PAGE_SIZE = 100


@dataclass
class Config:
    cms_url: str
    api_key: str = ""
    default_language: str = DEFAULT_LANGUAGE
    content_dir: str = DEFAULT_CONTENT_DIR
    media_dir: str = DEFAULT_MEDIA_DIR
    state_dir: str = DEFAULT_STATE_DIR
    page_size: int = DEFAULT_PAGE_SIZE
    insecure: bool = False
    debug: bool = False


def mask_secret(value: str) -> str:
    """Return the first 8 characters of *value* followed by ``...``."""
    if not value:
        return "NOT_SET"
    return f"{value[:8]}..."


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid or a numeric field is out
            of range.
    """
    config.cms_url = config.cms_url.strip()

    if not config.cms_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid CMS URL '{config.cms_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.cms_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid CMS URL '{config.cms_url}': URL must include a hostname"
        )

    config.cms_url = config.cms_url.removesuffix("/")

    if not config.default_language.strip():
        raise ValueError("Default language cannot be empty.")

    if not (1 <= config.page_size <= 1000):
        raise ValueError(
            f"Invalid page size {config.page_size}: must be between 1 and 1000"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def load_config(
    url: str | None = None,
    api_key: str | None = None,
    content_dir: str | None = None,
    media_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override CMS URL.
        api_key: Override API key.
        content_dir: Override local content directory.
        media_dir: Override local media directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML ``cms`` and
            ``sync`` sections.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the CMS URL is missing after checking all sources,
            or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    cms_url = url or os.getenv("CMS_URL") or fb.get("url")
    if not cms_url:
        raise ValueError(
            "CMS URL not found. Set CMS_URL environment variable, "
            "pass --url CLI argument, or add 'url' to config.yml."
        )

    final_api_key = (
        api_key or os.getenv("CMS_API_KEY") or fb.get("api_key") or ""
    ).strip()

    final_language = (
        os.getenv("CMS_DEFAULT_LANGUAGE")
        or fb.get("default_language")
        or DEFAULT_LANGUAGE
    )
    final_content_dir = (
        content_dir
        or os.getenv("CMS_CONTENT_DIR")
        or fb.get("content_dir")
        or DEFAULT_CONTENT_DIR
    )
    final_media_dir = (
        media_dir
        or os.getenv("CMS_MEDIA_DIR")
        or fb.get("media_dir")
        or DEFAULT_MEDIA_DIR
    )
    final_state_dir = (
        os.getenv("CMS_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    if insecure:
        final_insecure = True
    else:
        env_insecure = get_bool_env("CMS_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("CMS_DEBUG")
        final_debug = (
            env_debug
            if env_debug is not None
            else bool(fb.get("debug", False))
        )

    page_size_raw = os.getenv("CMS_PAGE_SIZE")
    if page_size_raw is not None:
        try:
            final_page_size = int(page_size_raw)
        except ValueError:
            raise ValueError(
                f"Invalid CMS_PAGE_SIZE '{page_size_raw}': must be a number between 1 and 1000"
            ) from None
    elif "page_size" in fb:
        final_page_size = int(fb["page_size"])
    else:
        final_page_size = DEFAULT_PAGE_SIZE

    config = Config(
        cms_url=cms_url,
        api_key=final_api_key,
        default_language=final_language.strip(),
        content_dir=final_content_dir,
        media_dir=final_media_dir,
        state_dir=final_state_dir,
        page_size=final_page_size,
        insecure=final_insecure,
        debug=final_debug,
    )

    validate_config(config)

    return config
