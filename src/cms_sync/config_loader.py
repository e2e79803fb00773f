"""
YAML configuration files for cms-sync.

A project keeps its settings in ``.cms_sync/config.yml``; defaults shared
by every project on a machine live in ``~/.config/cms_sync/config.yml``.
``CMS_SYNC_CONFIG`` names one more file that outranks both.  Sections
(``cms``, ``sync``, ``watch``, ``logging``) from a higher-ranked file
replace the same section from a lower one, then ``${VAR}`` references are
expanded so secrets can stay in the environment or ``.env``.

Usage:
    from cms_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROJECT_CONFIG_DIR = ".cms_sync"
GLOBAL_CONFIG_DIR = Path(".config") / "cms_sync"
KNOWN_SECTIONS = frozenset({"cms", "sync", "watch", "logging"})

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""``.
    A ``${`` without a closing brace is kept as written.
    """

    def _expand(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name) or (default or "")

    return _ENV_REF.sub(_expand, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(val) for val in obj]
    return obj


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first."""
    candidates: list[Path] = []

    explicit = os.environ.get("CMS_SYNC_CONFIG")
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    global_dir = Path.home() / GLOBAL_CONFIG_DIR
    for directory in (project_dir, global_dir):
        candidates.extend(
            directory / name for name in ("config.yml", "config.yaml")
        )

    return [path for path in candidates if path.is_file()]


def _read_yaml(path: Path) -> dict[str, Any] | None:
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None or isinstance(data, dict):
        return data
    logger.warning(
        "Config file %s has non-dict root (%s), skipping",
        path,
        type(data).__name__,
    )
    return None


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Returns an empty dict when no config file exists.

    Raises:
        yaml.YAMLError: If a config file is not valid YAML.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _read_yaml(path)
        if not data:
            continue
        unknown = sorted(set(data) - KNOWN_SECTIONS)
        if unknown:
            logger.warning(
                "Ignoring unknown config sections in %s: %s",
                path,
                ", ".join(unknown),
            )
        merged.update(
            {key: val for key, val in data.items() if key in KNOWN_SECTIONS}
        )

    return _interpolate_recursive(merged)
