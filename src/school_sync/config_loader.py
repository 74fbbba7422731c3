"""YAML settings files for school-sync.

Settings may live in up to three places.  The first that exists has the
final say on each top-level section (``api``, ``store``, ``sync``,
``logging``); sections are swapped whole, never merged key by key.

1. the file named by ``SCHOOL_SYNC_CONFIG``
2. ``./.school_sync/config.yml``
3. ``~/.config/school_sync/config.yml``

String values may reference the environment as ``${VAR}`` or
``${VAR:-fallback}``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SCHOOL_SYNC_CONFIG"
PROJECT_CONFIG = Path(".school_sync") / "config.yml"
USER_CONFIG = Path(".config") / "school_sync" / "config.yml"

_PLACEHOLDER = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-fallback}`` in *value*.

    An unset or empty VAR yields the fallback, or ``""`` without one.
    """

    def _lookup(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        return os.environ.get(name) or (fallback or "")

    return _PLACEHOLDER.sub(_lookup, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(val) for val in obj]
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


def discover_config_files() -> list[Path]:
    """Existing settings files, highest precedence first."""
    explicit = os.environ.get(CONFIG_ENV_VAR)
    candidates = [
        Path(explicit).expanduser().resolve() if explicit else None,
        Path.cwd() / PROJECT_CONFIG,
        Path.home() / USER_CONFIG,
    ]
    return [path for path in candidates if path is not None and path.exists()]


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError:
        logger.error("Invalid YAML in %s", path)
        raise
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring %s: top level is a %s, not a mapping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered settings file into one dict.

    Returns ``{}`` when no file exists.

    Raises:
        yaml.YAMLError: If a file is not valid YAML.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Reading settings from %s", path)
        merged.update(_read_yaml(path))
    return _interpolate_recursive(merged)


_STARTER_CONFIG = """\
# school-sync configuration
#
# Environment variables take precedence over this file:
#   SCHOOL_SYNC_API_URL, SCHOOL_SYNC_DATA_DIR, SCHOOL_SYNC_INTERVAL
#
# api:
#   url: http://127.0.0.1:8000
#   connect_timeout: 8
#   read_timeout: 15
#   insecure: false
#
# store:
#   data_dir: .school_sync/data
#
# sync:
#   interval: 30
#
# logging:
#   level: WARNING
#   file: null
#   format: text
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active settings file, writing a starter one if none exists.

    Args:
        target: Where to write the starter file. Defaults to
            ``./.school_sync/config.yml``.
    """
    found = discover_config_files()
    if found:
        return found[0]
    path = target or Path.cwd() / PROJECT_CONFIG
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path
