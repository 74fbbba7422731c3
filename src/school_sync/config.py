"""Runtime configuration for the sync core and its CLI.

Reads API and storage settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    SCHOOL_SYNC_API_URL: Remote API base URL (default: http://127.0.0.1:8000).
        ``API_BASE_URL`` is accepted as a fallback name.
    SCHOOL_SYNC_DATA_DIR: Directory holding the local store files
        (default: .school_sync/data)
    SCHOOL_SYNC_CONNECT_TIMEOUT: Connect timeout in seconds (default: 8)
    SCHOOL_SYNC_READ_TIMEOUT: Read timeout in seconds (default: 15)
    SCHOOL_SYNC_INTERVAL: Seconds between periodic reconciliations (default: 30)
    SCHOOL_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    SCHOOL_SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass

from .validators import validate_api_url

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8000"
DEFAULT_DATA_DIR = ".school_sync/data"


@dataclass
class Config:
    api_url: str = DEFAULT_API_URL
    data_dir: str = DEFAULT_DATA_DIR
    connect_timeout: float = 8.0
    read_timeout: float = 15.0
    sync_interval: float = 30.0
    insecure: bool = False
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the URL is malformed or a numeric field is out of range.
    """
    config.api_url = config.api_url.strip()

    ok, reason = validate_api_url(config.api_url)
    if not ok:
        raise ValueError(f"Invalid API URL '{config.api_url}': {reason}")

    # Strip trailing slash after validation (safe now that scheme/host are verified)
    config.api_url = config.api_url.removesuffix("/")

    if not config.data_dir.strip():
        raise ValueError(
            "Data directory cannot be empty. Set SCHOOL_SYNC_DATA_DIR."
        )

    for name in ("connect_timeout", "read_timeout", "sync_interval"):
        if getattr(config, name) <= 0:
            raise ValueError(
                f"Invalid {name} {getattr(config, name)!r}: must be positive"
            )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_float_env(key: str) -> float | None:
    """Return a positive float from env var, or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a positive number"
        ) from None
    if value <= 0:
        raise ValueError(f"Invalid {key} '{raw}': must be a positive number")
    return value


def load_config(
    url: str | None = None,
    data_dir: str | None = None,
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
        url: Override API URL.
        data_dir: Override store directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file
            (keys match ``Config`` field names).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If any resolved value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    api_url = (
        url
        or os.getenv("SCHOOL_SYNC_API_URL")
        or os.getenv("API_BASE_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )
    final_data_dir = (
        data_dir
        or os.getenv("SCHOOL_SYNC_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("SCHOOL_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("SCHOOL_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    numeric: dict[str, float] = {}
    for field_name, env_key, default in (
        ("connect_timeout", "SCHOOL_SYNC_CONNECT_TIMEOUT", 8.0),
        ("read_timeout", "SCHOOL_SYNC_READ_TIMEOUT", 15.0),
        ("sync_interval", "SCHOOL_SYNC_INTERVAL", 30.0),
    ):
        env_value = _get_float_env(env_key)
        if env_value is not None:
            numeric[field_name] = env_value
        elif field_name in fb:
            numeric[field_name] = float(fb[field_name])
        else:
            numeric[field_name] = default

    config = Config(
        api_url=api_url,
        data_dir=final_data_dir,
        insecure=final_insecure,
        debug=final_debug,
        **numeric,
    )

    validate_config(config)

    return config
