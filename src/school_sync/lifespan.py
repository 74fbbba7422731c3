"""Lifecycle management for the engine and its collaborators."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .core.client import ProgressApiClient
from .errors import StoreError
from .sync.engine import SyncEngine
from .sync.store import JsonFileStore

logger = logging.getLogger(__name__)


def resolve_config(
    config_overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """
    Load configuration from every source.

    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults

    Args:
        config_overrides: Optional dict with values from CLI
            (url, data_dir, insecure, debug).

    Returns:
        The validated runtime ``Config`` and the parsed ``UnifiedConfig``
        (whose ``logging`` section the caller may use).

    Raises:
        RuntimeError: If configuration is invalid.
    """
    try:
        load_dotenv()

        unified = UnifiedConfig()
        yaml_fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            yaml_fallbacks = unified.fallbacks()
            logger.debug("Config file: %s", config_files[0])

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            data_dir=overrides.get("data_dir"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError too
        raise RuntimeError(f"Configuration error: {e}") from e

    return config, unified


@asynccontextmanager
async def engine_lifespan(
    config: Config,
    online: bool = True,
) -> AsyncIterator[dict[str, Any]]:
    """
    Build the store, client and engine; close the client on exit.

    The remote API is not contacted here: an unreachable server must
    never prevent working from the cache.

    Args:
        config: Validated runtime configuration.
        online: Initial connectivity flag for the engine.

    Yields:
        Dict with 'config', 'client', 'store' and 'engine' keys.

    Raises:
        RuntimeError: If the local store cannot be opened.
    """
    try:
        store = JsonFileStore(Path(config.data_dir))
    except StoreError as e:
        logger.error("Failed to open local store: %s", e)
        raise RuntimeError(f"Local store error: {e}") from e

    client = ProgressApiClient(config)
    engine = SyncEngine(client=client, store=store, online=online)
    logger.info(
        "Engine ready (api=%s, data_dir=%s, online=%s, queued=%d)",
        config.api_url,
        config.data_dir,
        online,
        engine.pending_count(),
    )

    try:
        yield {
            "config": config,
            "client": client,
            "store": store,
            "engine": engine,
        }
    finally:
        client.close()
        logger.debug("Engine shut down")
