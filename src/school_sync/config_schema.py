"""Unified configuration schema for school_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote API, the local store, reconciliation timing and
logging, plus an adapter that flattens it into the runtime ``Config``.

Usage:
    from school_sync.config_schema import build_config, to_runtime_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"url": "https://..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ApiConfig(BaseModel):
    """Remote API connection settings.

    All fields are optional so env vars and CLI args can supply them.
    """

    url: str | None = Field(default=None, description="API base URL")
    connect_timeout: float = Field(
        default=8.0, gt=0, description="Connect timeout in seconds"
    )
    read_timeout: float = Field(
        default=15.0, gt=0, description="Read timeout in seconds"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Local store settings."""

    data_dir: str | None = Field(
        default=None, description="Directory holding the store files"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Reconciliation settings.

    Attributes:
        interval: Seconds between periodic reconciliations while online.
    """

    interval: float = Field(
        default=30.0,
        ge=1,
        le=86400,
        description="Seconds between periodic reconciliations (1-86400)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unset means WARNING.
        file: Optional log file path.
        format: "text" or "json" (one JSON object per line).
        debug: Force DEBUG level.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log record format"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def fallbacks(self) -> dict[str, Any]:
        """Flatten into ``load_config(yaml_fallbacks=...)`` keys.

        ``None`` values are dropped so they never shadow defaults.
        """
        flat = {
            "api_url": self.api.url,
            "connect_timeout": self.api.connect_timeout,
            "read_timeout": self.api.read_timeout,
            "insecure": self.api.insecure,
            "data_dir": self.store.data_dir,
            "sync_interval": self.sync.interval,
            "debug": self.logging.debug,
        }
        return {k: v for k, v in flat.items() if v is not None}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass,
    applying CLI overrides on top.

    CLI overrides dict keys: url, data_dir, insecure, debug.

    Returns:
        ``Config`` instance (NOT validated -- caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports
    from .config import DEFAULT_API_URL, DEFAULT_DATA_DIR, Config

    overrides = cli_overrides or {}

    return Config(
        api_url=overrides.get("url") or unified.api.url or DEFAULT_API_URL,
        data_dir=overrides.get("data_dir")
        or unified.store.data_dir
        or DEFAULT_DATA_DIR,
        connect_timeout=unified.api.connect_timeout,
        read_timeout=unified.api.read_timeout,
        sync_interval=unified.sync.interval,
        insecure=overrides.get("insecure", False) or unified.api.insecure,
        debug=overrides.get("debug", False) or unified.logging.debug,
    )
