"""Tests for school_sync.config_schema: Pydantic config models."""

import pytest
from pydantic import ValidationError

from school_sync.config_schema import (
    ApiConfig,
    LoggingConfig,
    SyncConfig,
    UnifiedConfig,
    build_config,
    to_runtime_config,
)

# -------------------------------------------------------------------------
# Section models
# -------------------------------------------------------------------------


class TestSections:
    def test_api_defaults(self):
        api = ApiConfig()
        assert api.url is None
        assert api.connect_timeout == 8.0
        assert api.read_timeout == 15.0
        assert api.insecure is False

    def test_api_rejects_zero_timeout(self):
        with pytest.raises(ValidationError):
            ApiConfig(connect_timeout=0)

    @pytest.mark.parametrize("interval", [0.5, 86401])
    def test_sync_interval_bounds(self, interval):
        with pytest.raises(ValidationError):
            SyncConfig(interval=interval)

    def test_logging_defaults(self):
        cfg = LoggingConfig()
        assert cfg.level is None
        assert cfg.file is None
        assert cfg.format == "text"

    def test_logging_format_must_be_known(self):
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")

    def test_frozen(self):
        cfg = UnifiedConfig()
        with pytest.raises(ValidationError):
            cfg.api = ApiConfig()


# -------------------------------------------------------------------------
# build_config()
# -------------------------------------------------------------------------


class TestBuildConfig:
    def test_empty_dict_gives_defaults(self):
        assert build_config({}) == UnifiedConfig()

    def test_full_dict(self):
        unified = build_config(
            {
                "api": {"url": "https://api.example.com", "read_timeout": 30},
                "store": {"data_dir": "/var/lib/school"},
                "sync": {"interval": 60},
                "logging": {"level": "DEBUG", "format": "json"},
            }
        )
        assert unified.api.url == "https://api.example.com"
        assert unified.api.read_timeout == 30.0
        assert unified.store.data_dir == "/var/lib/school"
        assert unified.sync.interval == 60.0
        assert unified.logging.format == "json"

    def test_invalid_section_raises(self):
        with pytest.raises(ValidationError):
            build_config({"sync": {"interval": "often"}})


# -------------------------------------------------------------------------
# fallbacks() and to_runtime_config()
# -------------------------------------------------------------------------


class TestAdapters:
    def test_fallbacks_drop_none(self):
        flat = UnifiedConfig().fallbacks()
        assert "api_url" not in flat
        assert "data_dir" not in flat
        assert flat["sync_interval"] == 30.0
        assert flat["connect_timeout"] == 8.0

    def test_fallbacks_keys_match_load_config(self):
        flat = build_config(
            {"api": {"url": "https://x.io"}, "store": {"data_dir": "d"}}
        ).fallbacks()
        assert flat["api_url"] == "https://x.io"
        assert flat["data_dir"] == "d"

    def test_runtime_config_defaults(self):
        config = to_runtime_config(UnifiedConfig())
        assert config.api_url == "http://127.0.0.1:8000"
        assert config.data_dir == ".school_sync/data"
        assert config.sync_interval == 30.0

    def test_cli_overrides_win(self):
        unified = build_config(
            {"api": {"url": "https://yaml.io"}, "store": {"data_dir": "y"}}
        )
        config = to_runtime_config(
            unified,
            cli_overrides={"url": "https://cli.io", "data_dir": "c", "debug": True},
        )
        assert config.api_url == "https://cli.io"
        assert config.data_dir == "c"
        assert config.debug is True

    def test_yaml_insecure_survives_missing_override(self):
        unified = build_config({"api": {"insecure": True}})
        assert to_runtime_config(unified, {}).insecure is True
