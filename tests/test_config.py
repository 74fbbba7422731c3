"""Tests for school_sync.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the runtime
bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from school_sync.config import (
    DEFAULT_API_URL,
    DEFAULT_DATA_DIR,
    Config,
    load_config,
    validate_config,
)

# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): URL format and numeric checks."""

    def test_defaults_are_valid(self):
        validate_config(Config())  # should not raise

    def test_https_url_valid(self):
        validate_config(Config(api_url="https://api.example.com"))

    def test_invalid_url_no_scheme(self):
        config = Config(api_url="example.com")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_invalid_url_ftp_scheme(self):
        with pytest.raises(ValueError, match="Invalid API URL"):
            validate_config(Config(api_url="ftp://example.com"))

    def test_url_without_host(self):
        with pytest.raises(ValueError, match="hostname"):
            validate_config(Config(api_url="http://"))

    def test_trailing_slash_and_whitespace_stripped(self):
        config = Config(api_url="  https://api.example.com/  ")
        validate_config(config)
        assert config.api_url == "https://api.example.com"

    def test_empty_data_dir(self):
        with pytest.raises(ValueError, match="Data directory"):
            validate_config(Config(data_dir="  "))

    @pytest.mark.parametrize(
        "field", ["connect_timeout", "read_timeout", "sync_interval"]
    )
    def test_non_positive_numbers(self, field):
        config = Config(**{field: 0})
        with pytest.raises(ValueError, match=field):
            validate_config(config)

    def test_insecure_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="school_sync.config"):
            validate_config(Config(insecure=True))
        assert "SSL verification disabled" in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence: CLI > env > YAML > default."""

    def test_defaults(self, clean_env):
        config = load_config()
        assert config.api_url == DEFAULT_API_URL
        assert config.data_dir == DEFAULT_DATA_DIR
        assert config.connect_timeout == 8.0
        assert config.read_timeout == 15.0
        assert config.sync_interval == 30.0
        assert config.insecure is False
        assert config.debug is False

    def test_env_url(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_API_URL", "https://env.example.com/")
        assert load_config().api_url == "https://env.example.com"

    def test_legacy_env_url(self, clean_env):
        clean_env.setenv("API_BASE_URL", "https://legacy.example.com")
        assert load_config().api_url == "https://legacy.example.com"

    def test_primary_env_url_beats_legacy(self, clean_env):
        clean_env.setenv("API_BASE_URL", "https://legacy.example.com")
        clean_env.setenv("SCHOOL_SYNC_API_URL", "https://new.example.com")
        assert load_config().api_url == "https://new.example.com"

    def test_cli_beats_env(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_API_URL", "https://env.example.com")
        clean_env.setenv("SCHOOL_SYNC_DATA_DIR", "/env/data")
        config = load_config(url="https://cli.example.com", data_dir="/cli")
        assert config.api_url == "https://cli.example.com"
        assert config.data_dir == "/cli"

    def test_env_beats_yaml(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_DATA_DIR", "/env/data")
        config = load_config(
            yaml_fallbacks={"data_dir": "/yaml/data", "api_url": "https://y.io"}
        )
        assert config.data_dir == "/env/data"
        assert config.api_url == "https://y.io"

    def test_yaml_numeric_fallbacks(self, clean_env):
        config = load_config(
            yaml_fallbacks={"connect_timeout": 2, "sync_interval": 5}
        )
        assert config.connect_timeout == 2.0
        assert config.sync_interval == 5.0
        assert config.read_timeout == 15.0

    def test_env_numeric_beats_yaml(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_INTERVAL", "12.5")
        config = load_config(yaml_fallbacks={"sync_interval": 5})
        assert config.sync_interval == 12.5

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_bad_numeric_env(self, clean_env, raw):
        clean_env.setenv("SCHOOL_SYNC_READ_TIMEOUT", raw)
        with pytest.raises(ValueError, match="SCHOOL_SYNC_READ_TIMEOUT"):
            load_config()

    def test_bool_env(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_INSECURE", "yes")
        clean_env.setenv("SCHOOL_SYNC_DEBUG", "0")
        config = load_config(yaml_fallbacks={"debug": True})
        assert config.insecure is True
        assert config.debug is False

    def test_bool_yaml_fallback(self, clean_env):
        config = load_config(yaml_fallbacks={"insecure": True})
        assert config.insecure is True

    def test_cli_flag_wins_over_env_false(self, clean_env):
        clean_env.setenv("SCHOOL_SYNC_DEBUG", "false")
        assert load_config(debug=True).debug is True

    def test_invalid_url_raises(self, clean_env):
        with pytest.raises(ValueError, match="Invalid API URL"):
            load_config(url="not-a-url")
