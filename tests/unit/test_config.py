"""Tests for environment-driven settings."""

from pathlib import Path

from core.config import DEFAULT_HTTP_TIMEOUT, DEFAULT_NPM_REGISTRY, load_settings


class TestLoadSettings:
    """Test reading DEPMEND_* variables."""

    def test_defaults(self):
        settings = load_settings({})

        assert settings.registry_path is None
        assert settings.history_dir is None
        assert settings.http_timeout == DEFAULT_HTTP_TIMEOUT
        assert settings.npm_registry == DEFAULT_NPM_REGISTRY
        assert settings.log_level == "WARNING"

    def test_values_from_environment(self):
        settings = load_settings(
            {
                "DEPMEND_REGISTRY_PATH": "/etc/depmend/registry.json",
                "DEPMEND_HISTORY_DIR": "/var/lib/depmend",
                "DEPMEND_HTTP_TIMEOUT": "12.5",
                "DEPMEND_NPM_REGISTRY": "https://npm.example.com/",
                "DEPMEND_LOG_LEVEL": "debug",
            }
        )

        assert settings.registry_path == Path("/etc/depmend/registry.json")
        assert settings.history_dir == Path("/var/lib/depmend")
        assert settings.http_timeout == 12.5
        assert settings.npm_registry == "https://npm.example.com"
        assert settings.log_level == "DEBUG"

    def test_bad_timeout_falls_back(self):
        assert load_settings({"DEPMEND_HTTP_TIMEOUT": "soon"}).http_timeout == DEFAULT_HTTP_TIMEOUT
        assert load_settings({"DEPMEND_HTTP_TIMEOUT": "-1"}).http_timeout == DEFAULT_HTTP_TIMEOUT
