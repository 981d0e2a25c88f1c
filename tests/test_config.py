"""
typedapi — Settings Tests
==========================

What:  Tests for environment-driven configuration.
"""

import pydantic
import pytest

from typedapi.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("HANDLER_TIMEOUT_SECONDS", raising=False)
        config = Settings(_env_file=None)
        assert config.port == 3001
        assert config.docs_path == "/docs"
        assert config.handler_timeout_seconds == 30.0
        assert config.client_base_url == "http://localhost:3001"

    def test_log_level_normalized(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(log_level="LOUD")

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("handler_timeout_seconds", "0")
        config = Settings()
        assert config.port == 8080
        assert config.handler_timeout_seconds == 0

    def test_negative_timeout_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(handler_timeout_seconds=-1)

    def test_cors_origins_list(self):
        config = Settings(cors_origins="http://a.test, http://b.test,")
        assert config.cors_origins_list == ["http://a.test", "http://b.test"]
