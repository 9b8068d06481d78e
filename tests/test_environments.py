"""
Test environment-specific configurations
"""

import pytest
from config.environments import get_environment_config
from config.environments.development import get_development_config
from config.environments.production import get_production_config


class TestEnvironmentConfigs:
    """Test environment-specific configuration loading"""

    def test_development_config(self):
        """Test development configuration"""
        config = get_development_config()

        assert config.environment == "development"
        assert config.debug is True
        assert config.logging.level == "DEBUG"
        assert config.retry.max_retries == 0
        assert config.persistence.db_path == "data/dev-chats.db"

    def test_production_config(self):
        """Test production configuration"""
        config = get_production_config()

        assert config.environment == "production"
        assert config.debug is False
        assert config.logging.level == "INFO"
        assert config.retry.max_retries == 3

    @pytest.mark.parametrize("env,expected_debug", [("development", True), ("production", False)])
    def test_environment_selection(self, monkeypatch, env, expected_debug):
        """Test environment selection from APP_ENV"""
        monkeypatch.setenv("APP_ENV", env)
        config = get_environment_config()

        assert config.environment == env
        assert config.debug is expected_debug

    def test_unknown_environment_uses_base_config(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "staging")
        config = get_environment_config()

        assert config.environment == "staging"
        assert config.retry.max_retries == 2
