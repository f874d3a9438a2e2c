"""Tests for TOML configuration handling."""

import pytest

from polaris_engine import config, config_manager


def test_defaults_without_config_file():
    """Test that defaults apply when no config file exists."""
    assert not config.CONFIG_FILE.exists()
    primary = config_manager.load_provider_config("primary")
    assert primary["provider"] == "cerebras"
    assert primary["protocol"] == "openai"
    assert primary["api_key"] == ""
    assert config_manager.load_agent_config() == {"max_steps": 10, "max_tokens": 2000, "temperature": 0.7}


def test_env_key_used_when_not_stored(monkeypatch):
    """Test that api_key_env is consulted for missing keys."""
    monkeypatch.setenv("OPENROUTER_API_KEY", "from-env")
    assert config_manager.load_provider_config("fallback")["api_key"] == "from-env"


def test_save_preserves_other_sections():
    """Test that saving one role keeps the rest of the file."""
    assert config_manager.save_provider_config("primary", model="m1", api_key="k1")
    assert config_manager.save_provider_config("fallback", endpoint="https://example.test/v1/messages")
    assert config_manager.save_provider_config("fallback", protocol="openai")
    data = config_manager.load_full_config()
    assert data["primary"] == {"model": "m1", "api_key": "k1"}
    assert data["fallback"] == {"endpoint": "https://example.test/v1/messages", "protocol": "openai"}
    assert config_manager.load_provider_config("primary")["api_key"] == "k1"


def test_unknown_role():
    """Test that unknown roles are rejected."""
    with pytest.raises(ValueError):
        config_manager.get_provider_defaults("tertiary")
    with pytest.raises(ValueError):
        config_manager.save_provider_config("tertiary", model="x")


def test_agent_values_are_coerced():
    """Test that agent bounds are converted to numbers."""
    config_manager._save_full_config({"agent": {"max_steps": "3", "temperature": "0"}})
    agent = config_manager.load_agent_config()
    assert agent["max_steps"] == 3
    assert agent["temperature"] == 0.0


def test_unreadable_config_falls_back():
    """Test that a corrupt file is treated as empty."""
    config.ensure_base_dirs()
    config.CONFIG_FILE.write_text("not = [valid")
    assert config_manager.load_full_config() == {}
