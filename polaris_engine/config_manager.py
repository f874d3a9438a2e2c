"""Configuration manager for Polaris Engine using TOML files."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

import toml

from . import config

logger = logging.getLogger(__name__)

PROVIDER_ROLES = ("primary", "fallback")

# Default configuration for each provider role
DEFAULT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "primary": {
        "provider": "cerebras",
        "protocol": "openai",
        "model": "zai-glm-4.7",
        "endpoint": "https://api.cerebras.ai/v1/chat/completions",
        "api_key_env": "CEREBRAS_API_KEY",
    },
    "fallback": {
        "provider": "openrouter",
        "protocol": "anthropic",
        "model": "anthropic/claude-sonnet-4",
        "endpoint": "https://openrouter.ai/api/v1/messages",
        "api_key_env": "OPENROUTER_API_KEY",
    },
}

DEFAULT_AGENT_CONFIG: Dict[str, Any] = {
    "max_steps": config.DEFAULT_MAX_STEPS,
    "max_tokens": config.DEFAULT_MAX_TOKENS,
    "temperature": config.DEFAULT_TEMPERATURE,
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not config.CONFIG_FILE.exists():
        return {}
    try:
        with open(config.CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s", config.CONFIG_FILE, exc)
        return {}


def _save_full_config(data: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    config.ensure_base_dirs()
    try:
        with open(config.CONFIG_FILE, "w") as f:
            toml.dump(data, f)
        return True
    except OSError as exc:
        logger.warning("Could not write %s: %s", config.CONFIG_FILE, exc)
        return False


def get_provider_defaults(role: str) -> Dict[str, Any]:
    """Get default configuration for a provider role.

    Raises:
        ValueError: If *role* is not ``primary`` or ``fallback``.
    """
    if role not in DEFAULT_CONFIGS:
        raise ValueError(f"Unknown provider role '{role}'. Choose from: {', '.join(PROVIDER_ROLES)}")
    return DEFAULT_CONFIGS[role].copy()


def load_provider_config(role: str) -> Dict[str, Any]:
    """Load settings for one provider role.

    Values from the ``[primary]`` / ``[fallback]`` section override the
    defaults. When no ``api_key`` is stored, the environment variable named
    by ``api_key_env`` is consulted.
    """
    settings = get_provider_defaults(role)
    settings.update(load_full_config().get(role, {}))
    if not settings.get("api_key"):
        settings["api_key"] = os.environ.get(settings.get("api_key_env", ""), "")
    return settings


def save_provider_config(
    role: str,
    model: str = "",
    api_key: str = "",
    endpoint: str = "",
    provider: str = "",
    protocol: str = "",
) -> bool:
    """Save provider settings for *role*, preserving other sections.

    Returns:
        True if saved successfully, False otherwise.
    """
    get_provider_defaults(role)
    data = load_full_config()
    section = dict(data.get(role, {}))
    if provider:
        section["provider"] = provider
    if model:
        section["model"] = model
    if api_key:
        section["api_key"] = api_key
    if endpoint:
        section["endpoint"] = endpoint
    if protocol:
        section["protocol"] = protocol
    data[role] = section
    return _save_full_config(data)


def load_agent_config() -> Dict[str, Any]:
    """Load orchestration bounds from the ``[agent]`` section."""
    settings = DEFAULT_AGENT_CONFIG.copy()
    settings.update(load_full_config().get("agent", {}))
    settings["max_steps"] = int(settings["max_steps"])
    settings["max_tokens"] = int(settings["max_tokens"])
    settings["temperature"] = float(settings["temperature"])
    return settings
