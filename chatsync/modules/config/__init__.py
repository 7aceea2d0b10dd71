"""Configuration module for chatsync.

Provides centralized configuration management with:
- Pydantic settings for the server and the client
- Environment variable loading (.env supported)
- YAML model configuration
"""

from .config_manager import (
    AppSettings,
    ClientSettings,
    ConfigManager,
    LLMConfig,
    ModelConfig,
    config_manager,
    get_app_settings,
    get_llm_config,
)

__all__ = [
    "AppSettings",
    "ClientSettings",
    "ConfigManager",
    "LLMConfig",
    "ModelConfig",
    "config_manager",
    "get_app_settings",
    "get_llm_config",
]
