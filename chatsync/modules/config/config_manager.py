"""
Settings for the chatsync server and client.

``AppSettings`` and ``ClientSettings`` come from the environment (and a
``.env`` file) through pydantic-settings. The model catalogue is a YAML
file, looked up first in the configured config folder and then in the
defaults shipped inside the package.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def resolve_env_var(value: Optional[str], required: bool = True) -> Optional[str]:
    """Expand a value of the exact form ``${NAME}`` from the environment.

    Anything else, including ``prefix-${NAME}``, is returned unchanged. An
    unset variable raises ``ValueError`` unless ``required`` is false, in
    which case None is returned.
    """
    if value is None:
        return None

    match = _ENV_REFERENCE.fullmatch(value)
    if not match:
        return value

    name = match.group(1)
    resolved = os.environ.get(name)
    if resolved is None and required:
        raise ValueError(f"Environment variable '{name}' is referenced in config but not set")
    return resolved


class ModelConfig(BaseModel):
    """One entry of the model catalogue."""
    model_name: str
    model_url: str
    api_key: str = ""
    description: Optional[str] = None
    max_tokens: Optional[int] = 4096
    temperature: Optional[float] = 0.7
    extra_headers: Optional[Dict[str, str]] = None


class LLMConfig(BaseModel):
    """Model catalogue keyed by the name clients pass as ``model``."""
    models: Dict[str, ModelConfig] = Field(default_factory=dict)

    @field_validator("models", mode="before")
    @classmethod
    def _coerce_models(cls, value):
        if isinstance(value, dict):
            return {
                name: ModelConfig(**entry) if isinstance(entry, dict) else entry
                for name, entry in value.items()
            }
        return value


class AppSettings(BaseSettings):
    """Server settings loaded from environment variables."""

    app_name: str = "chatsync"
    port: int = 8000
    debug_mode: bool = False
    log_level: str = "INFO"
    feature_metrics_logging_enabled: bool = Field(
        False,
        description="Emit [METRIC] log lines for chat turns, session changes and errors",
        validation_alias=AliasChoices("FEATURE_METRICS_LOGGING_ENABLED"),
    )
    feature_suppress_litellm_logging: bool = Field(
        default=True,
        description="Keep LiteLLM's own loggers at ERROR",
        validation_alias=AliasChoices("FEATURE_SUPPRESS_LITELLM_LOGGING"),
    )

    # The reverse proxy sets this header after authenticating the user
    auth_user_header: str = Field(
        default="X-User-Email",
        validation_alias=AliasChoices("AUTH_USER_HEADER"),
    )
    test_user: str = "test@test.com"  # debug_mode only

    # Storage
    chat_history_db_url: str = Field(
        default="sqlite:///data/chatsync.db",
        description="SQLAlchemy URL for sessions and messages (sqlite:// or postgresql://)",
        validation_alias=AliasChoices("CHAT_HISTORY_DB_URL"),
    )
    deleted_session_retention_days: int = Field(
        default=30,
        validation_alias=AliasChoices("DELETED_SESSION_RETENTION_DAYS"),
    )
    purge_batch_size: int = 100

    # Model and context
    app_config_dir: str = Field(default="config", validation_alias=AliasChoices("APP_CONFIG_DIR"))
    llm_config_file: str = Field(default="llmconfig.yml", validation_alias=AliasChoices("LLM_CONFIG_FILE"))
    default_model: Optional[str] = Field(default=None, validation_alias=AliasChoices("DEFAULT_MODEL"))
    system_prompt: str = (
        "You are a helpful assistant. Answer clearly and concisely, and use the "
        "conversation history to stay consistent with earlier turns."
    )
    chat_context_window: int = Field(
        default=10,
        ge=0,
        description="Number of recent non-file turns passed to the model",
        validation_alias=AliasChoices("CHAT_CONTEXT_WINDOW"),
    )
    session_title_max_length: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        populate_by_name=True,
    )


class ClientSettings(BaseSettings):
    """Settings for the async chat client, read from CHATSYNC_* variables."""

    base_url: str = "http://127.0.0.1:8000"
    user_email: Optional[str] = None
    auth_user_header: str = "X-User-Email"
    request_timeout: float = 120.0
    prefer_streaming: bool = True
    stream_update_interval_ms: int = 150
    stream_chunk_threshold: int = 10
    stream_chunk_size: int = 15

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="CHATSYNC_",
    )


class ConfigManager:
    """Lazily loads and caches server settings and the model catalogue."""

    def __init__(self, package_root: Optional[Path] = None):
        self._package_root = package_root or Path(__file__).resolve().parents[2]
        self._app_settings: Optional[AppSettings] = None
        self._llm_config: Optional[LLMConfig] = None

    def _candidate_paths(self, file_name: str) -> List[Path]:
        """Where ``file_name`` may live, most specific first.

        The configured folder is tried as given (relative to the working
        directory) and relative to the repository root, then the package
        defaults in ``chatsync/config/``.
        """
        config_dir = Path(self.app_settings.app_config_dir)
        ordered = [config_dir / file_name]
        if not config_dir.is_absolute():
            ordered.append(self._package_root.parent / config_dir / file_name)
        ordered.append(self._package_root / "config" / file_name)

        unique: List[Path] = []
        for path in ordered:
            if path not in unique:
                unique.append(path)
        return unique

    @staticmethod
    def _read_yaml_mapping(path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error("Could not read %s: %s", path, e, exc_info=True)
            return None
        if not isinstance(data, dict):
            logger.error("Ignoring %s: top level is %s, not a mapping", path, type(data).__name__)
            return None
        return data

    def _load_first_yaml(self, file_name: str) -> Optional[Dict[str, Any]]:
        paths = self._candidate_paths(file_name)
        for path in paths:
            if not path.exists():
                continue
            data = self._read_yaml_mapping(path)
            if data is not None:
                logger.info("Loaded %s from %s", file_name, path)
                return data
        logger.warning("No usable %s found in %s", file_name, [str(p) for p in paths])
        return None

    @property
    def app_settings(self) -> AppSettings:
        if self._app_settings is None:
            self._app_settings = AppSettings()
            logger.info("Application settings loaded")
        return self._app_settings

    @property
    def llm_config(self) -> LLMConfig:
        """Model catalogue; an unreadable or invalid file yields an empty one."""
        if self._llm_config is None:
            data = self._load_first_yaml(self.app_settings.llm_config_file)
            try:
                self._llm_config = LLMConfig(**data) if data else LLMConfig()
            except ValueError as e:
                logger.error("Invalid model catalogue: %s", e, exc_info=True)
                self._llm_config = LLMConfig()
            logger.info("Model catalogue has %d models", len(self._llm_config.models))
        return self._llm_config

    @property
    def default_model(self) -> Optional[str]:
        """Configured default model, else the first model in the catalogue."""
        if self.app_settings.default_model:
            return self.app_settings.default_model
        return next(iter(self.llm_config.models), None)

    @property
    def chat_history_db_url(self) -> str:
        return self.app_settings.chat_history_db_url

    def reload_configs(self) -> None:
        """Drop cached values; the next access reads them again."""
        self._app_settings = None
        self._llm_config = None
        logger.info("Configuration cache cleared")


config_manager = ConfigManager()


def get_app_settings() -> AppSettings:
    return config_manager.app_settings


def get_llm_config() -> LLMConfig:
    return config_manager.llm_config
