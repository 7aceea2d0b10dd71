"""Settings loading and model catalogue lookup."""

import pytest

from chatsync.modules.config.config_manager import (
    AppSettings,
    ClientSettings,
    ConfigManager,
    LLMConfig,
    ModelConfig,
    resolve_env_var,
)


def test_resolve_env_var(monkeypatch):
    monkeypatch.setenv("SOME_KEY", "value")
    assert resolve_env_var("${SOME_KEY}") == "value"
    assert resolve_env_var("literal") == "literal"
    assert resolve_env_var("prefix-${SOME_KEY}") == "prefix-${SOME_KEY}"
    assert resolve_env_var(None) is None
    assert resolve_env_var("${NOT_SET_ANYWHERE}", required=False) is None
    with pytest.raises(ValueError):
        resolve_env_var("${NOT_SET_ANYWHERE}")


def test_app_settings_from_env(monkeypatch):
    monkeypatch.setenv("CHAT_HISTORY_DB_URL", "sqlite:///tmp/x.db")
    monkeypatch.setenv("CHAT_CONTEXT_WINDOW", "4")
    monkeypatch.setenv("DEFAULT_MODEL", "m1")
    settings = AppSettings()
    assert settings.chat_history_db_url == "sqlite:///tmp/x.db"
    assert settings.chat_context_window == 4
    assert settings.default_model == "m1"


def test_negative_context_window_rejected(monkeypatch):
    monkeypatch.setenv("CHAT_CONTEXT_WINDOW", "-1")
    with pytest.raises(ValueError):
        AppSettings()


def test_client_settings_prefix(monkeypatch):
    monkeypatch.setenv("CHATSYNC_BASE_URL", "http://api:9000")
    monkeypatch.setenv("CHATSYNC_PREFER_STREAMING", "false")
    settings = ClientSettings()
    assert settings.base_url == "http://api:9000"
    assert settings.prefer_streaming is False
    assert settings.stream_update_interval_ms == 150


def test_llm_config_loaded_from_config_dir(tmp_path, monkeypatch):
    (tmp_path / "llmconfig.yml").write_text(
        "models:\n"
        "  local-model:\n"
        "    model_name: llama3\n"
        "    model_url: http://localhost:11434/v1\n"
    )
    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path))
    manager = ConfigManager()
    assert list(manager.llm_config.models) == ["local-model"]
    assert manager.default_model == "local-model"


def test_invalid_yaml_falls_back_to_package_defaults(tmp_path, monkeypatch):
    (tmp_path / "llmconfig.yml").write_text("- just\n- a list\n")
    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path))
    manager = ConfigManager()
    assert "gpt-4o-mini" in manager.llm_config.models


def test_default_model_prefers_setting():
    manager = ConfigManager()
    manager._app_settings = AppSettings(default_model="b")
    manager._llm_config = LLMConfig(models={
        "a": ModelConfig(model_name="a", model_url="http://x"),
        "b": ModelConfig(model_name="b", model_url="http://x"),
    })
    assert manager.default_model == "b"


def test_no_models_means_no_default():
    manager = ConfigManager()
    manager._app_settings = AppSettings(default_model=None)
    manager._llm_config = LLMConfig()
    assert manager.default_model is None


def test_reload_clears_cache(monkeypatch):
    manager = ConfigManager()
    first = manager.app_settings
    manager.reload_configs()
    assert manager.app_settings is not first


def test_chat_history_db_url_follows_settings(monkeypatch):
    monkeypatch.setenv("CHAT_HISTORY_DB_URL", "sqlite:///tmp/other.db")
    assert ConfigManager().chat_history_db_url == "sqlite:///tmp/other.db"
