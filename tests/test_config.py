"""Tests for settings parsing and startup credential checks."""

from dispatch.core.config import Settings, get_settings


def _settings(**overrides):
    values = {"_env_file": None, "telegram_bot_token": "token"}
    values.update(overrides)
    return Settings(**values)


def test_get_settings_returns_installed_singleton(settings):
    assert get_settings() is settings


def test_allowed_ids_parse_comma_separated_list():
    assert _settings(telegram_allowed_user_ids=" 1, 22 ,,333").allowed_telegram_ids == [1, 22, 333]
    assert _settings().allowed_telegram_ids == []


def test_directories_are_resolved(tmp_path):
    s = _settings(data_dir=str(tmp_path / "a" / ".." / "data"))
    assert s.data_dir == str((tmp_path / "data").resolve())


def test_missing_required_follows_model_prefixes():
    s = _settings(decision_model="grok-4", review_model="claude-sonnet-4-20250514")
    assert sorted(s.missing_required()) == ["ANTHROPIC_API_KEY", "XAI_API_KEY"]


def test_ollama_models_need_no_keys():
    s = _settings(decision_model="ollama:llama3.1", review_model="ollama:qwen2.5")
    assert s.missing_required() == []


def test_missing_telegram_token_is_reported():
    s = _settings(telegram_bot_token="", decision_model="gpt-4o", review_model="gpt-4o", openai_api_key="sk")
    assert s.missing_required() == ["TELEGRAM_BOT_TOKEN"]
