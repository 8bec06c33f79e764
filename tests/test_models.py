"""Tests for model factory credential validation and provider routing."""

from types import SimpleNamespace

import pytest


def _settings(**overrides):
    values = {
        "decision_model": "grok-4",
        "review_model": "grok-4",
        "openai_api_key": "openai-test-key",
        "anthropic_api_key": "anthropic-test-key",
        "xai_api_key": "xai-test-key",
        "xai_base_url": "https://api.x.ai/v1",
        "ollama_base_url": "http://localhost:11434",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_grok_model_uses_openai_client_with_xai_endpoint(monkeypatch):
    from dispatch.agents import models
    calls = []
    monkeypatch.setattr(models, "get_settings", lambda: _settings())
    monkeypatch.setattr(models, "_make_openai", lambda *args, **kwargs: calls.append(kwargs) or "ok-xai")
    assert models.get_llm("decision") == "ok-xai"
    assert calls[0]["base_url"] == "https://api.x.ai/v1"


def test_openai_model_uses_openai_factory(monkeypatch):
    from dispatch.agents import models
    calls = []
    monkeypatch.setattr(models, "get_settings", lambda: _settings(review_model="gpt-4o"))
    monkeypatch.setattr(models, "_make_openai", lambda *args, **kwargs: calls.append(kwargs) or "ok-openai")
    assert models.get_llm("review") == "ok-openai"
    assert calls[0].get("base_url") is None


def test_anthropic_model_uses_anthropic_factory(monkeypatch):
    from dispatch.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(decision_model="claude-opus-4-5"))
    monkeypatch.setattr(models, "_make_anthropic", lambda *args, **kwargs: "ok-anthropic")
    assert models.get_llm("decision") == "ok-anthropic"


def test_ollama_model_uses_ollama_factory(monkeypatch):
    from dispatch.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(review_model="ollama:llama3.1:70b"))
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ok-ollama")
    assert models.get_llm("review") == "ok-ollama"


def test_onboarding_shares_the_decision_model(monkeypatch):
    from dispatch.agents import models
    settings = _settings(decision_model="gpt-4o", review_model="ollama:qwen2.5")
    monkeypatch.setattr(models, "get_settings", lambda: settings)
    monkeypatch.setattr(models, "_make_openai", lambda *args, **kwargs: "openai")
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ollama")
    assert models.get_llm("onboarding") == "openai"
    assert models.get_llm("review") == "ollama"


def test_missing_xai_key_has_clear_message(monkeypatch):
    from dispatch.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(xai_api_key=""))
    with pytest.raises(ValueError) as exc:
        models.get_llm("decision")
    msg = str(exc.value)
    assert "XAI_API_KEY" in msg
    assert "decision" in msg


def test_anthropic_model_missing_key_has_clear_message(monkeypatch):
    from dispatch.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(
        review_model="claude-sonnet-4-20250514",
        anthropic_api_key="",
    ))
    with pytest.raises(ValueError) as exc:
        models.get_llm("review")
    assert "ANTHROPIC_API_KEY" in str(exc.value)


def test_ollama_does_not_require_any_api_key(monkeypatch):
    from dispatch.agents import models
    monkeypatch.setattr(models, "get_settings", lambda: _settings(
        decision_model="ollama:llama3.1",
        openai_api_key="",
        anthropic_api_key="",
        xai_api_key="",
    ))
    monkeypatch.setattr(models, "_make_ollama", lambda *args, **kwargs: "ok-ollama")
    assert models.get_llm("decision") == "ok-ollama"


def test_execution_role_has_no_chat_model():
    from dispatch.agents import models
    with pytest.raises(ValueError):
        models.get_llm("execution")


@pytest.mark.parametrize("role", ["decision", "review", "onboarding", "execution"])
def test_every_role_has_a_system_prompt(role):
    from dispatch.agents import models
    assert models.load_system_prompt(role)
