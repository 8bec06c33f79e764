"""LLM model configuration and factory.

Provider routing is done via model name prefix:
  - "ollama:<model>"  → local Ollama  (e.g. "ollama:llama3.1:70b")
  - "claude-*"        → Anthropic API
  - "grok-*"          → xAI, through its OpenAI-compatible endpoint
  - anything else     → OpenAI API   (e.g. "gpt-4o", "gpt-4o-mini")

Set DECISION_MODEL and REVIEW_MODEL in .env to choose freely.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from langchain_core.language_models import BaseChatModel

from dispatch.core.config import get_settings
from dispatch.core.logging import get_logger

logger = get_logger("agents.models")

AgentRole = Literal["decision", "review", "onboarding", "execution"]

PROMPTS_DIR = Path(__file__).parent / "prompts"


# ---------------------------------------------------------------------------
# Provider detection
# ---------------------------------------------------------------------------

def _is_ollama_model(model_name: str) -> bool:
    return model_name.lower().startswith("ollama:")


def _is_anthropic_model(model_name: str) -> bool:
    return "claude" in model_name.lower()


def _is_xai_model(model_name: str) -> bool:
    return model_name.lower().startswith("grok")


def _strip_ollama_prefix(model_name: str) -> str:
    return model_name[len("ollama:"):]


# ---------------------------------------------------------------------------
# LLM constructors
# ---------------------------------------------------------------------------

def _make_ollama(model: str, base_url: str, temperature: float = 0.3) -> BaseChatModel:
    """Create a ChatOllama instance. langchain-ollama must be installed."""
    try:
        from langchain_ollama import ChatOllama  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ImportError(
            "langchain-ollama is not installed. Run: pip install langchain-ollama"
        ) from exc

    bare_model = _strip_ollama_prefix(model)
    logger.info("Using Ollama model '%s' at %s", bare_model, base_url)
    return ChatOllama(model=bare_model, base_url=base_url, temperature=temperature, format="json")


def _make_anthropic(model: str, api_key: str, temperature: float = 0.3, max_tokens: int = 4096) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    logger.info("Using Anthropic model '%s'", model)
    return ChatAnthropic(model=model, api_key=api_key, temperature=temperature, max_tokens=max_tokens)


def _make_openai(
    model: str,
    api_key: str,
    temperature: float = 0.3,
    max_tokens: int = 4096,
    base_url: str | None = None,
) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    logger.info("Using OpenAI-compatible model '%s'%s", model, f" at {base_url}" if base_url else "")
    return ChatOpenAI(
        model=model,
        api_key=api_key,
        base_url=base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        model_kwargs={"response_format": {"type": "json_object"}},
    )


# ---------------------------------------------------------------------------
# Key validation helpers
# ---------------------------------------------------------------------------

def _require_key(role: AgentRole, model: str, api_key: str, env_name: str) -> str:
    key = (api_key or "").strip()
    if key:
        return key
    raise ValueError(
        f"Missing {env_name} for role '{role}' with model '{model}'. "
        f"Set {env_name} in .env or switch to another provider."
    )


def _build_for_model(role: AgentRole, model: str, temperature: float, max_tokens: int = 4096) -> BaseChatModel:
    """Build an LLM for *any* supported provider based on the model string."""
    settings = get_settings()

    if _is_ollama_model(model):
        return _make_ollama(model, base_url=settings.ollama_base_url, temperature=temperature)

    if _is_anthropic_model(model):
        key = _require_key(role, model, settings.anthropic_api_key, "ANTHROPIC_API_KEY")
        return _make_anthropic(model, key, temperature=temperature, max_tokens=max_tokens)

    if _is_xai_model(model):
        key = _require_key(role, model, settings.xai_api_key, "XAI_API_KEY")
        return _make_openai(model, key, temperature=temperature, max_tokens=max_tokens, base_url=settings.xai_base_url)

    key = _require_key(role, model, settings.openai_api_key, "OPENAI_API_KEY")
    return _make_openai(model, key, temperature=temperature, max_tokens=max_tokens)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_llm(role: AgentRole) -> BaseChatModel:
    """Create an LLM instance for the given agent role."""
    settings = get_settings()

    if role in ("decision", "onboarding"):
        return _build_for_model(role, settings.decision_model, temperature=0.3)
    if role == "review":
        return _build_for_model(role, settings.review_model, temperature=0.3)

    raise ValueError(f"No chat model is configured for role: {role}")


def load_system_prompt(role: AgentRole) -> str:
    """Load the system prompt for a role from ``prompts/<role>.txt``."""
    path = PROMPTS_DIR / f"{role}.txt"
    if not path.exists():
        raise FileNotFoundError(f"System prompt not found for role '{role}': {path}")
    return path.read_text(encoding="utf-8").strip()
