"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for dispatch. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # LLM API keys (only required for the providers you actually use)
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    xai_api_key: str = ""
    xai_base_url: str = "https://api.x.ai/v1"

    # Ollama base URL, set this when using local Ollama models
    ollama_base_url: str = "http://localhost:11434"

    # Model identifiers, the prefix determines the provider:
    #   "ollama:<model>"      → local Ollama
    #   "claude-*"            → Anthropic API
    #   "grok-*"              → xAI (OpenAI-compatible endpoint)
    #   anything else         → OpenAI API
    decision_model: str = "grok-4"
    review_model: str = "grok-4"

    # Execution agent: a code-writing CLI run inside the project repo
    execution_command: str = "claude"
    execution_timeout_seconds: int = 600

    # Agent retry policy
    agent_max_attempts: int = 3
    agent_backoff_seconds: float = 1.0

    # Telegram
    telegram_bot_token: str = ""
    telegram_allowed_user_ids: str = ""

    @property
    def allowed_telegram_ids(self) -> list[int]:
        if not self.telegram_allowed_user_ids:
            return []
        return [int(uid.strip()) for uid in self.telegram_allowed_user_ids.split(",") if uid.strip()]

    # Web admin API
    web_host: str = "127.0.0.1"
    web_port: int = 3001

    # Project records live in <data_dir>/projects
    data_dir: str = "./data"

    # Onboarding creates new repositories under this directory
    workspace_dir: str = "~/dispatch-workspace"

    @field_validator("data_dir", "workspace_dir")
    @classmethod
    def _resolve_dir(cls, value: str) -> str:
        if value:
            return str(Path(value).expanduser().resolve())
        return value

    # Scheduling
    check_interval_seconds: int = 3600
    human_reply_timeout_seconds: int = 24 * 60 * 60

    # Core policy
    review_max_rounds: int = 6
    # "auto_approve" → a review agent that keeps failing approves the work
    # "escalate"     → the human is asked instead
    review_failure_policy: str = "auto_approve"
    time_budget_margin_seconds: int = 60
    max_prerequisite_tasks: int = 3

    # Git
    git_author_name: str = "dispatch"
    git_author_email: str = "dispatch@local"
    max_diff_chars: int = 30_000

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/dispatch.log"

    def missing_required(self) -> list[str]:
        """Names of credentials the configured models and channels need but lack."""
        missing: list[str] = []
        for model in {self.decision_model, self.review_model}:
            lowered = model.lower()
            if lowered.startswith("ollama:"):
                continue
            if "claude" in lowered:
                key = "ANTHROPIC_API_KEY"
                value = self.anthropic_api_key
            elif lowered.startswith("grok"):
                key = "XAI_API_KEY"
                value = self.xai_api_key
            else:
                key = "OPENAI_API_KEY"
                value = self.openai_api_key
            if not value.strip() and key not in missing:
                missing.append(key)
        if not self.telegram_bot_token.strip():
            missing.append("TELEGRAM_BOT_TOKEN")
        return missing


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
