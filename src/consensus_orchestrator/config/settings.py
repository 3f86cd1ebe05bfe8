"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "consensus-orchestrator"
    app_env: str = "dev"
    app_debug: bool = False
    database_url: str = ""
    checkpoint_database_url: str = ""

    workflow_budget_s: int = Field(default=800, ge=1)
    timing_warning_percent: int = Field(default=75, ge=0, le=100)
    timing_critical_percent: int = Field(default=90, ge=0, le=100)
    # Step name after which the workflow raises a simulated crash (resume drills).
    debug_crash_after_step: str = ""

    default_max_rounds: int = Field(default=3, ge=1, le=10)
    default_consensus_threshold: int = Field(default=80, ge=0, le=100)
    default_evaluator_model: str = "claude-3-7-sonnet-20250219"

    llm_timeout_s: float = Field(default=120.0, ge=0.5)
    anthropic_max_tokens: int = Field(default=4096, ge=1)
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    search_url: str = "https://api.tavily.com/search"
    search_max_results: int = Field(default=5, ge=1, le=20)
    search_depth: str = "basic"
    search_timeout_s: float = Field(default=15.0, ge=0.5)

    # Server-side keys used for preview runs (callers without an identity).
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""
    openrouter_api_key: str = ""
    tavily_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="CONSENSUS_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_checkpoint_database_url(self) -> str:
        return self.checkpoint_database_url or self.resolved_database_url()

    def resolved_provider_keys(self) -> dict[str, str | None]:
        return {
            "openai": self.openai_api_key or os.getenv("OPENAI_API_KEY") or None,
            "anthropic": self.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY") or None,
            "google": self.google_api_key or os.getenv("GOOGLE_API_KEY") or None,
            "openrouter": self.openrouter_api_key or os.getenv("OPENROUTER_API_KEY") or None,
            "tavily": self.tavily_api_key or os.getenv("TAVILY_API_KEY") or None,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
