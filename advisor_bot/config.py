"""
Configuration management for Advisor_bot.
Uses pydantic-settings to load from environment variables and .env files.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM Provider settings
    llm_provider: Literal["anthropic", "openai", "gemini", "ollama"] = "gemini"
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    model_name: str = "claude-sonnet-4-20250514"
    gemini_model: str = "gemini-2.5-flash"
    openai_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.7

    # Ollama settings (for local LLMs)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:latest"

    # Paths
    data_dir: Path = Field(default=Path("./data"))

    # Embedding settings
    embedding_provider: Literal["gemini", "openai", "sentence-transformers"] = "gemini"
    embedding_model: str | None = None  # None = provider default
    # Must match the provider's output size at read and write time
    embedding_dimensions: int = 768

    # RAG settings
    rag_enabled: bool = True
    rag_min_similarity: float = 0.3
    rag_email_limit: int = 3
    rag_contact_limit: int = 3
    rag_search_limit: int = 5

    # Agent
    agent_max_iterations: int = 5

    # Google OAuth (Gmail + Calendar share one token)
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_credentials_file: Path = Field(default=Path("./credentials.json"))
    # IANA timezone name used for calendar events, e.g. "America/New_York"
    calendar_timezone: str = "UTC"

    # HubSpot OAuth
    hubspot_client_id: str | None = None
    hubspot_client_secret: str | None = None
    hubspot_redirect_uri: str = "http://localhost:8080/oauth/hubspot/callback"

    # Sync
    sync_days_back: int = 30
    sync_max_emails: int = 100

    # HTTP
    http_timeout_seconds: float = 30.0

    # Default user for the CLI
    default_user_email: str | None = None

    # Logging
    log_level: str = "INFO"

    @field_validator("rag_min_similarity")
    @classmethod
    def _check_similarity(cls, v: float) -> float:
        """Cosine similarity thresholds only make sense in [-1, 1]."""
        if not -1.0 <= v <= 1.0:
            raise ValueError("rag_min_similarity must be between -1 and 1")
        return v

    @property
    def db_path(self) -> Path:
        return self.data_dir / "advisor.db"

    @property
    def chroma_dir(self) -> Path:
        return self.data_dir / "chromadb"

    def get_api_key(self, provider: str | None = None) -> str:
        """Get the API key for a provider (defaults to the configured LLM provider).

        Note: Ollama and sentence-transformers don't need a key, 'local' is returned.
        """
        provider = provider or self.llm_provider
        if provider == "anthropic":
            if not self.anthropic_api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY not set")
            return self.anthropic_api_key
        elif provider == "openai":
            if not self.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY not set")
            return self.openai_api_key
        elif provider == "gemini":
            if not self.gemini_api_key:
                raise ConfigurationError("GEMINI_API_KEY not set")
            return self.gemini_api_key
        elif provider in ("ollama", "sentence-transformers"):
            return "local"
        else:
            raise ConfigurationError(f"Unknown provider: {provider}")


# Global settings instance
settings = Settings()
