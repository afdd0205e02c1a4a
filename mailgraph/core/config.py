"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
import json
from typing import Annotated, Any

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_LLM_PROVIDERS = frozenset({"ollama", "litellm"})


class Settings(BaseSettings):
    """MailGraph application settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "MailGraph"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "mailgraph"
    postgres_user: str = "mailgraph"
    postgres_password: str = "mailgraph_dev_password"
    database_url: str | None = None

    # ── Language model ───────────────────────────────────────────
    llm_provider: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    litellm_url: str = "http://localhost:4000"
    litellm_api_key: SecretStr = SecretStr("")
    completion_model: str = "llama3.1:8b"
    embedding_model: str = "mxbai-embed-large"
    llm_timeout_seconds: float = 120.0
    llm_max_retries: int = 2

    # ── Embeddings ───────────────────────────────────────────────
    embedding_dimension: int = 1024

    # ── Extraction ───────────────────────────────────────────────
    extraction_workers: int = 10
    min_entity_confidence: float = 0.7
    failure_rate_threshold: float = 0.02
    progress_interval: int = 50
    fuzzy_match_threshold: float = 0.85
    fuzzy_match_types: Annotated[list[str], NoDecode] = ["concept"]
    max_body_chars: int = 2000

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Normalise the provider name and reject unknown providers."""
        provider = v.strip().lower()
        if provider not in _LLM_PROVIDERS:
            raise ValueError(f"llm_provider must be one of {sorted(_LLM_PROVIDERS)}, got {v!r}")
        return provider

    @field_validator("extraction_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1 or v > 100:
            raise ValueError("extraction_workers must be between 1 and 100")
        return v

    @field_validator("fuzzy_match_types", mode="before")
    @classmethod
    def parse_fuzzy_match_types(cls, v: Any) -> list[str]:
        """Parse fuzzy-match types from a JSON string, CSV string or list.

        Raises:
            ValueError: If the value is valid JSON but not an array, or is
                neither a string nor a list.
        """
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return [t.strip().lower() for t in v.split(",") if t.strip()]
            if not isinstance(parsed, list):
                raise ValueError(f"fuzzy_match_types must be a JSON array or comma-separated string, got {v!r}")
            v = parsed
        if isinstance(v, list):
            return [str(item).strip().lower() for item in v]
        raise ValueError(f"fuzzy_match_types must be a list of type names, got {type(v).__name__}")

    @model_validator(mode="after")
    def build_database_url(self) -> Settings:
        """Build database_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
