"""Configuration management for FeedbackHub."""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # OpenAI API
    openai_api_key: str = Field("", description="OpenAI API key")
    semantic_model: str = Field("gpt-4o-mini", description="Chat model used for semantic requests")
    embedding_model: str = Field("text-embedding-3-small", description="Embedding model for theme labels")
    temperature: float = Field(0.2, description="Sampling temperature for semantic requests")
    max_tokens: int = Field(300, description="Max tokens per semantic response")

    # Logging
    log_level: str = Field("INFO", description="Logging level")

    # Retry and timeouts
    max_retries: int = Field(3, description="Maximum attempts per semantic call")
    retry_delays: List[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0], description="Delay before each retry, in seconds")
    request_timeout_ms: int = Field(30000, description="Per-call timeout in milliseconds")

    # Pipeline settings
    max_workers: int = Field(24, description="Concurrent in-flight semantic requests")
    run_time_budget_seconds: float = Field(600.0, description="Wall-clock budget for one analysis run")
    similarity_threshold: float = Field(0.75, description="Theme similarity needed to group or match clusters")
    min_confidence: float = Field(0.5, description="Default minimum insight confidence")

    # Response cache
    cache_dir: str = Field(".cache/semantic", description="Directory of the completion cache")
    enable_response_cache: bool = Field(False, description="Cache chat completions on disk between runs")

    @property
    def effective_openai_key(self) -> str:
        """Get the effective OpenAI API key."""
        return self.openai_api_key.strip()


# Global settings instance
settings = Settings()
