"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: Literal["development", "production", "test"] = Field(
        default="development",
        description="Deployment mode; anything but production uses the local rate limiter",
    )

    # Job store (PostgreSQL). Unset = in-memory store (single process only)
    database_url: Optional[str] = Field(
        default=None, description="PostgreSQL connection URL for the job store"
    )
    db_pool_min_size: int = Field(default=1, description="Minimum connection pool size")
    db_pool_max_size: int = Field(default=10, description="Maximum connection pool size")

    # Redis (shared rate-limit backend)
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL for the shared rate-limit store"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Token bucket store: memory (single instance) or redis (multi-instance)",
    )
    create_job_capacity: int = Field(default=15, description="create-job bucket capacity")
    create_job_refill_rate: int = Field(
        default=10, description="create-job tokens refilled per interval"
    )
    create_job_interval_s: int = Field(default=60, description="create-job refill interval")
    generate_capacity: int = Field(default=3, description="generate bucket capacity")
    generate_refill_rate: int = Field(
        default=2, description="generate tokens refilled per interval"
    )
    generate_interval_s: int = Field(default=60, description="generate refill interval")
    publish_capacity: int = Field(default=3, description="publish bucket capacity")
    publish_refill_rate: int = Field(
        default=2, description="publish tokens refilled per interval"
    )
    publish_interval_s: int = Field(default=60, description="publish refill interval")
    publish_daily_limit: int = Field(
        default=10, description="Publish actions allowed per identifier per rolling 24h"
    )

    # Shared secrets
    worker_secret: Optional[str] = Field(
        default=None,
        description="Secret required by the worker trigger. Unset = worker refuses all requests",
    )
    load_test_secret: Optional[str] = Field(
        default=None, description="X-Load-Test-Secret value that bypasses rate limiting"
    )

    # LLM Configuration
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    gemini_primary_model: str = Field(
        default="gemini-2.5-flash", description="First model in the fallback chain"
    )
    gemini_fallback_models: str = Field(
        default="gemini-2.0-flash,gemini-flash-latest",
        description="Comma-separated fallback models, tried in order",
    )
    llm_timeout: int = Field(default=60, description="LLM request timeout in seconds")
    llm_max_output_tokens: int = Field(
        default=4096, description="Maximum output tokens per generation call"
    )

    # Generation
    max_prompt_length: int = Field(default=2000, description="Maximum prompt length")
    chunk_delay_s: float = Field(
        default=1.0, ge=0.0, description="Pause between chunk calls to avoid burst throttling"
    )

    # Worker
    worker_batch_size: int = Field(default=20, ge=1, description="Jobs claimed per drain")
    worker_concurrency: int = Field(
        default=5, ge=1, description="Jobs generated simultaneously within a drain"
    )
    worker_poll_interval_s: float = Field(
        default=60.0,
        ge=0.0,
        description="Backup drain interval in seconds (0 disables the periodic loop)",
    )
    eager_drain_enabled: bool = Field(
        default=True, description="Trigger a drain right after each job is created"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def model_chain(self) -> list[str]:
        """Primary model followed by de-duplicated fallbacks."""
        chain = [self.gemini_primary_model.strip()]
        for model in self.gemini_fallback_models.split(","):
            model = model.strip()
            if model and model not in chain:
                chain.append(model)
        return chain


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
