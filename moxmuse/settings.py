import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Retry Configuration
    retry_max_attempts: int = Field(default=3, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_ms: int = Field(default=1000, alias="RETRY_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(default=10000, alias="RETRY_MAX_DELAY_MS")
    retry_backoff_multiplier: float = Field(
        default=2.0, alias="RETRY_BACKOFF_MULTIPLIER"
    )

    # Circuit Breaker Configuration
    breaker_failure_threshold: int = Field(
        default=5, alias="BREAKER_FAILURE_THRESHOLD"
    )
    breaker_reset_timeout_seconds: float = Field(
        default=60, alias="BREAKER_RESET_TIMEOUT_SECONDS"
    )
    breaker_monitoring_period_seconds: float = Field(
        default=300, alias="BREAKER_MONITORING_PERIOD_SECONDS"
    )

    # Health Monitor Configuration
    health_check_interval_seconds: float = Field(
        default=60, alias="HEALTH_CHECK_INTERVAL_SECONDS"
    )

    # Fallback Configuration
    fallback_enabled: bool = Field(default=True, alias="FALLBACK_ENABLED")
    fallback_cache_timeout_seconds: float = Field(
        default=300, alias="FALLBACK_CACHE_TIMEOUT_SECONDS"
    )
    fallback_cache_max_size: int = Field(default=1000, alias="FALLBACK_CACHE_MAX_SIZE")

    # Upstream services
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    scryfall_api_url: str = Field(
        default="https://api.scryfall.com", alias="SCRYFALL_API_URL"
    )


_ALIASES = {field.alias for field in Settings.model_fields.values()}


def load_settings() -> Settings:
    """Build settings from the current environment (after .env is loaded)."""
    return Settings.model_validate(
        {k: v for k, v in os.environ.items() if k in _ALIASES}
    )


global_settings = load_settings()
