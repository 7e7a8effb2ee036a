import json
from functools import lru_cache
from typing import Annotated, List

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    UPSTREAM_BASE_URL, RATES_CACHE_TTL_SECONDS, RETRY_MAX_ATTEMPTS).
    SUPPORTED_CURRENCIES takes a comma separated list ("USD,EUR") or a JSON
    array (["USD", "EUR"]).
    """

    # Basic app metadata
    app_name: str = "Exchange Rate Service"
    debug: bool = False
    version: str = "0.1.0"

    # Upstream provider
    upstream_base_url: AnyHttpUrl = "https://br.dolarapi.com"  # type: ignore[assignment]
    upstream_path_template: str = "/v1/cotacoes/{currency}"
    supported_currencies: Annotated[List[str], NoDecode] = ["USD", "EUR"]

    # Cache
    cache_backend: str = "memory"  # 'memory' or 'redis'
    redis_url: str = "redis://localhost:6379/0"
    rates_cache_ttl_seconds: int = 60

    # Resilience policies
    retry_max_attempts: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 5.0
    circuit_breaker_request_volume: int = 4
    circuit_breaker_failure_ratio: float = 0.5
    circuit_breaker_delay_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    @field_validator("supported_currencies", mode="before")
    @classmethod
    def split_currencies(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return json.loads(v) if v.startswith("[") else v.split(",")
        return v

    @field_validator("supported_currencies")
    @classmethod
    def normalize_currencies(cls, v: List[str]) -> List[str]:
        codes = [c.strip().upper() for c in v if c and c.strip()]
        if not codes:
            raise ValueError("at least one supported currency is required")
        return codes

    @field_validator("upstream_path_template")
    @classmethod
    def path_has_placeholder(cls, v: str) -> str:
        if "{currency}" not in v:
            raise ValueError("upstream_path_template must contain '{currency}'")
        return v if v.startswith("/") else "/" + v

    def init_post_load(self) -> None:
        """Validate cross-field constraints the field validators cannot express."""
        allowed = {"memory", "redis"}
        if self.cache_backend not in allowed:
            raise ValueError(
                f"Unsupported cache_backend '{self.cache_backend}'. Allowed: {allowed}"
            )
        if self.rates_cache_ttl_seconds <= 0:
            raise ValueError("rates_cache_ttl_seconds must be positive")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        if self.retry_delay_seconds < 0 or self.timeout_seconds <= 0:
            raise ValueError("retry delay must be >= 0 and timeout > 0")
        if self.circuit_breaker_request_volume < 1:
            raise ValueError("circuit_breaker_request_volume must be at least 1")
        if not (0 < self.circuit_breaker_failure_ratio <= 1):
            raise ValueError("circuit_breaker_failure_ratio must be in (0, 1]")
        if self.circuit_breaker_delay_seconds < 0:
            raise ValueError("circuit_breaker_delay_seconds must be >= 0")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
