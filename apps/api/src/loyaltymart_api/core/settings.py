from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyaltymart.db"
    accrual_database_url: str = "sqlite+aiosqlite:///./accrual.db"
    redis_url: str = "redis://localhost:6379/0"
    database_create_schema: bool = True

    # Logging and tracing
    log_level: str = "INFO"
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None

    # Listen addresses
    run_address: str = "localhost:8080"
    accrual_run_address: str = "localhost:8081"

    # Accrual system client (mart side)
    accrual_system_address: str = "http://localhost:8081"
    accrual_request_timeout_seconds: float = 5.0
    accrual_poll_interval_seconds: float = 5.0
    accrual_retry_interval_seconds: float = 5.0
    accrual_backoff_ceiling_seconds: float = 120.0
    accrual_max_attempts: int = 60
    accrual_default_retry_after_seconds: int = 60

    # Order worker pool
    order_worker_count: int = 20
    order_queue_size: int = 20
    order_overflow_policy: Literal["spawn", "reject"] = "spawn"
    shutdown_timeout_seconds: float = 10.0

    # Accrual calculation (accrual side)
    accrual_processing_delay_seconds: float = 5.0
    accrual_processed_delay_seconds: float = 10.0
    mechanic_cache_ttl_seconds: float = 30.0

    # Inbound rate limiting
    rate_limit_requests: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_clients: int = 10_000
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    rate_limit_trusted_proxies: list[str] = Field(default_factory=list)

    @field_validator("rate_limit_trusted_proxies", mode="before")
    @classmethod
    def _parse_proxy_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Reconciliation sweep
    reconciliation_sweep_enabled: bool = True
    reconciliation_sweep_interval_seconds: int = 60
    reconciliation_sweep_limit: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
