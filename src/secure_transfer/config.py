"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. Settings are validated at
startup, so a malformed value (e.g. a negative finality timeout) fails fast
instead of surfacing later as a confusing ledger error.

Usage:
    from secure_transfer.config import get_settings
    settings = get_settings()
    print(settings.finality_timeout_seconds)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the SecureTransfer escrow engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Ledger ---
    # "simulated" runs the in-process ledger; "http" talks to a signing gateway.
    ledger_mode: Literal["simulated", "http"] = "simulated"
    ledger_url: str = "http://localhost:8888"
    ledger_api_key: str = ""
    ledger_network: str = "testnet"
    ledger_request_timeout_seconds: float = Field(default=10.0, gt=0)
    submission_max_attempts: int = Field(default=3, ge=1)

    # --- Transaction protocol ---
    finality_timeout_seconds: float = Field(default=60.0, gt=0)
    finality_poll_interval_seconds: float = Field(default=1.0, gt=0)

    # --- Simulated ledger ---
    simulated_starting_balance: Decimal = Decimal("1000")
    simulated_seal_delay_seconds: float = Field(default=0.0, ge=0)

    # --- Automation scheduler ---
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = Field(default=30.0, gt=0)
    scheduler_auto_sweep: bool = True
    scheduler_actor_address: str = "0x0000000000000000"
    recurring_escrow_duration_seconds: int = Field(default=86400, gt=0)

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def uses_simulated_ledger(self) -> bool:
        return self.ledger_mode == "simulated"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
