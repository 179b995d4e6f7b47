"""Application configuration."""

import os
from decimal import Decimal
from pathlib import Path
from typing import Literal
from uuid import uuid4

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ballot_builder.domain.ballots import Pricing

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    payment_api_key: str
    payment_base_url: str
    election_store_url: str
    election_store_token: str | None = None
    election_store_backend: Literal["http", "supabase"] = "http"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    admin_token: str
    price_per_seat: Decimal = Decimal("0.10")
    currency: str = "usd"
    currency_exponent: int = 2
    deployment_session_id: str = Field(default_factory=lambda: uuid4().hex)
    commit_attempts: int = Field(default=3, ge=1)
    commit_backoff_seconds: float = 0.5
    gateway_retry_attempts: int = Field(default=2, ge=0)
    gateway_backoff_seconds: float = 0.3
    confirm_poll_interval_seconds: float = 2.0
    confirm_poll_limit: int = 90
    ledger_dir: Path = Path(".ballot_ledger")
    evict_synced_records: bool = False
    reconcile_interval_seconds: float = 300.0
    workflow_idle_ttl_seconds: float = Field(default=3600.0, gt=0)
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    def pricing(self) -> Pricing:
        """Return the seat pricing for this deployment."""
        return Pricing(
            price_per_seat=self.price_per_seat,
            currency=self.currency.lower(),
            exponent=self.currency_exponent,
        )
