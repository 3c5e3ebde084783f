"""
Environment configuration for every function.

Values come from the Lambda environment; tests override them with monkeypatch
and call get_settings.cache_clear().
"""
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import List

from aws_lambda_powertools import Logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from smartpark.billing import BillingRate

logger = Logger(child=True)


class Settings(BaseSettings):
    """Application settings read from environment variables"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    # Application
    stage_name: str = "prod"
    company_name: str = "Smart Park"
    timezone: str = "Africa/Lagos"
    log_level: str = "INFO"
    aws_region: str = "us-east-1"

    # Pricing
    billing_rate_per_unit: Decimal = Field(default=Decimal("105.99"), gt=0)
    billing_unit_minutes: int = Field(default=10, ge=1)

    # Reservation window
    max_reservation_hours: int = Field(default=24, ge=1)
    min_reservation_minutes: int = Field(default=10, ge=0)

    # Tables
    parking_space_table: str = "ParkingSpaceTable"
    reservation_table: str = "ReservationsTable"
    payment_history_table: str = "PaymentHistoryTable"
    reservation_history_table: str = "ReservationHistoryTable"
    db_timeout_seconds: float = 5.0

    # CORS
    allowed_origins_str: str = Field(
        default="http://localhost:3002",
        alias="allowed_origins",
        description="Comma-separated list of allowed CORS origins",
    )

    # Payment gateway
    flw_secret_key: str = ""
    flw_api_url: str = "https://api.flutterwave.com/v3"
    payment_currency: str = "NGN"
    payment_timeout_seconds: float = 10.0

    # Webhook
    webhook_secret: str = ""

    @property
    def allowed_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins_str.split(",") if origin.strip()]

    @property
    def primary_origin(self) -> str:
        origins = self.allowed_origins
        return origins[0] if origins else "*"

    @property
    def billing_rate(self) -> BillingRate:
        return BillingRate(
            rate_per_unit=self.billing_rate_per_unit,
            unit=timedelta(minutes=self.billing_unit_minutes),
        )

    @property
    def is_dev(self) -> bool:
        return self.stage_name.lower() == "dev"


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    missing = [
        name for name, value in (
            ("FLW_SECRET_KEY", settings.flw_secret_key),
            ("WEBHOOK_SECRET", settings.webhook_secret),
        )
        if not value
    ]
    if missing:
        logger.warning("Missing environment variables", extra={"missing": missing})
    return settings
