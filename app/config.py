"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "zeynora"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    secret_key: str
    site_url: str = "https://zeynora.com"

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Hosted Postgres
    database_url: str

    # Redis (Celery broker + Shiprocket token cache)
    redis_url: str

    # Razorpay
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: Optional[str] = None

    # Checkout
    payment_pending_ttl_minutes: int = 30
    currency: str = "INR"

    # Shiprocket
    shiprocket_enabled: bool = False
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1"
    shiprocket_email: Optional[str] = None
    shiprocket_password: Optional[str] = None
    shiprocket_pickup_pincode: str = "110001"
    shiprocket_pickup_location: str = "Primary"
    shiprocket_max_pickup_retries: int = 2
    blocked_pincodes: List[str] = []

    # Default package (kg / cm)
    default_shipment_weight: float = 1.5
    default_shipment_length: float = 40
    default_shipment_breadth: float = 30
    default_shipment_height: float = 10

    # Resend email
    resend_api_key: Optional[str] = None
    resend_from_email: str = "noreply@zeynora.com"
    resend_from_name: str = "ZEYNORA"

    # Admin
    admin_api_key: str

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def webhook_secret(self) -> Optional[str]:
        """Webhook secret, falling back to the API key secret."""
        return self.razorpay_webhook_secret or self.razorpay_key_secret or None


@dataclass(frozen=True)
class FulfillmentConfig:
    """
    Options for the post-payment fulfillment chain.
    Built once from Settings and passed to the services that need it.
    """

    shipment_creation_enabled: bool = False
    max_pickup_retries: int = 2
    pending_order_ttl_minutes: int = 30

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "FulfillmentConfig":
        source = source or settings
        return cls(
            shipment_creation_enabled=source.shiprocket_enabled,
            max_pickup_retries=source.shiprocket_max_pickup_retries,
            pending_order_ttl_minutes=source.payment_pending_ttl_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
