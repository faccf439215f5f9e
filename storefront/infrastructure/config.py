"""Application configuration.

Loads settings from environment variables (and an optional ``.env``
file) with development-friendly defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False
    app_url: str = "http://localhost:3000"

    # Storage: "memory" or "sql"
    store_backend: str = "memory"
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"

    # Authentication
    admin_api_key: str = "dev-admin-key-change-in-production"
    identity_secret: str = "dev-identity-secret-change-in-production"

    # Payment gateway (ePayco)
    gateway_api_url: str = "https://apify.epayco.co"
    gateway_validation_url: str = "https://api.secure.payco.co"
    gateway_public_key: str = ""
    gateway_private_key: str = ""
    gateway_p_cust_id_cliente: str = ""
    gateway_p_key: str = ""
    gateway_timeout_seconds: float = 30.0
    gateway_test_mode: bool = True

    # Pricing
    currency: str = "COP"
    tax_rate_percent: int = 19
    shipping_cost: int = 15000

    # Order lifecycle
    pending_order_ttl_minutes: int = 30
    audit_write_attempts: int = 3

    # Notifications
    notification_webhook_url: str = ""
    notification_webhook_secret: str = "dev-notification-secret-change-in-production"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
