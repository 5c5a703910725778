"""Shared configuration management for the back-office core.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_DISCOUNT_LIMIT_TYPE=percentage
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="restaurant-backoffice-core",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # NF-e import
    nfe_max_file_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Largest accepted NF-e XML upload in bytes",
        gt=0,
    )

    # Payment-time discount ceiling, one per deployment
    discount_limit_type: Literal["fixed", "percentage", "none"] = Field(
        default="none",
        description="Unit of the checkout discount limit: fixed (R$), percentage, or none",
    )
    discount_limit_value: Decimal | None = Field(
        default=None,
        description="Checkout discount limit value (currency amount or percentage points)",
    )

    # Storage configuration (S3-compatible object storage for raw XML)
    storage_enabled: bool = Field(
        default=False,
        description="Archive imported NF-e XML in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket holding archived invoice XML",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
