"""Application configuration and settings management."""

from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="RIDE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Ride Dispatch API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root log level applied by create_app().")
    timezone: str = Field(
        default="Europe/Moscow",
        description="Local timezone for operating hours and the provider's order_time field.",
    )
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=("http://localhost:5173", "http://127.0.0.1:5173"),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Dispatch provider
    provider_base_url: str = Field(
        default="https://ca2.gootax.pro:8089",
        description="Base URL of the taxi-dispatch provider API.",
    )
    provider_app_id: str = ""
    provider_tenant_id: str = ""
    provider_dispatcher_id: str = ""
    provider_secret: Optional[str] = Field(
        default=None,
        description="Shared secret used to sign provider requests (HMAC-SHA256).",
    )
    provider_timeout_seconds: float = Field(default=10.0, gt=0.0)
    provider_max_attempts: int = Field(default=3, ge=1)
    provider_backoff_seconds: float = Field(default=1.0, ge=0.0)
    provider_city_id: str = "210861"
    provider_company_id: str = "12601"
    provider_device_token: str = "citylink_auto"
    provider_pay_type: str = "CORP_BALANCE"
    sedan_tariff_id: str = "39741"
    minivan_tariff_id: str = "39742"

    # Dispatch queue
    redis_url: str = Field(default="redis://localhost:6379/0", description="Shared cache and queue store.")
    queue_name: str = "dispatch-orders"
    dispatch_rate_limit: int = Field(default=50, ge=1, description="Job starts allowed per window.")
    dispatch_rate_window_seconds: float = Field(default=60.0, gt=0.0)
    dispatch_workers: int = Field(default=1, ge=1)
    dispatch_job_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="Deadline for a caller waiting on a dispatch job to settle.",
    )
    dispatch_poll_interval_seconds: float = Field(default=0.5, gt=0.0)
    dispatch_lease_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Lease a worker holds on a claimed job; renewed while the job runs.",
    )

    # Geocoding
    geocoder_url: str = "https://geocode-maps.yandex.ru/1.x/"
    geocoder_api_key: Optional[str] = None
    geocode_cache_ttl_seconds: int = Field(default=86400, ge=1)

    # CRM / PMS
    opera_api_url: Optional[str] = None
    opera_api_token: Optional[str] = None
    opera_timeout_seconds: float = Field(default=10.0, gt=0.0)

    # Notifications
    sms_gateway_url: Optional[str] = None
    sms_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @field_validator("provider_base_url", "opera_api_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value


settings = Settings()
