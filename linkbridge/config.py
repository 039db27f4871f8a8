from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 5.0

    bot_phone: str = ""
    default_country_code: str = "234"

    session_ttl_seconds: int = 600
    claim_ttl_seconds: int = 600
    marker_ttl_seconds: int = 86400
    session_max_age_minutes: int = 10
    response_delay_seconds: float = 30.0

    store_retries: int = 3
    store_retry_backoff_seconds: float = 1.0

    gateway_url: str = "http://localhost:3000"
    gateway_token: Optional[str] = None
    gateway_timeout_seconds: float = 30.0
    media_max_bytes: int = 8 * 1024 * 1024

    profile_source: Literal["sheets", "yaml"] = "sheets"
    google_sheet_id: Optional[str] = None
    google_api_key: Optional[str] = None
    google_sheet_range: str = "Helsinki!A:Z"
    profiles_path: str = "profiles.yaml"

    webhook_secret: Optional[str] = None
    api_rate_limit_count: int = 100
    api_rate_limit_window_seconds: int = 900
    cors_allow_origins: str = "*"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
