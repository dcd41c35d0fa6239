"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10
    storage_backend: str = "sql"  # sql, memory

    # Redis (locks, auth rate limiting, worker heartbeats)
    redis_url: str = "redis://localhost:6379/0"

    # Auth
    jwt_secret: str = ""
    jwt_expiry_hours: int = 24

    # SendGrid
    sendgrid_api_key: str = ""
    sendgrid_from_email: str = "referrals@refertrack.io"
    sendgrid_from_name: str = "ReferTrack"

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # Tremendous (reward payouts)
    tremendous_api_key: str = ""
    tremendous_base_url: str = "https://testflight.tremendous.com/api/v2"
    tremendous_funding_source_id: str = "balance"
    tremendous_campaign_id: str = ""

    # Referral codes
    referral_code_length: int = 8
    referral_code_policy: str = "random"  # random, branded
    referral_code_max_attempts: int = 3
    referral_code_ttl_days: int = 90

    # Rewards
    default_reward_type: str = "gift_card"  # gift_card, direct_payment, service_credit
    default_reward_amount: float = 50.0
    auto_reward_on_complete: bool = False

    # Background lifecycle worker
    lifecycle_worker_enabled: bool = True
    lifecycle_poll_interval_seconds: int = 3600

    # Sentry
    sentry_dsn: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
