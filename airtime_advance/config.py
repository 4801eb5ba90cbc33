"""Configuration management using Pydantic Settings"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AIRTIME_",
        extra="ignore",
    )

    # Database (ledger persistence)
    database_url: str = "sqlite://"

    # Service
    service_name: str = "airtime-advance"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    consent_base_url: str = "http://localhost:3000"

    # Trigger gate
    low_balance_threshold_cents: int = 50
    trigger_debounce_seconds: float = 3.0
    offer_cooldown_seconds: float = 60.0

    # Usage simulation (depletion ticks during a live call)
    depletion_interval_seconds: float = 1.2
    depletion_step_cents: int = 10
    depletion_rate_cents_per_min: int = 500
    call_start_min_balance_cents: int = 150
    call_start_max_balance_cents: int = 400
    default_balance_cents: int = 200

    # Eligibility policy
    min_tenure_days: int = 30
    min_p_repay: float = 0.5
    min_confidence: float = 0.6
    active_loan_cooldown_seconds: float = 24 * 60 * 60
    amount_buckets_cents: List[int] = [100, 500, 1000]
    max_exposure_ratio: float = 0.5  # Share of average top-up we are willing to advance
    voice_rate_cents_per_minute: int = 10
    data_rate_cents_per_day: int = 50

    # Offers
    offer_expiry_seconds: float = 10 * 60

    # SMS gateway mock
    sms_delivery_delay_seconds: float = 1.0
    sms_delivery_failure_rate: float = 0.0
    sms_failure_seed: int = 7

    # Demo automation: walk offers through consent without a user
    auto_advance_consent: bool = False
    auto_link_open_delay_seconds: float = 4.0
    auto_accept_delay_seconds: float = 4.0


settings = Settings()
