from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewardflow.db"
    database_echo: bool = False
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "rewardflow-default"
    condition_evaluation_task_queue: str = "condition-evaluation"
    condition_evaluation_max_retries: int = 5
    condition_evaluation_retry_backoff_max_seconds: int = 300

    # HTTP server (rewardflow-api console script)
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_reload: bool | None = None
    api_workers: int = 1

    # Internal API security (event sources call the engine with this key)
    internal_api_key: str = ""

    # Condition catalog cache
    condition_catalog_cache_ttl_seconds: float = 60.0
    condition_catalog_cache_max_entries: int = 500

    # Trigger actions
    condition_webhook_timeout_seconds: float = 10.0
    gift_card_claim_max_attempts: int = 5
    diagnostics_recent_failure_limit: int = 25
    brand_display_name: str = "RewardFlow"

    # SMS gateway (Twilio REST)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    sms_timeout_seconds: float = 10.0

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    operator_alert_email_recipients: list[str] = Field(default_factory=list)

    @field_validator("operator_alert_email_recipients", mode="before")
    @classmethod
    def _parse_recipient_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
