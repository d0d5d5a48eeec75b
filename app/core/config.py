from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "QuickShop Automations"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # SCHEDULER AUTH
    cron_current_signing_key: str | None = None
    cron_next_signing_key: str | None = None
    cron_signature_issuer: str = "Upstash"
    cron_public_url: str | None = None

    # STOREFRONT
    storefront_base_url: str = "https://my-quickshop.com"

    # EMAIL
    email_provider_default: str = "stub"
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender_email: str | None = None
    smtp_sender_name: str | None = None
    smtp_reply_to_email: str | None = None
    smtp_use_starttls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: int = Field(default=20, ge=1, le=120)

    # AUTOMATION ENGINE
    automation_run_batch_size: int = Field(default=100, ge=1, le=1000)
    automation_stale_run_minutes: int = Field(default=15, ge=1, le=1440)
    abandoned_cart_batch_size: int = Field(default=50, ge=1, le=500)
    abandoned_cart_default_delay_minutes: int = Field(default=60, ge=0)
    abandoned_cart_max_reminders: int = Field(default=3, ge=1, le=20)
    abandoned_cart_resend_hours: int = Field(default=24, ge=1, le=720)
    webhook_timeout_seconds: float = Field(default=10.0, gt=0, le=60)

    @field_validator(
        "cron_current_signing_key",
        "cron_next_signing_key",
        "cron_public_url",
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_sender_email",
        "smtp_sender_name",
        "smtp_reply_to_email",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("storefront_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if not self.cron_current_signing_key:
            raise ValueError("CRON_CURRENT_SIGNING_KEY must be set in production")

        if self.smtp_use_ssl and self.smtp_use_starttls:
            raise ValueError("Set only one of SMTP_USE_SSL or SMTP_USE_STARTTLS in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
