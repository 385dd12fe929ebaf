from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_VERIFICATION_PHOTO_COUNT = 2


@dataclass(frozen=True)
class SubscriptionPeriod:
    id: str
    label: str
    days: int
    amount: int
    currency: str


@dataclass(frozen=True)
class PaymentDetails:
    card: str | None
    name: str | None
    phone: str | None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bot_token: str | None = None
    webhook_url: str | None = None
    webhook_secret: str | None = None
    webhook_path: str = "/telegram/webhook"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    database_url: str | None = None
    database_pool_size: int = 5
    database_max_overflow: int = 5
    database_pool_timeout_seconds: int = 30
    database_pool_recycle_seconds: int = 1800

    # Кэш сессий в Redis используется только как резерв при недоступности Postgres.
    redis_url: str | None = None
    session_cache_prefix: str = "session:"
    session_cache_ttl_seconds: int = 7 * 24 * 3600

    verification_required_photos: int = DEFAULT_VERIFICATION_PHOTO_COUNT
    verify_channel_id: int | None = None
    drivers_channel_id: int | None = None
    channel_binding_cache_seconds: int = 60

    subscription_price_7: int = 5000
    subscription_price_15: int = 9000
    subscription_price_30: int = 16000
    subscription_currency: str = "KZT"
    kaspi_card: str | None = None
    kaspi_name: str | None = None
    kaspi_phone: str | None = None

    idempotency_ttl_seconds: int = 60

    telegram_retry_attempts: int = 3
    telegram_retry_base_delay_seconds: float = 0.5
    telegram_retry_max_delay_seconds: float = 5.0

    default_city: str | None = None
    monitoring_webhook_url: str | None = None
    monitoring_timeout_seconds: float = 5.0

    env: str = "dev"
    log_level: str = "info"

    @property
    def required_verification_photos(self) -> int:
        if self.verification_required_photos < 1:
            return DEFAULT_VERIFICATION_PHOTO_COUNT
        return self.verification_required_photos

    @property
    def subscription_periods(self) -> tuple[SubscriptionPeriod, ...]:
        currency = self.subscription_currency
        return (
            SubscriptionPeriod("7", "7 дней", 7, self.subscription_price_7, currency),
            SubscriptionPeriod("15", "15 дней", 15, self.subscription_price_15, currency),
            SubscriptionPeriod("30", "30 дней", 30, self.subscription_price_30, currency),
        )

    @property
    def payment_details(self) -> PaymentDetails:
        return PaymentDetails(card=self.kaspi_card, name=self.kaspi_name, phone=self.kaspi_phone)

    def find_subscription_period(self, period_id: str | None) -> SubscriptionPeriod | None:
        for period in self.subscription_periods:
            if period.id == period_id:
                return period
        return None


settings = Settings()
