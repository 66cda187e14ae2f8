# src/infrastructure/config.py

from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    payment_gateway: str = "stripe"
    enabled_gateways: Annotated[tuple[str, ...], NoDecode] = ("stripe", "raiaccept", "razorpay")
    default_currency: str = "EUR"
    public_base_url: str = "http://localhost:8000"
    admin_api_token: str | None = None

    # Stripe
    stripe_secret_key: str | None = None
    stripe_publishable_key: str | None = None
    stripe_webhook_secret: str | None = None

    # RaiAccept
    raiaccept_username: str | None = None
    raiaccept_password: str | None = None
    raiaccept_cognito_client_id: str | None = None
    raiaccept_webhook_secret: str | None = None
    raiaccept_auth_url: str = "https://authenticate.raiaccept.com"
    raiaccept_api_url: str = "https://trapi.raiaccept.com"

    # Razorpay
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_webhook_secret: str | None = None

    # SMTP
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from: str = "tickets@localhost"

    gateway_timeout_seconds: float = 15.0

    @field_validator("enabled_gateways", mode="before")
    @classmethod
    def split_gateways(cls, v: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
        if isinstance(v, str):
            v = v.split(",")
        return tuple(item.strip().lower() for item in v if item.strip())

    @field_validator("payment_gateway")
    @classmethod
    def normalize_gateway(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("public_base_url", "raiaccept_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
