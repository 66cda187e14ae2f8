# tests/unit/test_settings.py

from src.infrastructure.config import Settings


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("PAYMENT_GATEWAY", " RaiAccept ")
    monkeypatch.setenv("ENABLED_GATEWAYS", "Stripe, raiaccept,,")
    monkeypatch.setenv("DEFAULT_CURRENCY", "usd")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://tickets.example.com/")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_USE_TLS", "false")
    monkeypatch.setenv("GATEWAY_TIMEOUT_SECONDS", "3.5")

    settings = Settings()

    assert settings.payment_gateway == "raiaccept"
    assert settings.enabled_gateways == ("stripe", "raiaccept")
    assert settings.default_currency == "USD"
    assert settings.public_base_url == "https://tickets.example.com"
    assert settings.smtp_port == 2525
    assert settings.smtp_use_tls is False
    assert settings.gateway_timeout_seconds == 3.5


def test_empty_environment_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("ADMIN_API_TOKEN", "")
    monkeypatch.setenv("SMTP_PORT", "")

    settings = Settings()

    assert settings.admin_api_token is None
    assert settings.smtp_port == 587


def test_keyword_overrides_win():
    settings = Settings(enabled_gateways=["razorpay"], payment_gateway="razorpay")

    assert settings.enabled_gateways == ("razorpay",)
    assert settings.payment_gateway == "razorpay"
