"""Central environment-driven settings shared by the portal apps.

Each app process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "admitpay"
    log_level: str = "INFO"
    postgres_dsn: str
    redis_url: str = "redis://redis:6379/0"
    app_base_url: str = "http://localhost:3000"
    session_secret: str
    az_tenant_id: str = ""
    az_client_id: str = ""
    az_client_secret: str = ""
    az_sender_user: str = ""
    help_desk_email: str = "support@neram.co.in"
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_api_base: str = "https://api.razorpay.com/v1"
    razorpay_webhook_secret: str = ""
    payment_currency: str = "INR"
    payment_token_ttl_days: int = 7
    http_timeout_seconds: float = 10.0
    rate_limit_per_minute: int = 30
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def base_url(self) -> str:
        return self.app_base_url.rstrip("/")


settings = CommonSettings()
