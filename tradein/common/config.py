"""Central environment-driven settings for the trade-in process.

The API process, background worker, and scripts load this once at startup.
Behavior is controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "tradein"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    assessment_provider: str = "stub"
    remote_assessment_url: str = "http://trae-ai:8080"
    remote_assessment_api_key: str = ""
    remote_assessment_model: str = "trae-v1"
    vision_endpoint: str = ""
    vision_key: str = ""
    assessment_timeout_seconds: float = 30.0
    assessment_cache_ttl_seconds: int = 3600

    assessment_max_retries: int = 3
    assessment_retry_base_minutes: int = 5
    assessment_retry_priority: int = 2
    worker_poll_interval_seconds: float = 5.0
    worker_error_cooldown_seconds: float = 10.0
    stale_processing_minutes: int = 15

    # Quotes below this condition score are rejected even with a positive price.
    min_condition_score: float = 0.25
    offer_validity_days: int = 7
    credit_note_validity_days: int = 365
    checkout_session_ttl_minutes: int = 30

    webhook_max_retries: int = 5
    # PROCESSING claims older than this belong to a dead worker.
    webhook_claim_timeout_seconds: int = 300
    sweep_interval_seconds: float = 60.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
