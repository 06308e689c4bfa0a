"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Replicate Image Generation
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="flux-kontext-apps/multi-image-kontext-pro", alias="REPLICATE_MODEL_VERSION"
    )
    # "inline": worker waits for the output; "webhook": provider calls back on completion
    generation_mode: str = Field(default="inline", alias="GENERATION_MODE")
    generation_timeout_seconds: int = Field(default=120, alias="GENERATION_TIMEOUT_SECONDS")
    default_prompt: str = Field(
        default=(
            "Dress the person from the first image in the outfit from the second image. "
            "Keep the pose, face and background of the first image."
        ),
        alias="DEFAULT_PROMPT",
    )

    # Webhook ingestion
    generation_webhook_secret: str = Field(default="", alias="GENERATION_WEBHOOK_SECRET")
    payments_webhook_secret: str = Field(default="", alias="PAYMENTS_WEBHOOK_SECRET")
    webhook_tolerance_seconds: int = Field(default=300, alias="WEBHOOK_TOLERANCE_SECONDS")

    # Job lifecycle and work queue
    job_max_attempts: int = Field(default=3, ge=1, le=9, alias="JOB_MAX_ATTEMPTS")
    job_default_priority: int = Field(default=5, ge=1, le=10, alias="JOB_DEFAULT_PRIORITY")
    job_estimated_seconds: int = Field(default=45, alias="JOB_ESTIMATED_SECONDS")
    queue_lease_seconds: int = Field(default=300, alias="QUEUE_LEASE_SECONDS")
    retry_backoff_seconds: float = Field(default=30.0, alias="RETRY_BACKOFF_SECONDS")
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")
    worker_concurrency: int = Field(default=2, ge=1, alias="WORKER_CONCURRENCY")
    run_worker_in_app: bool = Field(default=True, alias="RUN_WORKER_IN_APP")

    # Object storage (S3-compatible)
    s3_bucket: str = Field(default="", alias="S3_BUCKET")
    s3_endpoint_url: str | None = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_access_key_id: str = Field(default="", alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: str = Field(default="", alias="S3_SECRET_ACCESS_KEY")
    s3_region: str = Field(default="us-east-1", alias="S3_REGION")
    signed_url_ttl_seconds: int = Field(default=86400, alias="SIGNED_URL_TTL_SECONDS")

    # Payment provider product ids
    product_basic: str = Field(default="", alias="DODO_PRODUCT_BASIC")
    product_basic_yearly: str = Field(default="", alias="DODO_PRODUCT_BASIC_YEARLY")
    product_premium: str = Field(default="", alias="DODO_PRODUCT_PREMIUM")
    product_premium_yearly: str = Field(default="", alias="DODO_PRODUCT_PREMIUM_YEARLY")
    product_pro: str = Field(default="", alias="DODO_PRODUCT_PRO")
    product_pro_yearly: str = Field(default="", alias="DODO_PRODUCT_PRO_YEARLY")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def product_plans(self) -> dict[str, str]:
        """Map configured product ids to plan names (unset products are skipped)."""
        pairs = [
            (self.product_basic, "basic"),
            (self.product_basic_yearly, "basic"),
            (self.product_premium, "premium"),
            (self.product_premium_yearly, "premium"),
            (self.product_pro, "pro"),
            (self.product_pro_yearly, "pro"),
        ]
        return {product_id: plan for product_id, plan in pairs if product_id}

    @property
    def webhook_secrets(self) -> dict[str, str]:
        """Signing secret per webhook provider path segment."""
        return {
            "generation": self.generation_webhook_secret,
            "payments": self.payments_webhook_secret,
        }

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with one aggregated message if configuration is incomplete.
        Validation is skipped in test environments to avoid breaking tests.
        """
        if self.generation_mode not in ("inline", "webhook"):
            raise ValueError("GENERATION_MODE must be 'inline' or 'webhook'")

        # An inline attempt runs the provider call and then the output download,
        # each bounded by the generation timeout; the lease must outlast both
        if self.queue_lease_seconds <= 2 * self.generation_timeout_seconds:
            raise ValueError(
                "QUEUE_LEASE_SECONDS must exceed twice GENERATION_TIMEOUT_SECONDS "
                "(provider call plus result download)"
            )

        # Skip validation in test environments
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from "
                "https://replicate.com/account/api-tokens"
            )

        if not self.s3_bucket:
            missing.append("S3_BUCKET: Bucket used for input and output images")

        if not self.payments_webhook_secret:
            missing.append("PAYMENTS_WEBHOOK_SECRET: Signing secret from the payments dashboard")

        if self.generation_mode == "webhook" and not self.generation_webhook_secret:
            missing.append(
                "GENERATION_WEBHOOK_SECRET: Required when GENERATION_MODE=webhook "
                "(https://replicate.com/account/webhook)"
            )

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(_log_level(settings)),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(_log_level(settings)),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )


def _log_level(settings: Settings) -> int:
    return getattr(logging, settings.log_level.upper(), logging.INFO)
