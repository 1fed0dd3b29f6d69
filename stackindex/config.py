"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- Elasticsearch endpoint (host, port, scheme) and target index/type
- Bulk delivery knobs (connections, buffer size, batch size)
- Retry/backoff and request timeout for delivery attempts
- Completion monitor polling interval and the shutdown bound after a timeout
- Optional observability (console span export)
- Default log level for the CLI

Settings are read from the process environment (prefix STACKINDEX_) or a .env file.
The pipeline itself never reads settings globally: callers turn them into an explicit
PipelineConfig with Settings.pipeline_config() and pass that in.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseModel):
    """Explicit, immutable configuration for one BulkDeliveryPipeline.

    Attributes:
        index_name: Target index for every document.
        doc_type: Logical document type stored alongside each document.
        workers: Number of concurrent delivery workers (backend connections).
        buffer_size: Capacity of the bounded document buffer; enqueue blocks when full.
        batch_size: Maximum number of documents a worker sends in one bulk request.
        max_attempts: Delivery attempts per batch before documents are dropped.
        backoff_initial_seconds: First backoff wait between attempts.
        backoff_max_seconds: Upper bound for a single backoff wait.
        dequeue_poll_seconds: How often idle workers re-check stop/cancel signals.
    """
    model_config = ConfigDict(frozen=True)

    index_name: str = "stacktrace"
    doc_type: str = "goroutine"
    workers: int = Field(default=5, ge=1)
    buffer_size: int = Field(default=500, ge=1)
    batch_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_initial_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=5.0, ge=0)
    dequeue_poll_seconds: float = Field(default=0.1, gt=0)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    Every field can be overridden with STACKINDEX_<FIELD>, e.g. STACKINDEX_ES_HOST.
    """
    # Backend endpoint
    ES_HOST: str = Field(default="localhost", description="Hostname for Elasticsearch endpoint")
    ES_PORT: int = Field(default=9200, description="Port for Elasticsearch endpoint")
    ES_SCHEME: str = "http"
    ES_USERNAME: str = ""
    ES_PASSWORD: str = ""

    # Index layout
    INDEX_NAME: str = "stacktrace"
    DOC_TYPE: str = "goroutine"

    # Bulk delivery
    BULK_CONNECTIONS: int = 5
    BULK_BUFFER_SIZE: int = 500
    BULK_BATCH_SIZE: int = 100

    # Retry / timeouts
    MAX_ATTEMPTS: int = 3
    BACKOFF_INITIAL_SECONDS: float = 0.5
    BACKOFF_MAX_SECONDS: float = 5.0
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Completion monitor
    MONITOR_POLL_SECONDS: float = 2.0
    # How long workers get to finish once an import times out or is cancelled
    SHUTDOWN_TIMEOUT_SECONDS: float = 5.0

    # Observability (optional)
    OTEL_CONSOLE_EXPORT: bool = False

    # CLI
    LOG_LEVEL: str = "warn"

    # Derived
    @property
    def ES_URL(self) -> str:
        """Base URL of the Elasticsearch endpoint, e.g. http://localhost:9200."""
        return f"{self.ES_SCHEME}://{self.ES_HOST}:{self.ES_PORT}"

    @property
    def ES_AUTH(self) -> Optional[tuple]:
        """Basic-auth pair for requests, or None when no username is configured."""
        if not self.ES_USERNAME:
            return None
        return (self.ES_USERNAME, self.ES_PASSWORD)

    def pipeline_config(self) -> PipelineConfig:
        """Build the explicit pipeline configuration from these settings."""
        return PipelineConfig(
            index_name=self.INDEX_NAME,
            doc_type=self.DOC_TYPE,
            workers=self.BULK_CONNECTIONS,
            buffer_size=self.BULK_BUFFER_SIZE,
            batch_size=self.BULK_BATCH_SIZE,
            max_attempts=self.MAX_ATTEMPTS,
            backoff_initial_seconds=self.BACKOFF_INITIAL_SECONDS,
            backoff_max_seconds=self.BACKOFF_MAX_SECONDS,
        )

    model_config = SettingsConfigDict(env_file=".env", env_prefix="STACKINDEX_", case_sensitive=False)


settings = Settings()
