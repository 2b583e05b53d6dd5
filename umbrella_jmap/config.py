"""JMAP connector configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars,
which is the natural config mechanism in Kubernetes.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


class AuthMethod(str, Enum):
    """Credential strategy used for every request to the JMAP server."""

    BASIC = "basic"
    BEARER = "bearer"
    OAUTH2 = "oauth2"


class JmapConfig(BaseSettings):
    """JMAP server connection and credential settings."""

    model_config = {"env_prefix": "JMAP_"}

    server_url: str = Field(description="Base URL of the JMAP server (e.g. https://jmap.example.com/jmap)")
    session_path: str = Field(
        default="/session",
        description="Path (or absolute URL) of the JMAP session resource",
    )
    auth_method: AuthMethod = Field(
        default=AuthMethod.BASIC,
        description="Credential strategy: basic, bearer or oauth2",
    )
    email: str | None = Field(default=None, description="Login email for basic auth")
    password: SecretStr | None = Field(default=None, description="Password for basic auth")
    access_token: SecretStr | None = Field(
        default=None,
        description="Static access token for bearer auth",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")
    verify_tls: bool = Field(default=True, description="Verify the server TLS certificate")

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_credentials(self) -> JmapConfig:
        if self.auth_method is AuthMethod.BASIC and (not self.email or self.password is None):
            raise ValueError("basic auth requires email and password")
        if self.auth_method is AuthMethod.BEARER and self.access_token is None:
            raise ValueError("bearer auth requires access_token")
        return self


class PollerConfig(BaseSettings):
    """New-mail polling settings."""

    model_config = {"env_prefix": "POLL_"}

    mailbox: str | None = Field(
        default=None,
        description="Mailbox ID to watch; unset watches every mailbox",
    )
    simple: bool = Field(
        default=True,
        description="Emit a simplified projection instead of the full email record",
    )
    include_attachments: bool = Field(
        default=False,
        description="Include attachment metadata in emitted records",
    )
    page_size: int = Field(default=100, description="Maximum emails fetched per poll cycle")
    interval_seconds: float = Field(default=60.0, description="Seconds between poll cycles")
    state_path: str = Field(
        default="jmap-poller-state.json",
        description="JSON file holding the persisted poll watermark",
    )
    watermark_key: str = Field(
        default="lastProcessedTime",
        description="Key under which the watermark is stored",
    )


class KafkaConfig(BaseSettings):
    """Kafka connection and topic settings for emitted records."""

    model_config = {"env_prefix": "KAFKA_"}

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Comma-separated Kafka bootstrap servers",
    )
    records_topic: str = Field(
        default="jmap-emails",
        description="Topic for email records emitted by the poller",
    )
    dead_letter_topic: str = Field(
        default="dead-letter",
        description="Topic for record batches that failed delivery after retries",
    )
    producer_acks: str = Field(default="all", description="Producer acknowledgement level")
    producer_compression: str = Field(
        default="gzip",
        description="Compression codec for produced messages",
    )


class S3Config(BaseSettings):
    """S3 storage settings for downloaded attachments."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="umbrella-jmap", description="S3 bucket name")
    attachments_prefix: str = Field(
        default="raw/jmap/attachments",
        description="S3 key prefix for attachment uploads",
    )
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings for record delivery, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=5, description="Maximum delivery attempts per batch")
    initial_wait_seconds: float = Field(default=1.0, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=60.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class ConnectorConfig(BaseSettings):
    """Root configuration for a JMAP connector instance.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "CONNECTOR_"}

    name: str = Field(default="jmap", description="Unique connector name")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    jmap: JmapConfig = Field(default_factory=JmapConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
