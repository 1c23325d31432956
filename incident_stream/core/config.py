from datetime import datetime, timezone
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from incident_stream.core.exceptions import ConfigurationError
from incident_stream.schemas.incident import AckAction

DEFAULT_BASE_URL = "https://api.security.microsoft.com"
DEFAULT_LOGIN_URL = "https://login.windows.net"


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = None
    SLACK_WEBHOOK_URL: str | None = None

    # 365 Defender API
    DEFENDER_BASE_URL: str = DEFAULT_BASE_URL
    DEFENDER_LOGIN_URL: str = DEFAULT_LOGIN_URL
    DEFENDER_TENANT_ID: str | None = None
    DEFENDER_CLIENT_ID: str | None = None
    DEFENDER_CLIENT_SECRET: str | None = None
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Stream configuration
    PIPELINE_ID: str = "defender365"
    RECEIVE_INTERVAL_MS: int = 5000  # steady-state polling interval
    FROM_TIMESTAMP: str | None = None
    STREAM_ENABLED: bool = False  # run a consumer inside the API process
    STREAM_DEMAND: int = 10

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return not self.is_production

    def pipeline_options(self, **overrides: Any) -> "PipelineOptions":
        """Build validated pipeline options from environment settings."""
        raw: dict[str, Any] = {
            "pipeline_id": self.PIPELINE_ID,
            "receive_interval": self.RECEIVE_INTERVAL_MS,
            "from_timestamp": self.FROM_TIMESTAMP,
            "config": {
                "tenant_id": self.DEFENDER_TENANT_ID,
                "client_id": self.DEFENDER_CLIENT_ID,
                "client_secret": self.DEFENDER_CLIENT_SECRET,
                "base_url": self.DEFENDER_BASE_URL,
                "login_url": self.DEFENDER_LOGIN_URL,
                "timeout": self.HTTP_TIMEOUT_SECONDS,
            },
        }
        raw.update(overrides)
        return PipelineOptions.from_mapping(raw)


class ClientConfig(BaseModel):
    """Credentials and endpoints handed through to the remote source."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)
    base_url: str = DEFAULT_BASE_URL
    login_url: str = DEFAULT_LOGIN_URL
    timeout: float = Field(default=30.0, gt=0)


class PipelineOptions(BaseModel):
    """Validated options for one pipeline instance.

    Construct through ``from_mapping`` so that validation failures surface as
    ``ConfigurationError`` before any engine exists.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pipeline_id: str = Field(default="defender365", min_length=1)
    receive_interval: int = Field(default=5000, ge=0)
    from_timestamp: datetime | None = None
    on_success: AckAction = AckAction.ACK
    on_failure: AckAction = AckAction.NOOP
    config: ClientConfig

    @field_validator("from_timestamp")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PipelineOptions":
        pipeline_id = raw.get("pipeline_id") or "defender365"
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as exc:
            raise ConfigurationError(_format_error(pipeline_id, exc)) from exc


def _format_error(pipeline_id: str, exc: ValidationError) -> str:
    first = exc.errors()[0]
    keys_path = [str(part) for part in first.get("loc", ())]
    if not keys_path:
        return f"invalid configuration given to pipeline {pipeline_id!r}, {first['msg']}"
    return (
        f"invalid configuration given to pipeline {pipeline_id!r} for key "
        f"{keys_path!r}, {first['msg']}"
    )


settings = Settings()
