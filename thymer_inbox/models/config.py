"""Configuration models for the Thymer inbox sync server."""

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_TOKEN = "local-dev-token"


def _split_list(value: Any) -> Any:
    """Accept ``"a, b"`` as well as ``["a", "b"]`` for list settings."""
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class ServerConfig(BaseModel):
    """Configuration for the HTTP surface."""

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=19501, ge=1, le=65535, description="Port to bind")
    token: str = Field(
        default=DEFAULT_TOKEN, min_length=1, description="Shared secret for bearer/query auth"
    )
    stream_poll_interval: float = Field(
        default=2.0, gt=0, description="Seconds between queue drains on /stream"
    )
    stream_window: float = Field(
        default=25.0, gt=0, description="Seconds a /stream connection stays open"
    )
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["*"], description="CORS origins allowed to call the API"
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> Any:
        return _split_list(value)


class QueueConfig(BaseModel):
    """Configuration for the delivery queue."""

    max_items: int | None = Field(
        default=None,
        ge=1,
        description="Evict the oldest items beyond this many. None keeps everything.",
    )


class StorageConfig(BaseModel):
    """Configuration for the snapshot store."""

    data_dir: Path = Field(
        default=Path("~/.config/tm"), description="Directory holding one database per source"
    )
    lock_timeout: float = Field(
        default=1.0, gt=0, description="Seconds to wait for the database write lock"
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def expand_data_dir(cls, value: Path) -> Path:
        return value.expanduser()


class SyncConfig(BaseModel):
    """Settings shared by every source."""

    fetch_timeout: float = Field(
        default=30.0, gt=0, description="Deadline in seconds for one scope fetch"
    )
    request_timeout: float = Field(
        default=20.0, gt=0, description="Timeout in seconds for a single upstream request"
    )


class GitHubConfig(BaseModel):
    """Configuration for the GitHub issues/PR source."""

    token: str | None = Field(default=None, description="Personal access token")
    repos: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="owner/repo entries to sync"
    )
    interval_seconds: float = Field(default=60.0, gt=0)
    api_url: str = Field(default="https://api.github.com")

    @field_validator("repos", mode="before")
    @classmethod
    def split_repos(cls, value: Any) -> Any:
        return _split_list(value)

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.repos)


class CalendarConfig(BaseModel):
    """Configuration for the Google Calendar source."""

    calendars: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="Calendar ids to sync"
    )
    interval_seconds: float = Field(default=300.0, gt=0)
    token_file: Path = Field(
        default=Path("~/.config/tm/google.json"), description="OAuth token written by the auth flow"
    )
    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    past_days: int = Field(default=7, ge=0, description="Window start, days before now")
    future_days: int = Field(default=84, ge=1, description="Window end, days after now")
    api_url: str = Field(default="https://www.googleapis.com/calendar/v3")

    @field_validator("calendars", mode="before")
    @classmethod
    def split_calendars(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("token_file", mode="after")
    @classmethod
    def expand_token_file(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def enabled(self) -> bool:
        return bool(self.calendars) and self.token_file.exists()


class ReadwiseConfig(BaseModel):
    """Configuration for the Readwise Reader highlight source."""

    token: str | None = Field(default=None, description="Readwise access token")
    interval_seconds: float = Field(
        default=3600.0, gt=0, description="Readwise rate limits are strict; poll rarely"
    )
    initial_delay: float = Field(default=5.0, ge=0)
    api_url: str = Field(default="https://readwise.io/api/v3/list/")

    @property
    def enabled(self) -> bool:
        return bool(self.token)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values come from the YAML file handled by ``ConfigLoader`` and from
    environment variables with the ``THYMER_`` prefix, e.g.
    ``THYMER_GITHUB__TOKEN`` or ``THYMER_SERVER__PORT``.
    """

    model_config = SettingsConfigDict(
        env_prefix="THYMER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    readwise: ReadwiseConfig = Field(default_factory=ReadwiseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
