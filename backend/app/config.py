from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "BRAND_MONITOR_"
DEFAULT_DATA_DIR = Path(".brand-monitor")
JOB_STORES: tuple[str, ...] = ("memory", "sqlite")
TELEMETRY_SINKS: tuple[str, ...] = ("none", "log")

# Paths that live under `data_dir` unless set explicitly.
_DATA_DIR_CHILDREN: dict[str, str] = {
    "db_path": "jobs.db",
    "log_dir": "logs",
}
_TRUE_FLAGS = frozenset({"1", "true", "yes", "on"})
_FALSE_FLAGS = frozenset({"0", "false", "no", "off"})


def _under_data_dir(field_name: str) -> str:
    return f"Defaults to `${{{ENV_PREFIX}DATA_DIR}}/{_DATA_DIR_CHILDREN[field_name]}`."


def _parse_flag(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in _TRUE_FLAGS:
        return True
    if normalized in _FALSE_FLAGS:
        return False
    return default


def _parse_choice(value: Any, *, field_name: str, choices: tuple[str, ...]) -> str:
    normalized = value.strip().lower() if isinstance(value, str) else None
    if normalized in choices:
        return normalized
    raise ValueError(f"{ENV_PREFIX}{field_name.upper()} must be one of: {', '.join(choices)}.")


class AppSettings(BaseSettings):
    """
    Runtime configuration for the collection API.

    Each field maps to a `BRAND_MONITOR_<FIELD>` environment variable (also read
    from `.env`). Use `load_settings()` rather than constructing this directly so
    derived paths are filled in.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Root directory for the job database and logs.",
    )
    db_path: Path = Field(
        default=DEFAULT_DATA_DIR / "jobs.db",
        description=f"SQLite job store file. {_under_data_dir('db_path')}",
    )

    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API v3 key. Required.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single upstream request.",
    )
    youtube_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Extra attempts after a 429/5xx response or a transport failure.",
    )
    youtube_retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff before retry n is base * 2^n seconds.",
    )

    comment_page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="maxResults for thread and reply listings.",
    )
    reply_expansion_gap_threshold: int = Field(
        default=5,
        ge=0,
        description=(
            "Fetch a thread's full reply listing when it declares more than this many "
            "replies beyond those returned inline."
        ),
    )
    collection_max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Collection jobs allowed to run at once.",
    )
    collection_timeout_seconds: int = Field(
        default=1_800,
        ge=0,
        description="Wall-clock limit per collection job; 0 disables it.",
    )

    job_store: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="`memory` keeps jobs for the process lifetime; `sqlite` persists them.",
    )
    job_retention_seconds: int = Field(
        default=0,
        ge=0,
        description="Finished jobs older than this are evicted; 0 keeps them.",
    )
    results_page_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Comments per results page.",
    )

    log_dir: Path = Field(
        default=DEFAULT_DATA_DIR / "logs",
        description=f"Log file directory. {_under_data_dir('log_dir')}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level; the log file always records DEBUG.",
    )

    telemetry_enabled: bool = Field(
        default=True,
        description="Emit internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="`log` writes telemetry to its own log file; `none` drops it.",
    )

    @field_validator("data_dir", "db_path", "log_dir", mode="before")
    @classmethod
    def _resolve_paths(cls, value: Any) -> Path:
        return Path(value).expanduser().resolve()

    @field_validator("youtube_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _strip_base_url(cls, value: Any) -> str:
        normalized = value.strip().rstrip("/") if isinstance(value, str) else ""
        if not normalized:
            raise ValueError(f"{ENV_PREFIX}YOUTUBE_API_BASE_URL must not be empty.")
        return normalized

    @field_validator("job_store", mode="before")
    @classmethod
    def _normalize_job_store(cls, value: Any) -> str:
        return _parse_choice(value, field_name="job_store", choices=JOB_STORES)

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        return _parse_choice(value, field_name="telemetry_sink", choices=TELEMETRY_SINKS)

    @field_validator("telemetry_enabled", mode="before")
    @classmethod
    def _coerce_telemetry_enabled(cls, value: Any) -> bool:
        return _parse_flag(value, default=True)


def load_settings(*, validate_api_key: bool = True) -> AppSettings:
    """
    Read settings from the environment and place unset paths under `data_dir`.

    Raises `ValueError` when no API key is configured. `validate_api_key=False`
    skips that check for tooling that never talks to YouTube.
    """
    settings = AppSettings()
    derived = {
        field_name: settings.data_dir / relative_path
        for field_name, relative_path in _DATA_DIR_CHILDREN.items()
        if field_name not in settings.model_fields_set
    }
    if derived:
        settings = settings.model_copy(update=derived)

    if validate_api_key and settings.youtube_api_key is None:
        raise ValueError(
            f"Invalid configuration:\n- {ENV_PREFIX}YOUTUBE_API_KEY is required for comment collection."
        )
    return settings
