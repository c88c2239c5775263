"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Literal, Self

import yaml
from pydantic import AliasChoices, BaseModel, Field, HttpUrl, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rewind.llm import PROVIDER_DEFAULTS
from rewind.models import SourceKind

# XDG config directory for user configuration
XDG_CONFIG_PATH = Path.home() / ".config" / "rewind"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=[
            XDG_CONFIG_PATH / "config.env",  # User config (lower priority)
            ".env",  # Project .env (higher priority)
        ],
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM
    llm_provider: Literal["gemini", "openai", "anthropic"] = Field(
        default="gemini",
        description="LLM provider used by the Summarizer",
    )
    llm_api_key: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("LLM_API_KEY", "GOOGLE_API_KEY", "OPENAI_API_KEY"),
        description="API key for configured LLM provider",
    )
    llm_model: str | None = Field(default=None, description="Model name for configured provider")
    llm_retries: int = Field(default=2, ge=0, description="Transport retries inside one attempt")

    # Fetching
    fetch_timeout_seconds: int = Field(default=30, ge=1, description="Per-source fetch ceiling")
    max_entries_per_feed: int = Field(default=50, ge=1)
    sync_max_workers: int = Field(default=5, ge=1, description="Sources fetched in parallel")
    sync_lock_ttl_seconds: int = Field(default=600, ge=1, description="Source lock lease")
    pause_error_threshold: int = Field(default=5, ge=1, description="Errors before pause candidacy")

    # Scheduler
    sync_min_interval_minutes: int = Field(default=5, ge=0)
    sync_stale_minutes: int = Field(default=30, ge=0)
    sync_tick_minutes: int = Field(default=15, ge=1)
    connectivity_check_url: str | None = Field(
        default=None, description="URL probed before a scheduled sync; unset means assume online"
    )

    # Summarization
    max_retries: int = Field(default=3, ge=1, description="Automatic attempts before permanent failure")
    retry_backoff_minutes: list[int] = Field(default=[5, 30, 120])
    summarize_concurrency: int = Field(default=3, ge=1)
    summarize_timeout_seconds: int = Field(default=180, ge=1)
    processing_lease_seconds: int = Field(default=900, ge=1)
    min_words_for_summary: int = Field(default=100, ge=0)
    min_words_for_podcast_summary: int = Field(default=200, ge=0)
    max_chunk_chars: int = Field(default=24000, ge=1000)
    cache_ttl_days: int = Field(default=7, ge=1)
    daily_budget_usd: float | None = Field(
        default=None, ge=0, description="Summarizer spend per local day; unset means no limit"
    )
    monthly_budget_usd: float | None = Field(
        default=None, ge=0, description="Summarizer spend per local month; unset means no limit"
    )

    # Paths
    config_dir: Path = Field(default=Path("config"), description="Config directory")
    data_dir: Path = Field(default=Path("data"), description="Data directory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["rich", "json"] = Field(default="rich")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "rewind.db"

    @property
    def sources_path(self) -> Path:
        return self.config_dir / "sources.yaml"

    @model_validator(mode="after")
    def apply_llm_defaults(self) -> Self:
        """Fill provider-specific model defaults when omitted."""
        if self.llm_model is None:
            self.llm_model = PROVIDER_DEFAULTS[self.llm_provider]
        return self

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        if self.sync_stale_minutes < self.sync_min_interval_minutes:
            raise ValueError("sync_stale_minutes must be >= sync_min_interval_minutes")
        if not self.retry_backoff_minutes:
            raise ValueError("retry_backoff_minutes cannot be empty")
        return self

    @model_validator(mode="after")
    def ensure_directories(self) -> Self:
        """Create necessary directories if they don't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self


class SourceEntry(BaseModel):
    """Validated source entry from sources.yaml."""

    url: HttpUrl = Field(..., description="RSS/Atom/podcast feed URL")
    kind: SourceKind = Field(default=SourceKind.RSS)
    title: str | None = Field(default=None)
    auto_summarize: bool = Field(default=True)

    model_config = {"extra": "forbid"}


class SourcesFile:
    """Source subscriptions declared in YAML."""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self._sources: dict[str, SourceEntry] = {}
        self._load()

    def _load(self) -> None:
        if not self.config_path.exists():
            return

        with open(self.config_path) as file_handle:
            data = yaml.safe_load(file_handle) or {}

        if not isinstance(data, dict):
            raise ValueError("Invalid sources.yaml: top-level structure must be a mapping")

        raw_sources = data.get("sources") or {}
        if not isinstance(raw_sources, dict):
            raise ValueError("Invalid sources.yaml: 'sources' must be a mapping")

        errors: list[str] = []
        seen_urls: dict[str, str] = {}

        for raw_name, raw_entry in raw_sources.items():
            name = str(raw_name).strip()
            if not name:
                errors.append("Source name cannot be empty")
                continue
            if not isinstance(raw_entry, dict):
                errors.append(f"{name}: source configuration must be a mapping")
                continue

            try:
                entry = SourceEntry.model_validate(raw_entry)
            except ValidationError as exc:
                details = "; ".join(
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                )
                errors.append(f"{name}: {details}")
                continue

            url = str(entry.url)
            if url in seen_urls:
                errors.append(f"Duplicate source URL {url}: {seen_urls[url]}, {name}")
                continue
            seen_urls[url] = name
            self._sources[name] = entry

        if errors:
            rendered = "\n  - ".join(errors)
            raise ValueError(f"Invalid sources.yaml entries:\n  - {rendered}")

    @property
    def sources(self) -> dict[str, SourceEntry]:
        return self._sources


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
