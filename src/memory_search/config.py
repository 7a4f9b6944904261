"""
Configuration for memory search.

Each concern gets its own ``BaseSettings`` class with a dedicated
environment prefix; ``Settings`` aggregates them and ``settings`` is the
process-wide instance read at import time.  Components never read
``settings`` directly inside their hot paths: the factory passes the values
in, so tests can build components with explicit arguments.
"""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.validators import UnitFloat

WeekStart = Literal["sunday", "monday"]

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "memory-search"


class SearchSettings(BaseSettings):
    """Ranking and query-parsing knobs."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_SEARCH_", extra="ignore")

    default_limit: int = Field(default=50, ge=1, le=1000)
    similarity_threshold: UnitFloat = 0.3
    vector_weight: UnitFloat = 0.7
    keyword_weight: UnitFloat = 0.3
    # Lexical relevance is assumed to land roughly in 0..10
    keyword_score_scale: float = Field(default=10.0, gt=0.0)
    similar_limit: int = Field(default=10, ge=1)
    week_start: WeekStart = "sunday"

    @field_validator("week_start", mode="before")
    @classmethod
    def _lower_week_start(cls, v):
        return v.lower() if isinstance(v, str) else v


class LocalEmbeddingSettings(BaseSettings):
    """On-device sentence-transformers model."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_LOCAL_", extra="ignore")

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int = Field(default=384, ge=1)
    device: str | None = None
    preload: bool = False


class RemoteEmbeddingSettings(BaseSettings):
    """Hosted OpenAI embeddings API."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_REMOTE_", extra="ignore")

    api_key: SecretStr | None = None
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    batch_size: int = Field(default=20, ge=1, le=2048)
    batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    base_url: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class BackfillSettings(BaseSettings):
    """Batch embedding generation."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_BACKFILL_", extra="ignore")

    remote_delay_seconds: float = Field(default=0.1, ge=0.0)
    progress_log_every: int = Field(default=10, ge=1)


class StorageSettings(BaseSettings):
    """Reference SQLite repository."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_STORAGE_", extra="ignore")

    sqlite_path: Path = DEFAULT_DATA_DIR / "memories.db"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_LOG_", extra="ignore")

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class Settings(BaseSettings):
    """Top-level settings tree."""

    model_config = SettingsConfigDict(env_prefix="MEMSEARCH_", extra="ignore")

    search: SearchSettings = Field(default_factory=SearchSettings)
    local: LocalEmbeddingSettings = Field(default_factory=LocalEmbeddingSettings)
    remote: RemoteEmbeddingSettings = Field(default_factory=RemoteEmbeddingSettings)
    backfill: BackfillSettings = Field(default_factory=BackfillSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _distinct_dimensions(self) -> "Settings":
        # Stored vectors are told apart by length, so the two backends must differ
        if self.local.dimensions == self.remote.dimensions:
            raise ValueError(
                f"Local and remote embedding dimensions must differ (both are {self.local.dimensions})"
            )
        return self


def configure_logging(config: LoggingSettings | None = None) -> None:
    """Apply logging settings. Only entry points call this; library code never does."""
    config = config or settings.logging
    logging.basicConfig(level=getattr(logging, config.level, logging.INFO), format=config.format)


settings = Settings()
