"""Memory record model.

A memory is a saved text snippet with its source URL, title and tags.  The
search core only writes the three embedding fields; everything else is
owned by whoever stores the record.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Self
from urllib.parse import urlsplit

from dateutil import parser as dateutil_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .validators import EmbeddingModelTag, MemoryId, NonEmptyStr, Tags

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(dt: datetime) -> datetime:
    """Naive datetimes are taken as local time, matching the query parser."""
    return dt if dt.tzinfo is not None else dt.astimezone()


def domain_of(url: str) -> str:
    """Hostname of ``url`` without a leading ``www.``; the raw string when it cannot be parsed."""
    try:
        host = urlsplit(url if "//" in url else f"//{url}").hostname
    except ValueError:
        host = None
    if not host:
        return url.lower()
    return host.removeprefix("www.")


class Memory(BaseModel):
    """Represents a single saved snippet with validated fields."""

    model_config = ConfigDict(populate_by_name=True)

    id: MemoryId = Field(default_factory=lambda: uuid.uuid4().hex, frozen=True)
    text: NonEmptyStr
    title: NonEmptyStr
    url: str = ""
    context: str = ""
    tags: Tags = []
    created_at: datetime = Field(default_factory=_utcnow, frozen=True)

    embedding: list[float] | None = None
    embedding_model: EmbeddingModelTag | None = None
    embedding_generated_at: datetime | None = None

    @field_validator("created_at", "embedding_generated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Any:
        if isinstance(v, str):
            return dateutil_parser.isoparse(v)
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v, timezone.utc)
        return v

    @field_validator("created_at", "embedding_generated_at")
    @classmethod
    def _aware(cls, v: datetime | None) -> datetime | None:
        return _ensure_aware(v) if v is not None else None

    @model_validator(mode="after")
    def _embedding_fields_consistent(self) -> Self:
        if self.embedding is not None and self.embedding_model is None:
            raise ValueError("embedding_model is required when embedding is set")
        if self.embedding is None and self.embedding_model is not None:
            logger.debug("Memory %s has embedding_model without embedding; clearing tag", self.id)
            self.embedding_model = None
            self.embedding_generated_at = None
        return self

    @property
    def domain(self) -> str:
        return domain_of(self.url)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def embedding_text(self) -> str:
        """Text fed to the embedding backends when (re)generating this record's vector."""
        return f"{self.title}. {self.text}"

    def to_row(self) -> dict[str, Any]:
        """Convert to a flat, storage-compatible dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "title": self.title,
            "url": self.url,
            "context": self.context,
            "tags": json.dumps(self.tags),
            "created_at": self.created_at.timestamp(),
            "embedding": json.dumps(self.embedding) if self.embedding is not None else None,
            "embedding_model": self.embedding_model,
            "embedding_generated_at": (
                self.embedding_generated_at.timestamp() if self.embedding_generated_at else None
            ),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Memory":
        """Create a Memory from a flat storage row (inverse of ``to_row``)."""
        tags = row.get("tags")
        embedding = row.get("embedding")
        return cls(
            id=row["id"],
            text=row["text"],
            title=row["title"],
            url=row.get("url") or "",
            context=row.get("context") or "",
            tags=json.loads(tags) if isinstance(tags, str) else tags,
            created_at=row["created_at"],
            embedding=json.loads(embedding) if isinstance(embedding, str) else embedding,
            embedding_model=row.get("embedding_model"),
            embedding_generated_at=row.get("embedding_generated_at"),
        )
