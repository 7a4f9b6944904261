"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped floats, identifier
constraints, and Literal enums so every model speaks the same language.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | set | None`` and return a clean, de-duplicated ``list[str]``.

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "a"]`` → ``["a", "b"]``
    * ``None`` → ``[]``

    First occurrence wins, so the caller's order is kept.
    """
    if v is None:
        return []
    if isinstance(v, str):
        items = [t.strip() for t in v.split(",")]
    elif isinstance(v, (list, tuple, set, frozenset)):
        items = [str(item).strip() for item in v if item is not None]
    else:
        return []
    return list(dict.fromkeys(t for t in items if t))


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list, or None. Always outputs a duplicate-free list[str]."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float constrained to [0.0, 1.0] for weights and thresholds."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer ≥ 0 for counts."""


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

MemoryId = Annotated[str, Field(min_length=1)]
"""Opaque, non-empty record identifier."""

NonEmptyStr = Annotated[str, Field(min_length=1)]


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

EmbeddingModelTag = Literal["local", "remote"]
ContentType = Literal["article", "image", "code", "quote", "tutorial", "note", "video", "link"]
SearchType = Literal["semantic", "hybrid", "keyword"]


class EmbeddingMethod(StrEnum):
    """How a request obtains its query vector."""

    AUTO = "auto"
    LOCAL = "local"
    REMOTE = "remote"
    KEYWORD = "keyword"

    @classmethod
    def _missing_(cls, value: object) -> "EmbeddingMethod | None":
        if isinstance(value, str):
            normalized = value.strip().lower()
            # Older clients name the hosted backend after its vendor
            if normalized == "openai":
                return cls.REMOTE
            for member in cls:
                if member.value == normalized:
                    return member
        return None
