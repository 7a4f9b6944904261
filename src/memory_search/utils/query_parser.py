"""
Natural-language query parsing.

Turns a free-text query such as "articles from github about react last
week" into structured filters (date window, content type, source domain,
technology tags) plus the residual semantic terms used for embedding and
keyword matching.

Stages run in a fixed order: date, type, domain, tags, then semantic-term
cleaning.  Type, domain and tag detection always scan the original
lowercased query; only the semantic-term output sees text removed by the
earlier stages.  A word can therefore count both as a type keyword and as
a tag ("code" style overlaps are kept as-is).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..models.search import DateFilter, ParsedQuery
from .date_parsing import (
    DateExtractor,
    DateMatch,
    RuleBasedDateExtractor,
    end_of_day,
    end_of_month,
    start_of_day,
    start_of_month,
)

logger = logging.getLogger(__name__)

# Content type → synonym keywords, scanned in this order (first hit wins)
TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "article": ("article", "articles", "post", "posts", "blog", "blogs"),
    "image": ("image", "images", "picture", "pictures", "photo", "photos", "screenshot", "screenshots"),
    "code": ("code", "snippet", "snippets", "function", "class", "script"),
    "quote": ("quote", "quotes", "saying", "sayings"),
    "tutorial": ("tutorial", "tutorials", "guide", "guides", "how-to", "howto"),
    "note": ("note", "notes", "memo", "memos"),
    "video": ("video", "videos", "youtube"),
    "link": ("link", "links", "bookmark", "bookmarks"),
}

DOMAIN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"github\.com", re.IGNORECASE), "github.com"),
    (re.compile(r"stackoverflow\.com", re.IGNORECASE), "stackoverflow.com"),
    (re.compile(r"medium\.com", re.IGNORECASE), "medium.com"),
    (re.compile(r"dev\.to", re.IGNORECASE), "dev.to"),
    (re.compile(r"youtube\.com", re.IGNORECASE), "youtube.com"),
    (re.compile(r"twitter\.com", re.IGNORECASE), "twitter.com"),
    (re.compile(r"reddit\.com", re.IGNORECASE), "reddit.com"),
)

# Bare mentions like "from github"
DOMAIN_FALLBACKS: tuple[tuple[str, str], ...] = (
    ("github", "github.com"),
    ("stackoverflow", "stackoverflow.com"),
    ("medium", "medium.com"),
)

TECH_TERMS: tuple[str, ...] = (
    "javascript", "python", "java", "c++", "rust", "go", "typescript",
    "react", "vue", "angular", "node", "express", "django", "flask",
    "docker", "kubernetes", "aws", "azure", "gcp",
    "machine learning", "ai", "deep learning", "neural network",
    "database", "sql", "mongodb", "redis", "postgresql",
)  # fmt: skip

FILLER_WORDS = frozenset(
    {
        "show",
        "me",
        "find",
        "get",
        "the",
        "a",
        "an",
        "i",
        "saved",
        "from",
        "that",
        "about",
        "on",
        "my",
        "all",
        "any",
        "some",
    }
)

# Relative phrases stripped from the semantic terms whenever a date was found
RELATIVE_DATE_PHRASES: tuple[str, ...] = (
    "last month", "this month", "past month", "current month",
    "last week", "this week", "past week", "current week",
    "yesterday", "today", "last 7 days", "past 7 days",
    "last 30 days", "past 30 days",
)  # fmt: skip

_RELATIVE_PHRASE_RES = tuple(re.compile(re.escape(p), re.IGNORECASE) for p in RELATIVE_DATE_PHRASES)
_TOKEN_PATTERN = re.compile(r"[^\w]+")
_WEEK_START_OFFSET = {"monday": 0, "sunday": 1}


def _whole_word(word: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class QueryParser:
    """
    Rule-based parser from free text to ``ParsedQuery``.

    Args:
        date_extractor: Collaborator returning date spans in document order
        now: Zero-argument clock returning an aware datetime
        week_start: "sunday" or "monday"; sets where "this/last week" begin
    """

    def __init__(
        self,
        date_extractor: DateExtractor | None = None,
        now: Callable[[], datetime] | None = None,
        week_start: str = "sunday",
    ):
        if week_start not in _WEEK_START_OFFSET:
            raise ValueError(f"week_start must be 'sunday' or 'monday', got {week_start!r}")
        self._dates = date_extractor or RuleBasedDateExtractor()
        self._now = now or _local_now
        self._week_start = week_start

    def parse(self, query: str) -> ParsedQuery:
        if not query or not query.strip():
            return ParsedQuery(original_query=query or "")

        lower = query.lower()
        now = self._now()
        date_matches = self._dates.extract(query, now)

        date_filter = self.extract_date_filter(query, date_matches, now)
        content_type = self.extract_type(lower)
        domain = self.extract_domain(lower)
        tags = self.extract_tags(lower)
        semantic_terms = self.extract_semantic_terms(query, date_matches, date_filter, content_type, domain)

        return ParsedQuery(
            semantic_terms=semantic_terms,
            date_filter=date_filter,
            type=content_type,
            domain=domain,
            tags=tags,
            original_query=query,
        )

    # -- stage 1 -----------------------------------------------------------

    def _days_into_week(self, now: datetime) -> int:
        return (now.weekday() + _WEEK_START_OFFSET[self._week_start]) % 7

    def extract_date_filter(self, query: str, matches: list[DateMatch], now: datetime) -> DateFilter | None:
        if not matches:
            return None

        first = matches[0]
        if first.is_range:
            return DateFilter(start=first.start, end=first.end)

        lower = query.lower()

        if "last month" in lower or "past month" in lower:
            previous = start_of_month(now) - relativedelta(months=1)
            return DateFilter(start=previous, end=end_of_month(previous))

        if "this month" in lower or "current month" in lower:
            return DateFilter(start=start_of_month(now), end=end_of_month(now))

        if "this week" in lower or "current week" in lower:
            week_start = start_of_day(now - timedelta(days=self._days_into_week(now)))
            return DateFilter(start=week_start, end=end_of_day(now))

        if "last week" in lower or "past week" in lower:
            last_week_end = end_of_day(now - timedelta(days=self._days_into_week(now) + 1))
            return DateFilter(start=start_of_day(last_week_end - timedelta(days=6)), end=last_week_end)

        if "last 7 days" in lower or "past 7 days" in lower:
            return DateFilter(start=start_of_day(now - timedelta(days=7)), end=now)

        if "last 30 days" in lower or "past 30 days" in lower:
            return DateFilter(start=start_of_day(now - timedelta(days=30)), end=now)

        if "yesterday" in lower:
            return DateFilter(start=start_of_day(first.start), end=end_of_day(first.start))

        if "today" in lower:
            return DateFilter(start=start_of_day(now), end=end_of_day(now))

        # A specific calendar day
        return DateFilter(start=start_of_day(first.start), end=end_of_day(first.start))

    # -- stages 2-4 --------------------------------------------------------

    @staticmethod
    def extract_type(lower_query: str) -> str | None:
        for content_type, keywords in TYPE_KEYWORDS.items():
            if any(keyword in lower_query for keyword in keywords):
                return content_type
        return None

    @staticmethod
    def extract_domain(lower_query: str) -> str | None:
        for pattern, domain in DOMAIN_PATTERNS:
            if pattern.search(lower_query):
                return domain
        for name, domain in DOMAIN_FALLBACKS:
            if name in lower_query:
                return domain
        return None

    @staticmethod
    def extract_tags(lower_query: str) -> list[str]:
        # Plain substring test: "go" also hits "google"
        return [term for term in TECH_TERMS if term in lower_query]

    # -- stage 5 -----------------------------------------------------------

    @staticmethod
    def extract_semantic_terms(
        query: str,
        date_matches: list[DateMatch],
        date_filter: DateFilter | None,
        content_type: str | None,
        domain: str | None,
    ) -> str:
        clean = query

        if date_filter is not None:
            for match in date_matches:
                clean = clean.replace(match.text, " ")
            for phrase in _RELATIVE_PHRASE_RES:
                clean = phrase.sub(" ", clean)

        if content_type is not None:
            for keyword in TYPE_KEYWORDS[content_type]:
                clean = _whole_word(keyword).sub(" ", clean)

        if domain is not None:
            clean = _whole_word(domain.split(".")[0]).sub(" ", clean)

        tokens = [t for t in _TOKEN_PATTERN.split(clean.lower()) if t and t not in FILLER_WORDS]
        terms = " ".join(tokens)

        return terms or query


def format_parsed_query(parsed: ParsedQuery) -> str:
    """One-line human-readable summary, e.g. for logs."""
    parts = []

    if parsed.semantic_terms:
        parts.append(f'Searching for: "{parsed.semantic_terms}"')
    if parsed.type:
        parts.append(f"Type: {parsed.type}")
    if parsed.domain:
        parts.append(f"From: {parsed.domain}")
    if parsed.date_filter:
        start = parsed.date_filter.start.date().isoformat()
        end = parsed.date_filter.end.date().isoformat()
        parts.append(f"Date: {start}" if start == end else f"Date range: {start} to {end}")
    if parsed.tags:
        parts.append(f"Tags: {', '.join(parsed.tags)}")

    return " | ".join(parts)
