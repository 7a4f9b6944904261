"""Natural-language date extraction.

Finds date expressions in free text and resolves each to either a single
moment or an explicit ``[start, end]`` range.  Relative expressions
("last week", "yesterday", "3 days ago") resolve to a single moment
relative to ``now``; turning those into calendar windows is the query
parser's job.  Absolute dates ("March 3", "2024-03-01", "3/1/2024") are
parsed with dateutil; month-only expressions ("in March", "March 2024")
and explicit spans ("from March 1 to March 5") resolve to ranges.

Pure regex/rule-based, stateless: every call takes ``now`` explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Protocol, runtime_checkable

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

END_OF_DAY = time(23, 59, 59, 999000)

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateMatch:
    """One date expression found in text.

    ``end`` is ``None`` for single dates.  ``index`` is the offset of
    ``text`` in the source string.
    """

    text: str
    start: datetime
    end: datetime | None = None
    index: int = 0

    @property
    def is_range(self) -> bool:
        return self.end is not None


@runtime_checkable
class DateExtractor(Protocol):
    """Given text, return zero or more date matches in document order."""

    def extract(self, text: str, now: datetime) -> list[DateMatch]:
        """Extract date expressions from ``text`` relative to ``now``."""


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def start_of_day(moment: datetime | date, tzinfo=None) -> datetime:
    if isinstance(moment, datetime):
        return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)
    return datetime.combine(moment, time.min, tzinfo=tzinfo)


def end_of_day(moment: datetime | date, tzinfo=None) -> datetime:
    if isinstance(moment, datetime):
        return datetime.combine(moment.date(), END_OF_DAY, tzinfo=moment.tzinfo)
    return datetime.combine(moment, END_OF_DAY, tzinfo=tzinfo)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def end_of_month(moment: datetime) -> datetime:
    return end_of_day(start_of_month(moment) + relativedelta(months=1) - timedelta(days=1))


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_MONTH_NAMES: dict[str, int] = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}  # fmt: skip

_FULL_MONTHS = [name for name in _MONTH_NAMES if (len(name) > 3 and name != "sept") or name == "may"]

_WEEKDAYS: dict[str, int] = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_UNIT_DELTAS = {
    "day": lambda n: relativedelta(days=n),
    "week": lambda n: relativedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}

# ---------------------------------------------------------------------------
# Compiled regular expressions (tried in this order; earlier claims win)
# ---------------------------------------------------------------------------

_MONTH_ALT = "|".join(sorted(_MONTH_NAMES, key=len, reverse=True))
_FULL_MONTH_ALT = "|".join(sorted(_FULL_MONTHS, key=len, reverse=True))
_ORDINAL = r"(?:st|nd|rd|th)?"

_ISO_DATE = r"\d{4}-\d{1,2}-\d{1,2}"
_NUMERIC_DATE = r"\d{1,2}/\d{1,2}/\d{2,4}"
_MONTH_DAY = rf"(?:{_MONTH_ALT})\.?\s+\d{{1,2}}{_ORDINAL}(?:,?\s+\d{{4}})?"
_DAY_MONTH = rf"\d{{1,2}}{_ORDINAL}\s+(?:of\s+)?(?:{_MONTH_ALT})\.?(?:,?\s+\d{{4}})?"
_ABSOLUTE = rf"(?:{_ISO_DATE}|{_NUMERIC_DATE}|{_MONTH_DAY}|{_DAY_MONTH})"

_RANGE_RE = re.compile(
    rf"\b(?:(?:from|between)\s+)?(?P<a>{_ABSOLUTE})\s+(?:-|–|to|and|until|through|thru)\s+(?P<b>{_ABSOLUTE})\b",
    re.IGNORECASE,
)
_RELATIVE_N_RE = re.compile(
    r"\b(?:(?:last|past)\s+(?P<n1>\d+|a|an|one)\s+(?P<u1>day|week|month|year)s?"
    r"|(?P<n2>\d+|a|an|one)\s+(?P<u2>day|week|month|year)s?\s+ago)\b",
    re.IGNORECASE,
)
_RELATIVE_PERIOD_RE = re.compile(
    r"\b(?P<which>last|past|this|current|previous)\s+(?P<unit>week|month|year)\b",
    re.IGNORECASE,
)
_DAY_WORD_RE = re.compile(r"\b(?P<word>today|yesterday|tonight)\b", re.IGNORECASE)
_WEEKDAY_RE = re.compile(
    rf"\b(?:(?P<which>last|this|on|past)\s+)?(?P<day>{'|'.join(_WEEKDAYS)})\b",
    re.IGNORECASE,
)
_ABSOLUTE_RE = re.compile(rf"\b{_ABSOLUTE}\b", re.IGNORECASE)
_MONTH_YEAR_RE = re.compile(rf"\b(?P<month>{_MONTH_ALT})\.?\s+(?P<year>\d{{4}})\b", re.IGNORECASE)
_IN_MONTH_RE = re.compile(rf"\b(?:in|during)\s+(?P<month>{_FULL_MONTH_ALT})\b", re.IGNORECASE)

_ORDINAL_SUFFIX_RE = re.compile(r"(\d)(?:st|nd|rd|th)\b", re.IGNORECASE)
_OF_RE = re.compile(r"\bof\s+", re.IGNORECASE)
_HAS_YEAR_RE = re.compile(r"\d{4}|\d{1,2}/\d{1,2}/\d{2,4}")


def _count(token: str) -> int:
    return 1 if token.lower() in ("a", "an", "one") else int(token)


def parse_absolute_date(text: str, now: datetime) -> datetime | None:
    """Parse an absolute date expression; ``None`` when dateutil cannot make sense of it.

    A month/day without a year resolves to the most recent occurrence that is
    not in the future.
    """
    cleaned = _OF_RE.sub("", _ORDINAL_SUFFIX_RE.sub(r"\1", text)).replace(".", " ")
    default = start_of_day(now)
    try:
        parsed = dateutil_parser.parse(cleaned, default=default)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    parsed = start_of_day(parsed)
    if not _HAS_YEAR_RE.search(text) and parsed > now:
        parsed -= relativedelta(years=1)
    return parsed


class RuleBasedDateExtractor:
    """Default ``DateExtractor``: regex rules plus dateutil for absolute dates."""

    def extract(self, text: str, now: datetime) -> list[DateMatch]:
        if not text or not text.strip():
            return []

        claimed: list[tuple[int, int]] = []
        matches: list[DateMatch] = []

        def free(m: re.Match) -> bool:
            s, e = m.span()
            return all(e <= cs or s >= ce for cs, ce in claimed)

        def claim(m: re.Match, start: datetime, end: datetime | None = None) -> None:
            claimed.append(m.span())
            matches.append(DateMatch(text=m.group(0), start=start, end=end, index=m.start()))

        for m in _RANGE_RE.finditer(text):
            if not free(m):
                continue
            a = parse_absolute_date(m.group("a"), now)
            b = parse_absolute_date(m.group("b"), now)
            if a is None or b is None:
                continue
            if a > b:
                a, b = b, a
            claim(m, start_of_day(a), end_of_day(b))

        for m in _RELATIVE_N_RE.finditer(text):
            if not free(m):
                continue
            amount = _count(m.group("n1") or m.group("n2"))
            unit = (m.group("u1") or m.group("u2")).lower()
            try:
                start = now - _UNIT_DELTAS[unit](amount)
            except (ValueError, OverflowError):
                # Beyond the calendar ("5000 years ago"): not a usable date
                continue
            claim(m, start)

        for m in _RELATIVE_PERIOD_RE.finditer(text):
            if not free(m):
                continue
            which = m.group("which").lower()
            unit = m.group("unit").lower()
            try:
                if unit == "year":
                    year_start = start_of_day(now).replace(month=1, day=1)
                    if which in ("this", "current"):
                        start, end = year_start, end_of_day(now)
                    else:
                        start, end = year_start - relativedelta(years=1), year_start - timedelta(microseconds=1000)
                elif which in ("this", "current"):
                    start, end = now, None
                else:
                    start, end = now - _UNIT_DELTAS[unit](1), None
            except (ValueError, OverflowError):
                continue
            claim(m, start, end)

        for m in _DAY_WORD_RE.finditer(text):
            if free(m):
                claim(m, now - timedelta(days=1) if m.group("word").lower() == "yesterday" else now)

        for m in _WEEKDAY_RE.finditer(text):
            if not free(m):
                continue
            which = (m.group("which") or "").lower()
            target = _WEEKDAYS[m.group("day").lower()]
            back = (now.weekday() - target) % 7
            if which in ("last", "past") and back == 0:
                back = 7
            claim(m, start_of_day(now - timedelta(days=back)))

        for m in _ABSOLUTE_RE.finditer(text):
            if free(m):
                parsed = parse_absolute_date(m.group(0), now)
                if parsed is not None:
                    claim(m, parsed)

        for m in _MONTH_YEAR_RE.finditer(text):
            if not free(m):
                continue
            try:
                first = start_of_day(now).replace(
                    year=int(m.group("year")), month=_MONTH_NAMES[m.group("month").lower()], day=1
                )
                last = end_of_month(first)
            except (ValueError, OverflowError):
                # "jan 0000", "dec 9999"
                continue
            claim(m, first, last)

        for m in _IN_MONTH_RE.finditer(text):
            if not free(m):
                continue
            try:
                first = start_of_day(now).replace(month=_MONTH_NAMES[m.group("month").lower()], day=1)
                if first > now:
                    first -= relativedelta(years=1)
                last = end_of_month(first)
            except (ValueError, OverflowError):
                continue
            claim(m, first, last)

        return sorted(matches, key=lambda match: match.index)
