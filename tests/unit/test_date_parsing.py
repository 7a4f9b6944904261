from datetime import datetime, timedelta, timezone

import pytest

from memory_search.utils.date_parsing import (
    END_OF_DAY,
    DateExtractor,
    RuleBasedDateExtractor,
    end_of_day,
    end_of_month,
    parse_absolute_date,
    start_of_day,
    start_of_month,
)

# Friday
NOW = datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def extractor():
    return RuleBasedDateExtractor()


def test_rule_based_extractor_satisfies_protocol(extractor):
    """The default extractor is usable wherever a DateExtractor is expected."""
    assert isinstance(extractor, DateExtractor)


def test_calendar_helpers():
    """Day and month boundaries keep the timezone of their input."""
    assert start_of_day(NOW) == datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert end_of_day(NOW) == datetime.combine(NOW.date(), END_OF_DAY, tzinfo=timezone.utc)
    assert start_of_month(NOW) == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert end_of_month(datetime(2024, 2, 10, tzinfo=timezone.utc)) == datetime(
        2024, 2, 29, 23, 59, 59, 999000, tzinfo=timezone.utc
    )


def test_empty_text_has_no_matches(extractor):
    assert extractor.extract("", NOW) == []
    assert extractor.extract("   ", NOW) == []
    assert extractor.extract("react hooks tutorial", NOW) == []


def test_yesterday_and_today(extractor):
    """Day words resolve to a single moment relative to now."""
    [match] = extractor.extract("notes from yesterday", NOW)
    assert match.text == "yesterday"
    assert match.start == NOW - timedelta(days=1)
    assert not match.is_range

    [match] = extractor.extract("what did I save today", NOW)
    assert match.start == NOW


def test_last_week_is_single_date(extractor):
    """Relative periods are left for the query parser to widen."""
    [match] = extractor.extract("articles last week", NOW)
    assert match.text == "last week"
    assert match.start == NOW - timedelta(weeks=1)
    assert match.end is None


def test_relative_counts(extractor):
    """'past N days' and 'N weeks ago' subtract from now."""
    [match] = extractor.extract("posts from the past 3 days", NOW)
    assert match.start == NOW - timedelta(days=3)

    [match] = extractor.extract("something from 2 weeks ago", NOW)
    assert match.start == NOW - timedelta(weeks=2)


def test_last_year_is_range(extractor):
    [match] = extractor.extract("videos from last year", NOW)
    assert match.is_range
    assert match.start == datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert match.end.date() == datetime(2023, 12, 31).date()


def test_weekday_names(extractor):
    """A weekday resolves to its most recent occurrence; 'last' skips today."""
    [match] = extractor.extract("notes on monday", NOW)
    assert match.start == datetime(2024, 3, 11, tzinfo=timezone.utc)

    [match] = extractor.extract("saved last friday", NOW)
    assert match.start == datetime(2024, 3, 8, tzinfo=timezone.utc)


def test_iso_and_month_day(extractor):
    [match] = extractor.extract("links saved on 2024-03-01", NOW)
    assert match.start == datetime(2024, 3, 1, tzinfo=timezone.utc)

    [match] = extractor.extract("quote from March 3rd", NOW)
    assert match.start == datetime(2024, 3, 3, tzinfo=timezone.utc)


def test_month_day_without_year_never_in_future(extractor):
    """A yearless date after now rolls back to the previous year."""
    [match] = extractor.extract("notes from December 25", NOW)
    assert match.start == datetime(2023, 12, 25, tzinfo=timezone.utc)


def test_explicit_range(extractor):
    [match] = extractor.extract("articles from March 1 to March 5 about rust", NOW)
    assert match.is_range
    assert match.start == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert match.end == datetime(2024, 3, 5, 23, 59, 59, 999000, tzinfo=timezone.utc)


def test_reversed_range_is_reordered(extractor):
    [match] = extractor.extract("between 2024-03-10 and 2024-03-02", NOW)
    assert match.start == datetime(2024, 3, 2, tzinfo=timezone.utc)
    assert match.end.date() == datetime(2024, 3, 10).date()


def test_month_expressions(extractor):
    """'in February' and 'February 2023' cover the whole month."""
    [match] = extractor.extract("tutorials in february", NOW)
    assert match.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert match.end == datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=timezone.utc)

    [match] = extractor.extract("code from February 2023", NOW)
    assert match.start == datetime(2023, 2, 1, tzinfo=timezone.utc)
    assert match.end.date() == datetime(2023, 2, 28).date()


def test_matches_in_document_order(extractor):
    matches = extractor.extract("yesterday or 2024-01-02", NOW)
    assert [m.text for m in matches] == ["yesterday", "2024-01-02"]
    assert matches[0].index < matches[1].index


def test_parse_absolute_date_rejects_garbage():
    assert parse_absolute_date("not a date at all", NOW) is None


@pytest.mark.parametrize(
    "text",
    [
        "notes from the last 5000 years",
        "python 99999999 days ago",
        "jan 0000 notes",
        "plans for dec 9999",
    ],
)
def test_out_of_range_expressions_are_skipped(extractor, text):
    """Expressions that fall off the calendar yield no match instead of raising."""
    assert extractor.extract(text, NOW) == []


def test_out_of_range_expression_does_not_hide_others(extractor):
    [match] = extractor.extract("99999999 days ago or yesterday", NOW)
    assert match.text == "yesterday"
