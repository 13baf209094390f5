"""Unit tests for DateResolver."""

import pytest

from datacite_engine.utils.date_resolver import DateResolver


@pytest.fixture
def resolver():
    """Resolver without timezone fallback."""
    return DateResolver()


class TestParse:
    """Test resolution of raw date values."""

    def test_year_start_and_end(self, resolver):
        """Test that a bare year expands to the first or last day of the year."""
        assert resolver.parse("2021") == "2021-01-01"
        assert resolver.parse("2021", is_end=True) == "2021-12-31"

    def test_year_month_start(self, resolver):
        """Test that a year-month start resolves to the first of the month."""
        assert resolver.parse("2021-04") == "2021-04-01"

    @pytest.mark.parametrize("raw,expected", [
        ("2024-02", "2024-02-29"),
        ("2023-02", "2023-02-28"),
        ("2000-02", "2000-02-29"),
        ("1900-02", "1900-02-28"),
        ("2021-04", "2021-04-30"),
        ("2021-12", "2021-12-31"),
    ])
    def test_year_month_end_uses_last_day(self, resolver, raw, expected):
        """Test that year-month ends honor month lengths and leap years."""
        assert resolver.parse(raw, is_end=True) == expected

    def test_invalid_month_rejected(self, resolver):
        """Test that month 13 is rejected."""
        assert resolver.parse("2021-13") is None
        assert resolver.parse("2021-00", is_end=True) is None

    def test_impossible_day_rejected(self, resolver):
        """Test that non-existent calendar days are rejected."""
        assert resolver.parse("2021-02-30") is None
        assert resolver.parse("2023-02-29") is None
        assert resolver.parse("2024-02-29") == "2024-02-29"

    def test_full_date_unchanged(self, resolver):
        """Test that full dates pass through."""
        assert resolver.parse(" 2021-06-15 ") == "2021-06-15"

    def test_datetime_unchanged(self, resolver):
        """Test that ISO-8601 datetimes pass through with or without offset."""
        assert resolver.parse("2021-06-15T10:30:00") == "2021-06-15T10:30:00"
        assert resolver.parse("2021-06-15T10:30:00+02:00") == "2021-06-15T10:30:00+02:00"

    def test_datetime_with_bad_time_rejected(self, resolver):
        """Test that hour 25 is rejected."""
        assert resolver.parse("2021-06-15T25:00:00") is None

    def test_empty_values(self, resolver):
        """Test that empty and whitespace-only values are absent."""
        assert resolver.parse(None) is None
        assert resolver.parse("") is None
        assert resolver.parse("   ") is None

    def test_free_text(self, resolver):
        """Test that free text is not a date."""
        assert resolver.parse("summer 2021") is None


class TestClassify:
    """Test granularity detection."""

    def test_granularities(self, resolver):
        """Test each supported granularity."""
        assert resolver.classify("2021") == "year"
        assert resolver.classify("2021-05") == "year-month"
        assert resolver.classify("2021-05-04") == "date"
        assert resolver.classify("2021-05-04T12:00Z") == "datetime"
        assert resolver.classify("yesterday") is None

    def test_invalid_component(self, resolver):
        """Test that only date-shaped values with bad components are flagged."""
        assert resolver.is_invalid_component("2021-13")
        assert resolver.is_invalid_component("2021-02-30")
        assert not resolver.is_invalid_component("2021-02-28")
        assert not resolver.is_invalid_component("")
        assert not resolver.is_invalid_component("unknown")


class TestRender:
    """Test rendering of DataCite date values."""

    def test_closed_range(self, resolver):
        """Test start and end joined with a slash."""
        assert resolver.render("2020-01-01", "2020-12-31") == "2020-01-01/2020-12-31"

    def test_open_ended_range_has_no_trailing_slash(self, resolver):
        """Test that a range without end renders as the start value only."""
        assert resolver.render("2020-01-01", None) == "2020-01-01"
        assert not resolver.render("2020-01-01", "").endswith("/")

    def test_only_end(self, resolver):
        """Test that only an end value renders as that value."""
        assert resolver.render(None, "2020-12-31") == "2020-12-31"

    def test_neither(self, resolver):
        """Test that no values render as None."""
        assert resolver.render(None, None) is None

    def test_timezone_fallback_applied(self):
        """Test that the configured offset is appended to naive datetimes only."""
        resolver = DateResolver("+01:00")
        assert resolver.render("2020-01-01T10:00:00") == "2020-01-01T10:00:00+01:00"
        assert resolver.render("2020-01-01T10:00:00Z") == "2020-01-01T10:00:00Z"
        assert resolver.render("2020-01-01") == "2020-01-01"

    def test_no_fallback_keeps_datetime(self, resolver):
        """Test that without fallback a naive datetime is rendered as stored."""
        assert resolver.render("2020-01-01T10:00:00") == "2020-01-01T10:00:00"

    def test_invalid_fallback_raises(self):
        """Test that an invalid offset is rejected at construction."""
        with pytest.raises(ValueError, match="Invalid timezone fallback"):
            DateResolver("+25:00")


class TestSplitRange:
    """Test splitting of DataCite range values."""

    def test_variants(self):
        """Test closed, open and single values."""
        assert DateResolver.split_range("2020/2021") == ("2020", "2021")
        assert DateResolver.split_range("2020/") == ("2020", None)
        assert DateResolver.split_range("/2021") == (None, "2021")
        assert DateResolver.split_range("2020") == ("2020", None)
        assert DateResolver.split_range("") == (None, None)

    def test_extract_year(self, resolver):
        """Test year extraction from any granularity."""
        assert resolver.extract_year("2019-05-01") == 2019
        assert resolver.extract_year("n/a") is None
