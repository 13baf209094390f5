"""Resolution of partial dates into canonical values and DataCite date strings."""

import calendar
import logging
import re
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


class DateResolver:
    """
    Parses year / year-month / full-date / ISO-8601 datetime values and renders
    DataCite date strings (single value or "start/end" range).

    The UTC offset applied to datetimes without an offset is deployment
    specific and therefore passed in explicitly; with no fallback configured
    such datetimes are rendered as stored.
    """

    YEAR_PATTERN = re.compile(r'^(\d{4})$')
    YEAR_MONTH_PATTERN = re.compile(r'^(\d{4})-(\d{2})$')
    DATE_PATTERN = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
    DATETIME_PATTERN = re.compile(
        r'^(\d{4})-(\d{2})-(\d{2})'           # date part
        r'T(\d{2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?'  # time, seconds optional
        r'(Z|[+-]\d{2}:\d{2})?$'               # optional UTC offset
    )
    OFFSET_PATTERN = re.compile(r'^(Z|[+-](?:[01]\d|2[0-3]):[0-5]\d)$')

    def __init__(self, timezone_fallback: Optional[str] = None):
        """
        Initialize the resolver.

        Args:
            timezone_fallback: Offset such as "+01:00" or "Z" appended to
                datetimes that carry no offset when rendering

        Raises:
            ValueError: If the fallback offset is not a valid UTC offset
        """
        if timezone_fallback is not None and not self.OFFSET_PATTERN.match(timezone_fallback):
            raise ValueError(f"Invalid timezone fallback offset: {timezone_fallback!r}")
        self.timezone_fallback = timezone_fallback

    # =========================================================================
    # Parsing
    # =========================================================================

    def parse(self, raw: Optional[str], is_end: bool = False) -> Optional[str]:
        """
        Resolve a raw date value into its canonical form.

        - None, empty or whitespace-only -> None
        - YYYY -> YYYY-01-01 (start) or YYYY-12-31 (end)
        - YYYY-MM -> first day (start) or last day of the month (end);
          month outside 01-12 -> None
        - YYYY-MM-DD and ISO-8601 datetimes -> unchanged if the calendar date exists

        Args:
            raw: Raw date string
            is_end: True when the value is the end of a range

        Returns:
            Canonical date string, or None when the value is empty or rejected
        """
        if raw is None:
            return None

        value = raw.strip()
        if not value:
            return None

        match = self.YEAR_PATTERN.match(value)
        if match:
            year = match.group(1)
            return f"{year}-12-31" if is_end else f"{year}-01-01"

        match = self.YEAR_MONTH_PATTERN.match(value)
        if match:
            year, month = int(match.group(1)), int(match.group(2))
            if not 1 <= month <= 12:
                logger.debug(f"Rejected date '{value}': month {month:02d} out of range")
                return None
            day = calendar.monthrange(year, month)[1] if is_end else 1
            return f"{year:04d}-{month:02d}-{day:02d}"

        match = self.DATE_PATTERN.match(value)
        if match:
            if not self._is_calendar_date(*match.groups()):
                logger.debug(f"Rejected date '{value}': no such calendar day")
                return None
            return value

        match = self.DATETIME_PATTERN.match(value)
        if match:
            year, month, day, hour, minute, second = match.groups()[:6]
            if not self._is_calendar_date(year, month, day):
                logger.debug(f"Rejected datetime '{value}': no such calendar day")
                return None
            if int(hour) > 23 or int(minute) > 59 or (second is not None and int(second) > 59):
                logger.debug(f"Rejected datetime '{value}': time out of range")
                return None
            return value

        logger.debug(f"Unrecognized date format '{value}'")
        return None

    def classify(self, raw: Optional[str]) -> Optional[str]:
        """
        Report the granularity of a raw date value.

        Returns:
            'year', 'year-month', 'date', 'datetime' or None if the value is
            empty or not a date
        """
        if raw is None or not raw.strip():
            return None
        value = raw.strip()
        if self.YEAR_PATTERN.match(value):
            return "year"
        if self.YEAR_MONTH_PATTERN.match(value):
            return "year-month"
        if self.DATE_PATTERN.match(value):
            return "date"
        if self.DATETIME_PATTERN.match(value):
            return "datetime"
        return None

    def is_invalid_component(self, raw: Optional[str]) -> bool:
        """
        True when a value has date shape but contains a rejected month or day
        (e.g. "2021-13" or "2021-02-30"). Empty values and free text are not
        reported here.
        """
        return self.classify(raw) is not None and self.parse(raw) is None

    @staticmethod
    def _is_calendar_date(year: str, month: str, day: str) -> bool:
        month_number = int(month)
        if not 1 <= month_number <= 12:
            return False
        last_day = calendar.monthrange(int(year), month_number)[1]
        return 1 <= int(day) <= last_day

    # =========================================================================
    # Rendering
    # =========================================================================

    def render(self, start: Optional[str], end: Optional[str] = None) -> Optional[str]:
        """
        Render a stored (start, end) pair as a DataCite date value.

        Both present -> "start/end"; only start -> "start" (an open-ended
        range is never rendered with a trailing slash); only end -> "end";
        neither -> None.
        """
        start = self.apply_timezone_fallback(start)
        end = self.apply_timezone_fallback(end)

        if start and end:
            return f"{start}/{end}"
        if start:
            return start
        if end:
            return end
        return None

    def apply_timezone_fallback(self, value: Optional[str]) -> Optional[str]:
        """Append the configured offset to a datetime that has none."""
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if self.timezone_fallback is None:
            return value

        match = self.DATETIME_PATTERN.match(value)
        if match and match.group(7) is None:
            return f"{value}{self.timezone_fallback}"
        return value

    @staticmethod
    def split_range(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """
        Split a DataCite date value into (start, end).

        "a/b" -> (a, b); "a/" -> (a, None); "/b" -> (None, b); "a" -> (a, None).
        """
        if value is None or not value.strip():
            return None, None
        value = value.strip()
        if '/' not in value:
            return value, None
        start, end = value.split('/', 1)
        return start.strip() or None, end.strip() or None

    def extract_year(self, raw: Optional[str]) -> Optional[int]:
        """Year of a date value in any supported granularity, or None."""
        if self.classify(raw) is None:
            return None
        return int(raw.strip()[:4])
