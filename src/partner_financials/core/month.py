"""Calendar month value type used as the report key."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone

from partner_financials.errors import ValidationError

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")

MIN_YEAR = 1970
MAX_YEAR = 9999


@dataclass(frozen=True, order=True)
class ReportMonth:
    """A validated (year, month) pair.

    The ledger window for a month is ``[start, end)`` in UTC, where ``end`` is
    the first instant of the following month.
    """

    year: int
    month: int

    def __post_init__(self) -> None:
        if not MIN_YEAR <= self.year <= MAX_YEAR:
            raise ValidationError(
                f"Year {self.year} is outside the supported range {MIN_YEAR}-{MAX_YEAR}",
                context={"year": self.year},
            )
        if not 1 <= self.month <= 12:
            raise ValidationError(
                f"Month {self.month} must be between 1 and 12",
                context={"month": self.month},
            )

    @classmethod
    def parse(cls, value: str) -> ReportMonth:
        """Parse ``YYYY-MM``; a ``-DD`` suffix (as stored in date columns) is ignored.

        Raises:
            ValidationError: If the string is not a valid month.
        """
        match = _MONTH_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if match is None:
            raise ValidationError(
                f"Invalid report month {value!r}; expected YYYY-MM",
                context={"month": str(value)},
            )
        month = cls(int(match.group(1)), int(match.group(2)))
        if match.group(3) is not None:
            try:
                date(month.year, month.month, int(match.group(3)))
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid report month {value!r}: {exc}",
                    context={"month": value},
                ) from exc
        return month

    @classmethod
    def from_date(cls, value: date) -> ReportMonth:
        """Month containing the given date or datetime."""
        return cls(value.year, value.month)

    @classmethod
    def current(cls) -> ReportMonth:
        """Month containing the current UTC time."""
        return cls.from_date(datetime.now(timezone.utc))

    def shift(self, months: int) -> ReportMonth:
        """Return the month ``months`` away (negative values go back in time)."""
        index = self.year * 12 + (self.month - 1) + months
        return ReportMonth(index // 12, index % 12 + 1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def start(self) -> datetime:
        """First instant of the month (UTC, inclusive)."""
        return datetime(self.year, self.month, 1, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime:
        """First instant of the next month (UTC, exclusive).

        December of the last supported year ends at ``datetime.max``.
        """
        if self.month == 12 and self.year == MAX_YEAR:
            return datetime.max.replace(tzinfo=timezone.utc)
        if self.month == 12:
            return datetime(self.year + 1, 1, 1, tzinfo=timezone.utc)
        return datetime(self.year, self.month + 1, 1, tzinfo=timezone.utc)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
