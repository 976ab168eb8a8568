"""Billing period boundaries and the day arithmetic used for proration."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from metering.core.errors import InvalidBoundary
from metering.services.usage_events import as_utc

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class BillingBoundary:
    """The window an aggregation is computed over.

    ``from_datetime`` is inclusive and ``to_datetime`` exclusive.
    ``charges_duration`` is the number of days used as the proration
    denominator; it can differ from the calendar length of the window when a
    subscription starts or terminates mid-period. ``max_timestamp`` is an
    exclusive cutoff used to compute usage "as of" a point inside the period.
    """

    from_datetime: datetime
    to_datetime: datetime
    charges_duration: int
    max_timestamp: datetime | None = None
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_datetime", as_utc(self.from_datetime))
        object.__setattr__(self, "to_datetime", as_utc(self.to_datetime))
        if self.max_timestamp is not None:
            object.__setattr__(self, "max_timestamp", as_utc(self.max_timestamp))

        if self.to_datetime <= self.from_datetime:
            raise InvalidBoundary(
                f"Boundary end {self.to_datetime.isoformat()} must be after "
                f"its start {self.from_datetime.isoformat()}"
            )
        if self.charges_duration <= 0:
            raise InvalidBoundary(
                f"Boundary duration must be positive, got {self.charges_duration} days"
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise InvalidBoundary(f"Unknown time zone: {self.timezone}") from exc

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def applicable_to_datetime(self) -> datetime:
        """Exclusive upper bound for the events taken into account."""
        if self.max_timestamp is not None and self.max_timestamp < self.to_datetime:
            return self.max_timestamp
        return self.to_datetime

    @property
    def period_seconds(self) -> Decimal:
        return Decimal(self.charges_duration * SECONDS_PER_DAY)

    def contains(self, timestamp: datetime) -> bool:
        return self.from_datetime <= timestamp < self.applicable_to_datetime

    def local_date(self, timestamp: datetime) -> date:
        return as_utc(timestamp).astimezone(self.zone).date()

    @property
    def first_day(self) -> date:
        return self.local_date(self.from_datetime)

    @property
    def last_day(self) -> date:
        # to_datetime is exclusive
        return self.local_date(self.to_datetime - timedelta(microseconds=1))

    def held_days(self, start: datetime, end: datetime | None) -> int:
        """Inclusive number of local days a unit held from ``start`` until ``end``.

        ``end`` is the instant the unit stopped being held (None: still held at
        the end of the period). The count is clamped to the boundary and to
        ``charges_duration`` so a ratio built from it stays within ``[0, 1]``.
        """
        start_day = self.local_date(max(as_utc(start), self.from_datetime))
        if end is None or as_utc(end) >= self.to_datetime:
            end_day = self.last_day
        elif as_utc(end) < self.from_datetime:
            end_day = self.first_day
        else:
            end_day = self.local_date(end)

        days = (end_day - start_day).days + 1
        return max(0, min(days, self.charges_duration))

    def day_ratio(self, start: datetime, end: datetime | None) -> Decimal:
        return Decimal(self.held_days(start, end)) / Decimal(self.charges_duration)


def seconds_between(start: datetime, end: datetime) -> Decimal:
    """Exact number of seconds between two instants, microseconds included."""
    delta = as_utc(end) - as_utc(start)
    whole = delta.days * SECONDS_PER_DAY + delta.seconds
    return Decimal(whole) + Decimal(delta.microseconds) / Decimal(1_000_000)
