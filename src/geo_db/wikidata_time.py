"""
Wikidata time values and temporal qualifier resolution.

Wikidata stores times as `+yyyy-mm-ddThh:mm:ssZ` plus a separate timezone
offset in minutes:

- the sign may be `-` and the year may have any number of digits
- month and day are `00` when the precision is coarser than a month/day
- there is always a trailing `Z`

Times are converted to a single integer instant (seconds on the proleptic
Gregorian calendar, UTC) so that values far outside `datetime`'s year range
still compare correctly.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import (
    P_END_TIME,
    P_POINT_IN_TIME,
    P_START_TIME,
    Claim,
    Snak,
    TimeValue,
    ValueSnak,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400


class TimeParseError(ValueError):
    """Raised when a Wikidata time string cannot be parsed."""


def _days_from_civil(year: int, month: int, day: int) -> int:
    """Days since 1970-01-01 for a proleptic Gregorian date (any integer year)."""
    year -= month <= 2
    era = year // 400
    yoe = year - era * 400
    doy = (153 * (month + (-3 if month > 2 else 9)) + 2) // 5 + day - 1
    doe = yoe * 365 + yoe // 4 - yoe // 100 + doy
    return era * 146_097 + doe - 719_468


@dataclass(frozen=True, order=True)
class WikiTime:
    """A resolved point in time. Ordering compares `instant` only."""
    instant: int
    year: int = field(default=1970, compare=False)
    month: int = field(default=1, compare=False)
    day: int = field(default=1, compare=False)
    hour: int = field(default=0, compare=False)
    minute: int = field(default=0, compare=False)
    second: int = field(default=0, compare=False)
    timezone: int = field(default=0, compare=False)

    @classmethod
    def from_parts(
        cls,
        year: int,
        month: int = 1,
        day: int = 1,
        hour: int = 0,
        minute: int = 0,
        second: int = 0,
        timezone: int = 0,
    ) -> "WikiTime":
        instant = (
            _days_from_civil(year, month, day) * _SECONDS_PER_DAY
            + hour * 3600
            + minute * 60
            + second
            - timezone * 60
        )
        return cls(instant, year, month, day, hour, minute, second, timezone)

    @classmethod
    def from_datetime(cls, dt: datetime) -> "WikiTime":
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        dt = dt.astimezone(timezone.utc)
        return cls.from_parts(dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second)

    @classmethod
    def now(cls) -> "WikiTime":
        return cls.from_datetime(datetime.now(timezone.utc))

    @property
    def zone_name(self) -> str:
        """Offset as `UTC`, `UTC+2` or `UTC+5.5` (one decimal only when needed)."""
        if self.timezone == 0:
            return "UTC"
        offset = self.timezone / 60
        if offset == int(offset):
            return f"UTC{int(offset):+d}"
        return f"UTC{offset:+.1f}"

    def __str__(self) -> str:
        return (
            f"{self.year:04d}-{self.month:02d}-{self.day:02d} "
            f"{self.hour:02d}:{self.minute:02d}:{self.second:02d} {self.zone_name}"
        )


# Unqualified candidates rank below every real time
MIN_INSTANT = WikiTime(instant=-(2 ** 63))


def parse_wikidata_time(time_str: str, timezone_minutes: int = 0) -> WikiTime:
    """
    Parse a Wikidata time string into a WikiTime.

    Args:
        time_str: Time like "+2020-01-15T00:00:00Z" or "-0500-00-00T00:00:00Z"
        timezone_minutes: Offset from UTC in minutes

    Returns:
        WikiTime normalised to UTC

    Raises:
        TimeParseError: if the string is malformed
    """
    date, sep, clock = time_str.partition("T")
    if not date:
        raise TimeParseError(f"datetime has no date part: {time_str!r}")
    if not sep or not clock:
        raise TimeParseError(f"datetime has no time part: {time_str!r}")

    # Skip a leading sign when looking for the year/month separator
    dash = date.find("-", 1)
    if dash < 0:
        raise TimeParseError(f"datetime has no date dash: {time_str!r}")
    month_str, _, day_str = date[dash + 1:].partition("-")
    if not month_str or not day_str:
        raise TimeParseError(f"date part is too short: {time_str!r}")

    clock_parts = clock.rstrip("Z").split(":")
    if len(clock_parts) != 3:
        raise TimeParseError(f"invalid time: {time_str!r}")

    try:
        year = int(date[:dash])
        month = int(month_str) or 1
        day = int(day_str) or 1
        hour, minute, second = (int(p) for p in clock_parts)
    except ValueError as e:
        raise TimeParseError(f"int parse error in {time_str!r}: {e}") from e

    if not 1 <= month <= 12 or not 1 <= day <= 31:
        raise TimeParseError(f"date out of range: {time_str!r}")

    return WikiTime.from_parts(year, month, day, hour, minute, second, int(timezone_minutes))


def time_from_snak(snak: Optional[Snak]) -> Optional[WikiTime]:
    """Resolve a time-valued snak; non-value snaks and bad times count as absent."""
    if not isinstance(snak, ValueSnak) or not isinstance(snak.value, TimeValue):
        return None
    try:
        return parse_wikidata_time(snak.value.time, snak.value.timezone)
    except TimeParseError as e:
        logger.debug(f"ignoring {snak.property} qualifier: {e}")
        return None


def _first_time(qualifiers: dict[str, list[Snak]], prop: str) -> Optional[WikiTime]:
    snaks = qualifiers.get(prop)
    return time_from_snak(snaks[0]) if snaks else None


def is_currently_valid(
    qualifiers: Optional[dict[str, list[Snak]]],
    reference: WikiTime,
) -> bool:
    """
    Check whether a qualified fact holds at the reference instant.

    A fact is valid unless it has an end time strictly before the reference,
    or a start time strictly after it.
    """
    if not qualifiers:
        return True

    end = _first_time(qualifiers, P_END_TIME)
    if end is not None and end < reference:
        return False

    start = _first_time(qualifiers, P_START_TIME)
    if start is not None and start > reference:
        return False

    return True


def select_first_valid_or_last(claims: list[Claim], reference: WikiTime) -> Optional[Claim]:
    """
    Pick the first claim valid at the reference instant.

    When none is valid, fall back to the last claim in iteration order.
    """
    for claim in claims:
        if is_currently_valid(claim.qualifiers, reference):
            return claim
    return claims[-1] if claims else None


def select_latest_by_point_in_time(claims: Iterable[Claim]) -> Optional[Claim]:
    """
    Pick the claim with the latest point-in-time qualifier.

    Claims without a usable point-in-time rank as MIN_INSTANT. On equal
    instants the later claim wins.
    """
    best: Optional[Claim] = None
    best_time = MIN_INSTANT
    for claim in claims:
        claim_time = _first_time(claim.qualifiers, P_POINT_IN_TIME) or MIN_INSTANT
        if best is None or claim_time >= best_time:
            best = claim
            best_time = claim_time
    return best
