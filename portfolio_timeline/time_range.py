"""Resolve symbolic chart ranges into concrete windows."""

import calendar
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence, Union

from .config import settings
from .errors import InvalidRangeError
from .models import CandleTimeframe, Portfolio, ResolvedRange, Snapshot, TimeRange

# Candle counts above this switch the range to a coarser timeframe
MAX_CANDLES = 2500

# Portfolios younger than this use hourly candles for 3M
YOUNG_PORTFOLIO_DAYS = 10

DEFAULT_LOOKBACK = timedelta(days=30)
WEEK_LOOKBACK = timedelta(days=7)

SHORT_RANGES = (TimeRange.ONE_DAY, TimeRange.ONE_WEEK)

_TIMEFRAME_MINUTES = {
    CandleTimeframe.ONE_MINUTE: 1,
    CandleTimeframe.FIVE_MINUTES: 5,
    CandleTimeframe.ONE_HOUR: 60,
    CandleTimeframe.ONE_DAY: 24 * 60,
}


def parse_range(value: Union[str, TimeRange]) -> TimeRange:
    """Parse a range token such as ``"1w"`` or ``"YTD"``."""
    if isinstance(value, TimeRange):
        return value
    try:
        return TimeRange(value.strip().upper())
    except ValueError:
        valid = ", ".join(r.value for r in TimeRange)
        raise InvalidRangeError(f"Invalid range '{value}'. Must be one of: {valid}") from None


def start_of_day(d: date) -> datetime:
    """Midnight UTC of a calendar date."""
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def earliest_known_instant(portfolio: Portfolio, snapshots: Sequence[Snapshot]) -> datetime:
    """Oldest snapshot's day, or the portfolio creation instant without snapshots."""
    if snapshots:
        return start_of_day(min(s.snapshot_date for s in snapshots))
    return portfolio.created_at


def lookback_offset(token: TimeRange) -> timedelta:
    """How far back the synthetic flat-line point sits for a single-point series."""
    return WEEK_LOOKBACK if token == TimeRange.ONE_WEEK else DEFAULT_LOOKBACK


def _months_back(moment: datetime, months: int) -> datetime:
    year, month = divmod(moment.year * 12 + (moment.month - 1) - months, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def naive_range_start(token: TimeRange, now: datetime) -> Optional[datetime]:
    """Calendar start of a range, before clamping. ``None`` means unbounded."""
    if token == TimeRange.ONE_DAY:
        return now - timedelta(days=1)
    if token == TimeRange.ONE_WEEK:
        return now - timedelta(days=7)
    if token == TimeRange.ONE_MONTH:
        return _months_back(now, 1)
    if token == TimeRange.THREE_MONTHS:
        return _months_back(now, 3)
    if token == TimeRange.YEAR_TO_DATE:
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    if token == TimeRange.ONE_YEAR:
        return _months_back(now, 12)
    return None


def estimate_candles(timeframe: CandleTimeframe, duration: timedelta) -> int:
    """Number of candles of ``timeframe`` needed to cover ``duration``."""
    minutes = duration.total_seconds() / 60
    return math.ceil(minutes / _TIMEFRAME_MINUTES[timeframe])


def select_timeframe(token: TimeRange, duration: timedelta, portfolio_age: timedelta) -> CandleTimeframe:
    """Pick the finest candle granularity that keeps the count under MAX_CANDLES."""
    if token == TimeRange.ONE_DAY:
        if estimate_candles(CandleTimeframe.ONE_MINUTE, duration) <= MAX_CANDLES:
            return CandleTimeframe.ONE_MINUTE
        return CandleTimeframe.FIVE_MINUTES

    if token == TimeRange.ONE_WEEK:
        if estimate_candles(CandleTimeframe.FIVE_MINUTES, duration) <= MAX_CANDLES:
            return CandleTimeframe.FIVE_MINUTES
        return CandleTimeframe.ONE_HOUR

    if token == TimeRange.ONE_MONTH:
        if estimate_candles(CandleTimeframe.ONE_HOUR, duration) <= MAX_CANDLES:
            return CandleTimeframe.ONE_HOUR
        return CandleTimeframe.ONE_DAY

    if token == TimeRange.THREE_MONTHS:
        young = portfolio_age < timedelta(days=YOUNG_PORTFOLIO_DAYS)
        if young and estimate_candles(CandleTimeframe.ONE_HOUR, duration) <= MAX_CANDLES:
            return CandleTimeframe.ONE_HOUR
        return CandleTimeframe.ONE_DAY

    return CandleTimeframe.ONE_DAY


def max_points_for(token: TimeRange) -> int:
    """Point budget for a range: tight for sub-week views, wider otherwise."""
    if token in SHORT_RANGES:
        return settings.short_range_max_points
    return settings.long_range_max_points


def resolve_range(
    token: Union[str, TimeRange],
    earliest: datetime,
    now: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> ResolvedRange:
    """Turn a range selector into a concrete ``[start, now]`` window.

    The start never precedes ``earliest`` (the portfolio's first known
    data), so a range never fabricates history before the portfolio existed.

    Args:
        token: Range selector (``1D``, ``1W``, ``1M``, ``3M``, ``YTD``, ``1Y``, ``ALL``)
        earliest: Earliest-known-data instant for the portfolio
        now: Evaluation instant (defaults to the current UTC time)
        created_at: Portfolio creation instant, used for timeframe selection

    Returns:
        ResolvedRange with start, end, candle timeframe and point budget
    """
    token = parse_range(token)
    if now is None:
        now = datetime.now(timezone.utc)

    naive_start = naive_range_start(token, now)
    start = earliest if naive_start is None else max(naive_start, earliest)
    # A floor in the future (clock skew, same-second creation) collapses to now
    start = min(start, now)

    age = now - (created_at or earliest)
    timeframe = select_timeframe(token, now - start, age)

    return ResolvedRange(
        token=token,
        start=start,
        end=now,
        timeframe=timeframe,
        max_points=max_points_for(token),
    )
