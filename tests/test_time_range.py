from datetime import date, datetime, timedelta, timezone

import pytest

from portfolio_timeline.errors import InvalidRangeError
from portfolio_timeline.models import CandleTimeframe, Portfolio, Snapshot, TimeRange
from portfolio_timeline.time_range import (
    earliest_known_instant,
    lookback_offset,
    naive_range_start,
    parse_range,
    resolve_range,
    select_timeframe,
)

NOW = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)
LONG_AGO = datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_parse_range_accepts_any_case():
    assert parse_range("1w") == TimeRange.ONE_WEEK
    assert parse_range(" ytd ") == TimeRange.YEAR_TO_DATE
    assert parse_range(TimeRange.ALL) == TimeRange.ALL


def test_parse_range_rejects_unknown_token():
    with pytest.raises(InvalidRangeError):
        parse_range("2W")
    with pytest.raises(ValueError):
        parse_range("")


def test_earliest_known_instant_prefers_oldest_snapshot():
    portfolio = Portfolio(
        id="p1", starting_capital=100, current_cash=100,
        created_at=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
    )
    snapshots = [
        Snapshot(portfolio_id="p1", snapshot_date=date(2024, 6, 3), total_value=100),
        Snapshot(portfolio_id="p1", snapshot_date=date(2024, 6, 2), total_value=100),
    ]
    assert earliest_known_instant(portfolio, snapshots) == datetime(2024, 6, 2, tzinfo=timezone.utc)
    assert earliest_known_instant(portfolio, []) == portfolio.created_at


def test_naive_starts():
    assert naive_range_start(TimeRange.ONE_DAY, NOW) == NOW - timedelta(days=1)
    assert naive_range_start(TimeRange.ONE_WEEK, NOW) == NOW - timedelta(days=7)
    assert naive_range_start(TimeRange.THREE_MONTHS, NOW) == datetime(2024, 12, 14, 15, 0, tzinfo=timezone.utc)
    assert naive_range_start(TimeRange.YEAR_TO_DATE, NOW) == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert naive_range_start(TimeRange.ONE_YEAR, NOW) == datetime(2024, 3, 14, 15, 0, tzinfo=timezone.utc)
    assert naive_range_start(TimeRange.ALL, NOW) is None


def test_one_month_back_clamps_to_month_end():
    end_of_march = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)
    assert naive_range_start(TimeRange.ONE_MONTH, end_of_march) == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_all_clamps_to_earliest_snapshot():
    earliest = datetime(2024, 1, 1, tzinfo=timezone.utc)
    resolved = resolve_range("ALL", earliest, now=NOW)
    assert resolved.start == earliest
    assert resolved.end == NOW


def test_range_not_clamped_when_history_is_older():
    resolved = resolve_range("1W", LONG_AGO, now=NOW)
    assert resolved.start == NOW - timedelta(days=7)
    assert resolved.max_points == 40


def test_range_clamped_for_young_portfolio():
    created = NOW - timedelta(hours=2)
    resolved = resolve_range("1M", created, now=NOW)
    assert resolved.start == created
    assert resolved.max_points == 60


def test_future_floor_collapses_to_now():
    resolved = resolve_range("1D", NOW + timedelta(seconds=5), now=NOW)
    assert resolved.start == NOW


@pytest.mark.parametrize("token, duration, age, expected", [
    (TimeRange.ONE_DAY, timedelta(days=1), timedelta(days=100), CandleTimeframe.ONE_MINUTE),
    (TimeRange.ONE_WEEK, timedelta(days=7), timedelta(days=100), CandleTimeframe.FIVE_MINUTES),
    (TimeRange.ONE_WEEK, timedelta(days=10), timedelta(days=100), CandleTimeframe.ONE_HOUR),
    (TimeRange.ONE_MONTH, timedelta(days=31), timedelta(days=100), CandleTimeframe.ONE_HOUR),
    (TimeRange.THREE_MONTHS, timedelta(days=5), timedelta(days=5), CandleTimeframe.ONE_HOUR),
    (TimeRange.THREE_MONTHS, timedelta(days=90), timedelta(days=100), CandleTimeframe.ONE_DAY),
    (TimeRange.ONE_YEAR, timedelta(days=365), timedelta(days=400), CandleTimeframe.ONE_DAY),
    (TimeRange.ALL, timedelta(days=900), timedelta(days=900), CandleTimeframe.ONE_DAY),
])
def test_select_timeframe(token, duration, age, expected):
    assert select_timeframe(token, duration, age) == expected


def test_lookback_offset():
    assert lookback_offset(TimeRange.ONE_WEEK) == timedelta(days=7)
    assert lookback_offset(TimeRange.ONE_DAY) == timedelta(days=30)
    assert lookback_offset(TimeRange.ALL) == timedelta(days=30)
