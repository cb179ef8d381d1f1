from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from portfolio_timeline.analytics import (
    AUTO_DOMAIN,
    Trend,
    absolute_change,
    axis_domain,
    change_percent,
    focus_index,
    percent_change,
    range_baseline,
    sparkline,
    trend_color,
)
from portfolio_timeline.models import ChartPoint

NOW = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)


def series(*values, benchmarks=None):
    benchmarks = benchmarks or [None] * len(values)
    return [
        ChartPoint(
            time=NOW - timedelta(days=len(values) - i),
            label=str(i),
            value=Decimal(str(v)),
            benchmark=Decimal(str(b)) if b is not None else None,
        )
        for i, (v, b) in enumerate(zip(values, benchmarks))
    ]


@pytest.mark.parametrize("last", ["0", "-50", "123.45", "1000000"])
def test_percent_change_with_zero_baseline_is_zero(last):
    assert percent_change(series(1, last), Decimal("0")) == 0


def test_percent_change_uses_absolute_baseline():
    assert percent_change(series(100, 110), Decimal("100")) == Decimal("10")
    assert percent_change(series(-100, -50), Decimal("-100")) == Decimal("50")
    assert percent_change([], Decimal("100")) == 0
    assert change_percent(Decimal("90"), Decimal("100")) == Decimal("-10")


def test_absolute_change():
    assert absolute_change(series(100, 90), Decimal("100")) == Decimal("-10")
    assert absolute_change([], Decimal("100")) == 0


def test_trend_color():
    assert trend_color(series(100, 100)) == Trend.POSITIVE
    assert trend_color(series(100, 99)) == Trend.NEGATIVE
    assert trend_color(series(100)) == Trend.POSITIVE
    assert trend_color([]) == Trend.POSITIVE


def test_axis_domain_pads_values_and_benchmarks():
    low, high = axis_domain(series(100, 150, 120, benchmarks=[None, 200, 90]))
    assert low == Decimal("79")
    assert high == Decimal("211")


def test_axis_domain_bounds_every_point():
    points = series(5, 3, 8, 8, 1, benchmarks=[2, None, 9, None, 4])
    low, high = axis_domain(points)
    for p in points:
        assert low <= p.value <= high
        if p.benchmark is not None:
            assert low <= p.benchmark <= high


def test_axis_domain_of_empty_series_is_auto():
    assert axis_domain([]) == AUTO_DOMAIN


def test_range_baseline():
    points = series(95, 110)
    assert range_baseline(points, Decimal("100"), all_time=True) == Decimal("100")
    assert range_baseline(points, Decimal("100"), all_time=False) == Decimal("95")


def test_sparkline():
    assert sparkline([Decimal("1"), Decimal("2")], Decimal("1"), Decimal("3")) == [Decimal("1"), Decimal("2")]
    assert sparkline([], Decimal("100"), Decimal("120")) == [Decimal("100"), Decimal("120")]
    assert sparkline([], Decimal("100"), Decimal("100")) == [Decimal("100")]


def test_focus_index():
    points = series(1, 2, 3)
    assert focus_index(points, 1) == 1
    assert focus_index(points, None) == 2
    assert focus_index(points, 7) == 2
    assert focus_index(points, -1) == 2
    assert focus_index([], 0) is None
