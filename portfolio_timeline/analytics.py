"""Derived metrics over a finished chart series."""

from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence, Union

from .models import ChartPoint

# Returned by axis_domain when there is nothing to scale
AUTO_DOMAIN = "auto"

AXIS_PADDING = Decimal("0.1")


class Trend(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


def change_percent(value: Decimal, baseline_value: Decimal) -> Decimal:
    """Change of ``value`` against ``baseline_value``, in percent.

    A zero baseline yields 0 rather than an infinite or undefined result.
    """
    if baseline_value == 0:
        return Decimal("0")
    return (value - baseline_value) / abs(baseline_value) * 100


def percent_change(series: Sequence[ChartPoint], baseline_value: Decimal) -> Decimal:
    """Change of the last point against ``baseline_value``, in percent."""
    if not series:
        return Decimal("0")
    return change_percent(series[-1].value, baseline_value)


def absolute_change(series: Sequence[ChartPoint], baseline_value: Decimal) -> Decimal:
    if not series:
        return Decimal("0")
    return series[-1].value - baseline_value


def trend_color(series: Sequence[ChartPoint]) -> Trend:
    """Positive when the series ends at or above where it started."""
    if len(series) < 2:
        return Trend.POSITIVE
    return Trend.POSITIVE if series[-1].value >= series[0].value else Trend.NEGATIVE


def axis_domain(series: Sequence[ChartPoint]) -> Union[tuple[Decimal, Decimal], str]:
    """Value-axis bounds covering values and benchmarks with 10% padding each side."""
    values = []
    for point in series:
        values.append(point.value)
        if point.benchmark is not None:
            values.append(point.benchmark)

    if not values:
        return AUTO_DOMAIN

    low, high = min(values), max(values)
    padding = (high - low) * AXIS_PADDING
    return low - padding, high + padding


def range_baseline(series: Sequence[ChartPoint], starting_capital: Decimal, all_time: bool) -> Decimal:
    """Baseline for percent change: starting capital for all-time views, else the first point."""
    if all_time or not series:
        return starting_capital
    return series[0].value


def sparkline(snapshot_values: Sequence[Decimal], starting_capital: Decimal, current_value: Decimal) -> list[Decimal]:
    """Compact value list for a portfolio card."""
    if snapshot_values:
        return list(snapshot_values)
    if current_value != starting_capital:
        return [starting_capital, current_value]
    return [starting_capital]


def focus_index(series: Sequence[ChartPoint], hovered_index: Optional[int]) -> Optional[int]:
    """Index of the point to highlight: the hovered one if valid, else the last."""
    if not series:
        return None
    if hovered_index is not None and 0 <= hovered_index < len(series):
        return hovered_index
    return len(series) - 1
