"""Benchmark normalization onto a portfolio's starting-capital baseline."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from .models import ChartPoint, Portfolio

logger = logging.getLogger(__name__)


def benchmark_ticker(portfolio: Portfolio, default: str, linked: str) -> str:
    """Linked brokerage portfolios compare against ``linked``, paper ones against ``default``."""
    return linked if portfolio.is_linked else default


def first_known_price(prices: dict[date, Decimal], first_snapshot_date: Optional[date]) -> Optional[Decimal]:
    """Benchmark price on the first snapshot date, else the earliest available price."""
    if not prices:
        return None
    if first_snapshot_date is not None and prices.get(first_snapshot_date):
        return prices[first_snapshot_date]
    return prices[min(prices)]


def normalize_benchmark(
    prices: dict[date, Decimal],
    starting_capital: Decimal,
    first_snapshot_date: Optional[date] = None,
) -> dict[date, Decimal]:
    """Rescale benchmark prices to ``price / first_price * starting_capital``.

    Args:
        prices: Raw benchmark closes keyed by date
        starting_capital: Portfolio starting capital
        first_snapshot_date: Date of the portfolio's first snapshot, if any

    Returns:
        Normalized values keyed by date; empty if no usable baseline exists
    """
    first_price = first_known_price(prices, first_snapshot_date)
    if first_price is None or first_price <= 0:
        if prices:
            logger.warning("Benchmark has no positive baseline price, skipping normalization")
        return {}

    return {
        d: price / first_price * starting_capital
        for d, price in prices.items()
        if price is not None and price > 0
    }


def attach_benchmark(points: Sequence[ChartPoint], normalized: dict[date, Decimal]) -> list[ChartPoint]:
    """Set each point's benchmark from its calendar date; missing dates become gaps."""
    return [
        point.model_copy(update={"benchmark": normalized.get(point.time.date())})
        for point in points
    ]


def benchmark_percent_change(
    prices: dict[date, Decimal],
    first_snapshot_date: Optional[date],
    on_date: date,
) -> Optional[Decimal]:
    """Raw benchmark return from its baseline to ``on_date``, in percent."""
    current = prices.get(on_date)
    first_price = first_known_price(prices, first_snapshot_date)
    if not current or first_price is None or first_price <= 0:
        return None
    return (current - first_price) / first_price * 100
