"""Last-known-price lookup over historical price series."""

import asyncio
import bisect
import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from .models import Candle, CandleTimeframe, PricePoint, PriceSeries

logger = logging.getLogger(__name__)


def build_series(points: Iterable[PricePoint]) -> PriceSeries:
    """Sort points ascending by time, keeping the last price seen per instant."""
    by_time: dict[datetime, PricePoint] = {}
    for point in points:
        by_time[point.time] = point
    return [by_time[t] for t in sorted(by_time)]


def candles_to_series(candles: Iterable[Candle]) -> PriceSeries:
    """Reduce OHLC candles to a close-price series."""
    return build_series(PricePoint(time=c.time, price=c.close) for c in candles)


def price_at(series: Sequence[PricePoint], instant: datetime) -> Optional[Decimal]:
    """Return the price of the latest point at or before ``instant``.

    Instants before the first point clamp to the earliest price. An empty
    series has no price.
    """
    if not series:
        return None

    idx = bisect.bisect_right(series, instant, key=lambda p: p.time) - 1
    if idx < 0:
        return series[0].price
    return series[idx].price


class PriceLookup:
    """Historical series for a set of instruments, queried by instant."""

    def __init__(self, series: Optional[dict[str, PriceSeries]] = None):
        self._series: dict[str, PriceSeries] = {
            symbol: build_series(points) for symbol, points in (series or {}).items()
        }

    def __contains__(self, symbol: str) -> bool:
        return bool(self._series.get(symbol))

    def series(self, symbol: str) -> PriceSeries:
        return self._series.get(symbol, [])

    def price_at(self, symbol: str, instant: datetime) -> Optional[Decimal]:
        return price_at(self.series(symbol), instant)

    def latest(self, symbol: str) -> Optional[Decimal]:
        series = self.series(symbol)
        return series[-1].price if series else None

    @classmethod
    async def fetch(
        cls,
        provider,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: CandleTimeframe,
    ) -> "PriceLookup":
        """Fetch historical series for all symbols concurrently.

        A failed lookup leaves that symbol without a series; it is never
        retried and never aborts the others.
        """
        if not symbols:
            return cls()

        results = await asyncio.gather(
            *(provider.get_historical_prices(s, start, end, timeframe) for s in symbols),
            return_exceptions=True,
        )

        series: dict[str, PriceSeries] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.error(f"Historical price lookup failed for {symbol}: {result}")
                series[symbol] = []
            else:
                series[symbol] = result or []

        logger.info(
            f"Fetched historical series for {len(symbols)} symbols "
            f"({sum(1 for s in series.values() if s)} with data)"
        )
        return cls(series)
