"""Price service for fetching market data using yfinance."""

import asyncio
import bisect
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence

import pandas as pd
import pytz
import yfinance as yf

from .config import settings
from .models import Candle, CandleTimeframe, PricePoint, PriceSeries
from .price_lookup import build_series

logger = logging.getLogger(__name__)

MARKET_TZ = pytz.timezone("US/Eastern")

# Extra days fetched around benchmark dates to cover weekends/holidays
BENCHMARK_BUFFER_DAYS = 3

_INTERVALS = {
    CandleTimeframe.ONE_MINUTE: ("1m", timedelta(minutes=1)),
    CandleTimeframe.FIVE_MINUTES: ("5m", timedelta(minutes=5)),
    CandleTimeframe.ONE_HOUR: ("1h", timedelta(hours=1)),
    CandleTimeframe.ONE_DAY: ("1d", timedelta(days=1)),
}


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or pd.isna(value):
        return None
    return Decimal(str(value))


def _floor(moment: datetime, step: timedelta) -> datetime:
    """Round an instant down to a whole bar boundary (UTC)."""
    seconds = step.total_seconds()
    ts = moment.timestamp()
    return datetime.fromtimestamp(ts - ts % seconds, tz=timezone.utc)


def _utc_index(history: pd.DataFrame) -> pd.DataFrame:
    """Normalise a yfinance frame's index to UTC."""
    if history.index.tzinfo is None:
        history.index = history.index.tz_localize("UTC")
    else:
        history.index = history.index.tz_convert(pytz.utc)
    return history


class PriceService:
    """Async facade over yfinance for quotes, history, candles and benchmarks."""

    def __init__(self, cache_ttl_seconds: int = 300):
        """Initialize the price service.

        Args:
            cache_ttl_seconds: How long to cache historical data (default 5 minutes)
        """
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._history_cache: dict[str, tuple[PriceSeries, datetime]] = {}
        self._candle_cache: dict[str, tuple[list[Candle], datetime]] = {}

    async def _history(self, symbol: str, **kwargs) -> pd.DataFrame:
        """Async-safe wrapper around yfinance history()."""
        ticker = yf.Ticker(symbol)
        return await asyncio.to_thread(ticker.history, **kwargs)

    def _cache_get(self, cache: dict, key: str):
        if key in cache:
            data, cached_at = cache[key]
            if datetime.now() - cached_at < self.cache_ttl:
                return data
        return None

    # --- Live quotes ---

    async def get_current_quote(self, symbol: str) -> Optional[Decimal]:
        """Get the latest traded price for a symbol.

        Args:
            symbol: Yahoo Finance ticker symbol

        Returns:
            Current price as Decimal, or None if not available
        """
        try:
            # Try intraday data first for real-time price
            hist = await self._history(symbol, period="1d", interval="1m")
            closes = hist["Close"].dropna() if not hist.empty else None
            if closes is not None and not closes.empty:
                return _to_decimal(closes.iloc[-1])

            # Fallback to daily data
            hist = await self._history(symbol, period="5d")
            closes = hist["Close"].dropna() if not hist.empty else None
            if closes is not None and not closes.empty:
                return _to_decimal(closes.iloc[-1])

            logger.warning(f"No price data available for {symbol}")
            return None

        except Exception as e:
            logger.error(f"Error fetching price for {symbol}: {e}")
            return None

    async def get_current_quotes(self, symbols: Sequence[str]) -> dict[str, Optional[Decimal]]:
        """Get current prices for multiple symbols concurrently.

        Returns:
            Dictionary mapping symbols to prices (None if unavailable)
        """
        symbols = list(dict.fromkeys(symbols))
        prices = await asyncio.gather(*(self.get_current_quote(s) for s in symbols))
        return dict(zip(symbols, prices))

    # --- Historical series ---

    async def get_historical_prices(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: CandleTimeframe = CandleTimeframe.ONE_DAY,
    ) -> PriceSeries:
        """Get historical closes for a symbol.

        Args:
            symbol: Yahoo Finance ticker symbol
            start: Start of the window
            end: End of the window
            timeframe: Bar granularity

        Returns:
            Close-price series ascending by time (empty on failure)
        """
        interval, step = _INTERVALS[timeframe]
        start, end = _floor(start, step), _floor(end, step) + step
        cache_key = f"{symbol}_{interval}_{start.isoformat()}_{end.isoformat()}"
        cached = self._cache_get(self._history_cache, cache_key)
        if cached is not None:
            return cached

        try:
            history = await self._history(symbol, start=start, end=end, interval=interval)
            if history.empty:
                logger.warning(f"No historical data for {symbol} ({interval})")
                return []

            history = _utc_index(history)
            points = []
            for ts, row in history.iterrows():
                price = _to_decimal(row["Close"])
                if price is not None:
                    points.append(PricePoint(time=ts.to_pydatetime(), price=price))

            series = build_series(points)
            logger.info(f"Fetched {len(series)} {interval} prices for {symbol}")
            self._history_cache[cache_key] = (series, datetime.now())
            return series

        except Exception as e:
            logger.error(f"Error fetching historical prices for {symbol}: {e}")
            return []

    async def _get_candles(
        self,
        product_id: str,
        start: datetime,
        end: datetime,
        timeframe: CandleTimeframe,
    ) -> list[Candle]:
        interval, step = _INTERVALS[timeframe]
        start, end = _floor(start, step), _floor(end, step) + step
        cache_key = f"{product_id}_{interval}_{start.isoformat()}_{end.isoformat()}"
        cached = self._cache_get(self._candle_cache, cache_key)
        if cached is not None:
            return cached

        try:
            history = await self._history(product_id, start=start, end=end, interval=interval)
            if history.empty:
                logger.warning(f"No candles for {product_id} ({interval})")
                return []

            history = _utc_index(history)
            candles = []
            for ts, row in history.iterrows():
                close = _to_decimal(row["Close"])
                if close is None:
                    continue
                candles.append(Candle(
                    time=ts.to_pydatetime(),
                    open=_to_decimal(row.get("Open")),
                    high=_to_decimal(row.get("High")),
                    low=_to_decimal(row.get("Low")),
                    close=close,
                ))

            self._candle_cache[cache_key] = (candles, datetime.now())
            return candles

        except Exception as e:
            logger.error(f"Error fetching candles for {product_id}: {e}")
            return []

    async def get_crypto_candles(
        self,
        product_ids: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: CandleTimeframe = CandleTimeframe.ONE_HOUR,
    ) -> dict[str, list[Candle]]:
        """Get OHLC candles for several crypto products concurrently.

        Args:
            product_ids: Yahoo Finance crypto pairs such as ``BTC-USD``

        Returns:
            Dictionary mapping product ids to ascending candles
        """
        product_ids = list(dict.fromkeys(product_ids))
        results = await asyncio.gather(
            *(self._get_candles(p, start, end, timeframe) for p in product_ids)
        )
        logger.info(f"Fetched candles for {product_ids}: {[len(r) for r in results]}")
        return dict(zip(product_ids, results))

    # --- Benchmark ---

    async def get_benchmark_prices(self, ticker: str, dates: Sequence[date]) -> dict[date, Decimal]:
        """Get daily closes of a benchmark for specific dates.

        Dates without a close (weekends, holidays) take the closest previous
        trading day's close. Dates before any available close are omitted.

        Returns:
            Dictionary mapping requested dates to closes
        """
        if not dates:
            return {}

        first, last = min(dates), max(dates)
        start = first - timedelta(days=BENCHMARK_BUFFER_DAYS)
        end = last + timedelta(days=BENCHMARK_BUFFER_DAYS + 1)

        try:
            history = await self._history(ticker, start=start, end=end, interval="1d")
        except Exception as e:
            logger.error(f"Error fetching benchmark prices for {ticker}: {e}")
            return {}

        if history.empty:
            logger.warning(f"No benchmark data for {ticker}")
            return {}

        history = _utc_index(history)
        closes: dict[date, Decimal] = {}
        for ts, price in history["Close"].dropna().items():
            # Daily bars are stamped in exchange time; key them by market date
            closes[ts.astimezone(MARKET_TZ).date()] = Decimal(str(price))

        close_dates = sorted(closes)
        prices = {}
        for d in dates:
            idx = bisect.bisect_right(close_dates, d) - 1
            if idx >= 0:
                prices[d] = closes[close_dates[idx]]

        logger.info(f"Benchmark {ticker}: prices for {len(prices)} of {len(set(dates))} dates")
        return prices

    def clear_cache(self) -> None:
        """Clear all cached data."""
        self._history_cache.clear()
        self._candle_cache.clear()


# Global price service instance
price_service = PriceService(cache_ttl_seconds=settings.history_cache_ttl_seconds)
