"""Value-over-time chart reconstruction for a single portfolio.

Ties the pieces together for one query: resolve the range, pick sample
instants, fetch prices and the benchmark concurrently, value every
instant, then derive the analytics shown next to the chart.
"""

import asyncio
import bisect
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from . import analytics
from .analytics import Trend
from .benchmark import attach_benchmark, benchmark_percent_change, benchmark_ticker, normalize_benchmark
from .config import Settings, settings as default_settings
from .errors import PortfolioLoadError, PortfolioNotFoundError
from .models import (
    CandleTimeframe,
    ChartPoint,
    Holding,
    Portfolio,
    PriceSource,
    Snapshot,
    SnapshotDecision,
    TimeRange,
    Valuation,
    as_utc,
)
from .price_lookup import PriceLookup
from .sampler import compact, flat_line, format_label, interpolate, merge_instants, sample_instants
from .time_range import earliest_known_instant, parse_range, resolve_range, start_of_day
from .valuation import MarketData, PricingStrategy, ValuationEngine, strategy_for, valuation_symbols

logger = logging.getLogger(__name__)

# History window backing the live value when a quote is missing
CURRENT_VALUE_HISTORY = timedelta(days=7)


class QuoteCache:
    """Live quotes per portfolio, refreshed only once the TTL has expired."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._cache: dict[str, tuple[dict[str, Optional[Decimal]], datetime]] = {}

    def get(self, portfolio_id: str, now: datetime) -> Optional[dict[str, Optional[Decimal]]]:
        if portfolio_id in self._cache:
            quotes, cached_at = self._cache[portfolio_id]
            if now - cached_at < self.ttl:
                return quotes
        return None

    def set(self, portfolio_id: str, quotes: dict[str, Optional[Decimal]], now: datetime) -> None:
        self._cache[portfolio_id] = (quotes, now)


class FocusPoint(BaseModel):
    """The highlighted point of a chart and its change against the range baseline."""
    index: int
    point: ChartPoint
    percent_change: Decimal
    absolute_change: Decimal


class ChartResult(BaseModel):
    """A finished chart series plus its derived metrics."""
    portfolio_id: str
    time_range: TimeRange
    points: list[ChartPoint]
    current_value: Decimal
    baseline_value: Decimal
    percent_change: Decimal
    absolute_change: Decimal
    trend: Trend
    axis_domain: Union[tuple[Decimal, Decimal], str]
    benchmark_ticker: Optional[str] = None
    benchmark_percent_change: Optional[Decimal] = None

    def focus(self, hovered_index: Optional[int] = None) -> Optional[FocusPoint]:
        """Metrics for the hovered point, or for the last point when nothing valid is hovered."""
        index = analytics.focus_index(self.points, hovered_index)
        if index is None:
            return None
        point = self.points[index]
        return FocusPoint(
            index=index,
            point=point,
            percent_change=analytics.change_percent(point.value, self.baseline_value),
            absolute_change=point.value - self.baseline_value,
        )


class SparklineResult(BaseModel):
    """Compact series and return figures for a portfolio card."""
    portfolio_id: str
    values: list[Decimal]
    starting_capital: Decimal
    current_value: Decimal
    return_amount: Decimal
    percent_change: Decimal
    trend: Trend


def _resolve_now(now: Optional[datetime]) -> datetime:
    return datetime.now(timezone.utc) if now is None else as_utc(now)


def _snapshot_on_or_before(snapshots: list[Snapshot], day: date) -> Optional[Snapshot]:
    dates = [s.snapshot_date for s in snapshots]
    idx = bisect.bisect_right(dates, day) - 1
    return snapshots[idx] if idx >= 0 else None


def _live_point(valuation: Valuation, token: TimeRange) -> ChartPoint:
    return ChartPoint(
        time=valuation.time,
        label=format_label(valuation.time, token),
        value=valuation.value,
        source=valuation.source,
    )


class TimelineService:
    """Builds charts, card sparklines and snapshots for stored portfolios.

    Args:
        store: Source of portfolios, holdings and snapshots (see PortfolioStore)
        provider: Market-data provider (see PriceService)
        config: Settings; defaults to the environment-derived settings
        quote_cache: Per-portfolio live-quote cache
    """

    def __init__(
        self,
        store,
        provider,
        config: Settings = default_settings,
        quote_cache: Optional[QuoteCache] = None,
    ):
        self.store = store
        self.provider = provider
        self.settings = config
        self.quote_cache = quote_cache or QuoteCache(config.quote_cache_ttl_seconds)

    async def _load(self, portfolio_id: str) -> tuple[Portfolio, list[Holding], list[Snapshot]]:
        """Load the portfolio with its holdings and snapshots.

        Any failure here fails the whole query: cash and holdings feed every
        point, so a partial chart would be wrong rather than incomplete.
        """
        try:
            portfolio, holdings, snapshots = await asyncio.gather(
                asyncio.to_thread(self.store.get_portfolio, portfolio_id),
                asyncio.to_thread(self.store.get_holdings, portfolio_id),
                asyncio.to_thread(self.store.get_snapshots, portfolio_id),
            )
        except PortfolioNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Unable to load portfolio {portfolio_id}: {e}")
            raise PortfolioLoadError(f"Unable to load portfolio {portfolio_id}") from e

        snapshots = sorted(snapshots, key=lambda s: s.snapshot_date)
        return portfolio, list(holdings), snapshots

    async def _live_quotes(
        self,
        portfolio: Portfolio,
        strategy: PricingStrategy,
        symbols: list[str],
        now: datetime,
    ) -> dict[str, Optional[Decimal]]:
        cached = self.quote_cache.get(portfolio.id, now)
        if cached is not None and all(s in cached for s in symbols):
            logger.info(f"Using cached quotes for portfolio {portfolio.id}")
            return cached

        quotes = await strategy.fetch_live(self.provider, symbols)
        missing = [s for s, price in quotes.items() if price is None]
        if missing:
            # Unavailable quotes are refetched on the next query
            logger.warning(f"No live quote for {missing} in portfolio {portfolio.id}, not caching")
        else:
            self.quote_cache.set(portfolio.id, quotes, now)
        return quotes

    async def _benchmark_prices(self, ticker: str, dates: set[date], today: date) -> dict[date, Decimal]:
        """Benchmark closes for ``dates``, with today's value taken from the live quote."""
        closes, live = await asyncio.gather(
            self.provider.get_benchmark_prices(ticker, sorted(dates)),
            self.provider.get_current_quote(ticker),
            return_exceptions=True,
        )
        if isinstance(closes, BaseException):
            logger.error(f"Benchmark history for {ticker} failed: {closes}")
            closes = {}
        if isinstance(live, BaseException):
            logger.error(f"Benchmark quote for {ticker} failed: {live}")
            live = None

        prices = dict(closes or {})
        if live is not None:
            prices[today] = live
        return prices

    async def _market_data(
        self,
        portfolio: Portfolio,
        strategy: PricingStrategy,
        symbols: list[str],
        start: datetime,
        now: datetime,
        timeframe: CandleTimeframe,
    ) -> MarketData:
        history, live = await asyncio.gather(
            strategy.fetch_history(self.provider, symbols, start, now, timeframe),
            self._live_quotes(portfolio, strategy, symbols, now),
            return_exceptions=True,
        )
        if isinstance(history, BaseException):
            logger.error(f"Historical prices for portfolio {portfolio.id} failed: {history}")
            history = PriceLookup()
        if isinstance(live, BaseException):
            logger.error(f"Live quotes for portfolio {portfolio.id} failed: {live}")
            live = {}
        return MarketData(history=history, live=live)

    async def _current_valuation(self, portfolio: Portfolio, holdings: list[Holding], now: datetime) -> Valuation:
        strategy = strategy_for(portfolio)
        symbols = valuation_symbols(holdings)
        market = await self._market_data(
            portfolio, strategy, symbols, now - CURRENT_VALUE_HISTORY, now, CandleTimeframe.ONE_DAY
        )
        return ValuationEngine(portfolio, holdings, market).current_value(now)

    async def current_value(self, portfolio_id: str, now: Optional[datetime] = None) -> Valuation:
        """Live total value of a portfolio."""
        now = _resolve_now(now)
        portfolio, holdings, _ = await self._load(portfolio_id)
        return await self._current_valuation(portfolio, holdings, now)

    async def build_chart(
        self,
        portfolio_id: str,
        range_token: Union[str, TimeRange],
        now: Optional[datetime] = None,
    ) -> ChartResult:
        """Reconstruct a portfolio's value over a range.

        Args:
            portfolio_id: Portfolio to chart
            range_token: One of 1D, 1W, 1M, 3M, YTD, 1Y, ALL
            now: Evaluation instant; the last point is always valued here

        Returns:
            ChartResult whose last point is the live portfolio value

        Raises:
            InvalidRangeError: Unknown range token
            PortfolioNotFoundError: No such portfolio
            PortfolioLoadError: Portfolio, holdings or snapshots could not be loaded
        """
        token = parse_range(range_token)
        now = _resolve_now(now)

        portfolio, holdings, snapshots = await self._load(portfolio_id)
        earliest = earliest_known_instant(portfolio, snapshots)
        resolved = resolve_range(token, earliest, now=now, created_at=portfolio.created_at)
        strategy = strategy_for(portfolio)
        symbols = valuation_symbols(holdings)

        if token == TimeRange.ONE_DAY:
            instants = sample_instants(resolved.start, now, resolved.max_points)
        else:
            extra = []
            if strategy.uses_snapshots:
                extra = [
                    start_of_day(s.snapshot_date) for s in snapshots
                    if resolved.start <= start_of_day(s.snapshot_date) <= now
                ]
            grid = sample_instants(resolved.start, now, resolved.max_points)
            instants = compact(merge_instants(grid, extra, now), resolved.max_points)

        ticker = None
        first_snapshot_date = snapshots[0].snapshot_date if snapshots else None
        fetches = [
            self._market_data(portfolio, strategy, symbols, resolved.start, now, resolved.timeframe),
        ]
        if token != TimeRange.ONE_DAY:
            ticker = benchmark_ticker(
                portfolio, self.settings.benchmark_ticker, self.settings.linked_benchmark_ticker
            )
            dates = {t.date() for t in instants}
            if first_snapshot_date is not None:
                dates.add(first_snapshot_date)
            fetches.append(self._benchmark_prices(ticker, dates, now.date()))

        results = await asyncio.gather(*fetches, return_exceptions=True)
        market = results[0] if not isinstance(results[0], BaseException) else MarketData()
        benchmark_prices: dict[date, Decimal] = {}
        if len(results) > 1:
            if isinstance(results[1], BaseException):
                logger.error(f"Benchmark {ticker} failed for portfolio {portfolio.id}: {results[1]}")
            else:
                benchmark_prices = results[1]

        engine = ValuationEngine(portfolio, holdings, market)
        current = engine.current_value(now)

        if token == TimeRange.ONE_DAY:
            points = self._intraday_points(instants, portfolio, snapshots, current)
        else:
            points = self._range_points(instants, token, strategy, snapshots, engine, current)

        if len(points) < 2:
            points = flat_line(points[-1], token, floor=earliest)

        benchmark_change = None
        if ticker is not None:
            normalized = normalize_benchmark(benchmark_prices, portfolio.starting_capital, first_snapshot_date)
            points = attach_benchmark(points, normalized)
            benchmark_change = benchmark_percent_change(benchmark_prices, first_snapshot_date, now.date())

        baseline = analytics.range_baseline(points, portfolio.starting_capital, all_time=token == TimeRange.ALL)
        logger.info(
            f"Built {token.value} chart for portfolio {portfolio.id}: {len(points)} points "
            f"({resolved.timeframe.value} prices)"
        )

        return ChartResult(
            portfolio_id=portfolio.id,
            time_range=token,
            points=points,
            current_value=current.value,
            baseline_value=baseline,
            percent_change=analytics.percent_change(points, baseline),
            absolute_change=analytics.absolute_change(points, baseline),
            trend=analytics.trend_color(points),
            axis_domain=analytics.axis_domain(points),
            benchmark_ticker=ticker,
            benchmark_percent_change=benchmark_change,
        )

    def _intraday_points(
        self,
        instants: list[datetime],
        portfolio: Portfolio,
        snapshots: list[Snapshot],
        current: Valuation,
    ) -> list[ChartPoint]:
        # Intraday has no snapshot of its own: draw a straight line from the
        # last recorded value to the live value
        base = snapshots[-1].total_value if snapshots else portfolio.starting_capital
        values = interpolate(instants, base, current.value)

        points = [
            ChartPoint(
                time=t,
                label=format_label(t, TimeRange.ONE_DAY),
                value=value,
                source=PriceSource.INTERPOLATED,
            )
            for t, value in zip(instants[:-1], values[:-1])
        ]
        points.append(_live_point(current, TimeRange.ONE_DAY))
        return points

    def _range_points(
        self,
        instants: list[datetime],
        token: TimeRange,
        strategy: PricingStrategy,
        snapshots: list[Snapshot],
        engine: ValuationEngine,
        current: Valuation,
    ) -> list[ChartPoint]:
        points = []
        for t in instants[:-1]:
            snapshot = _snapshot_on_or_before(snapshots, t.date()) if strategy.uses_snapshots else None
            if snapshot is not None:
                points.append(ChartPoint(
                    time=t,
                    label=format_label(t, token),
                    value=snapshot.total_value,
                    source=PriceSource.SNAPSHOT,
                ))
            else:
                valuation = engine.value_at(t)
                points.append(ChartPoint(
                    time=t,
                    label=format_label(t, token),
                    value=valuation.value,
                    source=valuation.source,
                ))

        points.append(_live_point(current, token))
        return points

    async def sparkline(self, portfolio_id: str, now: Optional[datetime] = None) -> SparklineResult:
        """Card sparkline: snapshot values, or starting capital to the live value."""
        now = _resolve_now(now)

        portfolio, holdings, snapshots = await self._load(portfolio_id)
        current = await self._current_valuation(portfolio, holdings, now)
        start = portfolio.starting_capital

        return SparklineResult(
            portfolio_id=portfolio.id,
            values=analytics.sparkline([s.total_value for s in snapshots], start, current.value),
            starting_capital=start,
            current_value=current.value,
            return_amount=current.value - start,
            percent_change=analytics.change_percent(current.value, start),
            trend=Trend.POSITIVE if current.value >= start else Trend.NEGATIVE,
        )

    async def record_snapshot(self, portfolio_id: str, now: Optional[datetime] = None) -> SnapshotDecision:
        """Record today's snapshot from the live value when it adds information."""
        now = _resolve_now(now)

        portfolio, holdings, _ = await self._load(portfolio_id)
        current = await self._current_valuation(portfolio, holdings, now)
        return await asyncio.to_thread(
            self.store.record_snapshot,
            portfolio.id,
            current.value,
            current.cash,
            current.holdings_value,
            now.date(),
        )


class ChartQuery(BaseModel):
    """Parameters a chart fetch was issued for."""
    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    time_range: TimeRange
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChartSession:
    """Runs chart queries for one view and only ever delivers the newest.

    Issuing a query cancels the one in flight. A result that arrives for a
    query which is no longer current is dropped and ``None`` is returned,
    whether it carries a chart or an error.
    """

    def __init__(self, service: TimelineService):
        self.service = service
        self.current: Optional[ChartQuery] = None
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        """Abandon the in-flight query, e.g. when the view is closed."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.current = None

    async def run(self, query: ChartQuery) -> Optional[ChartResult]:
        self.cancel()
        self.current = query
        task = asyncio.ensure_future(
            self.service.build_chart(query.portfolio_id, query.time_range, now=query.issued_at)
        )
        self._task = task

        try:
            result = await task
        except asyncio.CancelledError:
            if self.current is query:
                raise
            logger.info(f"Chart query {query.time_range.value} for {query.portfolio_id} superseded")
            return None
        except Exception as e:
            if self.current is query:
                raise
            logger.info(
                f"Dropping failure of superseded chart query {query.time_range.value} "
                f"for {query.portfolio_id}: {e}"
            )
            return None

        if self.current is not query:
            logger.info(f"Discarding stale chart for {query.portfolio_id} ({query.time_range.value})")
            return None
        return result
