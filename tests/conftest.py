"""Shared fixtures: a fake market-data provider and a temporary store."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from portfolio_timeline.models import Holding, Portfolio, Snapshot
from portfolio_timeline.store import PortfolioStore


class FakeProvider:
    """In-memory stand-in for PriceService.

    ``quotes`` and ``history`` values may be exceptions, which are raised
    when the symbol is requested.
    """

    def __init__(self):
        self.quotes = {}
        self.history = {}
        self.candles = {}
        self.benchmark = {}
        self.quote_calls = 0
        self.history_calls = []
        self.benchmark_requests = []
        self.cleared = False

    async def get_current_quote(self, symbol):
        value = self.quotes.get(symbol)
        if isinstance(value, Exception):
            raise value
        return value

    async def get_current_quotes(self, symbols):
        self.quote_calls += 1
        return {s: await self.get_current_quote(s) for s in symbols}

    async def get_historical_prices(self, symbol, start, end, timeframe):
        self.history_calls.append((symbol, timeframe))
        result = self.history.get(symbol, [])
        if isinstance(result, Exception):
            raise result
        return result

    async def get_crypto_candles(self, product_ids, start, end, timeframe):
        return {p: self.candles.get(p, []) for p in product_ids}

    async def get_benchmark_prices(self, ticker, dates):
        self.benchmark_requests.append((ticker, list(dates)))
        return {d: p for d, p in self.benchmark.items() if d in dates}

    def clear_cache(self):
        self.cleared = True


@pytest.fixture
def now():
    return datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store(tmp_path):
    return PortfolioStore(tmp_path / "portfolios.db")


@pytest.fixture
def seed(store):
    """Persist a portfolio with holdings and snapshots; returns the portfolio."""

    def _seed(
        portfolio_id="p1",
        created_at=None,
        starting_capital="100000",
        cash="100000",
        holdings=(),
        snapshots=(),
        **kwargs,
    ):
        portfolio = Portfolio(
            id=portfolio_id,
            starting_capital=Decimal(starting_capital),
            current_cash=Decimal(cash),
            created_at=created_at or datetime(2025, 1, 1, tzinfo=timezone.utc),
            **kwargs,
        )
        store.save_portfolio(portfolio)
        store.save_holdings(portfolio_id, [
            Holding(symbol=symbol, quantity=Decimal(qty), avg_cost=Decimal(cost))
            for symbol, qty, cost in holdings
        ])
        store.save_snapshots_batch([
            Snapshot(portfolio_id=portfolio_id, snapshot_date=d, total_value=Decimal(v))
            for d, v in snapshots
        ])
        return portfolio

    return _seed
