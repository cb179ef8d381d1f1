from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from portfolio_timeline.models import Candle, CandleTimeframe, PricePoint
from portfolio_timeline.price_lookup import PriceLookup, build_series, candles_to_series, price_at

T1 = datetime(2025, 3, 10, 14, 30, tzinfo=timezone.utc)
T2 = datetime(2025, 3, 11, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def series():
    return [PricePoint(time=T1, price=Decimal("10")), PricePoint(time=T2, price=Decimal("12"))]


def test_price_at_is_a_step_function(series):
    assert price_at(series, T1) == Decimal("10")
    assert price_at(series, T1 + timedelta(hours=23)) == Decimal("10")
    assert price_at(series, T2) == Decimal("12")
    assert price_at(series, T2 + timedelta(days=30)) == Decimal("12")


def test_price_before_first_point_clamps_to_earliest(series):
    assert price_at(series, T1 - timedelta(days=365)) == Decimal("10")


def test_price_at_empty_series_is_none():
    assert price_at([], T1) is None


def test_build_series_sorts_and_keeps_last_duplicate():
    series = build_series([
        PricePoint(time=T2, price=Decimal("12")),
        PricePoint(time=T1, price=Decimal("10")),
        PricePoint(time=T1, price=Decimal("11")),
    ])
    assert [p.time for p in series] == [T1, T2]
    assert series[0].price == Decimal("11")


def test_candles_reduce_to_closes():
    candles = [
        Candle(time=T2, open=Decimal("1"), high=Decimal("5"), low=Decimal("1"), close=Decimal("4")),
        Candle(time=T1, close=Decimal("3")),
    ]
    assert [p.price for p in candles_to_series(candles)] == [Decimal("3"), Decimal("4")]


def test_lookup_by_symbol(series):
    lookup = PriceLookup({"AAPL": series})
    assert "AAPL" in lookup
    assert "MSFT" not in lookup
    assert lookup.price_at("AAPL", T2) == Decimal("12")
    assert lookup.price_at("MSFT", T2) is None
    assert lookup.latest("AAPL") == Decimal("12")
    assert lookup.latest("MSFT") is None


@pytest.mark.asyncio
async def test_fetch_degrades_failed_symbol_to_no_data(provider, series):
    provider.history["AAPL"] = series
    provider.history["MSFT"] = RuntimeError("provider down")

    lookup = await PriceLookup.fetch(provider, ["AAPL", "MSFT"], T1, T2, CandleTimeframe.ONE_DAY)

    assert lookup.series("AAPL") == series
    assert lookup.series("MSFT") == []
    assert {s for s, _ in provider.history_calls} == {"AAPL", "MSFT"}


@pytest.mark.asyncio
async def test_fetch_without_symbols_skips_provider(provider):
    lookup = await PriceLookup.fetch(provider, [], T1, T2, CandleTimeframe.ONE_DAY)
    assert lookup.series("AAPL") == []
    assert provider.history_calls == []


def test_naive_price_times_are_utc():
    point = PricePoint(time=datetime(2025, 3, 10, 14, 30), price=Decimal("10"))
    candle = Candle(time=datetime(2025, 3, 10, 14, 30), close=Decimal("10"))
    assert point.time == T1
    assert candle.time == T1
    assert price_at([point], T1 + timedelta(minutes=1)) == Decimal("10")
