from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from portfolio_timeline.errors import PortfolioNotFoundError
from portfolio_timeline.models import AssetClass, Holding, Portfolio, Snapshot


def test_portfolio_round_trip(store):
    portfolio = Portfolio(
        id="c1",
        starting_capital=Decimal("5000"),
        current_cash=Decimal("1200.50"),
        created_at=datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc),
        asset_class=AssetClass.CRYPTO,
        crypto_assets=["btc", "eth"],
        is_linked=True,
    )
    store.save_portfolio(portfolio)
    assert store.get_portfolio("c1") == portfolio


def test_missing_portfolio_raises(store):
    with pytest.raises(PortfolioNotFoundError):
        store.get_portfolio("nope")


def test_holdings_are_replaced(store):
    store.save_holdings("p1", [Holding(symbol="msft", quantity=Decimal("1"), avg_cost=Decimal("300"))])
    store.save_holdings("p1", [
        Holding(symbol="TSLA", quantity=Decimal("2"), avg_cost=Decimal("200")),
        Holding(symbol="AAPL", quantity=Decimal("3.5"), avg_cost=Decimal("150.25")),
    ])
    holdings = store.get_holdings("p1")
    assert [h.symbol for h in holdings] == ["AAPL", "TSLA"]
    assert holdings[0].quantity == Decimal("3.5")


def test_snapshots_are_append_only(store):
    written = store.save_snapshots_batch([
        Snapshot(portfolio_id="p1", snapshot_date=date(2025, 3, 2), total_value=Decimal("101")),
        Snapshot(portfolio_id="p1", snapshot_date=date(2025, 3, 1), total_value=Decimal("100")),
    ])
    assert written == 2

    again = store.save_snapshots_batch([
        Snapshot(portfolio_id="p1", snapshot_date=date(2025, 3, 2), total_value=Decimal("999")),
    ])
    assert again == 0

    snapshots = store.get_snapshots("p1")
    assert [s.snapshot_date for s in snapshots] == [date(2025, 3, 1), date(2025, 3, 2)]
    assert snapshots[1].total_value == Decimal("101")
    assert store.get_latest_snapshot("p1").snapshot_date == date(2025, 3, 2)
    assert store.get_latest_snapshot("other") is None


def test_first_snapshot_is_always_recorded(store):
    decision = store.record_snapshot("p1", Decimal("100"), Decimal("40"), Decimal("60"), date(2025, 3, 1))
    assert decision.created
    assert decision.reason == "No previous snapshot exists"
    assert store.get_latest_snapshot("p1").cash == Decimal("40")


def test_same_day_snapshot_is_skipped(store):
    store.record_snapshot("p1", Decimal("100"), Decimal("0"), Decimal("100"), date(2025, 3, 1))
    decision = store.record_snapshot("p1", Decimal("150"), Decimal("0"), Decimal("150"), date(2025, 3, 1))
    assert not decision.created
    assert "date same: True" in decision.reason
    assert store.get_latest_snapshot("p1").total_value == Decimal("100")


def test_unchanged_value_is_skipped(store):
    store.record_snapshot("p1", Decimal("100"), Decimal("0"), Decimal("100"), date(2025, 3, 1))
    decision = store.record_snapshot("p1", Decimal("100.005"), Decimal("0"), Decimal("100.005"), date(2025, 3, 2))
    assert not decision.created
    assert "value same: True" in decision.reason


def test_new_day_and_value_is_recorded(store):
    store.record_snapshot("p1", Decimal("100"), Decimal("0"), Decimal("100"), date(2025, 3, 1))
    decision = store.record_snapshot("p1", Decimal("105"), Decimal("0"), Decimal("105"), date(2025, 3, 2))
    assert decision.created
    assert decision.snapshot.snapshot_date == date(2025, 3, 2)
    assert len(store.get_snapshots("p1")) == 2


def test_backdated_snapshot_on_existing_date_is_not_reported_created(store):
    store.record_snapshot("p1", Decimal("100"), Decimal("0"), Decimal("100"), date(2025, 3, 1))
    store.record_snapshot("p1", Decimal("110"), Decimal("0"), Decimal("110"), date(2025, 3, 3))

    decision = store.record_snapshot("p1", Decimal("120"), Decimal("0"), Decimal("120"), date(2025, 3, 1))

    assert not decision.created
    assert decision.snapshot is None
    assert store.get_snapshots("p1")[0].total_value == Decimal("100")


def test_naive_creation_time_round_trips_as_utc(store):
    store.save_portfolio(Portfolio(
        id="n1",
        starting_capital=Decimal("1"),
        current_cash=Decimal("1"),
        created_at=datetime(2025, 2, 1, 9, 30),
    ))
    assert store.get_portfolio("n1").created_at == datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc)
