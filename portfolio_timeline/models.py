"""Data models for portfolio valuation and chart reconstruction."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


def as_utc(value: datetime) -> datetime:
    """Treat naive instants as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AssetClass(str, Enum):
    """Kind of instruments a portfolio trades."""
    STOCK = "stock"
    CRYPTO = "crypto"


class TimeRange(str, Enum):
    """Symbolic chart range selectors."""
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    YEAR_TO_DATE = "YTD"
    ONE_YEAR = "1Y"
    ALL = "ALL"


class CandleTimeframe(str, Enum):
    """Granularity of historical price data."""
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    ONE_HOUR = "1h"
    ONE_DAY = "1d"


class PriceSource(str, Enum):
    """Where a chart point's value came from.

    Ordered from most to least trustworthy for the market-priced tiers;
    COST_BASIS marks a value that used the average-cost fallback for at
    least one holding.
    """
    MARKET = "market"              # historical price series / candle close
    QUOTE = "quote"                # live quote
    SNAPSHOT = "snapshot"          # persisted daily total
    INTERPOLATED = "interpolated"  # intraday line between snapshot and live value
    COST_BASIS = "cost_basis"      # average cost used for at least one holding


class Portfolio(BaseModel):
    """A paper-trading (or linked brokerage) portfolio.

    ``crypto_assets`` is the list of coins a crypto portfolio may trade. It is
    informational only: valuation prices the symbols found in holdings.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    starting_capital: Decimal
    current_cash: Decimal
    created_at: datetime
    asset_class: AssetClass = AssetClass.STOCK
    crypto_assets: list[str] = []
    is_linked: bool = False

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("crypto_assets")
    @classmethod
    def normalize_symbols(cls, v: list[str]) -> list[str]:
        """Normalize crypto symbols to uppercase."""
        return [s.upper().strip() for s in v]


class Holding(BaseModel):
    """Read-only view of a current position."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    quantity: Decimal
    avg_cost: Decimal

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        """Normalize instrument symbol to uppercase."""
        return v.upper().strip()


class Snapshot(BaseModel):
    """A recorded daily total-value observation."""
    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    snapshot_date: date
    total_value: Decimal
    cash: Optional[Decimal] = None
    holdings_value: Optional[Decimal] = None


class PricePoint(BaseModel):
    """One observed price of one instrument."""
    model_config = ConfigDict(frozen=True)

    time: datetime
    price: Decimal

    @field_validator("time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return as_utc(v)


# Ascending by time, no duplicate instants
PriceSeries = list[PricePoint]


class Candle(BaseModel):
    """OHLC candle; only the close is used for valuation."""
    model_config = ConfigDict(frozen=True)

    time: datetime
    close: Decimal
    open: Optional[Decimal] = None
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None

    @field_validator("time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return as_utc(v)


class ResolvedRange(BaseModel):
    """Concrete window for a range selector."""
    model_config = ConfigDict(frozen=True)

    token: TimeRange
    start: datetime
    end: datetime
    timeframe: CandleTimeframe
    max_points: int


class Valuation(BaseModel):
    """Portfolio value at one instant with its provenance."""
    time: datetime
    value: Decimal
    cash: Decimal
    holdings_value: Decimal
    source: PriceSource
    fallback_symbols: list[str] = []

    @property
    def is_fallback(self) -> bool:
        return self.source == PriceSource.COST_BASIS


class ChartPoint(BaseModel):
    """One point of a rendered value-over-time series (never persisted)."""
    time: datetime
    label: str
    value: Decimal
    benchmark: Optional[Decimal] = None
    source: PriceSource = PriceSource.MARKET

    @property
    def is_fallback(self) -> bool:
        """True when the value was priced from cost basis rather than market data."""
        return self.source == PriceSource.COST_BASIS


class SnapshotDecision(BaseModel):
    """Outcome of a conditional snapshot write."""
    created: bool
    reason: str
    snapshot: Optional[Snapshot] = None
