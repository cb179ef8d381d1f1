"""Portfolio valuation at arbitrary instants.

Value at an instant is ``cash + sum(quantity * price)`` over the current
holdings. Each holding's price comes from the first tier that has data:

1. the last known historical price at or before the instant (candle close
   for crypto portfolios),
2. the live quote, when valuing "now" or when the instrument has no
   historical series at all,
3. the holding's average cost.

When valuing "now" the live quote is tried first so the end of a chart
always matches the live total.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from .config import settings
from .models import AssetClass, CandleTimeframe, Holding, Portfolio, PriceSource, Valuation
from .price_lookup import PriceLookup, candles_to_series

logger = logging.getLogger(__name__)

# Higher rank wins when summarising a point's provenance
_SOURCE_RANK = {
    PriceSource.MARKET: 0,
    PriceSource.QUOTE: 1,
    PriceSource.COST_BASIS: 2,
}


class MarketData:
    """Historical series and live quotes for one valuation query."""

    def __init__(
        self,
        history: Optional[PriceLookup] = None,
        live: Optional[dict[str, Optional[Decimal]]] = None,
    ):
        self.history = history or PriceLookup()
        self.live = live or {}

    def live_price(self, symbol: str) -> Optional[Decimal]:
        return self.live.get(symbol)


class PricingStrategy:
    """How instrument prices are fetched for one asset class."""

    name = "base"
    # Whether persisted daily snapshots are authoritative for past instants
    uses_snapshots = True

    def provider_symbol(self, symbol: str) -> str:
        return symbol

    async def fetch_history(
        self,
        provider,
        symbols: Sequence[str],
        start: datetime,
        end: datetime,
        timeframe: CandleTimeframe,
    ) -> PriceLookup:
        raise NotImplementedError

    async def fetch_live(self, provider, symbols: Sequence[str]) -> dict[str, Optional[Decimal]]:
        """Live quotes for ``symbols``, keyed by holding symbol."""
        if not symbols:
            return {}
        mapped = {s: self.provider_symbol(s) for s in symbols}
        quotes = await provider.get_current_quotes(list(mapped.values()))
        return {symbol: quotes.get(provider_symbol) for symbol, provider_symbol in mapped.items()}


class QuotePricing(PricingStrategy):
    """Stocks: point quotes and daily/intraday historical closes."""

    name = "quote"
    uses_snapshots = True

    async def fetch_history(self, provider, symbols, start, end, timeframe) -> PriceLookup:
        return await PriceLookup.fetch(provider, list(symbols), start, end, timeframe)


class CandlePricing(PricingStrategy):
    """Crypto: OHLC candles, valued at their close."""

    name = "candle"
    uses_snapshots = False

    def __init__(self, quote_currency: str = settings.crypto_quote_currency):
        self.quote_currency = quote_currency

    def provider_symbol(self, symbol: str) -> str:
        suffix = f"-{self.quote_currency}"
        return symbol if symbol.endswith(suffix) else f"{symbol}{suffix}"

    async def fetch_history(self, provider, symbols, start, end, timeframe) -> PriceLookup:
        if not symbols:
            return PriceLookup()
        mapped = {s: self.provider_symbol(s) for s in symbols}
        try:
            candles = await provider.get_crypto_candles(list(mapped.values()), start, end, timeframe)
        except Exception as e:
            logger.error(f"Error fetching crypto candles for {list(mapped.values())}: {e}")
            candles = {}

        return PriceLookup({
            symbol: candles_to_series(candles.get(product_id, []))
            for symbol, product_id in mapped.items()
        })


def strategy_for(portfolio: Portfolio) -> PricingStrategy:
    """Select the pricing strategy for a portfolio's asset class."""
    if portfolio.asset_class == AssetClass.CRYPTO:
        return CandlePricing()
    return QuotePricing()


def active_holdings(holdings: Sequence[Holding]) -> list[Holding]:
    return [h for h in holdings if h.quantity > 0]


def valuation_symbols(holdings: Sequence[Holding]) -> list[str]:
    """Symbols whose prices a valuation needs, in a stable order."""
    return sorted({h.symbol for h in active_holdings(holdings)})


class ValuationEngine:
    """Computes portfolio value at sample instants from explicit inputs."""

    def __init__(self, portfolio: Portfolio, holdings: Sequence[Holding], market: MarketData):
        self.portfolio = portfolio
        self.holdings = active_holdings(holdings)
        self.market = market

    def price(self, holding: Holding, instant: datetime, is_now: bool = False) -> tuple[Decimal, PriceSource]:
        """Price one holding at ``instant`` using the three-tier fallback."""
        symbol = holding.symbol
        live = self.market.live_price(symbol)

        if is_now:
            if live is not None:
                return live, PriceSource.QUOTE
            latest = self.market.history.latest(symbol)
            if latest is not None:
                return latest, PriceSource.MARKET
        else:
            historical = self.market.history.price_at(symbol, instant)
            if historical is not None:
                return historical, PriceSource.MARKET
            if live is not None:
                return live, PriceSource.QUOTE

        return holding.avg_cost, PriceSource.COST_BASIS

    def value_at(self, instant: datetime, is_now: bool = False) -> Valuation:
        """Total value at ``instant``: cash plus every holding at its best-known price."""
        cash = self.portfolio.current_cash
        holdings_value = Decimal("0")
        source = PriceSource.MARKET
        fallback_symbols = []

        for holding in self.holdings:
            price, price_source = self.price(holding, instant, is_now=is_now)
            holdings_value += holding.quantity * price
            if _SOURCE_RANK[price_source] > _SOURCE_RANK[source]:
                source = price_source
            if price_source == PriceSource.COST_BASIS:
                fallback_symbols.append(holding.symbol)

        return Valuation(
            time=instant,
            value=cash + holdings_value,
            cash=cash,
            holdings_value=holdings_value,
            source=source,
            fallback_symbols=fallback_symbols,
        )

    def current_value(self, now: datetime) -> Valuation:
        """Live total value, always computed fresh from quotes and current holdings."""
        valuation = self.value_at(now, is_now=True)
        if valuation.fallback_symbols:
            logger.warning(
                f"Portfolio {self.portfolio.id}: no market price for "
                f"{valuation.fallback_symbols}, valued at cost basis"
            )
        return valuation

    def values(self, instants: Sequence[datetime], now: datetime) -> list[Valuation]:
        return [self.value_at(t, is_now=(t == now)) for t in instants]

