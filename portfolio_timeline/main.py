"""FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query

from .config import settings
from .errors import InvalidRangeError, PortfolioLoadError, PortfolioNotFoundError
from .models import ChartPoint
from .price_service import price_service
from .store import PortfolioStore
from .timeline import TimelineService

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Portfolio Timeline",
    description="Portfolio value over time with benchmark comparison",
    version="1.0.0",
)

# Created on first use so importing the app does not touch the database
_timeline_service: Optional[TimelineService] = None


def get_timeline_service() -> TimelineService:
    global _timeline_service
    if _timeline_service is None:
        _timeline_service = TimelineService(PortfolioStore(), price_service)
    return _timeline_service


def _http_error(portfolio_id: str, e: Exception) -> HTTPException:
    if isinstance(e, InvalidRangeError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PortfolioNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PortfolioLoadError):
        return HTTPException(status_code=503, detail="Unable to load portfolio")
    logger.error(f"Error processing portfolio {portfolio_id}: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _point_dict(point: ChartPoint) -> dict:
    return {
        "time": point.time.isoformat(),
        "label": point.label,
        "value": float(point.value),
        "benchmark": float(point.benchmark) if point.benchmark is not None else None,
        "source": point.source.value,
        "is_fallback": point.is_fallback,
    }


@app.get("/api/portfolios/{portfolio_id}/chart")
async def get_chart(
    portfolio_id: str,
    range_token: str = Query("1W", alias="range", description="Range (1D, 1W, 1M, 3M, YTD, 1Y, ALL)"),
    hover: Optional[int] = Query(None, description="Index of the hovered point"),
    service: TimelineService = Depends(get_timeline_service),
):
    """Get the value-over-time chart of a portfolio."""
    try:
        chart = await service.build_chart(portfolio_id, range_token)
    except Exception as e:
        raise _http_error(portfolio_id, e)

    focus = chart.focus(hover)
    domain = chart.axis_domain
    return {
        "portfolio_id": chart.portfolio_id,
        "range": chart.time_range.value,
        "points": [_point_dict(p) for p in chart.points],
        "current_value": float(chart.current_value),
        "percent_change": float(chart.percent_change),
        "absolute_change": float(chart.absolute_change),
        "trend": chart.trend.value,
        "axis_domain": domain if isinstance(domain, str) else [float(v) for v in domain],
        "benchmark_ticker": chart.benchmark_ticker,
        "benchmark_percent_change": (
            float(chart.benchmark_percent_change) if chart.benchmark_percent_change is not None else None
        ),
        "focus": {
            "index": focus.index,
            "point": _point_dict(focus.point),
            "percent_change": float(focus.percent_change),
            "absolute_change": float(focus.absolute_change),
        } if focus else None,
    }


@app.get("/api/portfolios/{portfolio_id}/sparkline")
async def get_sparkline(
    portfolio_id: str,
    service: TimelineService = Depends(get_timeline_service),
):
    """Get the card sparkline and return figures of a portfolio."""
    try:
        card = await service.sparkline(portfolio_id)
    except Exception as e:
        raise _http_error(portfolio_id, e)

    return {
        "portfolio_id": card.portfolio_id,
        "values": [float(v) for v in card.values],
        "starting_capital": float(card.starting_capital),
        "current_value": float(card.current_value),
        "return_amount": float(card.return_amount),
        "percent_change": float(card.percent_change),
        "trend": card.trend.value,
    }


@app.post("/api/portfolios/{portfolio_id}/snapshots")
async def record_snapshot(
    portfolio_id: str,
    service: TimelineService = Depends(get_timeline_service),
):
    """Record today's snapshot from the live portfolio value."""
    try:
        decision = await service.record_snapshot(portfolio_id)
    except Exception as e:
        raise _http_error(portfolio_id, e)

    snapshot = decision.snapshot
    return {
        "created": decision.created,
        "reason": decision.reason,
        "snapshot": {
            "date": snapshot.snapshot_date.isoformat(),
            "total_value": float(snapshot.total_value),
            "cash": float(snapshot.cash) if snapshot.cash is not None else None,
            "holdings_value": float(snapshot.holdings_value) if snapshot.holdings_value is not None else None,
        } if snapshot else None,
    }


@app.post("/api/cache/clear")
async def clear_cache(service: TimelineService = Depends(get_timeline_service)):
    """Clear cached historical market data."""
    try:
        service.provider.clear_cache()
        return {"message": "Cache cleared successfully"}
    except Exception as e:
        logger.error(f"Error clearing cache: {e}")
        raise HTTPException(status_code=500, detail=str(e))
