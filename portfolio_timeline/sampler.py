"""Sample-instant generation, compaction and degenerate-series padding."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence, TypeVar

from .models import ChartPoint, TimeRange
from .time_range import lookback_offset

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Grid points are never closer together than this
MIN_SAMPLE_SPACING = timedelta(minutes=1)


def sample_instants(start: datetime, end: datetime, max_points: int) -> list[datetime]:
    """Evenly spaced instants across ``[start, end]`` by wall-clock duration.

    The last instant is always exactly ``end`` ("now"). A window narrower
    than MIN_SAMPLE_SPACING yields only ``[end]``; callers pad it with
    ``flat_line``.
    """
    width = end - start
    if width < MIN_SAMPLE_SPACING or max_points < 2:
        return [end]

    count = min(max_points, int(width / MIN_SAMPLE_SPACING) + 1)
    count = max(count, 2)
    step = width / (count - 1)

    instants = [start + step * i for i in range(count - 1)]
    instants.append(end)
    return instants


def merge_instants(grid: Iterable[datetime], extra: Iterable[datetime], end: datetime) -> list[datetime]:
    """Union of two instant sets, ascending, clipped to ``end`` and ending at it."""
    merged = sorted({t for t in (*grid, *extra) if t <= end})
    if not merged or merged[-1] != end:
        merged.append(end)
    return merged


def compact(items: Sequence[T], max_points: int) -> list[T]:
    """Reduce ``items`` to at most ``max_points`` by even-stride selection.

    The first and the last item are always kept.
    """
    if len(items) <= max_points:
        return list(items)
    if max_points < 2:
        return [items[-1]]

    last = len(items) - 1
    stride = last / (max_points - 1)
    indexes = sorted({round(i * stride) for i in range(max_points)})
    indexes[-1] = last
    logger.info(f"Compacted series from {len(items)} to {len(indexes)} points")
    return [items[i] for i in indexes]


def interpolate(instants: Sequence[datetime], base_value: Decimal, current_value: Decimal) -> list[Decimal]:
    """Linear values from ``base_value`` at the first instant to ``current_value`` at the last."""
    if not instants:
        return []
    if len(instants) == 1:
        return [current_value]

    start = instants[0]
    span = Decimal(str((instants[-1] - start).total_seconds()))
    values = []
    for instant in instants:
        progress = Decimal(str((instant - start).total_seconds())) / span
        values.append(base_value + (current_value - base_value) * progress)
    return values


def format_label(instant: datetime, token: TimeRange) -> str:
    """Display label: clock time for intraday views, calendar date otherwise."""
    if token == TimeRange.ONE_DAY:
        hour = instant.hour % 12 or 12
        suffix = "AM" if instant.hour < 12 else "PM"
        return f"{hour}:{instant.minute:02d} {suffix}"
    return f"{instant.strftime('%b')} {instant.day}, {instant.year}"


def flat_line(point: ChartPoint, token: TimeRange, floor: Optional[datetime] = None) -> list[ChartPoint]:
    """Pair a lone point with a synthetic earlier copy so a line can be drawn.

    The copy sits ``lookback_offset(token)`` before the point, but never
    before ``floor`` unless the floor leaves no room at all.
    """
    earlier = point.time - lookback_offset(token)
    if floor is not None:
        earlier = max(earlier, floor)
    if earlier >= point.time:
        earlier = point.time - MIN_SAMPLE_SPACING

    synthetic = point.model_copy(update={"time": earlier, "label": format_label(earlier, token)})
    return [synthetic, point]
