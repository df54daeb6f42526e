from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from metrics.continuity import zero_fill
from metrics.intervals import create_intervals
from metrics.reducers import CompositeReducer, CountReducer, reduce_series
from metrics.schemas import BuildsSplitUp, WeeklyCount, WeekValue
from metrics.weekly import scope_match
from models.events import BUILD_SUCCEEDED, BUILDS, TIME_FIELDS
from models.query import QueryContext

logger = logging.getLogger(__name__)

_ALL = "all"


def _split_up(entries, field: str, number_of_intervals: int) -> BuildsSplitUp:
    sparse = [WeekValue(week_index=e.week_index, value=e.value[field]) for e in entries]
    dense = zero_fill(sparse, number_of_intervals=number_of_intervals, empty=0)
    by_week = [WeeklyCount(week_index=e.week_index, count=e.value) for e in dense]
    return BuildsSplitUp(count=sum(w.count for w in by_week), by_week=by_week)


async def weekly_build_counts(
    ctx: QueryContext,
    source: Any,
    *,
    repository_ids: Optional[Iterable[str]] = None,
) -> Dict[str, BuildsSplitUp]:
    """
    Total and successful builds per week.

    Weeks without builds count as zero; build counts are never carried
    forward. Returns {"total": ..., "successful": ...}.
    """
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    time_field = TIME_FIELDS[BUILDS]

    events = await source.fetch_events(
        BUILDS,
        start=ctx.start_date,
        end=ctx.end_date,
        time_field=time_field,
        match=scope_match(ctx, repository_ids=repository_ids),
    )

    series = reduce_series(
        events,
        start_date=ctx.start_date,
        intervals=intervals,
        key=lambda _e: _ALL,
        reducer=CompositeReducer(
            total=CountReducer(),
            successful=CountReducer(lambda e: e.get("result") == BUILD_SUCCEEDED),
        ),
        time_field=time_field,
    )
    entries = series[_ALL].entries if _ALL in series else ()

    result = {
        "total": _split_up(entries, "total", intervals.number_of_intervals),
        "successful": _split_up(entries, "successful", intervals.number_of_intervals),
    }
    logger.info(
        "Computed weekly build counts: weeks=%d total=%d successful=%d",
        intervals.number_of_intervals,
        result["total"].count,
        result["successful"].count,
    )
    return result
