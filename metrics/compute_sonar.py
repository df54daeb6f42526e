from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from metrics.continuity import zero_fill
from metrics.intervals import EPOCH, create_intervals
from metrics.reducers import LastReducer, SetReducer, reduce_series
from metrics.rollups import running_state_counts, running_union_counts
from metrics.schemas import WeeklyCount, WeeklySonarStatus
from metrics.weekly import scope_match
from models.events import SONAR_ALERT_HISTORY, SONAR_ERROR, SONAR_OK, SONAR_WARN, TIME_FIELDS
from models.query import QueryContext

logger = logging.getLogger(__name__)

QUALITY_GATE_STATES = (SONAR_OK, SONAR_WARN, SONAR_ERROR)

_TIME_FIELD = TIME_FIELDS[SONAR_ALERT_HISTORY]


async def _history(
    ctx: QueryContext, source: Any, repository_ids: Optional[Iterable[str]]
) -> List[List[Dict[str, Any]]]:
    match = scope_match(ctx, repository_ids=repository_ids)
    return await asyncio.gather(
        source.fetch_events(
            SONAR_ALERT_HISTORY,
            start=EPOCH,
            end=ctx.start_date,
            time_field=_TIME_FIELD,
            match=match,
        ),
        source.fetch_events(
            SONAR_ALERT_HISTORY,
            start=ctx.start_date,
            end=ctx.end_date,
            time_field=_TIME_FIELD,
            match=match,
        ),
    )


def _known_states(alerts: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return [a for a in alerts if a.get("value") in QUALITY_GATE_STATES]


def _by_state(latest: Mapping[Any, str]) -> Dict[str, List[Any]]:
    grouped: Dict[str, List[Any]] = {}
    for project_id, state in latest.items():
        grouped.setdefault(state, []).append(project_id)
    return grouped


async def weekly_sonar_project_status(
    ctx: QueryContext,
    source: Any,
    *,
    repository_ids: Optional[Iterable[str]] = None,
) -> List[WeeklySonarStatus]:
    """
    Sonar projects passing, warning and failing their quality gate per week.

    A project keeps its last known gate status until a newer alert changes it.
    Alerts with a value other than OK, WARN or ERROR are skipped, both before
    and inside the window.
    """
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    before, in_range = await _history(ctx, source, repository_ids)

    # Oldest first, so the last alert per project wins.
    latest_before: Dict[Any, str] = {}
    for alert in _known_states(before):
        latest_before[alert["sonar_project_id"]] = alert["value"]

    per_project = reduce_series(
        _known_states(in_range),
        start_date=ctx.start_date,
        intervals=intervals,
        key=lambda e: e.get("sonar_project_id"),
        reducer=LastReducer("value"),
        time_field=_TIME_FIELD,
    )
    weekly: List[Dict[str, List[Any]]] = [{} for _ in intervals.indices()]
    for project_id, series in per_project.items():
        for entry in series.entries:
            weekly[entry.week_index].setdefault(entry.value, []).append(project_id)

    counts = running_state_counts(
        weekly, QUALITY_GATE_STATES, initial=_by_state(latest_before)
    )
    logger.info(
        "Computed sonar gate status: %d projects known before start",
        len(latest_before),
    )
    return [
        WeeklySonarStatus(
            week_index=i,
            passed_projects=by_state[SONAR_OK],
            projects_with_warnings=by_state[SONAR_WARN],
            failed_projects=by_state[SONAR_ERROR],
            total_projects=total,
        )
        for i, (by_state, total) in enumerate(counts)
    ]


async def weekly_repos_with_sonar(
    ctx: QueryContext,
    source: Any,
    *,
    repository_ids: Optional[Iterable[str]] = None,
) -> List[WeeklyCount]:
    """Cumulative count of repositories with at least one sonar alert."""
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    before, in_range = await _history(ctx, source, repository_ids)

    series = reduce_series(
        in_range,
        start_date=ctx.start_date,
        intervals=intervals,
        key=lambda _e: SONAR_ALERT_HISTORY,
        reducer=SetReducer("repository_id"),
        time_field=_TIME_FIELD,
    )
    dense = zero_fill(
        series.get(SONAR_ALERT_HISTORY, ()),
        number_of_intervals=intervals.number_of_intervals,
        empty=frozenset(),
    )
    counts = running_union_counts(
        [w.value for w in dense],
        initial={a["repository_id"] for a in before if a.get("repository_id")},
    )
    return [WeeklyCount(week_index=i, count=c) for i, c in enumerate(counts)]
