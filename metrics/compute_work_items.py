from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from metrics.config import WorkItemFilterConfig, WorkItemsConfig, WorkItemTypeConfig
from metrics.continuity import zero_fill
from metrics.intervals import EPOCH, Intervals, create_intervals, to_utc, week_index
from metrics.reducers import CountReducer, reduce_series
from metrics.rollups import running_wip_counts
from metrics.schemas import WeeklyCount, WeeklyWip, WorkItemGroupCounts
from models.events import NO_GROUP, PRIORITY_FIELD, TIME_FIELDS, WORK_ITEM_STATE_CHANGES
from models.query import QueryContext, WorkItemFilter, WorkItemQuery

logger = logging.getLogger(__name__)

GRAPH_NEW = "new"
GRAPH_VELOCITY = "velocity"

_TIME_FIELD = TIME_FIELDS[WORK_ITEM_STATE_CHANGES]


def _field_values(fields: Mapping[str, Any], names: Sequence[str]) -> Set[str]:
    # Multi-valued fields (tags) are stored as "a; b; c".
    values: Set[str] = set()
    for name in names:
        raw = fields.get(name)
        if raw is None or raw == "":
            continue
        for part in str(raw).split(";"):
            part = part.strip()
            if part:
                values.add(part)
    return values


def matches_filters(
    fields: Mapping[str, Any],
    *,
    filter_config: Sequence[WorkItemFilterConfig],
    filters: Optional[Sequence[WorkItemFilter]] = None,
    priority: Optional[Sequence[int]] = None,
) -> bool:
    """
    Whether a work item passes the user's filters.

    Every requested filter label must match (AND); within a label, any of
    its values may match (OR). Labels that are not configured are ignored.
    """
    if priority:
        try:
            item_priority = int(fields.get(PRIORITY_FIELD))
        except (TypeError, ValueError):
            return False
        if item_priority not in priority:
            return False

    if not filters:
        return True

    by_label = {f.label: f for f in filter_config}
    for requested in filters:
        config = by_label.get(requested.label)
        if config is None:
            continue
        if not _field_values(fields, config.fields) & set(requested.values):
            return False
    return True


def group_name(fields: Mapping[str, Any], group_by_field: Optional[str]) -> str:
    if not group_by_field:
        return NO_GROUP
    value = fields.get(group_by_field)
    return str(value) if value not in (None, "") else NO_GROUP


def first_entry_by_item(
    events: Iterable[Mapping[str, Any]],
    states: Iterable[str],
    *,
    not_before: Optional[Mapping[Any, datetime]] = None,
) -> Dict[Any, Mapping[str, Any]]:
    """
    First state change per work item into any of `states`.

    Events must be ordered oldest first. With `not_before`, changes earlier
    than the item's given date are skipped.
    """
    wanted = set(states)
    first: Dict[Any, Mapping[str, Any]] = {}
    for event in events:
        item_id = event.get("work_item_id")
        if item_id in first or event.get("state") not in wanted:
            continue
        if not_before is not None:
            floor = not_before.get(item_id)
            if floor is None or to_utc(event[_TIME_FIELD]) < floor:
                continue
        first[item_id] = event
    return first


def _type_config(config: WorkItemsConfig, query: WorkItemQuery) -> Optional[WorkItemTypeConfig]:
    type_config = config.for_type(query.work_item_type)
    if type_config is None:
        logger.warning(
            "No configuration for work item type %r; nothing to report",
            query.work_item_type,
        )
    return type_config


async def _state_history(
    ctx: QueryContext,
    source: Any,
    work_item_type: str,
    states: Iterable[str],
) -> List[Dict[str, Any]]:
    # Full history up to the window end: "first entry" must consider pre-range changes.
    return await source.fetch_events(
        WORK_ITEM_STATE_CHANGES,
        start=EPOCH,
        end=ctx.end_date,
        time_field=_TIME_FIELD,
        match={
            **ctx.match(),
            "work_item_type": work_item_type,
            "state": sorted(set(states)),
        },
    )


def _filtered(
    entries: Dict[Any, Mapping[str, Any]],
    config: WorkItemsConfig,
    query: WorkItemQuery,
) -> Dict[Any, Mapping[str, Any]]:
    return {
        item_id: event
        for item_id, event in entries.items()
        if matches_filters(
            event.get("fields") or {},
            filter_config=config.filters,
            filters=query.filters,
            priority=query.priority,
        )
    }


async def weekly_work_item_counts(
    ctx: QueryContext,
    source: Any,
    query: WorkItemQuery,
    *,
    graph: str,
    config: WorkItemsConfig,
) -> List[WorkItemGroupCounts]:
    """
    Weekly counts of work items per group for the "new" or "velocity" graph.

    An item counts in the week it first entered one of the type's start
    states ("new") or end states ("velocity"). Items whose first entry
    predates the window are not counted.
    """
    if graph not in (GRAPH_NEW, GRAPH_VELOCITY):
        raise ValueError(f"Unknown work item graph: {graph}")
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    type_config = _type_config(config, query)
    if type_config is None:
        return []

    states = type_config.start_states if graph == GRAPH_NEW else type_config.end_states
    events = await _state_history(ctx, source, query.work_item_type, states)
    first = _filtered(first_entry_by_item(events, states), config, query)

    series = reduce_series(
        first.values(),
        start_date=ctx.start_date,
        intervals=intervals,
        key=lambda e: group_name(e.get("fields") or {}, type_config.group_by_field),
        reducer=CountReducer(),
        time_field=_TIME_FIELD,
    )

    result = []
    for name in sorted(series):
        dense = zero_fill(series[name], number_of_intervals=intervals.number_of_intervals, empty=0)
        result.append(
            WorkItemGroupCounts(
                group_name=name,
                counts_by_week=[WeeklyCount(week_index=w.week_index, count=w.value) for w in dense],
            )
        )
    logger.info(
        "Computed %s graph for %s: %d groups", graph, query.work_item_type, len(result)
    )
    return result


def _weekly_ids(
    entries: Dict[Any, Mapping[str, Any]],
    start_date: datetime,
    intervals: Intervals,
) -> Tuple[List[Set[Any]], Set[Any]]:
    weekly: List[Set[Any]] = [set() for _ in intervals.indices()]
    before: Set[Any] = set()
    for item_id, event in entries.items():
        idx = week_index(start_date, event[_TIME_FIELD])
        if idx < 0:
            before.add(item_id)
        elif intervals.contains(idx):
            weekly[idx].add(item_id)
    return weekly, before


async def wip_trend(
    ctx: QueryContext,
    source: Any,
    query: WorkItemQuery,
    *,
    config: WorkItemsConfig,
) -> List[WeeklyWip]:
    """
    Work in progress at the end of each week.

    An item is in progress from its first start-state entry until its first
    end-state entry after that. Items already open at the window start seed
    the running count.
    """
    intervals = create_intervals(ctx.start_date, ctx.end_date)
    type_config = _type_config(config, query)
    if type_config is None:
        return [
            WeeklyWip(week_index=i, count=0, added=0, completed=0)
            for i in intervals.indices()
        ]

    events = await _state_history(
        ctx,
        source,
        query.work_item_type,
        list(type_config.start_states) + list(type_config.end_states),
    )
    started = _filtered(first_entry_by_item(events, type_config.start_states), config, query)
    finished = first_entry_by_item(
        events,
        type_config.end_states,
        not_before={item_id: to_utc(e[_TIME_FIELD]) for item_id, e in started.items()},
    )

    entering, started_before = _weekly_ids(started, ctx.start_date, intervals)
    leaving, finished_before = _weekly_ids(finished, ctx.start_date, intervals)
    open_at_start = started_before - finished_before

    counts = running_wip_counts(entering, leaving, initial=open_at_start)
    logger.info(
        "Computed WIP trend for %s: %d open at start", query.work_item_type, len(open_at_start)
    )
    return [
        WeeklyWip(
            week_index=i,
            count=counts[i],
            added=len(entering[i]),
            completed=len(leaving[i]),
        )
        for i in intervals.indices()
    ]
