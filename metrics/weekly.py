from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence

from metrics.continuity import carry_or, make_continuous
from metrics.intervals import Intervals, id_sort_key
from metrics.reducers import LastReducer, reduce_series
from metrics.schemas import WeekValue
from models.events import TIME_FIELDS
from models.query import QueryContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyedSeries:
    """Dense weekly values for one grouping key, plus its most recent raw event."""

    key: Hashable
    entries: List[WeekValue[Any]]
    sample: Optional[Mapping[str, Any]] = None


def scope_match(
    ctx: QueryContext,
    *,
    repository_ids: Optional[Iterable[str]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    match: Dict[str, Any] = ctx.match()
    if repository_ids:
        match["repository_id"] = list(repository_ids)
    if extra:
        match.update(extra)
    return match


async def latest_per_key(
    ctx: QueryContext,
    source: Any,
    collection: str,
    *,
    intervals: Intervals,
    key_field: str,
    fields: Sequence[str],
    to_value: Callable[[Mapping[str, Any]], Any],
    empty: Any,
    match: Optional[Mapping[str, Any]] = None,
    keys: Optional[Iterable[Hashable]] = None,
) -> List[KeyedSeries]:
    """
    Latest value per key per week, continuity-filled over the whole window.

    The keys reported are every key the collection has ever seen within
    `match`, plus any explicitly requested `keys`. A key with no in-range
    events is seeded from its most recent pre-range event (or `empty`).
    """
    time_field = TIME_FIELDS[collection]
    base = dict(match or {})

    events, known_keys = await asyncio.gather(
        source.fetch_events(
            collection,
            start=ctx.start_date,
            end=ctx.end_date,
            time_field=time_field,
            match=base,
        ),
        source.distinct(collection, key_field, match=base),
    )
    logger.debug("Fetched %d %s events", len(events), collection)

    sparse = reduce_series(
        events,
        start_date=ctx.start_date,
        intervals=intervals,
        key=lambda e: e.get(key_field),
        reducer=LastReducer(fields),
        time_field=time_field,
        finalize=to_value,
    )
    samples: Dict[Hashable, Mapping[str, Any]] = {}
    for event in events:
        samples[event.get(key_field)] = event

    all_keys = set(known_keys) | set(sparse) | set(keys or ())
    all_keys.discard(None)

    async def _fill(key: Hashable) -> KeyedSeries:
        async def fetch_older() -> Optional[Any]:
            doc = await source.fetch_latest_before(
                collection,
                before=ctx.start_date,
                time_field=time_field,
                match={**base, key_field: key},
            )
            if doc is None:
                return None
            samples.setdefault(key, doc)
            return to_value(doc)

        series = sparse.get(key)
        entries = await make_continuous(
            series if series is not None else (),
            number_of_intervals=intervals.number_of_intervals,
            fetch_older=fetch_older,
            make_default=carry_or(empty),
        )
        return KeyedSeries(key=key, entries=entries, sample=samples.get(key))

    return list(
        await asyncio.gather(*[_fill(k) for k in sorted(all_keys, key=id_sort_key)])
    )
