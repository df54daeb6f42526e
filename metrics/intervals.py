from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Tuple

from metrics.exceptions import InvalidRangeError

ONE_DAY = timedelta(days=1)
ONE_WEEK = timedelta(days=7)

# Lower bound for "all history before X" queries.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Intervals:
    number_of_days: int
    number_of_intervals: int

    def indices(self) -> range:
        return range(self.number_of_intervals)

    def contains(self, week_index: int) -> bool:
        return 0 <= week_index < self.number_of_intervals

    def week_starts(self, start_date: datetime) -> List[datetime]:
        start = to_utc(start_date)
        return [start + ONE_WEEK * i for i in self.indices()]


def create_intervals(start_date: datetime, end_date: datetime) -> Intervals:
    """
    Count the weekly buckets covering `[start_date, end_date)`.

    Buckets are anchored at `start_date`. A trailing partial week still gets
    its own bucket, so every instant inside the range maps to a valid index.

    - number_of_days: whole days elapsed (floor).
    - number_of_intervals: ceil(elapsed / 7 days).

    Raises InvalidRangeError when `end_date <= start_date`.
    """
    start = to_utc(start_date)
    end = to_utc(end_date)
    if end <= start:
        raise InvalidRangeError(start_date, end_date)

    elapsed = end - start
    number_of_days = elapsed // ONE_DAY
    whole_weeks, remainder = divmod(elapsed, ONE_WEEK)
    number_of_intervals = whole_weeks + (1 if remainder else 0)
    return Intervals(
        number_of_days=int(number_of_days),
        number_of_intervals=int(number_of_intervals),
    )


def week_index(start_date: datetime, event_date: datetime) -> int:
    """
    Zero-based week bucket of `event_date` relative to `start_date`.

    Negative for events before the start; callers filter to the valid range.
    """
    return int((to_utc(event_date) - to_utc(start_date)) // ONE_WEEK)


def id_sort_key(value: Any) -> Tuple[int, Any]:
    """Stable tie-break key for event ids that may be ints or strings."""
    if isinstance(value, bool) or value is None:
        return (2, "")
    if isinstance(value, int):
        return (0, value)
    return (1, str(value))


def bucketize(
    events: Iterable[Mapping[str, Any]],
    *,
    start_date: datetime,
    intervals: Intervals,
    key: Callable[[Mapping[str, Any]], Hashable],
    time_field: str,
    id_field: str = "id",
) -> Dict[Hashable, Dict[int, List[Mapping[str, Any]]]]:
    """
    Group events by (grouping key, week index).

    Events outside `[0, number_of_intervals)` are dropped. Each bucket is
    ordered by (timestamp, id) so the last element is the most recent event.
    """
    grouped: Dict[Hashable, Dict[int, List[Tuple[datetime, Tuple[int, Any], Mapping[str, Any]]]]] = {}
    for event in events:
        ts = event.get(time_field)
        if ts is None:
            continue
        idx = week_index(start_date, ts)
        if not intervals.contains(idx):
            continue
        by_week = grouped.setdefault(key(event), {})
        by_week.setdefault(idx, []).append((to_utc(ts), id_sort_key(event.get(id_field)), event))

    result: Dict[Hashable, Dict[int, List[Mapping[str, Any]]]] = {}
    for group_key, by_week in grouped.items():
        result[group_key] = {
            idx: [e for (_ts, _id, e) in sorted(bucket, key=lambda t: (t[0], t[1]))]
            for idx, bucket in sorted(by_week.items())
        }
    return result
