from __future__ import annotations

from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    Hashable,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from metrics.intervals import Intervals, bucketize
from metrics.schemas import Series, WeekValue

A = TypeVar("A")

Event = Mapping[str, Any]


class Reducer(Generic[A]):
    """
    Folds the events of one (grouping key, week) bucket into an aggregate.

    `step` must return a new accumulator rather than mutating `acc`.
    """

    def empty(self) -> A:
        raise NotImplementedError

    def step(self, acc: A, event: Event) -> A:
        raise NotImplementedError

    def reduce(self, events: Iterable[Event]) -> A:
        acc = self.empty()
        for event in events:
            acc = self.step(acc, event)
        return acc


class CountReducer(Reducer[int]):
    def __init__(self, predicate: Optional[Callable[[Event], bool]] = None) -> None:
        self.predicate = predicate

    def empty(self) -> int:
        return 0

    def step(self, acc: int, event: Event) -> int:
        if self.predicate is not None and not self.predicate(event):
            return acc
        return acc + 1


class SumReducer(Reducer[float]):
    def __init__(self, field: str) -> None:
        self.field = field

    def empty(self) -> float:
        return 0

    def step(self, acc: float, event: Event) -> float:
        value = event.get(self.field)
        if value is None:
            return acc
        return acc + value


class SetReducer(Reducer[FrozenSet[Hashable]]):
    """Union of an identifying field; list-valued fields add every element."""

    def __init__(self, field: str) -> None:
        self.field = field

    def empty(self) -> FrozenSet[Hashable]:
        return frozenset()

    def step(self, acc: FrozenSet[Hashable], event: Event) -> FrozenSet[Hashable]:
        value = event.get(self.field)
        if value is None:
            return acc
        if isinstance(value, (list, tuple, set, frozenset)):
            return acc | frozenset(v for v in value if v is not None)
        return acc | {value}


class LastReducer(Reducer[Any]):
    """
    Keeps the value of the most recent event.

    Buckets handed over by `bucketize` are already ordered by (timestamp, id),
    so the last event folded wins. With several fields the value is a dict.
    """

    def __init__(self, field: Union[str, Sequence[str]]) -> None:
        self.fields = field

    def empty(self) -> Any:
        if isinstance(self.fields, str):
            return None
        return {}

    def step(self, acc: Any, event: Event) -> Any:
        if isinstance(self.fields, str):
            return event.get(self.fields)
        return {name: event.get(name) for name in self.fields}


class CompositeReducer(Reducer[Dict[str, Any]]):
    """Runs several reducers over the same events."""

    def __init__(self, **reducers: Reducer[Any]) -> None:
        self.reducers = reducers

    def empty(self) -> Dict[str, Any]:
        return {name: r.empty() for name, r in self.reducers.items()}

    def step(self, acc: Dict[str, Any], event: Event) -> Dict[str, Any]:
        return {name: r.step(acc[name], event) for name, r in self.reducers.items()}


def reduce_series(
    events: Iterable[Event],
    *,
    start_date: datetime,
    intervals: Intervals,
    key: Callable[[Event], Hashable],
    reducer: Reducer[A],
    time_field: str,
    finalize: Optional[Callable[[A], Any]] = None,
) -> Dict[Hashable, Series[Any]]:
    """
    Bucket events by week and reduce each bucket into one aggregate.

    Weeks with no events for a key are absent from that key's series, and
    keys with no events at all are absent from the result.
    """
    result: Dict[Hashable, Series[Any]] = {}
    buckets = bucketize(
        events,
        start_date=start_date,
        intervals=intervals,
        key=key,
        time_field=time_field,
    )
    for group_key, by_week in buckets.items():
        entries = []
        for idx, bucket in by_week.items():
            value = reducer.reduce(bucket)
            if finalize is not None:
                value = finalize(value)
            entries.append(WeekValue(week_index=idx, value=value))
        result[group_key] = Series(key=group_key, entries=tuple(entries))
    return result
