from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

from metrics.exceptions import InvariantViolation
from metrics.schemas import Series, WeekValue

logger = logging.getLogger(__name__)

T = TypeVar("T")

SparseInput = Union[Series[T], Sequence[WeekValue[T]]]


def _entries(series: SparseInput) -> Sequence[WeekValue[T]]:
    if isinstance(series, Series):
        return series.entries
    return series


def validate_sparse(entries: Sequence[WeekValue[T]], number_of_intervals: int) -> None:
    """Fail fast on unordered, duplicated or out-of-range week indices."""
    previous: Optional[int] = None
    for entry in entries:
        idx = entry.week_index
        if idx < 0 or idx >= number_of_intervals:
            raise InvariantViolation(
                f"week_index {idx} outside [0, {number_of_intervals})"
            )
        if previous is not None and idx <= previous:
            raise InvariantViolation(
                f"week indices must be strictly increasing, got {previous} then {idx}"
            )
        previous = idx


def carry_or(empty: T) -> Callable[[Optional[T]], T]:
    """`make_default` that carries a known value forward, else yields `empty`."""

    def make_default(value: Optional[T]) -> T:
        return empty if value is None else value

    return make_default


async def make_continuous(
    series: SparseInput,
    *,
    number_of_intervals: int,
    fetch_older: Callable[[], Awaitable[Optional[T]]],
    make_default: Callable[[Optional[T]], T],
) -> List[WeekValue[T]]:
    """
    Fill every week in `[0, number_of_intervals)` from a sparse series.

    - Week 0 is seeded from `make_default(await fetch_older())` when the
      series has no entry for it. `fetch_older` is awaited at most once.
    - A week without an entry gets `make_default(<previous week's value>)`.

    Errors raised by `fetch_older` propagate; nothing partial is returned.
    """
    entries = _entries(series)
    validate_sparse(entries, number_of_intervals)
    by_week = {entry.week_index: entry for entry in entries}

    if number_of_intervals > 0 and 0 not in by_week:
        older = await fetch_older()
        logger.debug(
            "Seeding week 0 from pre-range data (found=%s)", older is not None
        )
        by_week[0] = WeekValue(week_index=0, value=make_default(older))

    dense: List[WeekValue[T]] = []
    last_known: Optional[WeekValue[T]] = None
    for idx in range(number_of_intervals):
        entry = by_week.get(idx)
        if entry is None:
            # last_known is always set here: week 0 was seeded above.
            entry = WeekValue(
                week_index=idx,
                value=make_default(last_known.value if last_known else None),
            )
        dense.append(entry)
        last_known = entry
    return dense


def zero_fill(
    series: SparseInput,
    *,
    number_of_intervals: int,
    empty: T,
) -> List[WeekValue[T]]:
    """Densify a sparse series with `empty` for missing weeks (no carry-forward)."""
    entries = _entries(series)
    validate_sparse(entries, number_of_intervals)
    by_week = {entry.week_index: entry for entry in entries}
    return [
        by_week.get(idx) or WeekValue(week_index=idx, value=empty)
        for idx in range(number_of_intervals)
    ]


def is_dense(entries: Sequence[WeekValue[T]], number_of_intervals: int) -> bool:
    return [e.week_index for e in entries] == list(range(number_of_intervals))
